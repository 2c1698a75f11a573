"""
Rule Matcher

Pure functions deciding whether a transaction satisfies a rule trigger.

Trigger semantics:
- income_received:  income, and the trigger value (if any) appears in the
                    category or description, case-insensitively
- expense_contains: expense whose description contains the value,
                    case-insensitively
- amount_above:     amount >= value (inclusive, kept for compatibility)
- category_match:   exact, case-sensitive category equality

Unknown trigger types never match.
"""

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from cashboard.models.finance import Transaction, TransactionType
from cashboard.models.rules import RuleTrigger, TriggerType


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


def _parse_threshold(value: str) -> Optional[Decimal]:
    try:
        threshold = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        return None
    return threshold if threshold.is_finite() else None


def matches(transaction: Transaction, trigger: RuleTrigger) -> bool:
    """Return True if `transaction` satisfies `trigger`."""
    value = trigger.value or ""

    if trigger.type == TriggerType.INCOME_RECEIVED:
        if transaction.type != TransactionType.INCOME:
            return False
        return (
            not value
            or _contains(transaction.category, value)
            or _contains(transaction.description, value)
        )

    if trigger.type == TriggerType.EXPENSE_CONTAINS:
        return (
            transaction.type == TransactionType.EXPENSE
            and _contains(transaction.description, value)
        )

    if trigger.type == TriggerType.AMOUNT_ABOVE:
        threshold = _parse_threshold(value)
        return threshold is not None and transaction.amount >= threshold

    if trigger.type == TriggerType.CATEGORY_MATCH:
        return trigger.category is not None and transaction.category == trigger.category

    return False


def matching_transactions(
    transactions: Iterable[Transaction],
    trigger: RuleTrigger,
    today: Optional[date] = None,
    window_days: int = 30,
) -> list[Transaction]:
    """
    Historical scan: transactions dated within the trailing window that
    satisfy `trigger`, in their original order.
    """
    today = today or date.today()
    cutoff = today - timedelta(days=window_days)
    return [
        t for t in transactions
        if t.date >= cutoff and matches(t, trigger)
    ]
