"""
Action Resolver

Computes how much a rule action moves, given the basis amount(s).

- transfer_percentage: basis * percentage / 100. Over a batch the
  percentage is applied once to the summed basis.
- transfer_fixed: the fixed amount per trigger event (a batch of N
  events moves N times the fixed amount), independent of the basis.
- categorize: reserved, resolves to zero.

A result <= 0 means there is nothing to do.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from cashboard.models.rules import ActionType, RuleAction


CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_amount(
    action: RuleAction,
    basis: Union[Decimal, Iterable[Decimal]],
) -> Decimal:
    """Resolve the transfer amount of `action` against `basis`."""
    amounts = [basis] if isinstance(basis, Decimal) else list(basis)

    if action.type == ActionType.TRANSFER_PERCENTAGE:
        if not action.percentage:
            return ZERO
        total = sum(amounts, ZERO)
        return to_cents(total * action.percentage / Decimal(100))

    if action.type == ActionType.TRANSFER_FIXED:
        if not action.fixed_amount:
            return ZERO
        return to_cents(action.fixed_amount * len(amounts))

    return ZERO


def format_percentage(percentage: Decimal) -> str:
    """10 -> '10', 12.50 -> '12.5'."""
    text = format(percentage.normalize(), "f")
    return text
