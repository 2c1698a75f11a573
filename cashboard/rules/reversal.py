"""
Reversal Engine

Undoes a recorded transaction: applies the inverse balance legs, deletes
the record and, for automation-generated transactions, marks the
originating rule execution as reversed.

DESIGN DECISION: Working out *which* balances to touch is isolated in
classify_and_resolve_legs(). It is the only place that knows about the
legacy "Transferência: A → B" free-text format, so the structured
to_account_id link can replace it without touching the engine.

Reversal is all-or-nothing: if any leg or the final delete fails, every
applied leg is compensated. A transaction that is already gone raises
TransactionNotFoundError, never a silent no-op.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cashboard.models.finance import Account, Goal, Transaction, TransactionType
from cashboard.models.rules import (
    AutoRule,
    ReversalKind,
    ReversalResult,
    is_automation_generated,
    utc_now,
)
from cashboard.rules.balances import (
    BalanceLeg,
    LegWriteError,
    account_leg,
    apply_legs,
    apply_to_snapshot,
    compensate,
    goal_leg,
)
from cashboard.services.storage import GuardedLedger, LedgerTable, NotFoundError, StorageError


logger = structlog.get_logger(__name__)

LEGACY_TRANSFER_PATTERN = re.compile(r"^Transferência: (.+) → (.+)$")


class ReversalError(Exception):
    """Base exception for reversal failures. Nothing was changed."""
    pass


class TransactionNotFoundError(ReversalError):
    """The transaction does not exist (or was already reversed)."""
    pass


class NotReversibleError(ReversalError):
    """The balances affected by the transaction cannot be determined safely."""
    pass


class ReversalPlan(BaseModel):
    """What reversing one transaction writes."""

    model_config = ConfigDict(frozen=True)

    kind: ReversalKind
    legs: list[BalanceLeg] = Field(default_factory=list)
    rule_id: Optional[str] = None


def _account(accounts_by_id: dict[str, Account], account_id: Optional[str], transaction: Transaction) -> Account:
    account = accounts_by_id.get(account_id) if account_id else None
    if account is None:
        raise NotReversibleError(
            f"Account {account_id!r} referenced by transaction {transaction.id} not found"
        )
    return account


def _goal(goals_by_id: dict[str, Goal], goal_id: Optional[str], transaction: Transaction) -> Goal:
    goal = goals_by_id.get(goal_id) if goal_id else None
    if goal is None:
        raise NotReversibleError(
            f"Goal {goal_id!r} referenced by transaction {transaction.id} not found"
        )
    return goal


def classify_and_resolve_legs(
    transaction: Transaction,
    accounts: Iterable[Account],
    goals: Iterable[Goal],
) -> ReversalPlan:
    """
    Classify `transaction` and resolve the inverse legs against current state.

    Raises NotReversibleError when a referenced account/goal is missing or
    a free-text transfer names an unknown account.
    """
    accounts_by_id = {a.id: a for a in accounts}
    goals_by_id = {g.id: g for g in goals}
    amount = transaction.amount
    automated = is_automation_generated(transaction)
    rule_id = transaction.rule_id if automated else None

    if transaction.type == TransactionType.TRANSFER:
        # Structured link first
        if transaction.to_account_id:
            source = _account(accounts_by_id, transaction.account_id, transaction)
            target = _account(accounts_by_id, transaction.to_account_id, transaction)
            return ReversalPlan(
                kind=ReversalKind.AUTOMATION_TRANSFER if automated else ReversalKind.LINKED_TRANSFER,
                legs=[account_leg(source, amount), account_leg(target, -amount)],
                rule_id=rule_id,
            )

        if automated:
            raise NotReversibleError(
                f"Automated transfer {transaction.id} has no target account link"
            )

        match = LEGACY_TRANSFER_PATTERN.match(transaction.description)
        if not match:
            raise NotReversibleError(
                f"Transfer {transaction.id} names no accounts: {transaction.description!r}"
            )

        by_name = {a.name: a for a in accounts_by_id.values()}
        source = by_name.get(match.group(1))
        target = by_name.get(match.group(2))
        if source is None or target is None:
            raise NotReversibleError(
                f"Cannot resolve accounts in {transaction.description!r}"
            )
        return ReversalPlan(
            kind=ReversalKind.LEGACY_TRANSFER,
            legs=[account_leg(source, amount), account_leg(target, -amount)],
        )

    if automated and transaction.type == TransactionType.SAVINGS:
        source = _account(accounts_by_id, transaction.account_id, transaction)
        goal = _goal(goals_by_id, transaction.goal_id, transaction)
        return ReversalPlan(
            kind=ReversalKind.AUTOMATION_SAVINGS,
            legs=[account_leg(source, amount), goal_leg(goal, -amount)],
            rule_id=rule_id,
        )

    # Plain transaction: invert its effect on the account
    legs = []
    if transaction.account_id:
        account = _account(accounts_by_id, transaction.account_id, transaction)
        delta = -amount if transaction.type == TransactionType.INCOME else amount
        legs.append(account_leg(account, delta))

    if transaction.type == TransactionType.SAVINGS and transaction.goal_id:
        goal = _goal(goals_by_id, transaction.goal_id, transaction)
        # Goal amounts never go negative
        legs.append(goal_leg(goal, -min(amount, max(goal.current_amount, Decimal("0")))))

    if transaction.is_goal_withdrawal:
        goal = _goal(goals_by_id, transaction.goal_id, transaction)
        legs.append(goal_leg(goal, amount))

    return ReversalPlan(kind=ReversalKind.PLAIN, legs=legs, rule_id=rule_id)


class ReversalEngine:
    """
    Applies reversals against the ledger.

    Like the executor, it takes state by value and returns the new state.
    """

    def __init__(self, ledger: GuardedLedger):
        self.ledger = ledger

    async def reverse(
        self,
        transaction_id: str,
        transactions: Iterable[Transaction],
        accounts: Sequence[Account],
        goals: Sequence[Goal],
        rules: Iterable[AutoRule],
        now: Optional[datetime] = None,
    ) -> ReversalResult:
        """
        Reverse the transaction `transaction_id`.

        Raises:
            TransactionNotFoundError: not in the ledger (e.g. already reversed)
            NotReversibleError: affected balances cannot be resolved
            ReversalError: a ledger write failed and was compensated
            RollbackFailedError: compensation failed (ledger inconsistent)
        """
        now = now or utc_now()

        record = await self.ledger.get_by_id(LedgerTable.TRANSACTIONS, transaction_id)
        if record is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

        transaction = next(
            (t for t in transactions if t.id == transaction_id),
            None,
        ) or Transaction.from_record(record)

        plan = classify_and_resolve_legs(transaction, accounts, goals)

        try:
            await apply_legs(self.ledger, plan.legs)
        except LegWriteError as e:
            raise ReversalError(f"Could not reverse {transaction_id}: {e}") from e

        try:
            await self.ledger.delete_by_id(LedgerTable.TRANSACTIONS, transaction_id)
        except StorageError as e:
            await compensate(self.ledger, plan.legs, e)
            if isinstance(e, NotFoundError):
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}") from e
            raise ReversalError(f"Could not delete {transaction_id}: {e}") from e

        updated_rule = None
        if plan.rule_id:
            rule = next((r for r in rules if r.id == plan.rule_id), None)
            execution = rule.find_execution(transaction_id) if rule else None
            if execution is not None and not execution.reversed:
                updated_rule = rule.with_reversed_execution(transaction_id, now)
            else:
                logger.warning(
                    "reversal_execution_not_found",
                    transaction_id=transaction_id,
                    rule_id=plan.rule_id,
                )

        updated_accounts, updated_goals = apply_to_snapshot(plan.legs, accounts, goals)

        logger.info(
            "transaction_reversed",
            transaction_id=transaction_id,
            kind=plan.kind.value,
            legs=len(plan.legs),
        )

        return ReversalResult(
            transaction_id=transaction_id,
            kind=plan.kind,
            updated_accounts=updated_accounts,
            updated_goals=updated_goals,
            updated_rule=updated_rule,
        )
