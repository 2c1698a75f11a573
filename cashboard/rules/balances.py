"""
Balance Legs

A fund movement is a short sequence of single-field ledger writes ("legs"):
debit the source, then credit the target. The ledger has no multi-row
transactions, so all-or-nothing is enforced here:

- legs are written in order
- if leg k fails, legs 0..k-1 are restored to their previous values
  (newest first) and LegWriteError is raised
- if a restoring write fails too, RollbackFailedError is raised; the
  ledger is now inconsistent and the caller must alert

Once the first leg is accepted the sequence always runs to completion or
to compensation. There is no cancellation point in between.
"""

from decimal import Decimal
from typing import Iterable, Sequence

import structlog
from pydantic import BaseModel, ConfigDict

from cashboard.models.finance import Account, Goal
from cashboard.services.storage import GuardedLedger, LedgerTable, StorageError


logger = structlog.get_logger(__name__)


class BalanceLeg(BaseModel):
    """One single-field write to an account balance or goal amount."""

    model_config = ConfigDict(frozen=True)

    table: LedgerTable
    entity_id: str
    field: str
    old_value: Decimal
    new_value: Decimal

    @property
    def delta(self) -> Decimal:
        return self.new_value - self.old_value


def account_leg(account: Account, delta: Decimal) -> BalanceLeg:
    return BalanceLeg(
        table=LedgerTable.ACCOUNTS,
        entity_id=account.id,
        field="balance",
        old_value=account.balance,
        new_value=account.balance + delta,
    )


def goal_leg(goal: Goal, delta: Decimal) -> BalanceLeg:
    return BalanceLeg(
        table=LedgerTable.GOALS,
        entity_id=goal.id,
        field="current_amount",
        old_value=goal.current_amount,
        new_value=goal.current_amount + delta,
    )


class LegWriteError(Exception):
    """A leg failed; every earlier leg was restored."""

    def __init__(self, index: int, leg: BalanceLeg, rolled_back: list[BalanceLeg], cause: Exception):
        self.index = index
        self.leg = leg
        self.rolled_back = rolled_back
        self.cause = cause
        super().__init__(f"Write of leg {index} ({leg.table.value}:{leg.entity_id}) failed: {cause}")


class RollbackFailedError(Exception):
    """
    A compensating write failed.

    The ledger now holds `leg.new_value` where `leg.old_value` was expected.
    This is the one condition that must be surfaced, never swallowed.
    """

    def __init__(self, leg: BalanceLeg, cause: Exception, original_error: Exception):
        self.leg = leg
        self.cause = cause
        self.original_error = original_error
        super().__init__(
            f"Could not restore {leg.table.value}:{leg.entity_id} to {leg.old_value} "
            f"after failed write ({original_error}): {cause}"
        )


async def compensate(
    ledger: GuardedLedger,
    applied: Sequence[BalanceLeg],
    original_error: Exception,
) -> list[BalanceLeg]:
    """Restore `applied` legs, newest first. Returns the restored legs."""
    restored = []
    for leg in reversed(applied):
        try:
            await ledger.update_by_id(leg.table, leg.entity_id, {leg.field: str(leg.old_value)})
        except StorageError as e:
            logger.critical(
                "rollback_failed",
                table=leg.table.value,
                entity_id=leg.entity_id,
                expected=str(leg.old_value),
                error=str(e),
            )
            raise RollbackFailedError(leg, e, original_error) from e
        logger.warning(
            "leg_rolled_back",
            table=leg.table.value,
            entity_id=leg.entity_id,
            restored=str(leg.old_value),
        )
        restored.append(leg)
    return restored


async def apply_legs(ledger: GuardedLedger, legs: Sequence[BalanceLeg]) -> None:
    """Write `legs` in order with compensation on failure."""
    applied: list[BalanceLeg] = []
    for index, leg in enumerate(legs):
        try:
            await ledger.update_by_id(leg.table, leg.entity_id, {leg.field: str(leg.new_value)})
        except StorageError as e:
            restored = await compensate(ledger, applied, e)
            raise LegWriteError(index, leg, restored, e) from e
        applied.append(leg)


def apply_to_snapshot(
    legs: Iterable[BalanceLeg],
    accounts: Iterable[Account],
    goals: Iterable[Goal],
) -> tuple[list[Account], list[Goal]]:
    """
    Return the accounts and goals touched by `legs` with their new values.
    Only touched entities are returned.
    """
    accounts_by_id = {a.id: a for a in accounts}
    goals_by_id = {g.id: g for g in goals}
    updated_accounts: dict[str, Account] = {}
    updated_goals: dict[str, Goal] = {}

    for leg in legs:
        if leg.table == LedgerTable.ACCOUNTS:
            account = updated_accounts.get(leg.entity_id) or accounts_by_id[leg.entity_id]
            updated_accounts[leg.entity_id] = account.model_copy(update={"balance": leg.new_value})
        else:
            goal = updated_goals.get(leg.entity_id) or goals_by_id[leg.entity_id]
            updated_goals[leg.entity_id] = goal.model_copy(update={"current_amount": leg.new_value})

    return list(updated_accounts.values()), list(updated_goals.values())
