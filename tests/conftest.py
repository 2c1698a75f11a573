"""
Shared fixtures for Cashboard tests.

No network: the ledger is in memory, with fault injection for the
persistence-failure paths. Async code is driven with asyncio.run().
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import pytest

from cashboard.config import ExecutionSettings
from cashboard.models import (
    Account,
    AccountType,
    ActionType,
    AutoRule,
    Goal,
    RuleAction,
    RuleTrigger,
    Transaction,
    TransactionType,
    TriggerType,
)
from cashboard.services.storage import (
    GuardedLedger,
    InMemoryLedgerStore,
    LedgerTable,
    StorageError,
)


class FaultyLedgerStore(InMemoryLedgerStore):
    """
    In-memory ledger that fails selected calls.

    fail("update_by_id", LedgerTable.ACCOUNTS, "acc-1", after=1, times=None)
    lets the first matching call through and fails every later one.
    With applied=True the call takes effect before the error is raised,
    like a write whose reply was lost.
    """

    def __init__(self, seed: Optional[dict[LedgerTable, list[dict[str, Any]]]] = None):
        super().__init__(seed)
        self._faults: list[dict[str, Any]] = []
        self.calls: list[tuple[str, LedgerTable, Optional[str]]] = []

    def fail(
        self,
        operation: str,
        table: LedgerTable,
        record_id: Optional[str] = None,
        times: Optional[int] = None,
        after: int = 0,
        error: Optional[Exception] = None,
        applied: bool = False,
    ) -> None:
        self._faults.append({
            "operation": operation,
            "table": table,
            "record_id": record_id,
            "times": times,
            "after": after,
            "error": error or StorageError(f"injected {operation} failure"),
            "applied": applied,
        })

    def _firing_fault(
        self,
        operation: str,
        table: LedgerTable,
        record_id: Optional[str],
    ) -> Optional[dict[str, Any]]:
        self.calls.append((operation, table, record_id))
        for fault in self._faults:
            if fault["operation"] != operation or fault["table"] != table:
                continue
            if fault["record_id"] is not None and fault["record_id"] != record_id:
                continue
            if fault["after"] > 0:
                fault["after"] -= 1
                continue
            if fault["times"] is None:
                return fault
            if fault["times"] > 0:
                fault["times"] -= 1
                return fault
        return None

    async def _run(self, operation, table, record_id, call):
        fault = self._firing_fault(operation, table, record_id)
        if fault is None:
            return await call()
        if fault["applied"]:
            await call()
        raise fault["error"]

    def count(self, operation: str, table: LedgerTable) -> int:
        return sum(1 for op, tbl, _ in self.calls if op == operation and tbl == table)

    async def get_by_id(self, table, record_id):
        return await self._run(
            "get_by_id", table, record_id,
            lambda: super(FaultyLedgerStore, self).get_by_id(table, record_id),
        )

    async def insert(self, table, record):
        return await self._run(
            "insert", table, record.get("id"),
            lambda: super(FaultyLedgerStore, self).insert(table, record),
        )

    async def update_by_id(self, table, record_id, fields):
        return await self._run(
            "update_by_id", table, record_id,
            lambda: super(FaultyLedgerStore, self).update_by_id(table, record_id, fields),
        )

    async def delete_by_id(self, table, record_id):
        return await self._run(
            "delete_by_id", table, record_id,
            lambda: super(FaultyLedgerStore, self).delete_by_id(table, record_id),
        )


@pytest.fixture
def settings() -> ExecutionSettings:
    """No backoff so retry paths run instantly."""
    return ExecutionSettings(
        persist_max_attempts=3,
        persist_backoff_multiplier=0,
        persist_backoff_min_seconds=0,
        persist_backoff_max_seconds=0,
        persist_timeout_seconds=1.0,
        historical_window_days=30,
        currency_symbol="€",
    )


@pytest.fixture
def checking() -> Account:
    return Account(id="acc-checking", name="Checking", type=AccountType.CHECKING, balance=Decimal("2000"))


@pytest.fixture
def savings() -> Account:
    return Account(id="acc-savings", name="Savings", type=AccountType.SAVINGS, balance=Decimal("500"))


@pytest.fixture
def goal() -> Goal:
    return Goal(
        id="goal-trip",
        name="Trip",
        target_amount=Decimal("3000"),
        current_amount=Decimal("100"),
    )


@pytest.fixture
def ledger_store(checking, savings, goal) -> FaultyLedgerStore:
    return FaultyLedgerStore(seed={
        LedgerTable.ACCOUNTS: [checking.to_record(), savings.to_record()],
        LedgerTable.GOALS: [goal.to_record()],
    })


@pytest.fixture
def ledger(ledger_store, settings) -> GuardedLedger:
    return GuardedLedger(ledger_store, settings)


@pytest.fixture
def income() -> Transaction:
    return Transaction(
        id="txn-salary",
        date=date.today(),
        description="Salary",
        amount=Decimal("1000"),
        type=TransactionType.INCOME,
        category="Salário",
        account_id="acc-checking",
    )


@pytest.fixture
def percentage_rule() -> AutoRule:
    return AutoRule(
        id="rule-save",
        name="Save 20%",
        trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
        action=RuleAction(
            type=ActionType.TRANSFER_PERCENTAGE,
            percentage=Decimal("20"),
            target_account_id="acc-savings",
        ),
    )


@pytest.fixture
def goal_rule() -> AutoRule:
    return AutoRule(
        id="rule-trip",
        name="Trip fund",
        trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
        action=RuleAction(
            type=ActionType.TRANSFER_FIXED,
            fixed_amount=Decimal("50"),
            target_goal_id="goal-trip",
        ),
    )


@pytest.fixture
def balance_of(ledger_store):
    """Account balance as stored in the ledger."""
    def _balance(account_id: str) -> Decimal:
        record = asyncio.run(ledger_store.get_by_id(LedgerTable.ACCOUNTS, account_id))
        return Decimal(str(record["balance"]))
    return _balance


@pytest.fixture
def goal_amount_of(ledger_store):
    """Goal amount as stored in the ledger."""
    def _amount(goal_id: str) -> Decimal:
        record = asyncio.run(ledger_store.get_by_id(LedgerTable.GOALS, goal_id))
        return Decimal(str(record["current_amount"]))
    return _amount
