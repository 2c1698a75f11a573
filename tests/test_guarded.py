"""
Tests for the retry/timeout guard around the ledger store.
"""

import asyncio
import pytest

from cashboard.config import ExecutionSettings
from cashboard.services.storage import (
    DuplicateError,
    GuardedLedger,
    InMemoryLedgerStore,
    LedgerTable,
    NotFoundError,
    PersistTimeoutError,
    StorageError,
)


class SlowLedgerStore(InMemoryLedgerStore):
    """Every point read takes longer than the configured timeout."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay
        self.attempts = 0

    async def get_by_id(self, table, record_id):
        self.attempts += 1
        await asyncio.sleep(self.delay)
        return await super().get_by_id(table, record_id)


class TestRetry:
    """Transient failures are retried, permanent ones are not."""

    def test_transient_failure_is_retried(self, ledger, ledger_store, balance_of):
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-checking", times=2)

        assert asyncio.run(ledger.update_by_id(LedgerTable.ACCOUNTS, "acc-checking", {"balance": "1"}))

        assert ledger_store.count("update_by_id", LedgerTable.ACCOUNTS) == 3
        assert str(balance_of("acc-checking")) == "1"

    def test_gives_up_after_max_attempts(self, ledger, ledger_store):
        """The original StorageError surfaces after the last attempt."""
        ledger_store.fail("insert", LedgerTable.TRANSACTIONS, error=StorageError("quota exceeded"))

        with pytest.raises(StorageError, match="quota exceeded"):
            asyncio.run(ledger.insert(LedgerTable.TRANSACTIONS, {"id": "txn-1"}))

        assert ledger_store.count("insert", LedgerTable.TRANSACTIONS) == 3

    def test_not_found_is_not_retried(self, ledger, ledger_store):
        with pytest.raises(NotFoundError):
            asyncio.run(ledger.delete_by_id(LedgerTable.TRANSACTIONS, "txn-missing"))

        assert ledger_store.count("delete_by_id", LedgerTable.TRANSACTIONS) == 1

    def test_other_exceptions_pass_through(self, ledger, ledger_store):
        """Only StorageErrors are retried."""
        ledger_store.fail("get_by_id", LedgerTable.GOALS, error=RuntimeError("bug"))

        with pytest.raises(RuntimeError):
            asyncio.run(ledger.get_by_id(LedgerTable.GOALS, "goal-trip"))

        assert ledger_store.count("get_by_id", LedgerTable.GOALS) == 1


class TestInsertRetry:
    """Inserts are retried without creating or misreporting rows."""

    def test_lost_reply_returns_stored_row(self, ledger, ledger_store):
        """The first attempt stored the row; the retry finds it."""
        ledger_store.fail("insert", LedgerTable.TRANSACTIONS, times=1, applied=True)

        record = asyncio.run(ledger.insert(LedgerTable.TRANSACTIONS, {"id": "txn-1", "amount": "5"}))

        assert record["id"] == "txn-1"
        assert ledger_store.count("insert", LedgerTable.TRANSACTIONS) == 2
        rows = asyncio.run(ledger_store.read_all(LedgerTable.TRANSACTIONS))
        assert [r["id"] for r in rows] == ["txn-1"]

    def test_existing_row_is_still_a_duplicate(self, ledger, ledger_store):
        """A duplicate on the first attempt is a real conflict and is not retried."""
        asyncio.run(ledger_store.insert(LedgerTable.TRANSACTIONS, {"id": "txn-1"}))

        with pytest.raises(DuplicateError):
            asyncio.run(ledger.insert(LedgerTable.TRANSACTIONS, {"id": "txn-1"}))

        assert ledger_store.count("insert", LedgerTable.TRANSACTIONS) == 2


class TestTimeout:
    """Each attempt is bounded by the configured timeout."""

    def test_slow_call_times_out(self):
        settings = ExecutionSettings(
            persist_max_attempts=2,
            persist_backoff_multiplier=0,
            persist_backoff_min_seconds=0,
            persist_backoff_max_seconds=0,
            persist_timeout_seconds=0.01,
        )
        store = SlowLedgerStore(delay=0.5)
        ledger = GuardedLedger(store, settings)

        with pytest.raises(PersistTimeoutError):
            asyncio.run(ledger.get_by_id(LedgerTable.ACCOUNTS, "acc-1"))

        assert store.attempts == 2

    def test_fast_call_returns_result(self, ledger):
        record = asyncio.run(ledger.get_by_id(LedgerTable.ACCOUNTS, "acc-checking"))
        assert record["name"] == "Checking"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
