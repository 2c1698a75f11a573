"""
Guarded Ledger Access

Every ledger call made by the rule engine goes through GuardedLedger:
- each attempt is bounded by a timeout
- transient StorageErrors are retried with exponential backoff
- NotFoundError and DuplicateError are never retried (not transient)
- an insert whose reply was lost is recognised on the retry

After the last attempt the original StorageError is re-raised so callers
can decide whether to compensate.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashboard.config import ExecutionSettings, get_settings
from cashboard.services.storage.interface import (
    DuplicateError,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    PersistTimeoutError,
    StorageError,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)


class GuardedLedger:
    """Retry/timeout policy wrapped around a LedgerStoreInterface."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[ExecutionSettings] = None,
    ):
        self.store = store
        self._settings = settings or get_settings().execution

    async def _call(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        settings = self._settings
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.persist_max_attempts),
            wait=wait_exponential(
                multiplier=settings.persist_backoff_multiplier,
                min=settings.persist_backoff_min_seconds,
                max=settings.persist_backoff_max_seconds,
            ),
            retry=(
                retry_if_exception_type(StorageError)
                & retry_if_not_exception_type((NotFoundError, DuplicateError))
            ),
            before_sleep=lambda state: logger.warning(
                "ledger_call_retry",
                operation=operation,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    return await asyncio.wait_for(
                        call(), timeout=settings.persist_timeout_seconds
                    )
                except asyncio.TimeoutError:
                    raise PersistTimeoutError(
                        f"{operation} timed out after {settings.persist_timeout_seconds}s"
                    )
        raise AssertionError("unreachable")

    async def read_all(
        self,
        table: LedgerTable,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        return await self._call(
            f"read_all:{table.value}",
            lambda: self.store.read_all(table, filters),
        )

    async def get_by_id(self, table: LedgerTable, record_id: str) -> Optional[dict[str, Any]]:
        return await self._call(
            f"get_by_id:{table.value}",
            lambda: self.store.get_by_id(table, record_id),
        )

    async def insert(self, table: LedgerTable, record: dict[str, Any]) -> dict[str, Any]:
        """
        Insert `record`. An attempt that stored the row but lost the reply
        makes the next attempt hit DuplicateError; that attempt returns the
        stored row instead, so a retried insert never surfaces as a failure.
        """
        attempts = 0

        async def call() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            try:
                return await self.store.insert(table, record)
            except DuplicateError:
                if attempts == 1 or not record.get("id"):
                    raise
                stored = await self.store.get_by_id(table, record["id"])
                if stored is None:
                    raise
                logger.warning(
                    "ledger_insert_already_stored",
                    table=table.value,
                    record_id=record["id"],
                    attempt=attempts,
                )
                return stored

        return await self._call(f"insert:{table.value}", call)

    async def update_by_id(
        self,
        table: LedgerTable,
        record_id: str,
        fields: dict[str, Any],
    ) -> bool:
        return await self._call(
            f"update_by_id:{table.value}",
            lambda: self.store.update_by_id(table, record_id, fields),
        )

    async def delete_by_id(self, table: LedgerTable, record_id: str) -> bool:
        return await self._call(
            f"delete_by_id:{table.value}",
            lambda: self.store.delete_by_id(table, record_id),
        )
