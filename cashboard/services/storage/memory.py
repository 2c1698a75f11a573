"""
In-Memory Storage

Process-local implementations of the storage interfaces. Used for tests
and for running without any configured backend.
"""

import copy
from typing import Any, Optional

from cashboard.models.audit import AuditEvent
from cashboard.models.finance import new_id
from cashboard.models.rules import AutoRule
from cashboard.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    RuleStoreInterface,
)


class InMemoryLedgerStore(LedgerStoreInterface):
    """Ledger kept in dicts, one per table, preserving insertion order."""

    def __init__(self, seed: Optional[dict[LedgerTable, list[dict[str, Any]]]] = None):
        self._tables: dict[LedgerTable, dict[str, dict[str, Any]]] = {
            table: {} for table in LedgerTable
        }
        for table, records in (seed or {}).items():
            for record in records:
                self._tables[table][record["id"]] = copy.deepcopy(record)

    async def read_all(
        self,
        table: LedgerTable,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        return [
            copy.deepcopy(record)
            for record in self._tables[table].values()
            if all(record.get(key) == value for key, value in filters.items())
        ]

    async def get_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        record = self._tables[table].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def insert(
        self,
        table: LedgerTable,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        stored = copy.deepcopy(record)
        stored["id"] = stored.get("id") or new_id()
        if stored["id"] in self._tables[table]:
            raise DuplicateError(f"{table.value} record already exists: {stored['id']}")
        self._tables[table][stored["id"]] = stored
        return copy.deepcopy(stored)

    async def update_by_id(
        self,
        table: LedgerTable,
        record_id: str,
        fields: dict[str, Any],
    ) -> bool:
        record = self._tables[table].get(record_id)
        if record is None:
            raise NotFoundError(f"{table.value} record not found: {record_id}")
        record.update(copy.deepcopy(fields))
        return True

    async def delete_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> bool:
        if record_id not in self._tables[table]:
            raise NotFoundError(f"{table.value} record not found: {record_id}")
        del self._tables[table][record_id]
        return True


class InMemoryRuleStore(RuleStoreInterface):
    """Rule slot held in memory."""

    def __init__(self, rules: Optional[list[AutoRule]] = None):
        self._rules: list[AutoRule] = list(rules or [])
        self.save_count = 0

    def load(self) -> list[AutoRule]:
        return list(self._rules)

    def save(self, rules: list[AutoRule]) -> None:
        self._rules = list(rules)
        self.save_count += 1


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit list held in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self.events))[:limit]
