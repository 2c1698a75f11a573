"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the rule engine decoupled from storage implementation

There are two independent persistence channels:
- The LEDGER holds financial fact (accounts, goals, transactions).
- The RULE STORE holds user configuration (automatic rules and their
  execution history) in a simple local key-value slot.
They are deliberately not unified.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

from cashboard.models.audit import AuditEvent
from cashboard.models.rules import AutoRule


class LedgerTable(str, Enum):
    """Tables held by the ledger store."""
    ACCOUNTS = "accounts"
    GOALS = "goals"
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger store.

    Records are plain dicts keyed by column name; every record has an "id".
    The column layout is an implementation detail of each backend.
    """

    @abstractmethod
    async def read_all(
        self,
        table: LedgerTable,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Read every record of a table matching all `filters` (column == value).

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def get_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Point read.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def insert(
        self,
        table: LedgerTable,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Insert a record.

        Returns:
            The stored record (the backend may assign the id)

        Raises:
            DuplicateError: If a record with the same id exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_by_id(
        self,
        table: LedgerTable,
        record_id: str,
        fields: dict[str, Any],
    ) -> bool:
        """
        Update some fields of one record.

        Raises:
            NotFoundError: If the record doesn't exist
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def delete_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> bool:
        """
        Delete one record.

        Raises:
            NotFoundError: If the record doesn't exist
            StorageError: If the delete fails
        """
        pass


class RuleStoreInterface(ABC):
    """
    Abstract interface for the rule store.

    Synchronous on purpose: the whole rule list is loaded once at startup
    and saved in full on every mutation.
    """

    @abstractmethod
    def load(self) -> list[AutoRule]:
        """Load all rules (empty list if nothing was saved yet)."""
        pass

    @abstractmethod
    def save(self, rules: list[AutoRule]) -> None:
        """
        Replace the stored rule list.

        Raises:
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class PersistTimeoutError(StorageError):
    """A storage call did not complete in time."""
    pass
