"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage:
the ledger (financial fact), the rule store (user configuration) and the
audit log. Google Sheets and in-memory backends are swappable.
"""

from cashboard.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    PersistTimeoutError,
    RuleStoreInterface,
    StorageError,
)
from cashboard.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryRuleStore,
)
from cashboard.services.storage.rule_store import JsonFileRuleStore
from cashboard.services.storage.guarded import GuardedLedger
from cashboard.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    "LedgerTable",
    "RuleStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PersistTimeoutError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "InMemoryRuleStore",
    # Local rule file
    "JsonFileRuleStore",
    # Retry/timeout guard
    "GuardedLedger",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
