"""Services package."""

from cashboard.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    GuardedLedger,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    InMemoryRuleStore,
    JsonFileRuleStore,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    PersistTimeoutError,
    RuleStoreInterface,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "GuardedLedger",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "InMemoryRuleStore",
    "JsonFileRuleStore",
    "LedgerStoreInterface",
    "LedgerTable",
    "NotFoundError",
    "PersistTimeoutError",
    "RuleStoreInterface",
    "StorageError",
]
