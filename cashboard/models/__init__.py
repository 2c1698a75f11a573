"""
Data Models Package

This package contains all Pydantic models used by Cashboard.
All data flowing through the rule engine must conform to these schemas.
"""

from cashboard.models.finance import (
    DESCRIPTION_MAX_LENGTH,
    Account,
    AccountType,
    Category,
    FinanceSummary,
    Goal,
    RecurringFrequency,
    Transaction,
    TransactionType,
    new_id,
)
from cashboard.models.rules import (
    AUTOMATION_CATEGORIES,
    AUTOMATION_PREFIX,
    AUTOMATION_SAVINGS_CATEGORY,
    AUTOMATION_TRANSFER_CATEGORY,
    ActionType,
    AutoRule,
    ExecutionOutcome,
    ExecutionStatus,
    ReversalKind,
    ReversalResult,
    RuleAction,
    RuleExecution,
    RuleStatistics,
    RuleTrigger,
    SkipReason,
    TriggerType,
    is_automation_generated,
    utc_now,
)
from cashboard.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from cashboard.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "DESCRIPTION_MAX_LENGTH",
    "Account",
    "AccountType",
    "Category",
    "FinanceSummary",
    "Goal",
    "RecurringFrequency",
    "Transaction",
    "TransactionType",
    "new_id",
    # Rule models
    "AUTOMATION_CATEGORIES",
    "AUTOMATION_PREFIX",
    "AUTOMATION_SAVINGS_CATEGORY",
    "AUTOMATION_TRANSFER_CATEGORY",
    "ActionType",
    "AutoRule",
    "ExecutionOutcome",
    "ExecutionStatus",
    "ReversalKind",
    "ReversalResult",
    "RuleAction",
    "RuleExecution",
    "RuleStatistics",
    "RuleTrigger",
    "SkipReason",
    "TriggerType",
    "is_automation_generated",
    "utc_now",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
