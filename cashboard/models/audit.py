"""
Audit Models for Cashboard

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of every automated fund movement
2. Debugging information when a rule is skipped or a write fails
3. An alertable record when the ledger is left inconsistent

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger writes
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_REVERSED = "transaction_reversed"
    REVERSAL_FAILED = "reversal_failed"
    ACCOUNT_UPDATED = "account_updated"
    GOAL_UPDATED = "goal_updated"
    MANUAL_TRANSFER = "manual_transfer"
    GOAL_WITHDRAWAL = "goal_withdrawal"

    # Entity lifecycle
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    GOAL_CREATED = "goal_created"
    GOAL_DELETED = "goal_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_DELETED = "category_deleted"

    # Rule configuration
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DELETED = "rule_deleted"

    # Rule execution
    RULE_EXECUTED = "rule_executed"
    RULE_SKIPPED = "rule_skipped"
    RULE_FAILED = "rule_failed"

    # Consistency
    TRANSFER_ROLLED_BACK = "transfer_rolled_back"
    ROLLBACK_FAILED = "rollback_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'rule', 'account')"
    )
    entity_id: Optional[str] = None

    # Correlation - ties together all events of one user action
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.rule_executed(rule_id, rule_name, amount, ...)
        event = AuditEventBuilder.rollback_failed(account_id, error, ...)
    """

    @staticmethod
    def transaction_added(
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {transaction_type} of {amount}",
            details={
                "type": transaction_type,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted without reversal",
            is_user_action=True,
        )

    @staticmethod
    def transaction_reversed(
        transaction_id: str,
        kind: str,
        rule_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REVERSED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction reversed ({kind})",
            details={
                "kind": kind,
                "rule_id": rule_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def reversal_failed(
        transaction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REVERSAL_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction could not be reversed",
            error_message=error_message,
        )

    @staticmethod
    def balance_updated(
        entity_type: str,
        entity_id: str,
        old_value: Decimal,
        new_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.ACCOUNT_UPDATED
            if entity_type == "account"
            else AuditEventType.GOAL_UPDATED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} amount changed from {old_value} to {new_value}",
            details={
                "old_value": str(old_value),
                "new_value": str(new_value),
            },
        )

    @staticmethod
    def manual_transfer(
        transaction_id: str,
        source_id: str,
        target_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_TRANSFER,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Manual transfer of {amount}",
            details={
                "source_id": source_id,
                "target_id": target_id,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_withdrawal(
        transaction_id: str,
        goal_id: str,
        account_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_WITHDRAWAL,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Withdrawal of {amount} from goal",
            details={
                "source_id": goal_id,
                "target_id": account_id,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        entity_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Creation or deletion of an account, goal or category."""
        entity_type, verb = event_type.value.split("_", 1)
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {verb}: {name}",
            is_user_action=True,
        )

    @staticmethod
    def rule_changed(
        event_type: AuditEventType,
        rule_id: str,
        rule_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule {verb}: {rule_name}",
            is_user_action=True,
        )

    @staticmethod
    def rule_executed(
        rule_id: str,
        amount: Decimal,
        transaction_id: str,
        trigger_transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_EXECUTED,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule moved {amount}",
            details={
                "amount": str(amount),
                "transaction_id": transaction_id,
                "trigger_transaction_id": trigger_transaction_id,
            },
        )

    @staticmethod
    def rule_skipped(
        rule_id: str,
        reason: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule skipped: {reason}",
            details={
                "reason": reason,
                "message": message,
            },
        )

    @staticmethod
    def rule_failed(
        rule_id: str,
        reason: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule failed: {reason}",
            error_message=message,
            details={"reason": reason},
        )

    @staticmethod
    def transfer_rolled_back(
        entity_id: str,
        restored_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type="balance",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Partial transfer rolled back",
            details={"restored_value": str(restored_value)},
        )

    @staticmethod
    def rollback_failed(
        entity_id: str,
        expected_value: Decimal,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLBACK_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="balance",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Rollback failed: ledger balances are inconsistent",
            error_code="ROLLBACK_FAILED",
            error_message=error_message,
            details={"expected_value": str(expected_value)},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
