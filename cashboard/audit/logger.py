"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of automated fund movements
2. Debugging capability when rules are skipped
3. An alert channel for inconsistencies the engine cannot repair

The audit logger:
- Is async to not block main flow
- Gracefully handles storage failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from cashboard.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from cashboard.models.rules import ExecutionOutcome, ExecutionStatus
from cashboard.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("cashboard.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_added(
        self,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new transaction."""
        await self.log(AuditEventBuilder.transaction_added(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_reversed(
        self,
        transaction_id: str,
        kind: str,
        rule_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed reversal."""
        await self.log(AuditEventBuilder.transaction_reversed(
            transaction_id=transaction_id,
            kind=kind,
            rule_id=rule_id,
            correlation_id=correlation_id,
        ))

    async def log_reversal_failed(
        self,
        transaction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reversal_failed(
            transaction_id=transaction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_balance_updated(
        self,
        entity_type: str,
        entity_id: str,
        old_value: Decimal,
        new_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_updated(
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
            correlation_id=correlation_id,
        ))

    async def log_manual_transfer(
        self,
        transaction_id: str,
        source_id: str,
        target_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.manual_transfer(
            transaction_id=transaction_id,
            source_id=source_id,
            target_id=target_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_goal_withdrawal(
        self,
        transaction_id: str,
        goal_id: str,
        account_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_withdrawal(
            transaction_id=transaction_id,
            goal_id=goal_id,
            account_id=account_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        entity_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account, goal or category being created or deleted."""
        await self.log(AuditEventBuilder.entity_changed(
            event_type=event_type,
            entity_id=entity_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_rule_changed(
        self,
        event_type: AuditEventType,
        rule_id: str,
        rule_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log rule creation, edit or deletion."""
        await self.log(AuditEventBuilder.rule_changed(
            event_type=event_type,
            rule_id=rule_id,
            rule_name=rule_name,
            correlation_id=correlation_id,
        ))

    async def log_execution_outcome(
        self,
        outcome: ExecutionOutcome,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the outcome of evaluating one rule."""
        reason = outcome.reason.value if outcome.reason else ""
        if outcome.status == ExecutionStatus.EXECUTED:
            event = AuditEventBuilder.rule_executed(
                rule_id=outcome.rule_id,
                amount=outcome.amount,
                transaction_id=outcome.new_execution.transaction_id,
                trigger_transaction_id=outcome.new_execution.trigger_transaction_id,
                correlation_id=correlation_id,
            )
        elif outcome.status == ExecutionStatus.FAILED:
            event = AuditEventBuilder.rule_failed(
                rule_id=outcome.rule_id,
                reason=reason,
                message=outcome.message,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.rule_skipped(
                rule_id=outcome.rule_id,
                reason=reason,
                message=outcome.message,
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_rule_save_failed(
        self,
        rule_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rule whose updated history could not be saved."""
        await self.log(AuditEventBuilder.rule_failed(
            rule_id=rule_id,
            reason="rule_save_failed",
            message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_transfer_rolled_back(
        self,
        entity_id: str,
        restored_value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transfer_rolled_back(
            entity_id=entity_id,
            restored_value=restored_value,
            correlation_id=correlation_id,
        ))

    async def log_rollback_failed(
        self,
        entity_id: str,
        expected_value: Decimal,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unrecoverable inconsistency. This is the alert path."""
        await self.log(AuditEventBuilder.rollback_failed(
            entity_id=entity_id,
            expected_value=expected_value,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., an income deposit).
    Pass it through all subsequent operations, including fired rules.
    """
    return uuid4()
