"""
Automatic Rule Models

A rule pairs a trigger (evaluated against a transaction) with an action
(a fund movement to an account or goal). Every movement a rule performs
is recorded as a RuleExecution so it can be traced back to both the
transaction that caused it and the transaction it generated.

INVARIANT: execution_count == number of non-reversed executions.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from cashboard.models.finance import Account, Goal, Transaction, new_id


# Reserved markers written on automation-generated transactions.
# The description prefix is matched by reversal for records that predate rule_id.
AUTOMATION_PREFIX = "Automação:"
AUTOMATION_TRANSFER_CATEGORY = "Transferência Automática"
AUTOMATION_SAVINGS_CATEGORY = "Poupança Automática"
AUTOMATION_CATEGORIES = frozenset({
    AUTOMATION_TRANSFER_CATEGORY,
    AUTOMATION_SAVINGS_CATEGORY,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_automation_generated(transaction: Transaction) -> bool:
    """
    True for transactions written by a rule: rule_id set, or (for records
    that predate rule_id) the reserved description prefix or category.
    """
    return (
        bool(transaction.rule_id)
        or transaction.description.startswith(AUTOMATION_PREFIX)
        or transaction.category in AUTOMATION_CATEGORIES
    )


# =============================================================================
# ENUMS
# =============================================================================

class TriggerType(str, Enum):
    INCOME_RECEIVED = "income_received"
    EXPENSE_CONTAINS = "expense_contains"
    AMOUNT_ABOVE = "amount_above"
    CATEGORY_MATCH = "category_match"


class ActionType(str, Enum):
    """
    Rule action types.

    CATEGORIZE is reserved: it has no execution path and is rejected
    when a rule is created or edited.
    """
    TRANSFER_PERCENTAGE = "transfer_percentage"
    TRANSFER_FIXED = "transfer_fixed"
    CATEGORIZE = "categorize"


# =============================================================================
# RULE MODELS
# =============================================================================

class RuleTrigger(BaseModel):
    """Condition evaluated against a transaction."""

    model_config = ConfigDict(frozen=True)

    # Unknown trigger types are kept as plain strings and never match
    type: Union[TriggerType, str] = Field(union_mode="left_to_right")
    value: str = ""
    category: Optional[str] = None


class RuleAction(BaseModel):
    """Fund movement computation plus its destination."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    percentage: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None
    target_account_id: Optional[str] = None
    target_goal_id: Optional[str] = None
    target_category: Optional[str] = None

    @property
    def moves_funds(self) -> bool:
        return self.type in (ActionType.TRANSFER_PERCENTAGE, ActionType.TRANSFER_FIXED)


class RuleExecution(BaseModel):
    """
    One firing of a rule.

    Append-only from the rule's point of view; only `reversed` and
    `reversed_at` are set after the fact.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    date: datetime = Field(default_factory=utc_now)
    amount: Decimal = Field(..., gt=0)
    source_account_id: str
    target_account_id: Optional[str] = None
    target_goal_id: Optional[str] = None
    trigger_transaction_id: str
    transaction_id: str
    triggered_by: str = ""
    reversed: bool = False
    reversed_at: Optional[datetime] = None


class AutoRule(BaseModel):
    """A user-defined trigger/action pair."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., max_length=200)
    enabled: bool = True
    trigger: RuleTrigger
    action: RuleAction
    last_executed: Optional[datetime] = None
    execution_count: int = Field(default=0, ge=0)
    executions: list[RuleExecution] = Field(default_factory=list)

    @property
    def active_executions(self) -> list[RuleExecution]:
        return [e for e in self.executions if not e.reversed]

    def find_execution(self, transaction_id: str) -> Optional[RuleExecution]:
        """Find the execution that generated a given transaction."""
        for execution in self.executions:
            if execution.transaction_id == transaction_id:
                return execution
        return None

    def with_execution(self, execution: RuleExecution, when: datetime) -> "AutoRule":
        """Return a copy of the rule with a new execution appended."""
        return self.model_copy(update={
            "executions": [*self.executions, execution],
            "execution_count": self.execution_count + 1,
            "last_executed": when,
        })

    def with_reversed_execution(self, transaction_id: str, when: datetime) -> "AutoRule":
        """
        Return a copy with the execution for `transaction_id` marked reversed
        and the execution count decremented (floored at zero).
        """
        executions = [
            e.model_copy(update={"reversed": True, "reversed_at": when})
            if e.transaction_id == transaction_id and not e.reversed
            else e
            for e in self.executions
        ]
        return self.model_copy(update={
            "executions": executions,
            "execution_count": max(0, self.execution_count - 1),
        })


# =============================================================================
# EXECUTION OUTCOMES
# =============================================================================

class ExecutionStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"    # Validation skip, nothing was written
    FAILED = "failed"      # A write failed and was compensated


class SkipReason(str, Enum):
    RULE_DISABLED = "rule_disabled"
    TRIGGER_NOT_MATCHED = "trigger_not_matched"
    NO_MATCHING_TRANSACTIONS = "no_matching_transactions"
    UNSUPPORTED_ACTION = "unsupported_action"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    SOURCE_ACCOUNT_NOT_FOUND = "source_account_not_found"
    TARGET_NOT_FOUND = "target_not_found"
    TARGET_IS_SOURCE = "target_is_source"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SOURCE_WRITE_FAILED = "source_write_failed"
    TARGET_WRITE_FAILED = "target_write_failed"
    AUDIT_WRITE_FAILED = "audit_write_failed"


class ExecutionOutcome(BaseModel):
    """
    Result of evaluating one rule.

    On success, carries the new state: updated account/goal snapshots,
    the generated transaction, the execution record and the updated rule.
    """

    rule_id: str
    status: ExecutionStatus
    reason: Optional[SkipReason] = None
    message: str = ""
    amount: Decimal = Decimal("0")
    updated_accounts: list[Account] = Field(default_factory=list)
    updated_goals: list[Goal] = Field(default_factory=list)
    new_transaction: Optional[Transaction] = None
    new_execution: Optional[RuleExecution] = None
    updated_rule: Optional[AutoRule] = None
    # entity id -> value restored by compensation (FAILED only)
    restored_balances: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def executed(self) -> bool:
        return self.status == ExecutionStatus.EXECUTED


class ReversalKind(str, Enum):
    AUTOMATION_TRANSFER = "automation_transfer"
    AUTOMATION_SAVINGS = "automation_savings"
    LINKED_TRANSFER = "linked_transfer"
    LEGACY_TRANSFER = "legacy_transfer"
    PLAIN = "plain"


class ReversalResult(BaseModel):
    """State changes produced by reversing a transaction."""

    transaction_id: str
    kind: ReversalKind
    updated_accounts: list[Account] = Field(default_factory=list)
    updated_goals: list[Goal] = Field(default_factory=list)
    updated_rule: Optional[AutoRule] = None


class RuleStatistics(BaseModel):
    """Aggregate figures shown on the rules page."""

    total_executions: int = 0
    total_automated: Decimal = Decimal("0")
    active_rules: int = 0
