"""
Core Finance Models for Cashboard

These models define the schemas for accounts, goals, transactions and
categories, plus the dashboard summary.
They are designed to:
1. Enforce type safety at runtime
2. Be passed by value (frozen) between the cache and the rule engine
3. Round-trip through the ledger store as plain records

DESIGN DECISION: Balances are never derived from the transaction log.
The log is a history; Account.balance and Goal.current_amount are the
source of truth and are only mutated through explicit writes.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


DESCRIPTION_MAX_LENGTH = 500


def new_id() -> str:
    """Generate an id for records created locally."""
    return str(uuid4())


def _clean_record(record: dict[str, Any]) -> dict[str, Any]:
    """Blank cells from tabular backends mean "not set"."""
    return {key: (None if value == "" else value) for key, value in record.items()}


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    CASH = "cash"


class TransactionType(str, Enum):
    """
    Transaction types.

    Only INCOME and EXPENSE move an account balance when a transaction is
    recorded. The other types are logs of movements applied elsewhere.
    """
    INCOME = "income"
    EXPENSE = "expense"
    INVESTMENT = "investment"
    SAVINGS = "savings"
    TRANSFER = "transfer"


class RecurringFrequency(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    YEARLY = "yearly"


# =============================================================================
# ENTITIES
# =============================================================================

class LedgerRecord(BaseModel):
    """Base for entities stored in the ledger."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    def to_record(self) -> dict[str, Any]:
        """Convert to a plain record suitable for the ledger store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]):
        """Build the entity back from a ledger record."""
        return cls.model_validate(_clean_record(record))


class Account(LedgerRecord):
    """A money account (checking, savings, investment or cash)."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    type: AccountType = AccountType.CHECKING
    balance: Decimal = Field(default=Decimal("0"))
    color: str = Field(default="#10B981")
    icon: Optional[str] = None


class Goal(LedgerRecord):
    """A savings goal. current_amount behaves like an account balance."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., ge=0)
    current_amount: Decimal = Field(default=Decimal("0"))
    deadline: Optional[date] = None
    color: str = Field(default="#3B82F6")
    icon: Optional[str] = None

    @property
    def progress(self) -> Decimal:
        """Fraction of the target reached (0 when the target is 0)."""
        if self.target_amount == 0:
            return Decimal("0")
        return self.current_amount / self.target_amount


class Transaction(LedgerRecord):
    """
    A recorded movement of money.

    Immutable once created: the only way to undo one is a reversal,
    which applies the inverse and deletes the record.

    rule_id is set only on transactions generated by an automatic rule.
    """

    id: str = Field(default_factory=new_id)
    date: date
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    category: str = Field(default="")
    account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    goal_id: Optional[str] = None
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    rule_id: Optional[str] = None

    @field_validator('date', mode='before')
    @classmethod
    def accept_timestamps(cls, v: Any) -> Any:
        """Older clients stored full ISO timestamps; keep the calendar date."""
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @property
    def label(self) -> str:
        """Description, falling back to the category."""
        return self.description or self.category

    @property
    def is_goal_withdrawal(self) -> bool:
        """Income that came out of a goal rather than from outside."""
        return self.type == TransactionType.INCOME and self.goal_id is not None


class Category(LedgerRecord):
    """User-visible transaction category."""

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = None
    icon: Optional[str] = None
    budget: Decimal = Field(default=Decimal("0"), ge=0)
    is_custom: bool = False


# =============================================================================
# SUMMARY
# =============================================================================

class FinanceSummary(BaseModel):
    """
    Totals shown on the dashboard.

    Flow totals come from the transaction log; net worth is the sum of
    account balances (goals are not included).
    """

    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    total_investment: Decimal = Decimal("0")
    total_savings: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    total_net_worth: Decimal = Decimal("0")
    savings_rate: Decimal = Decimal("0")  # percent of income not spent
