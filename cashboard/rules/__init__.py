"""
Automatic Rule Engine

- matcher:   does a transaction satisfy a trigger
- resolver:  how much an action moves
- balances:  all-or-nothing balance writes with compensation
- executor:  performs rule transfers
- reversal:  undoes transactions, including automated ones
"""

from cashboard.rules.balances import (
    BalanceLeg,
    LegWriteError,
    RollbackFailedError,
    account_leg,
    apply_legs,
    apply_to_snapshot,
    goal_leg,
)
from cashboard.rules.executor import TransferExecutor
from cashboard.rules.matcher import matches, matching_transactions
from cashboard.rules.resolver import format_percentage, resolve_amount, to_cents
from cashboard.rules.reversal import (
    LEGACY_TRANSFER_PATTERN,
    NotReversibleError,
    ReversalEngine,
    ReversalError,
    ReversalPlan,
    TransactionNotFoundError,
    classify_and_resolve_legs,
)

__all__ = [
    # Balance legs
    "BalanceLeg",
    "LegWriteError",
    "RollbackFailedError",
    "account_leg",
    "apply_legs",
    "apply_to_snapshot",
    "goal_leg",
    # Matching and amounts
    "format_percentage",
    "matches",
    "matching_transactions",
    "resolve_amount",
    "to_cents",
    # Execution
    "TransferExecutor",
    # Reversal
    "LEGACY_TRANSFER_PATTERN",
    "NotReversibleError",
    "ReversalEngine",
    "ReversalError",
    "ReversalPlan",
    "TransactionNotFoundError",
    "classify_and_resolve_legs",
]
