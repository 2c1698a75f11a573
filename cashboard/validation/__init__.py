"""Validation package for rules and manual transfers."""

from cashboard.validation.validator import (
    RuleNotFoundError,
    RuleValidationError,
    RuleValidator,
    TransferValidationError,
    TransferValidator,
)

__all__ = [
    "RuleNotFoundError",
    "RuleValidationError",
    "RuleValidator",
    "TransferValidationError",
    "TransferValidator",
]
