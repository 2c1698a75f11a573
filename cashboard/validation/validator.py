"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Value ranges (percentage, fixed amount)
- Trigger values that must parse
- This catches malformed rules before anything is stored

STAGE 2 - SEMANTIC VALIDATION:
- Targets must exist in the current accounts/goals
- This needs current state and is skipped if stage 1 fails

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the user can correct the rule.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from cashboard.models.finance import Account, Goal
from cashboard.models.rules import ActionType, AutoRule, TriggerType
from cashboard.models.validation import ValidationIssue, ValidationResult


class RuleNotFoundError(Exception):
    """No rule with the given id."""
    pass


class RuleValidationError(Exception):
    """A rule failed validation. Carries the blocking issues."""

    def __init__(self, result: ValidationResult):
        self.result = result
        self.issues = result.errors
        super().__init__("; ".join(issue.message for issue in self.issues))


class TransferValidationError(Exception):
    """A manual transfer failed validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        self.issues = result.errors
        super().__init__("; ".join(issue.message for issue in self.issues))


def _has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


class RuleValidator:
    """
    Validates automatic rules on create and edit.

    Stage 1: Schema validation (rule alone)
    Stage 2: Semantic validation (rule against current accounts/goals)
    """

    def _validate_schema(self, rule: AutoRule) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        action = rule.action
        trigger = rule.trigger

        if not rule.name.strip():
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Rule name is required",
                severity="error",
            ))

        if action.type == ActionType.CATEGORIZE:
            issues.append(ValidationIssue(
                field="action.type",
                issue_type="unsupported",
                message="Categorize actions are reserved and cannot be executed yet",
                severity="error",
                suggested_fix="Use a percentage or fixed transfer",
            ))
            # Nothing else about the action is meaningful
            return False, issues

        targets = [t for t in (action.target_account_id, action.target_goal_id) if t]
        if len(targets) != 1:
            issues.append(ValidationIssue(
                field="action.target",
                issue_type="invalid_value",
                message="Transfer actions need exactly one target account or goal",
                severity="error",
                suggested_fix="Choose either a target account or a target goal",
            ))

        if action.type == ActionType.TRANSFER_PERCENTAGE:
            if action.percentage is None:
                issues.append(ValidationIssue(
                    field="action.percentage",
                    issue_type="missing",
                    message="Percentage is required",
                    severity="error",
                ))
            elif not (Decimal("0") < action.percentage <= Decimal("100")):
                issues.append(ValidationIssue(
                    field="action.percentage",
                    issue_type="invalid_value",
                    message=f"Percentage must be between 0 and 100 (got {action.percentage})",
                    severity="error",
                ))

        if action.type == ActionType.TRANSFER_FIXED:
            if action.fixed_amount is None:
                issues.append(ValidationIssue(
                    field="action.fixed_amount",
                    issue_type="missing",
                    message="Fixed amount is required",
                    severity="error",
                ))
            elif action.fixed_amount <= 0:
                issues.append(ValidationIssue(
                    field="action.fixed_amount",
                    issue_type="invalid_value",
                    message="Fixed amount must be greater than zero",
                    severity="error",
                ))

        if trigger.type == TriggerType.AMOUNT_ABOVE:
            try:
                threshold = Decimal(trigger.value.strip())
                valid = threshold.is_finite()
            except InvalidOperation:
                valid = False
            if not valid:
                issues.append(ValidationIssue(
                    field="trigger.value",
                    issue_type="invalid_format",
                    message=f"Amount threshold must be a number (got {trigger.value!r})",
                    severity="error",
                ))
        elif trigger.type == TriggerType.CATEGORY_MATCH:
            if not trigger.category:
                issues.append(ValidationIssue(
                    field="trigger.category",
                    issue_type="missing",
                    message="A category is required for category triggers",
                    severity="error",
                ))
        elif trigger.type == TriggerType.EXPENSE_CONTAINS:
            if not trigger.value:
                issues.append(ValidationIssue(
                    field="trigger.value",
                    issue_type="missing",
                    message="Expense trigger without text matches every expense",
                    severity="warning",
                ))
        elif trigger.type != TriggerType.INCOME_RECEIVED:
            issues.append(ValidationIssue(
                field="trigger.type",
                issue_type="unknown",
                message=f"Unknown trigger type {trigger.type!r}; the rule will never fire",
                severity="warning",
            ))

        return not _has_errors(issues), issues

    def _validate_semantic(
        self,
        rule: AutoRule,
        accounts: Iterable[Account],
        goals: Iterable[Goal],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        action = rule.action

        if action.target_account_id:
            if action.target_account_id not in {a.id for a in accounts}:
                issues.append(ValidationIssue(
                    field="action.target_account_id",
                    issue_type="not_found",
                    message="Target account does not exist",
                    severity="error",
                ))
        elif action.target_goal_id:
            if action.target_goal_id not in {g.id for g in goals}:
                issues.append(ValidationIssue(
                    field="action.target_goal_id",
                    issue_type="not_found",
                    message="Target goal does not exist",
                    severity="error",
                ))

        return not _has_errors(issues), issues

    def validate(
        self,
        rule: AutoRule,
        accounts: Iterable[Account],
        goals: Iterable[Goal],
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(rule)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(rule, accounts, goals)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            subject_id=rule.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[i.message for i in all_issues if i.severity == "warning"],
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Summary shown next to the rule form."""
        if result.is_valid and not result.warnings:
            return "✅ Rule is ready to use."

        lines = []
        errors = result.errors
        if errors:
            lines.append("❌ The rule cannot be saved:")
            for issue in errors:
                lines.append(f"  • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"    → {issue.suggested_fix}")

        if result.warnings:
            lines.append("⚠️ Please check:")
            for warning in result.warnings:
                lines.append(f"  • {warning}")

        return "\n".join(lines)


class TransferValidator:
    """Checks a manual transfer before any balance is touched."""

    def validate(
        self,
        source: Optional[Account],
        amount: Decimal,
        target_account: Optional[Account] = None,
        target_goal: Optional[Goal] = None,
    ) -> ValidationResult:
        issues = []

        if source is None:
            issues.append(ValidationIssue(
                field="source",
                issue_type="not_found",
                message="Source account does not exist",
                severity="error",
            ))
        if target_account is None and target_goal is None:
            issues.append(ValidationIssue(
                field="target",
                issue_type="not_found",
                message="Target account or goal does not exist",
                severity="error",
            ))
        if source is not None and target_account is not None and source.id == target_account.id:
            issues.append(ValidationIssue(
                field="target",
                issue_type="invalid_value",
                message="Source and target accounts must be different",
                severity="error",
            ))
        if amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Transfer amount must be greater than zero",
                severity="error",
            ))
        elif source is not None and source.balance < amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="insufficient_funds",
                message=f"Insufficient balance in '{source.name}' ({source.balance} < {amount})",
                severity="error",
            ))

        valid = not _has_errors(issues)
        return ValidationResult(
            subject_id=source.id if source else None,
            schema_valid=valid,
            semantic_valid=valid,
            is_valid=valid,
            issues=issues,
        )

    def validate_goal_withdrawal(
        self,
        goal: Optional[Goal],
        amount: Decimal,
        target_account: Optional[Account] = None,
    ) -> ValidationResult:
        """Checks money taken out of a goal into an account."""
        issues = []

        if goal is None:
            issues.append(ValidationIssue(
                field="source",
                issue_type="not_found",
                message="Goal does not exist",
                severity="error",
            ))
        if target_account is None:
            issues.append(ValidationIssue(
                field="target",
                issue_type="not_found",
                message="Target account does not exist",
                severity="error",
            ))
        if amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Withdrawal amount must be greater than zero",
                severity="error",
            ))
        elif goal is not None and goal.current_amount < amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="insufficient_funds",
                message=f"Insufficient amount in goal '{goal.name}' ({goal.current_amount} < {amount})",
                severity="error",
                suggested_fix="Withdraw at most the goal's current amount",
            ))

        valid = not _has_errors(issues)
        return ValidationResult(
            subject_id=goal.id if goal else None,
            schema_valid=valid,
            semantic_valid=valid,
            is_valid=valid,
            issues=issues,
        )
