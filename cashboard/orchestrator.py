"""
Main Orchestrator for Cashboard

This module ties together all the components and defines the
operations the dashboard calls:
1. Transactions (add → balance effect → automatic rules)
2. Rules (create/edit/delete/toggle, manual "run now")
3. Reversal and deletion of transactions
4. Manual transfers between accounts, into goals and out of goals
5. Accounts, goals and categories (create/edit/delete) and the summary

DESIGN DECISION: The orchestrator enforces the boundaries:
- The ledger is written first; the cache only changes after it accepted
- Rules live in their own store and are saved on every change
- Every step is audited
- A failed rollback is never swallowed

Rule evaluation is sequential: each rule sees the balances left by the
previous one through the cache's fresh accessors.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog

from cashboard.audit import AuditLogger, create_correlation_id
from cashboard.config import ExecutionSettings, get_settings
from cashboard.models.audit import AuditEventType
from cashboard.models.finance import (
    Account,
    Category,
    FinanceSummary,
    Goal,
    Transaction,
    TransactionType,
)
from cashboard.models.rules import (
    AutoRule,
    ExecutionOutcome,
    ReversalResult,
    RuleStatistics,
    SkipReason,
)
from cashboard.rules import (
    BalanceLeg,
    LegWriteError,
    ReversalEngine,
    ReversalError,
    RollbackFailedError,
    TransactionNotFoundError,
    TransferExecutor,
    account_leg,
    apply_legs,
    apply_to_snapshot,
    goal_leg,
)
from cashboard.rules.balances import compensate
from cashboard.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    GuardedLedger,
    InMemoryLedgerStore,
    InMemoryRuleStore,
    JsonFileRuleStore,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    RuleStoreInterface,
    StorageError,
)
from cashboard.state import LocalStateCache
from cashboard.validation import (
    RuleNotFoundError,
    RuleValidationError,
    RuleValidator,
    TransferValidationError,
    TransferValidator,
)


logger = structlog.get_logger(__name__)

MANUAL_TRANSFER_CATEGORY = "Transferência"
MANUAL_SAVINGS_CATEGORY = "Poupança"
GOAL_WITHDRAWAL_CATEGORY = "goals"

# Fields owned by the engine, never taken from a rule edit
_ENGINE_RULE_FIELDS = frozenset({"id", "execution_count", "executions", "last_executed"})


class FinanceFlow:
    """
    Orchestrates one user's ledger, rules and local state.

    Usage:
        flow = FinanceFlow(ledger_store, rule_store, audit_logger=AuditLogger())
        await flow.load()
        transaction, outcomes = await flow.add_transaction(income)
    """

    def __init__(
        self,
        ledger_store: LedgerStoreInterface,
        rule_store: RuleStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ExecutionSettings] = None,
        cache: Optional[LocalStateCache] = None,
        rule_validator: Optional[RuleValidator] = None,
        transfer_validator: Optional[TransferValidator] = None,
    ):
        settings = settings or get_settings().execution
        self._ledger = GuardedLedger(ledger_store, settings)
        self._rule_store = rule_store
        self._audit_logger = audit_logger
        self.cache = cache or LocalStateCache()
        self._executor = TransferExecutor(self._ledger, settings)
        self._reversal = ReversalEngine(self._ledger)
        self._rule_validator = rule_validator or RuleValidator()
        self._transfer_validator = transfer_validator or TransferValidator()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self) -> None:
        """Hydrate the cache from the ledger and the rules from the rule store."""
        accounts = await self._ledger.read_all(LedgerTable.ACCOUNTS)
        goals = await self._ledger.read_all(LedgerTable.GOALS)
        transactions = await self._ledger.read_all(LedgerTable.TRANSACTIONS)
        categories = await self._ledger.read_all(LedgerTable.CATEGORIES)
        rules = self._rule_store.load()

        self.cache.replace(
            accounts=[Account.from_record(r) for r in accounts],
            goals=[Goal.from_record(r) for r in goals],
            transactions=[Transaction.from_record(r) for r in transactions],
            rules=rules,
            categories=[Category.from_record(r) for r in categories],
        )
        logger.info(
            "state_loaded",
            accounts=len(accounts),
            goals=len(goals),
            transactions=len(transactions),
            categories=len(categories),
            rules=len(rules),
        )

    def _save_rules(self) -> None:
        self._rule_store.save(self.cache.fresh_rules())

    async def _save_rules_after_ledger_write(
        self,
        rule_id: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """
        Save rules after the ledger already changed. A failure is audited
        and not raised: the cache holds the rule and the next save writes it.
        """
        try:
            self._save_rules()
        except StorageError as e:
            logger.error("rule_save_failed", rule_id=rule_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_rule_save_failed(
                    rule_id=rule_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Transaction, list[ExecutionOutcome]]:
        """
        Record a transaction and apply its balance effect.

        Income adds to and expense subtracts from the referenced account;
        other types are logs only. Income then runs every enabled rule.

        Returns:
            (stored_transaction, rule_outcomes)
        """
        correlation_id = correlation_id or create_correlation_id()

        legs: list[BalanceLeg] = []
        if transaction.account_id:
            account = self.cache.get_account(transaction.account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {transaction.account_id}")
            if transaction.type == TransactionType.INCOME:
                legs.append(account_leg(account, transaction.amount))
            elif transaction.type == TransactionType.EXPENSE:
                legs.append(account_leg(account, -transaction.amount))

        stored = await self._write_movement(legs, transaction, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_added(
                transaction_id=stored.id,
                transaction_type=stored.type.value,
                amount=stored.amount,
                correlation_id=correlation_id,
            )
            for leg in legs:
                await self._audit_logger.log_balance_updated(
                    entity_type="account",
                    entity_id=leg.entity_id,
                    old_value=leg.old_value,
                    new_value=leg.new_value,
                    correlation_id=correlation_id,
                )

        outcomes = []
        if stored.type == TransactionType.INCOME:
            outcomes = await self._run_rules(stored, correlation_id)

        return stored, outcomes

    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a transaction record without touching any balance."""
        try:
            await self._ledger.delete_by_id(LedgerTable.TRANSACTIONS, transaction_id)
        except NotFoundError as e:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}") from e

        self.cache.remove_transaction(transaction_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

    async def reverse_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> ReversalResult:
        """
        Undo a transaction: apply the inverse balance changes and delete it.

        Raises:
            TransactionNotFoundError, NotReversibleError, ReversalError
            RollbackFailedError: ledger left inconsistent (audited CRITICAL)
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._reversal.reverse(
                transaction_id,
                transactions=self.cache.fresh_transactions(),
                accounts=self.cache.fresh_accounts(),
                goals=self.cache.fresh_goals(),
                rules=self.cache.fresh_rules(),
            )
        except RollbackFailedError as e:
            await self._alert_rollback_failed(e, correlation_id)
            raise
        except ReversalError as e:
            if self._audit_logger:
                await self._audit_logger.log_reversal_failed(
                    transaction_id=transaction_id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        self.cache.apply_accounts(result.updated_accounts)
        self.cache.apply_goals(result.updated_goals)
        self.cache.remove_transaction(transaction_id)
        if result.updated_rule is not None:
            self.cache.apply_rule(result.updated_rule)
            await self._save_rules_after_ledger_write(result.updated_rule.id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_transaction_reversed(
                transaction_id=transaction_id,
                kind=result.kind.value,
                rule_id=result.updated_rule.id if result.updated_rule else None,
                correlation_id=correlation_id,
            )

        return result

    # -------------------------------------------------------------------------
    # Accounts and goals
    # -------------------------------------------------------------------------

    async def update_account(
        self,
        account_id: str,
        correlation_id: Optional[UUID] = None,
        **changes: Any,
    ) -> Account:
        """Direct user edit of an account (name, type, balance, ...)."""
        account = self.cache.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        updated = Account.model_validate({**account.model_dump(), **changes, "id": account_id})
        record = updated.to_record()
        await self._ledger.update_by_id(
            LedgerTable.ACCOUNTS,
            account_id,
            {key: record[key] for key in changes if key != "id"},
        )
        self.cache.apply_accounts([updated])

        if self._audit_logger and updated.balance != account.balance:
            await self._audit_logger.log_balance_updated(
                entity_type="account",
                entity_id=account_id,
                old_value=account.balance,
                new_value=updated.balance,
                correlation_id=correlation_id,
            )
        return updated

    async def update_goal(
        self,
        goal_id: str,
        correlation_id: Optional[UUID] = None,
        **changes: Any,
    ) -> Goal:
        """Direct user edit of a goal."""
        goal = self.cache.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}")

        updated = Goal.model_validate({**goal.model_dump(), **changes, "id": goal_id})
        record = updated.to_record()
        await self._ledger.update_by_id(
            LedgerTable.GOALS,
            goal_id,
            {key: record[key] for key in changes if key != "id"},
        )
        self.cache.apply_goals([updated])

        if self._audit_logger and updated.current_amount != goal.current_amount:
            await self._audit_logger.log_balance_updated(
                entity_type="goal",
                entity_id=goal_id,
                old_value=goal.current_amount,
                new_value=updated.current_amount,
                correlation_id=correlation_id,
            )
        return updated

    async def add_account(
        self,
        account: Account,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Create an account with its opening balance."""
        record = await self._ledger.insert(LedgerTable.ACCOUNTS, account.to_record())
        stored = Account.from_record(record)
        self.cache.apply_accounts([stored])

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_id=stored.id,
                name=stored.name,
                correlation_id=correlation_id,
            )
        return stored

    async def delete_account(
        self,
        account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an account. Its transactions stay in the log, and rules that
        target it are skipped until they are edited.
        """
        account = self.cache.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        await self._ledger.delete_by_id(LedgerTable.ACCOUNTS, account_id)
        self.cache.remove_account(account_id)

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.ACCOUNT_DELETED,
                entity_id=account_id,
                name=account.name,
                correlation_id=correlation_id,
            )

    async def add_goal(
        self,
        goal: Goal,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        record = await self._ledger.insert(LedgerTable.GOALS, goal.to_record())
        stored = Goal.from_record(record)
        self.cache.apply_goals([stored])

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.GOAL_CREATED,
                entity_id=stored.id,
                name=stored.name,
                correlation_id=correlation_id,
            )
        return stored

    async def delete_goal(
        self,
        goal_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a goal. Its current amount is not moved anywhere."""
        goal = self.cache.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}")

        await self._ledger.delete_by_id(LedgerTable.GOALS, goal_id)
        self.cache.remove_goal(goal_id)

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.GOAL_DELETED,
                entity_id=goal_id,
                name=goal.name,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def add_category(
        self,
        category: Category,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        """Create a user category. Categories added here are always custom."""
        category = category.model_copy(update={"is_custom": True})
        record = await self._ledger.insert(LedgerTable.CATEGORIES, category.to_record())
        stored = Category.from_record(record)
        self.cache.apply_category(stored)

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.CATEGORY_CREATED,
                entity_id=stored.id,
                name=stored.name,
                correlation_id=correlation_id,
            )
        return stored

    async def delete_category(
        self,
        category_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        category = self.cache.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")

        await self._ledger.delete_by_id(LedgerTable.CATEGORIES, category_id)
        self.cache.remove_category(category_id)

        if self._audit_logger:
            await self._audit_logger.log_entity_changed(
                event_type=AuditEventType.CATEGORY_DELETED,
                entity_id=category_id,
                name=category.name,
                correlation_id=correlation_id,
            )

    def summary(self) -> FinanceSummary:
        """Income/expense totals and net worth from the cached state."""
        return self.cache.summary()

    # -------------------------------------------------------------------------
    # Manual transfers
    # -------------------------------------------------------------------------

    async def transfer_between_accounts(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        on_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Move funds between two accounts and record a `transfer` transaction."""
        correlation_id = correlation_id or create_correlation_id()
        source = self.cache.get_account(from_account_id)
        target = self.cache.get_account(to_account_id)

        result = self._transfer_validator.validate(source, amount, target_account=target)
        if not result.is_valid:
            raise TransferValidationError(result)

        transaction = Transaction(
            date=on_date or date.today(),
            description=description or f"Transferência: {source.name} → {target.name}",
            amount=amount,
            type=TransactionType.TRANSFER,
            category=MANUAL_TRANSFER_CATEGORY,
            account_id=source.id,
            to_account_id=target.id,
        )
        legs = [account_leg(source, -amount), account_leg(target, amount)]
        stored = await self._write_movement(legs, transaction, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_manual_transfer(
                transaction_id=stored.id,
                source_id=source.id,
                target_id=target.id,
                amount=amount,
                correlation_id=correlation_id,
            )
        return stored

    async def transfer_to_goal(
        self,
        account_id: str,
        goal_id: str,
        amount: Decimal,
        on_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Move funds from an account into a goal and record a `savings` transaction."""
        correlation_id = correlation_id or create_correlation_id()
        source = self.cache.get_account(account_id)
        goal = self.cache.get_goal(goal_id)

        result = self._transfer_validator.validate(source, amount, target_goal=goal)
        if not result.is_valid:
            raise TransferValidationError(result)

        transaction = Transaction(
            date=on_date or date.today(),
            description=f"Transferência para meta: {goal.name}",
            amount=amount,
            type=TransactionType.SAVINGS,
            category=MANUAL_SAVINGS_CATEGORY,
            account_id=source.id,
            goal_id=goal.id,
        )
        legs = [account_leg(source, -amount), goal_leg(goal, amount)]
        stored = await self._write_movement(legs, transaction, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_manual_transfer(
                transaction_id=stored.id,
                source_id=source.id,
                target_id=goal.id,
                amount=amount,
                correlation_id=correlation_id,
            )
        return stored

    async def withdraw_from_goal(
        self,
        goal_id: str,
        account_id: str,
        amount: Decimal,
        on_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Move funds out of a goal into an account and record an `income`
        transaction linked to the goal. No automatic rules run for it.
        """
        correlation_id = correlation_id or create_correlation_id()
        goal = self.cache.get_goal(goal_id)
        account = self.cache.get_account(account_id)

        result = self._transfer_validator.validate_goal_withdrawal(goal, amount, target_account=account)
        if not result.is_valid:
            raise TransferValidationError(result)

        transaction = Transaction(
            date=on_date or date.today(),
            description=f"Levantamento da meta: {goal.name}",
            amount=amount,
            type=TransactionType.INCOME,
            category=GOAL_WITHDRAWAL_CATEGORY,
            account_id=account.id,
            goal_id=goal.id,
        )
        legs = [goal_leg(goal, -amount), account_leg(account, amount)]
        stored = await self._write_movement(legs, transaction, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_goal_withdrawal(
                transaction_id=stored.id,
                goal_id=goal.id,
                account_id=account.id,
                amount=amount,
                correlation_id=correlation_id,
            )
        return stored

    async def _write_movement(
        self,
        legs: list[BalanceLeg],
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Write balance legs, then the transaction record, all-or-nothing.
        The cache is updated only once both are stored.
        """
        try:
            await apply_legs(self._ledger, legs)
        except LegWriteError as e:
            await self._report_rolled_back(e.rolled_back, correlation_id)
            raise
        except RollbackFailedError as e:
            await self._alert_rollback_failed(e, correlation_id)
            raise

        try:
            record = await self._ledger.insert(LedgerTable.TRANSACTIONS, transaction.to_record())
        except StorageError as e:
            try:
                restored = await compensate(self._ledger, legs, e)
            except RollbackFailedError as rollback_error:
                await self._alert_rollback_failed(rollback_error, correlation_id)
                raise
            await self._report_rolled_back(restored, correlation_id)
            raise

        stored = Transaction.from_record(record)
        updated_accounts, updated_goals = apply_to_snapshot(
            legs, self.cache.fresh_accounts(), self.cache.fresh_goals()
        )
        self.cache.apply_accounts(updated_accounts)
        self.cache.apply_goals(updated_goals)
        self.cache.add_transaction(stored)
        return stored

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def _require_rule(self, rule_id: str) -> AutoRule:
        rule = self.cache.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}")
        return rule

    def _validate_rule(self, rule: AutoRule) -> None:
        result = self._rule_validator.validate(
            rule, self.cache.fresh_accounts(), self.cache.fresh_goals()
        )
        if not result.is_valid:
            raise RuleValidationError(result)

    async def add_rule(
        self,
        rule: AutoRule,
        correlation_id: Optional[UUID] = None,
    ) -> AutoRule:
        """Create a rule. Execution history always starts empty."""
        rule = rule.model_copy(update={
            "execution_count": 0,
            "executions": [],
            "last_executed": None,
        })
        self._validate_rule(rule)

        self.cache.apply_rule(rule)
        self._save_rules()

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                event_type=AuditEventType.RULE_CREATED,
                rule_id=rule.id,
                rule_name=rule.name,
                correlation_id=correlation_id,
            )
        return rule

    async def update_rule(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
        **changes: Any,
    ) -> AutoRule:
        """Edit a rule's name, trigger, action or enabled flag."""
        existing = self._require_rule(rule_id)
        user_changes = {k: v for k, v in changes.items() if k not in _ENGINE_RULE_FIELDS}
        updated = AutoRule.model_validate({**existing.model_dump(), **user_changes})
        self._validate_rule(updated)

        self.cache.apply_rule(updated)
        self._save_rules()

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                event_type=AuditEventType.RULE_UPDATED,
                rule_id=rule_id,
                rule_name=updated.name,
                correlation_id=correlation_id,
            )
        return updated

    async def set_rule_enabled(
        self,
        rule_id: str,
        enabled: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AutoRule:
        """Toggle a rule without re-validating it."""
        updated = self._require_rule(rule_id).model_copy(update={"enabled": enabled})
        self.cache.apply_rule(updated)
        self._save_rules()

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                event_type=AuditEventType.RULE_UPDATED,
                rule_id=rule_id,
                rule_name=updated.name,
                correlation_id=correlation_id,
            )
        return updated

    async def delete_rule(
        self,
        rule_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        rule = self._require_rule(rule_id)
        self.cache.remove_rule(rule_id)
        self._save_rules()

        if self._audit_logger:
            await self._audit_logger.log_rule_changed(
                event_type=AuditEventType.RULE_DELETED,
                rule_id=rule_id,
                rule_name=rule.name,
                correlation_id=correlation_id,
            )

    async def execute_rule(
        self,
        rule_id: str,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ExecutionOutcome:
        """
        Manual "run now": execute a rule over the recent matching history.

        Unlike automatic execution the outcome is meant to be shown to the
        user (its `message` says what happened).
        """
        correlation_id = correlation_id or create_correlation_id()
        rule = self._require_rule(rule_id)

        try:
            outcome = await self._executor.execute_historical(
                rule,
                self.cache.fresh_transactions(),
                self.cache.fresh_accounts(),
                self.cache.fresh_goals(),
                today=today,
            )
        except RollbackFailedError as e:
            await self._alert_rollback_failed(e, correlation_id)
            raise

        await self._commit_outcome(outcome, correlation_id)
        return outcome

    def rule_statistics(self) -> RuleStatistics:
        return self.cache.rule_statistics()

    # -------------------------------------------------------------------------
    # Automatic execution
    # -------------------------------------------------------------------------

    async def _run_rules(
        self,
        transaction: Transaction,
        correlation_id: UUID,
    ) -> list[ExecutionOutcome]:
        async def commit(outcome: ExecutionOutcome) -> None:
            await self._commit_outcome(outcome, correlation_id)

        try:
            return await self._executor.run_rules(
                self.cache.enabled_rules(),
                transaction,
                self.cache.fresh_accounts(),
                self.cache.fresh_goals(),
                on_outcome=commit,
            )
        except RollbackFailedError as e:
            await self._alert_rollback_failed(e, correlation_id)
            raise

    async def _commit_outcome(
        self,
        outcome: ExecutionOutcome,
        correlation_id: Optional[UUID],
    ) -> None:
        """Apply an executed outcome to cache and rule store, then audit it."""
        if outcome.executed:
            self.cache.apply_accounts(outcome.updated_accounts)
            self.cache.apply_goals(outcome.updated_goals)
            self.cache.add_transaction(outcome.new_transaction)
            self.cache.apply_rule(outcome.updated_rule)
            await self._save_rules_after_ledger_write(outcome.rule_id, correlation_id)

        if not self._audit_logger or outcome.reason == SkipReason.TRIGGER_NOT_MATCHED:
            return

        for entity_id, value in outcome.restored_balances.items():
            await self._audit_logger.log_transfer_rolled_back(
                entity_id=entity_id,
                restored_value=value,
                correlation_id=correlation_id,
            )
        await self._audit_logger.log_execution_outcome(outcome, correlation_id)

    # -------------------------------------------------------------------------
    # Audit helpers
    # -------------------------------------------------------------------------

    async def _report_rolled_back(
        self,
        legs: list[BalanceLeg],
        correlation_id: Optional[UUID],
    ) -> None:
        if not self._audit_logger:
            return
        for leg in legs:
            await self._audit_logger.log_transfer_rolled_back(
                entity_id=leg.entity_id,
                restored_value=leg.old_value,
                correlation_id=correlation_id,
            )

    async def _alert_rollback_failed(
        self,
        error: RollbackFailedError,
        correlation_id: Optional[UUID],
    ) -> None:
        logger.critical(
            "ledger_inconsistent",
            entity_id=error.leg.entity_id,
            expected=str(error.leg.old_value),
            actual=str(error.leg.new_value),
        )
        if self._audit_logger:
            await self._audit_logger.log_rollback_failed(
                entity_id=error.leg.entity_id,
                expected_value=error.leg.old_value,
                error_message=str(error),
                correlation_id=correlation_id,
            )


def create_app_components(
    use_storage: bool = True,
    user_id: Optional[str] = None,
) -> tuple[FinanceFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured ledger backend and the
                    local rule file. Set to False for in-memory only.
        user_id: Owner of the rule slot (defaults to the configured user).

    Returns:
        (finance_flow, sheets_client)
    """
    settings = get_settings()
    user_id = user_id or settings.app.default_user_id

    sheets_client = None
    ledger_store: LedgerStoreInterface = InMemoryLedgerStore()
    rule_store: RuleStoreInterface = InMemoryRuleStore()
    audit_logger = AuditLogger()  # Local-only logging

    if use_storage:
        rule_store = JsonFileRuleStore(user_id)

        if settings.ledger.backend == "google_sheets":
            try:
                sheets_client = GoogleSheetsClient()
                ledger_store = GoogleSheetsLedgerStore(sheets_client)
                audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
            except Exception as e:
                # Storage not configured - continue in memory
                logger.warning("ledger_storage_not_configured", error=str(e))
                sheets_client = None

    finance_flow = FinanceFlow(
        ledger_store=ledger_store,
        rule_store=rule_store,
        audit_logger=audit_logger,
        settings=settings.execution,
    )

    return finance_flow, sheets_client
