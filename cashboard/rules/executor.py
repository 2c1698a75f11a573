"""
Transfer Executor

Performs the fund movement of a matched rule:

1. Validate: rule enabled, trigger matches, action moves funds, resolved
   amount > 0, source and target exist and differ, source can cover it.
   Any failure here is a SKIPPED outcome; nothing is written. The
   generated transaction and execution are built here too.
2. Debit the source, then credit the target (account balance or goal
   amount). A failed second leg compensates the first.
3. Insert the audit transaction (`transfer` for account targets, `savings`
   for goal targets). If that insert fails both legs are compensated.
4. Record a RuleExecution on a copy of the rule.

State is passed in by value and the new state is returned in the
ExecutionOutcome; the caller applies it to the cache and rule store.

RollbackFailedError is the only exception that escapes: it means the
ledger is inconsistent and must reach the caller.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

import structlog

from cashboard.config import ExecutionSettings, get_settings
from cashboard.models.finance import (
    DESCRIPTION_MAX_LENGTH,
    Account,
    AccountType,
    Goal,
    Transaction,
    TransactionType,
)
from cashboard.models.rules import (
    AUTOMATION_PREFIX,
    AUTOMATION_SAVINGS_CATEGORY,
    AUTOMATION_TRANSFER_CATEGORY,
    ActionType,
    AutoRule,
    ExecutionOutcome,
    ExecutionStatus,
    RuleExecution,
    SkipReason,
    is_automation_generated,
    utc_now,
)
from cashboard.rules.balances import (
    BalanceLeg,
    LegWriteError,
    account_leg,
    apply_legs,
    apply_to_snapshot,
    compensate,
    goal_leg,
)
from cashboard.rules.matcher import matches, matching_transactions
from cashboard.rules.resolver import format_percentage, resolve_amount
from cashboard.services.storage import GuardedLedger, LedgerTable, StorageError


logger = structlog.get_logger(__name__)


def _skip(rule: AutoRule, reason: SkipReason, message: str, amount: Decimal = Decimal("0")) -> ExecutionOutcome:
    logger.info("rule_skipped", rule_id=rule.id, reason=reason.value, detail=message)
    return ExecutionOutcome(
        rule_id=rule.id,
        status=ExecutionStatus.SKIPPED,
        reason=reason,
        message=message,
        amount=amount,
    )


def _failed(
    rule: AutoRule,
    reason: SkipReason,
    message: str,
    amount: Decimal,
    restored: Sequence[BalanceLeg] = (),
) -> ExecutionOutcome:
    logger.error("rule_failed", rule_id=rule.id, reason=reason.value, detail=message)
    return ExecutionOutcome(
        rule_id=rule.id,
        status=ExecutionStatus.FAILED,
        reason=reason,
        message=message,
        amount=amount,
        restored_balances={leg.entity_id: leg.old_value for leg in restored},
    )


class TransferExecutor:
    """
    Executes rule actions against the ledger.

    Usage:
        executor = TransferExecutor(GuardedLedger(store))
        outcome = await executor.execute(rule, income, accounts, goals)
        if outcome.executed:
            cache.apply_accounts(outcome.updated_accounts)
    """

    def __init__(
        self,
        ledger: GuardedLedger,
        settings: Optional[ExecutionSettings] = None,
    ):
        self.ledger = ledger
        self._settings = settings or get_settings().execution

    # -------------------------------------------------------------------------
    # Event-triggered execution
    # -------------------------------------------------------------------------

    async def execute(
        self,
        rule: AutoRule,
        trigger_transaction: Transaction,
        accounts: Sequence[Account],
        goals: Sequence[Goal],
        now: Optional[datetime] = None,
    ) -> ExecutionOutcome:
        """Evaluate `rule` against one new transaction and execute it on a match."""
        if not rule.enabled:
            return _skip(rule, SkipReason.RULE_DISABLED, f"Rule '{rule.name}' is disabled")

        if not matches(trigger_transaction, rule.trigger):
            return ExecutionOutcome(
                rule_id=rule.id,
                status=ExecutionStatus.SKIPPED,
                reason=SkipReason.TRIGGER_NOT_MATCHED,
            )

        source = next((a for a in accounts if a.id == trigger_transaction.account_id), None)
        currency = self._settings.currency_symbol

        return await self._transfer(
            rule=rule,
            basis=trigger_transaction.amount,
            basis_label=trigger_transaction.label,
            source=source,
            trigger_transaction_id=trigger_transaction.id,
            triggered_by=f"{trigger_transaction.label} ({trigger_transaction.amount:.2f}{currency})",
            accounts=accounts,
            goals=goals,
            now=now or utc_now(),
        )

    async def run_rules(
        self,
        rules: Iterable[AutoRule],
        trigger_transaction: Transaction,
        accounts: Sequence[Account],
        goals: Sequence[Goal],
        now: Optional[datetime] = None,
        on_outcome: Optional[Callable[[ExecutionOutcome], Awaitable[None]]] = None,
    ) -> list[ExecutionOutcome]:
        """
        Evaluate every enabled rule against `trigger_transaction`, in order.

        Each rule sees the balances left by the previous one. A skipped or
        failed rule never stops the loop. `on_outcome` is awaited after each
        rule so callers can commit state before the next one runs.
        """
        accounts_by_id = {a.id: a for a in accounts}
        goals_by_id = {g.id: g for g in goals}
        outcomes = []

        for rule in rules:
            if not rule.enabled:
                continue

            outcome = await self.execute(
                rule,
                trigger_transaction,
                list(accounts_by_id.values()),
                list(goals_by_id.values()),
                now=now,
            )
            outcomes.append(outcome)
            if on_outcome is not None:
                await on_outcome(outcome)

            if outcome.executed:
                accounts_by_id.update({a.id: a for a in outcome.updated_accounts})
                goals_by_id.update({g.id: g for g in outcome.updated_goals})

        return outcomes

    # -------------------------------------------------------------------------
    # Manual "run now" over recent history
    # -------------------------------------------------------------------------

    async def execute_historical(
        self,
        rule: AutoRule,
        transactions: Iterable[Transaction],
        accounts: Sequence[Account],
        goals: Sequence[Goal],
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> ExecutionOutcome:
        """
        Execute `rule` once over every matching transaction of the trailing
        window. Percentages apply to the summed amounts; fixed amounts are
        counted once per matching transaction. Funds come from the first
        checking account.
        """
        if not rule.enabled:
            return _skip(rule, SkipReason.RULE_DISABLED, f"Rule '{rule.name}' is disabled")

        candidates = [
            t for t in transactions
            if not is_automation_generated(t) and not t.is_goal_withdrawal
        ]
        matched = matching_transactions(
            candidates,
            rule.trigger,
            today=today,
            window_days=self._settings.historical_window_days,
        )
        if not matched:
            return _skip(
                rule,
                SkipReason.NO_MATCHING_TRANSACTIONS,
                f"No matching transactions in the last {self._settings.historical_window_days} days",
            )

        matched.sort(key=lambda t: t.date, reverse=True)
        source = next((a for a in accounts if a.type == AccountType.CHECKING), None)
        total = sum((t.amount for t in matched), Decimal("0"))
        currency = self._settings.currency_symbol

        return await self._transfer(
            rule=rule,
            basis=[t.amount for t in matched],
            basis_label=f"{len(matched)} transações",
            source=source,
            trigger_transaction_id=matched[0].id,
            triggered_by=f"{len(matched)} transações ({total:.2f}{currency})",
            accounts=accounts,
            goals=goals,
            now=now or utc_now(),
        )

    # -------------------------------------------------------------------------
    # Shared transfer path
    # -------------------------------------------------------------------------

    def describe(self, rule: AutoRule, basis_label: str, goal: Optional[Goal] = None) -> str:
        """
        Description of the generated transaction.

        The `Automação:` prefix is how reversal recognises records that
        predate rule_id, so the format must stay stable. A long basis label
        is shortened so the whole description fits a transaction record.
        """
        action = rule.action
        if action.type == ActionType.TRANSFER_PERCENTAGE:
            share = f"{format_percentage(action.percentage)}%"
        else:
            share = f"{action.fixed_amount:.2f}{self._settings.currency_symbol}"

        head = f"{AUTOMATION_PREFIX} {rule.name} ({share} de "
        tail = ")" if goal is None else f") → Meta {goal.name}"
        room = DESCRIPTION_MAX_LENGTH - len(head) - len(tail)
        if len(basis_label) > room:
            basis_label = basis_label[:max(room - 1, 0)] + "…"
        return f"{head}{basis_label}{tail}"

    async def _transfer(
        self,
        rule: AutoRule,
        basis: Union[Decimal, list[Decimal]],
        basis_label: str,
        source: Optional[Account],
        trigger_transaction_id: str,
        triggered_by: str,
        accounts: Sequence[Account],
        goals: Sequence[Goal],
        now: datetime,
    ) -> ExecutionOutcome:
        action = rule.action

        if not action.moves_funds:
            return _skip(
                rule,
                SkipReason.UNSUPPORTED_ACTION,
                f"Action '{action.type.value}' does not move funds",
            )

        amount = resolve_amount(action, basis)
        if amount <= 0:
            return _skip(rule, SkipReason.NON_POSITIVE_AMOUNT, "Resolved amount is not positive", amount)

        if source is None:
            return _skip(rule, SkipReason.SOURCE_ACCOUNT_NOT_FOUND, "Source account not found", amount)

        target_account = None
        target_goal = None
        if action.target_account_id:
            target_account = next((a for a in accounts if a.id == action.target_account_id), None)
        elif action.target_goal_id:
            target_goal = next((g for g in goals if g.id == action.target_goal_id), None)

        if target_account is None and target_goal is None:
            return _skip(rule, SkipReason.TARGET_NOT_FOUND, "Target account or goal not found", amount)

        if target_account is not None and target_account.id == source.id:
            return _skip(rule, SkipReason.TARGET_IS_SOURCE, "Target is the source account", amount)

        if source.balance < amount:
            return _skip(
                rule,
                SkipReason.INSUFFICIENT_FUNDS,
                f"Insufficient balance in '{source.name}': {source.balance} < {amount}",
                amount,
            )

        # Everything that can fail validation is built before the first write
        legs = [account_leg(source, -amount)]
        if target_account is not None:
            legs.append(account_leg(target_account, amount))
            transaction = Transaction(
                date=now.date(),
                description=self.describe(rule, basis_label),
                amount=amount,
                type=TransactionType.TRANSFER,
                category=AUTOMATION_TRANSFER_CATEGORY,
                account_id=source.id,
                to_account_id=target_account.id,
                rule_id=rule.id,
            )
        else:
            legs.append(goal_leg(target_goal, amount))
            transaction = Transaction(
                date=now.date(),
                description=self.describe(rule, basis_label, goal=target_goal),
                amount=amount,
                type=TransactionType.SAVINGS,
                category=AUTOMATION_SAVINGS_CATEGORY,
                account_id=source.id,
                goal_id=target_goal.id,
                rule_id=rule.id,
            )

        execution = RuleExecution(
            date=now,
            amount=amount,
            source_account_id=source.id,
            target_account_id=target_account.id if target_account else None,
            target_goal_id=target_goal.id if target_goal else None,
            trigger_transaction_id=trigger_transaction_id,
            transaction_id=transaction.id,
            triggered_by=triggered_by,
        )
        updated_rule = rule.with_execution(execution, now)
        updated_accounts, updated_goals = apply_to_snapshot(legs, accounts, goals)

        try:
            await apply_legs(self.ledger, legs)
        except LegWriteError as e:
            reason = SkipReason.SOURCE_WRITE_FAILED if e.index == 0 else SkipReason.TARGET_WRITE_FAILED
            return _failed(rule, reason, str(e.cause), amount, e.rolled_back)

        try:
            record = await self.ledger.insert(LedgerTable.TRANSACTIONS, transaction.to_record())
        except StorageError as e:
            restored = await compensate(self.ledger, legs, e)
            return _failed(rule, SkipReason.AUDIT_WRITE_FAILED, str(e), amount, restored)

        logger.info(
            "rule_executed",
            rule_id=rule.id,
            amount=str(amount),
            source=source.id,
            target=action.target_account_id or action.target_goal_id,
            transaction_id=transaction.id,
        )

        return ExecutionOutcome(
            rule_id=rule.id,
            status=ExecutionStatus.EXECUTED,
            message=f"Moved {amount:.2f}{self._settings.currency_symbol}",
            amount=amount,
            updated_accounts=updated_accounts,
            updated_goals=updated_goals,
            new_transaction=Transaction.from_record(record),
            new_execution=execution,
            updated_rule=updated_rule,
        )
