"""
Tests for the Transfer Executor.

Covers conservation, skips, the two-leg rollback contract and the
manual historical run.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from cashboard.models import (
    AUTOMATION_SAVINGS_CATEGORY,
    AUTOMATION_TRANSFER_CATEGORY,
    DESCRIPTION_MAX_LENGTH,
    Account,
    AccountType,
    ActionType,
    AutoRule,
    ExecutionStatus,
    RuleAction,
    RuleTrigger,
    SkipReason,
    Transaction,
    TransactionType,
    TriggerType,
)
from cashboard.rules import RollbackFailedError, TransferExecutor
from cashboard.services.storage import LedgerTable


NOW = datetime(2024, 12, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def executor(ledger, settings) -> TransferExecutor:
    return TransferExecutor(ledger, settings)


@pytest.fixture
def accounts(checking, savings):
    return [checking, savings]


class TestAccountToAccount:
    """Successful account → account transfers."""

    def test_conservation(self, executor, percentage_rule, income, accounts, goal, balance_of):
        """Debit equals credit and the pair total is unchanged."""
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal], now=NOW))

        assert outcome.status == ExecutionStatus.EXECUTED
        assert outcome.amount == Decimal("200")
        after = {a.id: a.balance for a in outcome.updated_accounts}
        assert after["acc-checking"] == Decimal("2000") - Decimal("200")
        assert after["acc-savings"] == Decimal("500") + Decimal("200")
        assert sum(after.values()) == Decimal("2500")
        assert balance_of("acc-checking") == Decimal("1800")
        assert balance_of("acc-savings") == Decimal("700")

    def test_audit_transaction(self, executor, percentage_rule, income, accounts, goal, ledger_store):
        """A transfer-type transaction links the rule and both accounts."""
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal], now=NOW))
        transaction = outcome.new_transaction

        assert transaction.type == TransactionType.TRANSFER
        assert transaction.category == AUTOMATION_TRANSFER_CATEGORY
        assert transaction.rule_id == "rule-save"
        assert transaction.account_id == "acc-checking"
        assert transaction.to_account_id == "acc-savings"
        assert transaction.description == "Automação: Save 20% (20% de Salary)"
        assert transaction.date == NOW.date()
        stored = asyncio.run(ledger_store.get_by_id(LedgerTable.TRANSACTIONS, transaction.id))
        assert stored is not None

    def test_execution_record(self, executor, percentage_rule, income, accounts, goal):
        """The updated rule carries the new execution."""
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal], now=NOW))
        rule = outcome.updated_rule
        execution = outcome.new_execution

        assert rule.execution_count == 1
        assert rule.last_executed == NOW
        assert rule.executions == [execution]
        assert execution.trigger_transaction_id == "txn-salary"
        assert execution.transaction_id == outcome.new_transaction.id
        assert execution.source_account_id == "acc-checking"
        assert execution.target_account_id == "acc-savings"
        assert execution.triggered_by == "Salary (1000.00€)"
        # The input rule is untouched
        assert percentage_rule.execution_count == 0


class TestAccountToGoal:
    """Successful account → goal transfers."""

    def test_goal_credit(self, executor, goal_rule, income, accounts, goal, balance_of, goal_amount_of):
        outcome = asyncio.run(executor.execute(goal_rule, income, accounts, [goal], now=NOW))

        assert outcome.executed
        assert outcome.amount == Decimal("50")
        assert outcome.updated_goals[0].current_amount == Decimal("150")
        assert balance_of("acc-checking") == Decimal("1950")
        assert goal_amount_of("goal-trip") == Decimal("150")

    def test_savings_transaction(self, executor, goal_rule, income, accounts, goal):
        outcome = asyncio.run(executor.execute(goal_rule, income, accounts, [goal], now=NOW))
        transaction = outcome.new_transaction

        assert transaction.type == TransactionType.SAVINGS
        assert transaction.category == AUTOMATION_SAVINGS_CATEGORY
        assert transaction.goal_id == "goal-trip"
        assert transaction.to_account_id is None
        assert transaction.description == "Automação: Trip fund (50.00€ de Salary) → Meta Trip"
        assert outcome.new_execution.target_goal_id == "goal-trip"


class TestDescription:
    """Generated descriptions always fit a transaction record."""

    def test_long_basis_description_is_shortened(
        self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of
    ):
        long_income = income.model_copy(update={"description": "x" * 495})

        outcome = asyncio.run(executor.execute(percentage_rule, long_income, accounts, [goal], now=NOW))

        assert outcome.executed
        description = outcome.new_transaction.description
        assert len(description) == DESCRIPTION_MAX_LENGTH
        assert description.startswith("Automação: Save 20% (20% de xxx")
        assert description.endswith("…)")
        assert balance_of("acc-checking") == Decimal("1800")
        assert balance_of("acc-savings") == Decimal("700")
        assert outcome.updated_rule.execution_count == 1
        records = asyncio.run(ledger_store.read_all(LedgerTable.TRANSACTIONS))
        assert [r["id"] for r in records] == [outcome.new_transaction.id]

    def test_goal_suffix_is_kept(self, executor, goal_rule, income, accounts, goal):
        long_income = income.model_copy(update={"description": "y" * 499})

        outcome = asyncio.run(executor.execute(goal_rule, long_income, accounts, [goal], now=NOW))

        assert outcome.executed
        assert outcome.new_transaction.description.endswith("…) → Meta Trip")
        assert len(outcome.new_transaction.description) <= DESCRIPTION_MAX_LENGTH

    def test_short_description_is_unchanged(self, executor, percentage_rule):
        assert executor.describe(percentage_rule, "Salary") == "Automação: Save 20% (20% de Salary)"


class TestSkips:
    """Validation skips write nothing."""

    def test_disabled_rule(self, executor, percentage_rule, income, accounts, goal, ledger_store):
        """A disabled rule never produces a transaction or execution."""
        rule = percentage_rule.model_copy(update={"enabled": False})
        outcome = asyncio.run(executor.execute(rule, income, accounts, [goal]))

        assert outcome.status == ExecutionStatus.SKIPPED
        assert outcome.reason == SkipReason.RULE_DISABLED
        assert outcome.new_transaction is None
        assert outcome.updated_rule is None
        assert ledger_store.calls == []

    def test_trigger_not_matched(self, executor, percentage_rule, accounts, goal, income):
        expense = income.model_copy(update={"type": TransactionType.EXPENSE})
        outcome = asyncio.run(executor.execute(percentage_rule, expense, accounts, [goal]))
        assert outcome.reason == SkipReason.TRIGGER_NOT_MATCHED

    def test_insufficient_funds(self, executor, income, savings, goal, ledger_store):
        """Balance 50 against a transfer of 100 is skipped."""
        poor = Account(id="acc-checking", name="Checking", balance=Decimal("50"))
        rule = AutoRule(
            name="Move 100",
            trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
            action=RuleAction(
                type=ActionType.TRANSFER_FIXED,
                fixed_amount=Decimal("100"),
                target_account_id="acc-savings",
            ),
        )
        outcome = asyncio.run(executor.execute(rule, income, [poor, savings], [goal]))

        assert outcome.status == ExecutionStatus.SKIPPED
        assert outcome.reason == SkipReason.INSUFFICIENT_FUNDS
        assert outcome.updated_accounts == []
        assert ledger_store.count("update_by_id", LedgerTable.ACCOUNTS) == 0

    def test_source_account_missing(self, executor, percentage_rule, income, savings, goal):
        outcome = asyncio.run(executor.execute(percentage_rule, income, [savings], [goal]))
        assert outcome.reason == SkipReason.SOURCE_ACCOUNT_NOT_FOUND

    def test_target_missing(self, executor, percentage_rule, income, checking, goal):
        outcome = asyncio.run(executor.execute(percentage_rule, income, [checking], [goal]))
        assert outcome.reason == SkipReason.TARGET_NOT_FOUND

    def test_target_is_source(self, executor, income, accounts, goal):
        rule = AutoRule(
            name="Loop",
            trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
            action=RuleAction(
                type=ActionType.TRANSFER_FIXED,
                fixed_amount=Decimal("10"),
                target_account_id="acc-checking",
            ),
        )
        outcome = asyncio.run(executor.execute(rule, income, accounts, [goal]))
        assert outcome.reason == SkipReason.TARGET_IS_SOURCE

    def test_categorize_is_unsupported(self, executor, income, accounts, goal):
        rule = AutoRule(
            name="Tag salary",
            trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
            action=RuleAction(type=ActionType.CATEGORIZE, target_category="Trabalho"),
        )
        outcome = asyncio.run(executor.execute(rule, income, accounts, [goal]))
        assert outcome.reason == SkipReason.UNSUPPORTED_ACTION

    def test_non_positive_amount(self, executor, income, accounts, goal):
        rule = AutoRule(
            name="Nothing",
            trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
            action=RuleAction(
                type=ActionType.TRANSFER_PERCENTAGE,
                percentage=Decimal("0.0001"),
                target_account_id="acc-savings",
            ),
        )
        outcome = asyncio.run(executor.execute(rule, income, accounts, [goal]))
        assert outcome.reason == SkipReason.NON_POSITIVE_AMOUNT


class TestRollback:
    """The two-leg all-or-nothing contract."""

    def test_source_write_failure(self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of):
        """First leg fails: nothing changes, nothing to restore."""
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-checking")
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal]))

        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.reason == SkipReason.SOURCE_WRITE_FAILED
        assert outcome.restored_balances == {}
        assert balance_of("acc-savings") == Decimal("500")

    def test_target_write_failure_restores_source(
        self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of
    ):
        """Second leg fails: the source debit is compensated."""
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-savings")
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal]))

        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.reason == SkipReason.TARGET_WRITE_FAILED
        assert outcome.restored_balances == {"acc-checking": Decimal("2000")}
        assert balance_of("acc-checking") == Decimal("2000")
        assert balance_of("acc-savings") == Decimal("500")
        assert outcome.updated_rule is None

    def test_goal_write_failure_restores_source(
        self, executor, goal_rule, income, accounts, goal, ledger_store, balance_of
    ):
        ledger_store.fail("update_by_id", LedgerTable.GOALS, "goal-trip")
        outcome = asyncio.run(executor.execute(goal_rule, income, accounts, [goal]))

        assert outcome.reason == SkipReason.TARGET_WRITE_FAILED
        assert balance_of("acc-checking") == Decimal("2000")

    def test_audit_insert_failure_restores_both_legs(
        self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of
    ):
        ledger_store.fail("insert", LedgerTable.TRANSACTIONS)
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal]))

        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.reason == SkipReason.AUDIT_WRITE_FAILED
        assert balance_of("acc-checking") == Decimal("2000")
        assert balance_of("acc-savings") == Decimal("500")
        assert asyncio.run(ledger_store.read_all(LedgerTable.TRANSACTIONS)) == []

    def test_audit_insert_with_lost_reply_keeps_transfer(
        self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of
    ):
        """The record was stored before the error; the transfer stands."""
        ledger_store.fail("insert", LedgerTable.TRANSACTIONS, times=1, applied=True)

        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal], now=NOW))

        assert outcome.executed
        assert balance_of("acc-checking") == Decimal("1800")
        assert balance_of("acc-savings") == Decimal("700")
        records = asyncio.run(ledger_store.read_all(LedgerTable.TRANSACTIONS))
        assert [r["id"] for r in records] == [outcome.new_transaction.id]
        assert outcome.new_execution.transaction_id == outcome.new_transaction.id

    def test_rollback_failure_is_raised(self, executor, percentage_rule, income, accounts, goal, ledger_store):
        """If the compensating write fails the inconsistency escapes."""
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-savings")
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-checking", after=1)

        with pytest.raises(RollbackFailedError) as exc_info:
            asyncio.run(executor.execute(percentage_rule, income, accounts, [goal]))

        assert exc_info.value.leg.entity_id == "acc-checking"
        assert exc_info.value.leg.old_value == Decimal("2000")

    def test_transient_failure_is_retried(
        self, executor, percentage_rule, income, accounts, goal, ledger_store, balance_of
    ):
        """A single failed attempt is absorbed by the retry policy."""
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-savings", times=1)
        outcome = asyncio.run(executor.execute(percentage_rule, income, accounts, [goal]))

        assert outcome.executed
        assert balance_of("acc-savings") == Decimal("700")


class TestRunRules:
    """Sequential evaluation of every enabled rule."""

    def test_rules_see_previous_balances(self, executor, income, savings, goal):
        """The second rule sees the balance left by the first."""
        checking = Account(id="acc-checking", name="Checking", balance=Decimal("300"))
        first = AutoRule(
            id="first",
            name="First",
            trigger=RuleTrigger(type=TriggerType.INCOME_RECEIVED),
            action=RuleAction(type=ActionType.TRANSFER_FIXED, fixed_amount=Decimal("200"),
                              target_account_id="acc-savings"),
        )
        second = first.model_copy(update={"id": "second", "name": "Second"})

        outcomes = asyncio.run(executor.run_rules([first, second], income, [checking, savings], [goal]))

        assert [o.status for o in outcomes] == [ExecutionStatus.EXECUTED, ExecutionStatus.SKIPPED]
        assert outcomes[1].reason == SkipReason.INSUFFICIENT_FUNDS

    def test_failure_does_not_stop_loop(self, executor, percentage_rule, goal_rule, income, accounts, goal, ledger_store):
        """A failed rule is followed by the next one."""
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-savings")

        outcomes = asyncio.run(executor.run_rules([percentage_rule, goal_rule], income, accounts, [goal]))

        assert outcomes[0].status == ExecutionStatus.FAILED
        assert outcomes[1].status == ExecutionStatus.EXECUTED

    def test_disabled_rules_are_not_evaluated(self, executor, percentage_rule, income, accounts, goal):
        disabled = percentage_rule.model_copy(update={"enabled": False})
        outcomes = asyncio.run(executor.run_rules([disabled], income, accounts, [goal]))
        assert outcomes == []

    def test_on_outcome_called_per_rule(self, executor, percentage_rule, goal_rule, income, accounts, goal):
        seen = []

        async def record(outcome):
            seen.append(outcome.rule_id)

        asyncio.run(executor.run_rules([percentage_rule, goal_rule], income, accounts, [goal], on_outcome=record))
        assert seen == ["rule-save", "rule-trip"]


class TestHistorical:
    """Manual 'run now' over the trailing window."""

    def _history(self):
        today = date.today()
        return [
            Transaction(id="h1", date=today - timedelta(days=2), description="Salary",
                        amount=Decimal("1000"), type=TransactionType.INCOME, account_id="acc-checking"),
            Transaction(id="h2", date=today - timedelta(days=10), description="Bonus",
                        amount=Decimal("500"), type=TransactionType.INCOME, account_id="acc-checking"),
            Transaction(id="h3", date=today - timedelta(days=60), description="Old salary",
                        amount=Decimal("1000"), type=TransactionType.INCOME, account_id="acc-checking"),
        ]

    def test_percentage_of_sum(self, executor, percentage_rule, accounts, goal, balance_of):
        outcome = asyncio.run(executor.execute_historical(percentage_rule, self._history(), accounts, [goal]))

        assert outcome.executed
        assert outcome.amount == Decimal("300")
        assert outcome.new_execution.trigger_transaction_id == "h1"
        assert outcome.new_transaction.description == "Automação: Save 20% (20% de 2 transações)"
        assert balance_of("acc-savings") == Decimal("800")

    def test_fixed_per_match(self, executor, goal_rule, accounts, goal):
        outcome = asyncio.run(executor.execute_historical(goal_rule, self._history(), accounts, [goal]))
        assert outcome.amount == Decimal("100")

    def test_no_matches(self, executor, percentage_rule, accounts, goal):
        outcome = asyncio.run(executor.execute_historical(percentage_rule, [], accounts, [goal]))
        assert outcome.reason == SkipReason.NO_MATCHING_TRANSACTIONS
        assert outcome.message

    def test_automation_transactions_are_ignored(self, executor, accounts, goal):
        """Generated transfers never feed another run."""
        rule = AutoRule(
            name="Big movements",
            trigger=RuleTrigger(type=TriggerType.AMOUNT_ABOVE, value="100"),
            action=RuleAction(type=ActionType.TRANSFER_FIXED, fixed_amount=Decimal("10"),
                              target_account_id="acc-savings"),
        )
        generated = Transaction(
            date=date.today(), description="Automação: X (20% de Salary)", amount=Decimal("200"),
            type=TransactionType.TRANSFER, category=AUTOMATION_TRANSFER_CATEGORY,
            account_id="acc-checking", to_account_id="acc-savings", rule_id="x",
        )
        outcome = asyncio.run(executor.execute_historical(rule, [generated], accounts, [goal]))
        assert outcome.reason == SkipReason.NO_MATCHING_TRANSACTIONS

    def test_goal_withdrawals_are_ignored(self, executor, percentage_rule, accounts, goal):
        """Money coming back out of a goal is not new income."""
        withdrawal = Transaction(
            date=date.today(), description="Levantamento da meta: Trip", amount=Decimal("80"),
            type=TransactionType.INCOME, category="goals", account_id="acc-checking", goal_id="goal-trip",
        )
        outcome = asyncio.run(executor.execute_historical(percentage_rule, [withdrawal], accounts, [goal]))
        assert outcome.reason == SkipReason.NO_MATCHING_TRANSACTIONS

    def test_insufficient_balance_message(self, executor, percentage_rule, savings, goal):
        poor = Account(id="acc-checking", name="Checking", type=AccountType.CHECKING, balance=Decimal("10"))
        outcome = asyncio.run(executor.execute_historical(percentage_rule, self._history(), [poor, savings], [goal]))

        assert outcome.reason == SkipReason.INSUFFICIENT_FUNDS
        assert "Insufficient balance" in outcome.message

    def test_source_is_first_checking_account(self, executor, percentage_rule, savings, goal):
        """Without a checking account there is no source."""
        outcome = asyncio.run(executor.execute_historical(percentage_rule, self._history(), [savings], [goal]))
        assert outcome.reason == SkipReason.SOURCE_ACCOUNT_NOT_FOUND


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
