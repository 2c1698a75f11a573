"""
Tests for the Reversal Engine.
"""

import asyncio
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from cashboard.models import (
    AUTOMATION_SAVINGS_CATEGORY,
    AUTOMATION_TRANSFER_CATEGORY,
    ReversalKind,
    Transaction,
    TransactionType,
)
from cashboard.rules import (
    NotReversibleError,
    ReversalEngine,
    ReversalError,
    TransactionNotFoundError,
    TransferExecutor,
    classify_and_resolve_legs,
)
from cashboard.services.storage import LedgerTable


NOW = datetime(2024, 12, 20, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def engine(ledger) -> ReversalEngine:
    return ReversalEngine(ledger)


@pytest.fixture
def executor(ledger, settings) -> TransferExecutor:
    return TransferExecutor(ledger, settings)


def store_transaction(ledger_store, transaction: Transaction) -> Transaction:
    asyncio.run(ledger_store.insert(LedgerTable.TRANSACTIONS, transaction.to_record()))
    return transaction


class TestClassification:
    """classify_and_resolve_legs picks the branch and the legs."""

    def test_structured_automation_transfer(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Automação: Save (20% de Salary)", amount=Decimal("200"),
            type=TransactionType.TRANSFER, category=AUTOMATION_TRANSFER_CATEGORY,
            account_id="acc-checking", to_account_id="acc-savings", rule_id="rule-save",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.AUTOMATION_TRANSFER
        assert plan.rule_id == "rule-save"
        deltas = {leg.entity_id: leg.delta for leg in plan.legs}
        assert deltas == {"acc-checking": Decimal("200"), "acc-savings": Decimal("-200")}

    def test_manual_linked_transfer(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Rent share", amount=Decimal("100"),
            type=TransactionType.TRANSFER, account_id="acc-checking", to_account_id="acc-savings",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.LINKED_TRANSFER
        assert plan.rule_id is None

    def test_legacy_free_text_transfer(self, checking, savings, goal):
        """Names are resolved when no structured link exists."""
        transaction = Transaction(
            date=date.today(), description="Transferência: Checking → Savings", amount=Decimal("100"),
            type=TransactionType.TRANSFER,
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.LEGACY_TRANSFER
        deltas = {leg.entity_id: leg.delta for leg in plan.legs}
        assert deltas == {"acc-checking": Decimal("100"), "acc-savings": Decimal("-100")}

    def test_legacy_unknown_name_is_not_reversible(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Transferência: Checking → Holiday", amount=Decimal("100"),
            type=TransactionType.TRANSFER,
        )
        with pytest.raises(NotReversibleError):
            classify_and_resolve_legs(transaction, [checking, savings], [goal])

    def test_legacy_automation_by_prefix(self, checking, savings, goal):
        """Prefix without rule_id is automation; without links it cannot be reversed."""
        transaction = Transaction(
            date=date.today(), description="Automação: Old rule (10% de Salary)", amount=Decimal("100"),
            type=TransactionType.TRANSFER, account_id="acc-checking",
        )
        with pytest.raises(NotReversibleError):
            classify_and_resolve_legs(transaction, [checking, savings], [goal])

    def test_automation_savings(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Automação: Trip fund (50.00€ de Salary) → Meta Trip",
            amount=Decimal("50"), type=TransactionType.SAVINGS, category=AUTOMATION_SAVINGS_CATEGORY,
            account_id="acc-checking", goal_id="goal-trip", rule_id="rule-trip",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.AUTOMATION_SAVINGS
        deltas = {leg.entity_id: leg.delta for leg in plan.legs}
        assert deltas == {"acc-checking": Decimal("50"), "goal-trip": Decimal("-50")}

    @pytest.mark.parametrize("transaction_type, delta", [
        (TransactionType.INCOME, Decimal("-40")),
        (TransactionType.EXPENSE, Decimal("40")),
        (TransactionType.INVESTMENT, Decimal("40")),
    ])
    def test_plain_inverse(self, checking, savings, goal, transaction_type, delta):
        transaction = Transaction(
            date=date.today(), description="Something", amount=Decimal("40"),
            type=transaction_type, account_id="acc-checking",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.PLAIN
        assert [(leg.entity_id, leg.delta) for leg in plan.legs] == [("acc-checking", delta)]

    def test_plain_savings_goal_floors_at_zero(self, checking, savings, goal):
        """A manual goal deposit larger than the goal's amount only empties it."""
        transaction = Transaction(
            date=date.today(), description="Transferência para meta: Trip", amount=Decimal("250"),
            type=TransactionType.SAVINGS, account_id="acc-checking", goal_id="goal-trip",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        legs = {leg.entity_id: leg for leg in plan.legs}
        assert legs["acc-checking"].delta == Decimal("250")
        assert legs["goal-trip"].new_value == Decimal("0")

    def test_goal_withdrawal_refunds_goal(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Levantamento da meta: Trip", amount=Decimal("40"),
            type=TransactionType.INCOME, category="goals", account_id="acc-checking", goal_id="goal-trip",
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])

        assert plan.kind == ReversalKind.PLAIN
        assert [(leg.entity_id, leg.delta) for leg in plan.legs] == [
            ("acc-checking", Decimal("-40")),
            ("goal-trip", Decimal("40")),
        ]

    def test_plain_without_account_only_deletes(self, checking, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Cash gift", amount=Decimal("20"), type=TransactionType.INCOME,
        )
        plan = classify_and_resolve_legs(transaction, [checking, savings], [goal])
        assert plan.legs == []

    def test_missing_account_is_not_reversible(self, savings, goal):
        transaction = Transaction(
            date=date.today(), description="Groceries", amount=Decimal("20"),
            type=TransactionType.EXPENSE, account_id="acc-gone",
        )
        with pytest.raises(NotReversibleError):
            classify_and_resolve_legs(transaction, [savings], [goal])


class TestReverse:
    """End-to-end reversal against the ledger."""

    def test_inverse_law_for_automation(
        self, engine, executor, percentage_rule, income, checking, savings, goal, balance_of
    ):
        """Reversing an automated transfer restores balances and marks the execution."""
        outcome = asyncio.run(executor.execute(percentage_rule, income, [checking, savings], [goal]))
        generated = outcome.new_transaction
        accounts_after = [a for a in outcome.updated_accounts]

        result = asyncio.run(engine.reverse(
            generated.id,
            transactions=[generated],
            accounts=accounts_after,
            goals=[goal],
            rules=[outcome.updated_rule],
            now=NOW,
        ))

        assert result.kind == ReversalKind.AUTOMATION_TRANSFER
        assert balance_of("acc-checking") == Decimal("2000")
        assert balance_of("acc-savings") == Decimal("500")
        after = {a.id: a.balance for a in result.updated_accounts}
        assert after == {"acc-checking": Decimal("2000"), "acc-savings": Decimal("500")}

        rule = result.updated_rule
        execution = rule.find_execution(generated.id)
        assert execution.reversed is True
        assert execution.reversed_at == NOW
        assert rule.execution_count == 0
        assert rule.execution_count == len(rule.active_executions)

    def test_second_reverse_is_not_found(
        self, engine, executor, percentage_rule, income, checking, savings, goal
    ):
        outcome = asyncio.run(executor.execute(percentage_rule, income, [checking, savings], [goal]))
        generated = outcome.new_transaction
        asyncio.run(engine.reverse(
            generated.id, [generated], outcome.updated_accounts, [goal], [outcome.updated_rule],
        ))

        with pytest.raises(TransactionNotFoundError):
            asyncio.run(engine.reverse(
                generated.id, [generated], [checking, savings], [goal], [outcome.updated_rule],
            ))

    def test_goal_automation_inverse(
        self, engine, executor, goal_rule, income, checking, savings, goal, balance_of, goal_amount_of
    ):
        outcome = asyncio.run(executor.execute(goal_rule, income, [checking, savings], [goal]))
        accounts_after = [savings] + outcome.updated_accounts

        result = asyncio.run(engine.reverse(
            outcome.new_transaction.id, [outcome.new_transaction], accounts_after,
            outcome.updated_goals, [outcome.updated_rule],
        ))

        assert result.kind == ReversalKind.AUTOMATION_SAVINGS
        assert balance_of("acc-checking") == Decimal("2000")
        assert goal_amount_of("goal-trip") == Decimal("100")
        assert result.updated_rule.execution_count == 0

    def test_transaction_read_from_ledger_when_not_cached(self, engine, ledger_store, checking, savings, goal, balance_of):
        expense = store_transaction(ledger_store, Transaction(
            id="txn-coffee", date=date.today(), description="Coffee", amount=Decimal("5"),
            type=TransactionType.EXPENSE, account_id="acc-checking",
        ))

        result = asyncio.run(engine.reverse(expense.id, [], [checking, savings], [goal], []))

        assert result.kind == ReversalKind.PLAIN
        assert balance_of("acc-checking") == Decimal("2005")

    def test_not_reversible_changes_nothing(self, engine, ledger_store, checking, savings, goal, balance_of):
        legacy = store_transaction(ledger_store, Transaction(
            id="txn-legacy", date=date.today(), description="Transferência: Checking → Nowhere",
            amount=Decimal("100"), type=TransactionType.TRANSFER,
        ))

        with pytest.raises(NotReversibleError):
            asyncio.run(engine.reverse(legacy.id, [legacy], [checking, savings], [goal], []))

        assert balance_of("acc-checking") == Decimal("2000")
        stored = asyncio.run(ledger_store.get_by_id(LedgerTable.TRANSACTIONS, legacy.id))
        assert stored is not None

    def test_delete_failure_rolls_back_legs(self, engine, ledger_store, checking, savings, goal, balance_of):
        expense = store_transaction(ledger_store, Transaction(
            id="txn-rent", date=date.today(), description="Rent", amount=Decimal("700"),
            type=TransactionType.EXPENSE, account_id="acc-checking",
        ))
        ledger_store.fail("delete_by_id", LedgerTable.TRANSACTIONS)

        with pytest.raises(ReversalError):
            asyncio.run(engine.reverse(expense.id, [expense], [checking, savings], [goal], []))

        assert balance_of("acc-checking") == Decimal("2000")

    def test_leg_failure_raises_reversal_error(self, engine, ledger_store, checking, savings, goal, balance_of):
        transfer = store_transaction(ledger_store, Transaction(
            id="txn-move", date=date.today(), description="Move", amount=Decimal("100"),
            type=TransactionType.TRANSFER, account_id="acc-checking", to_account_id="acc-savings",
        ))
        ledger_store.fail("update_by_id", LedgerTable.ACCOUNTS, "acc-savings")

        with pytest.raises(ReversalError):
            asyncio.run(engine.reverse(transfer.id, [transfer], [checking, savings], [goal], []))

        assert balance_of("acc-checking") == Decimal("2000")
        assert balance_of("acc-savings") == Decimal("500")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
