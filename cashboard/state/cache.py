"""
Local State Cache

In-memory mirror of accounts, goals, categories, rules and transactions for
one user session. It is updated after each successful ledger write and is
the single source of truth for the presentation layer.

DESIGN DECISION: The cache never hands out live references. The fresh_*
accessors return snapshots that are passed by value into the rule engine;
the engine returns new entities which are applied back here. Each
operation therefore sees the result of the previous one without relying
on shared mutable state.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from cashboard.models.finance import (
    Account,
    Category,
    FinanceSummary,
    Goal,
    Transaction,
    TransactionType,
)
from cashboard.models.rules import AutoRule, RuleStatistics


class LocalStateCache:
    """Last-known state of one user's ledger and rules."""

    def __init__(
        self,
        accounts: Optional[Iterable[Account]] = None,
        goals: Optional[Iterable[Goal]] = None,
        transactions: Optional[Iterable[Transaction]] = None,
        rules: Optional[Iterable[AutoRule]] = None,
        categories: Optional[Iterable[Category]] = None,
    ):
        self._accounts: dict[str, Account] = {}
        self._goals: dict[str, Goal] = {}
        self._transactions: list[Transaction] = []
        self._rules: dict[str, AutoRule] = {}
        self._categories: dict[str, Category] = {}
        self.replace(accounts or [], goals or [], transactions or [], rules or [], categories or [])

    def replace(
        self,
        accounts: Iterable[Account],
        goals: Iterable[Goal],
        transactions: Iterable[Transaction],
        rules: Iterable[AutoRule],
        categories: Iterable[Category] = (),
    ) -> None:
        """Replace the whole state (used on load/refresh)."""
        self._accounts = {a.id: a for a in accounts}
        self._goals = {g.id: g for g in goals}
        # Newest first
        self._transactions = sorted(transactions, key=lambda t: t.date, reverse=True)
        self._rules = {r.id: r for r in rules}
        self._categories = {c.id: c for c in categories}

    # -------------------------------------------------------------------------
    # Fresh read accessors
    # -------------------------------------------------------------------------

    def fresh_accounts(self) -> list[Account]:
        return list(self._accounts.values())

    def fresh_goals(self) -> list[Goal]:
        return list(self._goals.values())

    def fresh_transactions(self) -> list[Transaction]:
        return list(self._transactions)

    def fresh_rules(self) -> list[AutoRule]:
        return list(self._rules.values())

    def fresh_categories(self) -> list[Category]:
        return list(self._categories.values())

    def enabled_rules(self) -> list[AutoRule]:
        return [r for r in self._rules.values() if r.enabled]

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._accounts.get(account_id)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return self._goals.get(goal_id)

    def get_rule(self, rule_id: str) -> Optional[AutoRule]:
        return self._rules.get(rule_id)

    def get_category(self, category_id: str) -> Optional[Category]:
        return self._categories.get(category_id)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self._transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    # -------------------------------------------------------------------------
    # Updates (applied after the ledger accepted the write)
    # -------------------------------------------------------------------------

    def apply_accounts(self, accounts: Iterable[Account]) -> None:
        for account in accounts:
            self._accounts[account.id] = account

    def remove_account(self, account_id: str) -> None:
        self._accounts.pop(account_id, None)

    def apply_goals(self, goals: Iterable[Goal]) -> None:
        for goal in goals:
            self._goals[goal.id] = goal

    def remove_goal(self, goal_id: str) -> None:
        self._goals.pop(goal_id, None)

    def apply_category(self, category: Category) -> None:
        self._categories[category.id] = category

    def remove_category(self, category_id: str) -> None:
        self._categories.pop(category_id, None)

    def apply_rule(self, rule: AutoRule) -> None:
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> None:
        self._rules.pop(rule_id, None)

    def add_transaction(self, transaction: Transaction) -> None:
        self._transactions.insert(0, transaction)

    def remove_transaction(self, transaction_id: str) -> None:
        self._transactions = [t for t in self._transactions if t.id != transaction_id]

    # -------------------------------------------------------------------------
    # Derived figures
    # -------------------------------------------------------------------------

    def total_balance(self) -> Decimal:
        """Sum of all account balances plus all goal amounts."""
        return (
            sum((a.balance for a in self._accounts.values()), Decimal("0"))
            + sum((g.current_amount for g in self._goals.values()), Decimal("0"))
        )

    def summary(self) -> FinanceSummary:
        totals = {t: Decimal("0") for t in TransactionType}
        for transaction in self._transactions:
            totals[transaction.type] += transaction.amount

        income = totals[TransactionType.INCOME]
        expense = totals[TransactionType.EXPENSE]
        investment = totals[TransactionType.INVESTMENT]
        savings = totals[TransactionType.SAVINGS]

        savings_rate = Decimal("0")
        if income > 0:
            savings_rate = ((income - expense) / income * 100).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )

        return FinanceSummary(
            total_income=income,
            total_expense=expense,
            total_investment=investment,
            total_savings=savings,
            balance=income - expense - investment - savings,
            total_net_worth=sum((a.balance for a in self._accounts.values()), Decimal("0")),
            savings_rate=savings_rate,
        )

    def rule_statistics(self) -> RuleStatistics:
        rules = self._rules.values()
        return RuleStatistics(
            total_executions=sum(r.execution_count for r in rules),
            total_automated=sum(
                (e.amount for r in rules for e in r.active_executions),
                Decimal("0"),
            ),
            active_rules=sum(1 for r in rules if r.enabled),
        )
