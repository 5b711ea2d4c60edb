"""Tests for report queries."""

from decimal import Decimal

from expensego.models import CategoryType
from tests.helpers import expense, income, make_account, transfer


class TestReportQueries:
    """Tests for account summaries and income/expense totals."""

    def test_account_summary_totals(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B", "10.50")
        expense(repo, scope, a, "30")
        transfer(repo, scope, a, b, "20")

        summary = repo.get_account_summary(*scope)

        assert summary["totalInitial"] == Decimal("110.50")
        assert summary["totalCurrent"] == Decimal("80.50")
        assert [row["name"] for row in summary["accounts"]] == ["A", "B", "Petty Cash"]

    def test_monthly_totals_exclude_transfers(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B")
        expense(repo, scope, a, "30", on="2024-01-10")
        income(repo, scope, a, "50", on="2024-01-20")
        transfer(repo, scope, a, b, "99", on="2024-01-25")
        expense(repo, scope, a, "5.25", on="2024-02-01")

        months = repo.get_monthly_totals(*scope)

        assert months == [
            {
                "period": "2024-01",
                "income": Decimal("50"),
                "expense": Decimal("30"),
                "net": Decimal("20"),
            },
            {
                "period": "2024-02",
                "income": Decimal("0"),
                "expense": Decimal("5.25"),
                "net": Decimal("-5.25"),
            },
        ]

    def test_category_totals(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        expense(repo, scope, a, "10", category="Groceries")
        expense(repo, scope, a, "15", category="Groceries")
        expense(repo, scope, a, "40", category="Shopping")
        income(repo, scope, a, "500")

        totals = repo.get_category_totals(*scope, category_type=CategoryType.EXPENSE)

        assert [(row["name"], row["total"], row["count"]) for row in totals] == [
            ("Shopping", Decimal("40"), 1),
            ("Groceries", Decimal("25"), 2),
        ]

    def test_daily_totals_with_range(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        expense(repo, scope, a, "1", on="2024-03-01")
        expense(repo, scope, a, "2", on="2024-03-02")
        income(repo, scope, a, "3", on="2024-03-02")

        days = repo.get_daily_totals(*scope, start_date="2024-03-02", end_date="2024-03-31")

        assert days == [
            {
                "period": "2024-03-02",
                "income": Decimal("3"),
                "expense": Decimal("2"),
                "net": Decimal("1"),
            }
        ]
