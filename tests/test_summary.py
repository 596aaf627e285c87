"""Tests for the pure transaction summary aggregation."""

from __future__ import annotations

from datetime import timedelta, timezone, datetime
from decimal import Decimal

from dinero.models.enums import TransactionType
from dinero.services.summary import summarize_transactions

from conftest import T0, make_transaction


class TestSummarizeTransactions:
    def test_empty(self):
        summary = summarize_transactions([])
        assert summary.total_income == 0
        assert summary.balance == 0
        assert summary.by_category == []
        assert summary.by_date == []

    def test_totals_and_categories(self):
        summary = summarize_transactions([
            make_transaction("a", amount="1000", type=TransactionType.INCOME, category_id="salary"),
            make_transaction("b", amount="300", category_id="rent"),
            make_transaction("c", amount="100", category_id="food"),
            make_transaction("d", amount="100", category_id="food"),
        ])
        assert summary.total_income == Decimal("1000")
        assert summary.total_expenses == Decimal("500")
        assert summary.balance == Decimal("500")
        assert summary.transaction_count == 4

        food = next(c for c in summary.by_category if c.category_id == "food")
        assert food.total == Decimal("200")
        assert food.count == 2
        assert food.percentage == 200 / 1500 * 100

    def test_tombstones_are_ignored(self):
        summary = summarize_transactions([
            make_transaction("a", amount="10"),
            make_transaction("b", amount="99", deleted_at=T0),
        ])
        assert summary.total_expenses == Decimal("10")
        assert summary.transaction_count == 1

    def test_transfers_only_count_in_categories(self):
        summary = summarize_transactions([
            make_transaction("a", amount="40", type=TransactionType.TRANSFER, category_id="move"),
        ])
        assert summary.total_income == 0
        assert summary.total_expenses == 0
        assert summary.by_category[0].total == Decimal("40")
        assert summary.by_category[0].percentage == 0.0
        assert [d.date for d in summary.by_date] == ["2026-01-01"]

    def test_by_date_is_sorted_utc_days(self):
        late_evening_brt = datetime(2026, 1, 3, 23, 30, tzinfo=timezone(timedelta(hours=-3)))
        summary = summarize_transactions([
            make_transaction("a", amount="5", date=late_evening_brt),
            make_transaction("b", amount="7", type=TransactionType.INCOME, date=T0),
        ])
        assert [d.date for d in summary.by_date] == ["2026-01-01", "2026-01-04"]
        first = summary.by_date[0]
        assert (first.income, first.expenses, first.balance) == (Decimal("7"), 0, Decimal("7"))
