"""
Transaction Summary Aggregation.

Pure read-side aggregation shared by the remote repository
(``TransactionRepository.get_summary``) and the transaction context
(local summaries).  No I/O.

Rules:
- Tombstoned transactions are ignored.
- Income and expense totals count only their own type; transfers count
  toward their category total but not toward income or expenses.
- ``percentage`` is a category's share of income + expenses.
- ``by_date`` is keyed by the UTC calendar day, sorted ascending.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from dinero.models.enums import TransactionType
from dinero.models.transaction import (
    CategorySummary,
    DateSummary,
    Transaction,
    TransactionSummary,
)

__all__ = ["summarize_transactions"]

_ZERO = Decimal("0")


def summarize_transactions(transactions: Iterable[Transaction]) -> TransactionSummary:
    """Aggregate *transactions* into a ``TransactionSummary``."""
    active = [t for t in transactions if not t.is_deleted]

    total_income = sum((t.amount for t in active if t.type == TransactionType.INCOME), _ZERO)
    total_expenses = sum((t.amount for t in active if t.type == TransactionType.EXPENSE), _ZERO)
    grand_total = total_income + total_expenses

    category_totals: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    category_counts: dict[str, int] = defaultdict(int)
    day_income: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    day_expenses: dict[str, Decimal] = defaultdict(lambda: _ZERO)

    for tx in active:
        category_totals[tx.category_id] += tx.amount
        category_counts[tx.category_id] += 1

        day = tx.date.date().isoformat()
        if tx.type == TransactionType.INCOME:
            day_income[day] += tx.amount
        elif tx.type == TransactionType.EXPENSE:
            day_expenses[day] += tx.amount
        else:
            # Transfers still mark the day as active.
            day_income[day] += _ZERO

    by_category = [
        CategorySummary(
            category_id=category_id,
            total=total,
            count=category_counts[category_id],
            percentage=float(total / grand_total * 100) if grand_total > 0 else 0.0,
        )
        for category_id, total in category_totals.items()
    ]

    days = sorted(set(day_income) | set(day_expenses))
    by_date = [
        DateSummary(
            date=day,
            income=day_income[day],
            expenses=day_expenses[day],
            balance=day_income[day] - day_expenses[day],
        )
        for day in days
    ]

    return TransactionSummary(
        total_income=total_income,
        total_expenses=total_expenses,
        balance=total_income - total_expenses,
        transaction_count=len(active),
        by_category=by_category,
        by_date=by_date,
    )
