from datetime import date, datetime

import pytest

from database import Storage
from models import TransactionType
from periods import month_period, resolve_period, trailing_months
from schemas import CategoryIn, TransactionIn
from services import (
    CategoryService,
    MetricsService,
    TransactionService,
    percent_of,
)

TODAY = date(2025, 3, 15)


def _storage() -> Storage:
    storage = Storage("sqlite://")
    storage.create_schema()
    return storage


def _category(session, name: str, txn_type: TransactionType):
    return CategoryService(session).create(CategoryIn(name=name, type=txn_type))


def _add(session, category, amount: float, when: datetime, note: str = "Item"):
    return TransactionService(session).create(
        TransactionIn(
            type=category.type,
            amount=amount,
            description=note,
            category_id=category.id,
            date=when,
        )
    )


def test_percent_of_rounds_half_up_and_handles_zero_total() -> None:
    assert percent_of(1, 3) == 33
    assert percent_of(2, 3) == 67
    assert percent_of(1, 8) == 13
    assert percent_of(5, 0) == 0


def test_balance_is_income_minus_expenses_over_all_time() -> None:
    storage = _storage()

    with storage.session() as session:
        salary = _category(session, "Salary", TransactionType.income)
        food = _category(session, "Food", TransactionType.expense)
        _add(session, salary, 1000, datetime(2024, 6, 1, 9, 0))
        _add(session, food, 250.5, datetime(2025, 3, 2, 12, 0))
        _add(session, food, 49.5, datetime(2025, 3, 3, 12, 0))

        assert MetricsService(session).balance() == pytest.approx(700.0)


def test_monthly_totals_only_count_current_month() -> None:
    storage = _storage()

    with storage.session() as session:
        salary = _category(session, "Salary", TransactionType.income)
        food = _category(session, "Food", TransactionType.expense)
        _add(session, salary, 1000, datetime(2025, 3, 1, 0, 0))
        _add(session, food, 200, datetime(2025, 3, 31, 23, 59))
        _add(session, food, 999, datetime(2025, 2, 28, 23, 59))
        _add(session, food, 999, datetime(2025, 4, 1, 0, 0))

        totals = MetricsService(session).monthly_totals(today=TODAY)

        assert totals == {"income": 1000.0, "expenses": 200.0}


def test_category_breakdown_percentages() -> None:
    storage = _storage()

    with storage.session() as session:
        groceries = _category(session, "Groceries", TransactionType.expense)
        dining = _category(session, "Dining", TransactionType.expense)
        _add(session, groceries, 300, datetime(2025, 3, 2, 12, 0))
        _add(session, dining, 450, datetime(2025, 3, 5, 20, 0))
        _add(session, dining, 250, datetime(2025, 3, 9, 20, 0))

        rows = MetricsService(session).category_breakdown("month", today=TODAY)

        assert [(r["name"], r["amount"], r["percentage"]) for r in rows] == [
            ("Dining", 700.0, 70),
            ("Groceries", 300.0, 30),
        ]


def test_breakdown_is_empty_without_expenses() -> None:
    storage = _storage()

    with storage.session() as session:
        salary = _category(session, "Salary", TransactionType.income)
        _add(session, salary, 500, datetime(2025, 3, 2, 12, 0))

        metrics = MetricsService(session)
        assert metrics.category_breakdown("month", today=TODAY) == []
        assert metrics.top_categories(today=TODAY) == []
        stats = metrics.stats("month", today=TODAY)
        assert stats["savings"] == 500.0
        assert stats["savings_rate"] == 100.0


def test_top_categories_limits_to_three_largest() -> None:
    storage = _storage()

    with storage.session() as session:
        amounts = {"Rent": 500, "Food": 300, "Fuel": 150, "Books": 50}
        for name, amount in amounts.items():
            category = _category(session, name, TransactionType.expense)
            _add(session, category, amount, datetime(2025, 3, 10, 12, 0))

        top = MetricsService(session).top_categories(today=TODAY)

        assert [(t["name"], t["percentage"]) for t in top] == [
            ("Rent", 50),
            ("Food", 30),
            ("Fuel", 15),
        ]


def test_orphaned_transactions_still_count() -> None:
    storage = _storage()

    with storage.session() as session:
        food = _category(session, "Food", TransactionType.expense)
        _add(session, food, 80, datetime(2025, 3, 10, 12, 0))
        CategoryService(session, delete_policy="orphan").delete(food.id)

        rows = MetricsService(session).category_breakdown("month", today=TODAY)

        assert rows == [
            {"category_id": food.id, "name": None, "amount": 80.0, "percentage": 100}
        ]


def test_monthly_comparison_covers_five_months_oldest_first() -> None:
    storage = _storage()

    with storage.session() as session:
        food = _category(session, "Food", TransactionType.expense)
        salary = _category(session, "Salary", TransactionType.income)
        _add(session, food, 40, datetime(2024, 10, 31, 12, 0))
        _add(session, food, 100, datetime(2024, 11, 3, 12, 0))
        _add(session, food, 60, datetime(2025, 1, 20, 12, 0))
        _add(session, food, 25, datetime(2025, 3, 1, 8, 0))
        _add(session, salary, 9999, datetime(2025, 3, 1, 8, 0))

        points = MetricsService(session).monthly_comparison(today=TODAY)

        assert [p["label"] for p in points] == ["Nov", "Dec", "Jan", "Feb", "Mar"]
        assert [p["amount"] for p in points] == [100.0, 0.0, 60.0, 0.0, 25.0]
        assert [p["is_current_month"] for p in points] == [
            False,
            False,
            False,
            False,
            True,
        ]


def test_stats_for_year_range() -> None:
    storage = _storage()

    with storage.session() as session:
        salary = _category(session, "Salary", TransactionType.income)
        food = _category(session, "Food", TransactionType.expense)
        _add(session, salary, 2000, datetime(2025, 1, 1, 9, 0))
        _add(session, food, 500, datetime(2025, 2, 1, 9, 0))
        _add(session, food, 300, datetime(2024, 12, 31, 9, 0))

        stats = MetricsService(session).stats("year", today=TODAY)

        assert stats["range"] == "year"
        assert stats["income"] == 2000.0
        assert stats["expenses"] == 500.0
        assert stats["savings_rate"] == pytest.approx(75.0)
        assert stats["categories"][0]["percentage"] == 100


def test_unknown_range_is_rejected() -> None:
    storage = _storage()

    with storage.session() as session:
        with pytest.raises(ValueError, match="Unsupported range"):
            MetricsService(session).stats("week", today=TODAY)


def test_period_helpers() -> None:
    march = month_period(TODAY)
    assert (march.start, march.end) == (date(2025, 3, 1), date(2025, 3, 31))
    assert resolve_period(None, today=TODAY) == march
    assert resolve_period("year", today=TODAY).end == date(2025, 12, 31)

    months = trailing_months(date(2025, 1, 31), 3)
    assert [p.start for p in months] == [
        date(2024, 11, 1),
        date(2024, 12, 1),
        date(2025, 1, 1),
    ]
