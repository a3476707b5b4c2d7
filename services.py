from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Generic, Optional, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions, iter_csv_rows, parse_row
from database import Base
from models import (
    DEFAULT_CATEGORY_ICON,
    AppSettings,
    Category,
    Reminder,
    Transaction,
    TransactionType,
)
from periods import (
    MONTH_LABELS,
    Period,
    month_period,
    resolve_period,
    trailing_months,
)
from schemas import (
    CategoryIn,
    CategoryPatch,
    PartialModel,
    ReminderIn,
    SettingsPatch,
    TransactionIn,
    TransactionPatch,
)

logger = logging.getLogger(__name__)

SETTINGS_ID = 1
IMPORTED_CATEGORY_ICON = "default"
IMPORTED_CATEGORY_COLOR = "#00A226"

DEFAULT_CATEGORIES = (
    {
        "name": "Groceries",
        "type": TransactionType.expense,
        "icon": "ri-shopping-basket-2-line",
        "description": "Essential items",
    },
    {
        "name": "Transport",
        "type": TransactionType.expense,
        "icon": "ri-car-line",
        "description": "Fuel, fare, maintenance",
    },
    {
        "name": "Dining",
        "type": TransactionType.expense,
        "icon": "ri-restaurant-line",
        "description": "Restaurants, takeout",
    },
    {
        "name": "Salary",
        "type": TransactionType.income,
        "icon": "ri-briefcase-line",
        "description": "Regular employment",
    },
    {
        "name": "Investments",
        "type": TransactionType.income,
        "icon": "ri-bank-line",
        "description": "Returns & dividends",
    },
)

DEFAULT_REMINDER = {
    "title": "Daily Expense Reminder",
    "message": "Don't forget to record today's expenses.",
    "time": "20:00",
    "is_active": True,
}


class NotFoundError(ValueError):
    pass


class ConsistencyError(ValueError):
    pass


class ImportRowError(ValueError):
    def __init__(self, row: int, message: str) -> None:
        super().__init__(f"Row {row}: {message}")
        self.row = row


def local_now() -> datetime:
    return (
        datetime.now(ZoneInfo(get_settings().timezone))
        .replace(tzinfo=None)
        .replace(microsecond=0)
    )


def local_today() -> date:
    return local_now().date()


def as_local_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)


def percent_of(amount: float, total: float) -> int:
    if not total:
        return 0
    share = Decimal(str(amount / total * 100))
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def seed_defaults(session: Session) -> None:
    """Populate an empty store with the default categories, settings and reminder."""
    seeded: list[str] = []
    if not session.scalar(select(func.count(Category.id))):
        for data in DEFAULT_CATEGORIES:
            session.add(Category(**data))
        seeded.append("categories")
    if session.get(AppSettings, SETTINGS_ID) is None:
        session.add(AppSettings(id=SETTINGS_ID))
        seeded.append("settings")
    if not session.scalar(select(func.count(Reminder.id))):
        session.add(Reminder(**DEFAULT_REMINDER))
        seeded.append("reminders")
    session.commit()
    if seeded:
        logger.info(f"storage_seeded: collections={','.join(seeded)}")


ModelT = TypeVar("ModelT", bound=Base)


class RecordService(Generic[ModelT]):
    """List/get/create/update/delete over one table keyed by integer id."""

    model: type[ModelT]
    label: str

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[ModelT]:
        stmt = select(self.model).order_by(self.model.id)
        return list(self.session.scalars(stmt).all())

    def get(self, record_id: int) -> Optional[ModelT]:
        return self.session.get(self.model, record_id)

    def require(self, record_id: int) -> ModelT:
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(f"{self.label} with id {record_id} not found")
        return record

    def _insert(self, values: dict[str, object]) -> ModelT:
        record = self.model(**values)
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(f"{self.label.lower()}_created: id={record.id}")
        return record

    def _merge(self, record: ModelT, changes: dict[str, object]) -> ModelT:
        for field, value in changes.items():
            setattr(record, field, value)
        self.session.commit()
        self.session.refresh(record)
        if changes:
            logger.info(
                f"{self.label.lower()}_updated: id={record.id} "
                f"fields={','.join(sorted(changes))}"
            )
        return record

    def update(self, record_id: int, data: PartialModel) -> ModelT:
        record = self.require(record_id)
        return self._merge(record, data.changes())

    def delete(self, record_id: int) -> None:
        record = self.require(record_id)
        self.session.delete(record)
        self.session.commit()
        logger.info(f"{self.label.lower()}_deleted: id={record_id}")


class CategoryService(RecordService[Category]):
    model = Category
    label = "Category"

    def __init__(self, session: Session, delete_policy: Optional[str] = None) -> None:
        super().__init__(session)
        self.delete_policy = delete_policy or get_settings().category_delete_policy

    def create(self, data: CategoryIn) -> Category:
        return self._insert(
            {
                "name": data.name,
                "type": data.type,
                "description": data.description,
                "icon": data.icon or DEFAULT_CATEGORY_ICON,
                "color": data.color,
            }
        )

    def find_by_name(self, name: str) -> Optional[Category]:
        stmt = (
            select(Category)
            .where(func.lower(Category.name) == name.strip().lower())
            .order_by(Category.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def usage_count(self, category_id: int) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.category_id == category_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def update(self, category_id: int, data: CategoryPatch) -> Category:
        category = self.require(category_id)
        changes = data.changes()
        new_type = changes.get("type")
        if new_type is not None and new_type != category.type:
            if self.usage_count(category_id):
                raise ConsistencyError(
                    "Category type cannot change while transactions reference it"
                )
        return self._merge(category, changes)

    def delete(self, category_id: int) -> None:
        category = self.require(category_id)
        referenced = self.usage_count(category_id)
        if referenced and self.delete_policy == "block":
            raise ConsistencyError(
                f"Category is used by {referenced} transaction(s) and cannot be deleted"
            )
        if referenced and self.delete_policy == "cascade":
            self.session.execute(
                delete(Transaction).where(Transaction.category_id == category_id)
            )
        self.session.delete(category)
        self.session.commit()
        logger.info(
            f"category_deleted: id={category_id} policy={self.delete_policy} "
            f"referenced={referenced}"
        )


class TransactionService(RecordService[Transaction]):
    model = Transaction
    label = "Transaction"

    def _check_category(
        self, category_id: int, txn_type: TransactionType
    ) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise ConsistencyError("Invalid category ID")
        if category.type != txn_type:
            raise ConsistencyError(
                f"Transaction type must match category type ({category.type.value})"
            )
        return category

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id, data.type)
        return self._insert(
            {
                "type": data.type,
                "amount": data.amount,
                "description": data.description,
                "category_id": data.category_id,
                "date": as_local_naive(data.date) if data.date else local_now(),
            }
        )

    def update(self, transaction_id: int, data: TransactionPatch) -> Transaction:
        txn = self.require(transaction_id)
        changes = data.changes()
        if changes.get("date") is not None:
            changes["date"] = as_local_naive(changes["date"])
        if "type" in changes or "category_id" in changes:
            self._check_category(
                changes.get("category_id", txn.category_id),
                changes.get("type", txn.type),
            )
        return self._merge(txn, changes)

    def history(
        self, txn_type: Optional[TransactionType] = None
    ) -> list[Transaction]:
        """Newest first, optionally restricted to one type."""
        stmt = select(Transaction).order_by(
            Transaction.date.desc(), Transaction.id.desc()
        )
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        return list(self.session.scalars(stmt).all())

    def in_period(self, period: Period) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.date.between(period.start_at, period.end_at))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())


class ReminderService(RecordService[Reminder]):
    model = Reminder
    label = "Reminder"

    def create(self, data: ReminderIn) -> Reminder:
        return self._insert(data.model_dump())


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, settings_id: int = SETTINGS_ID) -> Optional[AppSettings]:
        return self.session.get(AppSettings, settings_id)

    def update(self, settings_id: int, data: SettingsPatch) -> AppSettings:
        settings = self.get(settings_id)
        if settings is None:
            raise NotFoundError(f"Settings with id {settings_id} not found")
        changes = data.changes()
        for field, value in changes.items():
            setattr(settings, field, value)
        self.session.commit()
        self.session.refresh(settings)
        logger.info(
            f"settings_updated: id={settings_id} fields={','.join(sorted(changes))}"
        )
        return settings


class MetricsService:
    """Read-time summaries over the whole transaction table.

    Nothing is cached or maintained incrementally; every call re-reads the
    transactions.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _signed_amount(self):
        return case(
            (Transaction.type == TransactionType.income, Transaction.amount),
            else_=-Transaction.amount,
        )

    def balance(self) -> float:
        stmt = select(func.coalesce(func.sum(self._signed_amount()), 0.0))
        return float(self.session.execute(stmt).scalar_one() or 0.0)

    def totals(self, period: Period) -> tuple[float, float]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount,
                        ),
                        else_=0.0,
                    )
                ),
                0.0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount,
                        ),
                        else_=0.0,
                    )
                ),
                0.0,
            ).label("expenses"),
        ).where(Transaction.date.between(period.start_at, period.end_at))
        row = self.session.execute(stmt).one()
        return float(row.income or 0.0), float(row.expenses or 0.0)

    def monthly_totals(self, *, today: Optional[date] = None) -> dict[str, float]:
        income, expenses = self.totals(month_period(today or local_today()))
        return {"income": income, "expenses": expenses}

    def _expenses_by_category(self, period: Period) -> list[dict[str, object]]:
        total_col = func.sum(Transaction.amount).label("total")
        stmt = (
            select(Transaction.category_id, Category.name, total_col)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start_at, period.end_at),
            )
            .group_by(Transaction.category_id, Category.name)
            .order_by(total_col.desc(), Transaction.category_id.asc())
        )
        return [
            {
                "category_id": row.category_id,
                "name": row.name,
                "amount": float(row.total or 0.0),
            }
            for row in self.session.execute(stmt)
        ]

    def _with_percentages(
        self, rows: list[dict[str, object]], total: float
    ) -> list[dict[str, object]]:
        for row in rows:
            row["percentage"] = percent_of(float(row["amount"]), total)
        return rows

    def top_categories(
        self, *, today: Optional[date] = None, limit: int = 3
    ) -> list[dict[str, object]]:
        period = month_period(today or local_today())
        _, expenses = self.totals(period)
        rows = self._expenses_by_category(period)[:limit]
        return self._with_percentages(rows, expenses)

    def category_breakdown(
        self, range_slug: Optional[str] = "month", *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        period = resolve_period(range_slug, today=today or local_today())
        rows = self._expenses_by_category(period)
        total = sum(float(row["amount"]) for row in rows)
        return self._with_percentages(rows, total)

    def monthly_comparison(
        self, *, today: Optional[date] = None, months: int = 5
    ) -> list[dict[str, object]]:
        today = today or local_today()
        periods = trailing_months(today, months)
        year = func.strftime("%Y", Transaction.date).label("year")
        month = func.strftime("%m", Transaction.date).label("month")
        stmt = (
            select(year, month, func.sum(Transaction.amount).label("total"))
            .where(
                Transaction.type == TransactionType.expense,
                Transaction.date.between(periods[0].start_at, periods[-1].end_at),
            )
            .group_by(year, month)
        )
        totals: dict[tuple[int, int], float] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = float(row.total or 0.0)

        out: list[dict[str, object]] = []
        for period in periods:
            key = (period.start.year, period.start.month)
            out.append(
                {
                    "year": period.start.year,
                    "month": period.start.month,
                    "label": MONTH_LABELS[period.start.month - 1],
                    "amount": totals.get(key, 0.0),
                    "is_current_month": period is periods[-1],
                }
            )
        return out

    def overview(self, *, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        monthly = self.monthly_totals(today=today)
        return {
            "balance": self.balance(),
            "monthly_income": monthly["income"],
            "monthly_expenses": monthly["expenses"],
            "top_categories": self.top_categories(today=today),
        }

    def stats(
        self, range_slug: Optional[str] = "month", *, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        period = resolve_period(range_slug, today=today)
        income, expenses = self.totals(period)
        savings = income - expenses
        return {
            "range": period.slug,
            "income": income,
            "expenses": expenses,
            "savings": savings,
            "savings_rate": (savings / income * 100) if income > 0 else 0.0,
            "categories": self.category_breakdown(period.slug, today=today),
            "monthly_comparison": self.monthly_comparison(today=today),
        }


class CSVService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.categories = CategoryService(session)
        self.transactions = TransactionService(session)

    def export(self, year: int, month: int) -> str:
        period = month_period(date(year, month, 1))
        txns = self.transactions.in_period(period)
        names = {c.id: c.name for c in self.categories.list_all()}
        return export_transactions(txns, names)

    def import_csv(self, content: str) -> dict[str, int]:
        """Import rows one by one; rows before a failing row stay committed."""
        imported = 0
        created = 0
        for idx, raw in iter_csv_rows(content):
            try:
                row = parse_row(raw)
                category = self.categories.find_by_name(row.category)
                if category is None:
                    category = self.categories.create(
                        CategoryIn(
                            name=row.category,
                            type=row.type,
                            icon=IMPORTED_CATEGORY_ICON,
                            color=IMPORTED_CATEGORY_COLOR,
                        )
                    )
                    created += 1
                self.transactions.create(
                    TransactionIn(
                        type=row.type,
                        amount=row.amount,
                        description=row.description or "-",
                        category_id=category.id,
                        date=row.date,
                    )
                )
            except ValueError as exc:
                logger.info(f"csv_import_failed: row={idx} imported={imported}")
                raise ImportRowError(idx, str(exc)) from exc
            imported += 1

        logger.info(f"csv_import_done: imported={imported} categories_created={created}")
        return {"imported": imported, "categories_created": created}
