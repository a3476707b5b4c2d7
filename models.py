from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


DEFAULT_CATEGORY_ICON = "ri-file-list-line"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Category(Base):
    __tablename__ = "categories"
    # AUTOINCREMENT keeps ids from being reused after deletes
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    icon: Mapped[str] = mapped_column(
        String(64), nullable=False, default=DEFAULT_CATEGORY_ICON
    )
    color: Mapped[Optional[str]] = mapped_column(String(32))


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # no foreign key: a deleted category may leave dangling references
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now
    )

    __table_args__ = (
        Index("ix_transactions_type_date", "type", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        {"sqlite_autoincrement": True},
    )


class AppSettings(Base):
    __tablename__ = "settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="PKR")
    dark_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fingerprint_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    pin: Mapped[str] = mapped_column(String(4), nullable=False, default="1234")
    reminder_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    reminder_time: Mapped[str] = mapped_column(
        String(5), nullable=False, default="20:00"
    )


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_triggered: Mapped[Optional[datetime]] = mapped_column(DateTime)
