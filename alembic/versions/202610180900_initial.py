"""initial schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


transaction_type = sa.Enum("income", "expense", name="transactiontype")


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("icon", sa.String(length=64), nullable=False),
        sa.Column("color", sa.String(length=32)),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_transactions_type_date", "transactions", ["type", "date"], unique=False
    )
    op.create_index(
        "ix_transactions_category_date",
        "transactions",
        ["category_id", "date"],
        unique=False,
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("dark_mode", sa.Boolean(), nullable=False),
        sa.Column("fingerprint_enabled", sa.Boolean(), nullable=False),
        sa.Column("pin", sa.String(length=4), nullable=False),
        sa.Column("reminder_enabled", sa.Boolean(), nullable=False),
        sa.Column("reminder_time", sa.String(length=5), nullable=False),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("time", sa.String(length=5), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_triggered", sa.DateTime()),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("reminders")
    op.drop_table("settings")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_type_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
