"""tenant store schema for recurring expenses

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=254)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "expense_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=7)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("expense_number", sa.String(length=20), nullable=False, unique=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("expense_categories.id"),
            nullable=False,
        ),
        sa.Column("category_name", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("expense_date", sa.DateTime(), nullable=False),
        sa.Column(
            "payment_method", sa.Enum("cash", "bank", "card", name="paymentmethod")
        ),
        sa.Column("vendor", sa.JSON()),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("frequency", sa.String(length=10)),
        sa.Column("interval_count", sa.Integer()),
        sa.Column("start_date", sa.DateTime()),
        sa.Column("end_date", sa.DateTime()),
        sa.Column("next_due_date", sa.DateTime()),
        sa.Column(
            "recurring_template_id", sa.Integer(), sa.ForeignKey("expenses.id")
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "recurring_template_id",
            "expense_date",
            name="uq_expense_template_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "interval_count IS NULL OR interval_count > 0",
            name="ck_expenses_interval_positive",
        ),
    )
    op.create_index(
        "ix_expenses_recurring_due", "expenses", ["is_recurring", "next_due_date"]
    )
    op.create_index(
        "ix_expenses_category_date", "expenses", ["category_id", "expense_date"]
    )

    op.create_table(
        "expense_number_counters",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade():
    op.drop_table("expense_number_counters")
    op.drop_index("ix_expenses_category_date", table_name="expenses")
    op.drop_index("ix_expenses_recurring_due", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("expense_categories")
    op.drop_table("users")
