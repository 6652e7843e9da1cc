"""expenses and expenses_archive

Revision ID: 202601100900
Revises:
Create Date: 2026-01-10 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601100900"
down_revision = None
branch_labels = None
depends_on = None


CATEGORY_VALUES = (
    "Salaries",
    "Software & Tools",
    "Infrastructure & Hosting",
    "Hardware & Equipment",
    "Security & Compliance",
    "Operational & Administrative",
    "Continuous Learning & R&D",
)


def _category_enum() -> sa.Enum:
    return sa.Enum(
        *CATEGORY_VALUES, name="expensecategory", native_enum=False, length=40
    )


def upgrade():
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category", _category_enum(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("month", sa.SmallInteger(), nullable=False),
        sa.Column("year", sa.SmallInteger(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "category", "month", "year", name="uq_expense_category_period"
        ),
        sa.CheckConstraint(
            "amount_cents > 0 AND amount_cents <= 99999999999",
            name="ck_expenses_amount_range",
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_expenses_month_range"),
        sa.CheckConstraint(
            "year BETWEEN 2020 AND 2050", name="ck_expenses_year_range"
        ),
    )
    op.create_index("ix_expenses_year_month", "expenses", ["year", "month"])
    op.create_index("ix_expenses_created_at", "expenses", ["created_at"])

    op.create_table(
        "expenses_archive",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("category", _category_enum(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("month", sa.SmallInteger(), nullable=False),
        sa.Column("year", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column(
            "archived_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "archived_at >= created_at", name="ck_expenses_archive_archived_after"
        ),
    )
    op.create_index(
        "ix_expenses_archive_year_month", "expenses_archive", ["year", "month"]
    )
    op.create_index("ix_expenses_archive_category", "expenses_archive", ["category"])
    op.create_index(
        "ix_expenses_archive_archived_at", "expenses_archive", ["archived_at"]
    )
    op.create_index(
        "ix_expenses_archive_created_at", "expenses_archive", ["created_at"]
    )


def downgrade():
    op.drop_table("expenses_archive")
    op.drop_table("expenses")
