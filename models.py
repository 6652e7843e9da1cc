from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    SmallInteger,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base

MAX_AMOUNT_CENTS = 99_999_999_999
MIN_YEAR = 2020
MAX_YEAR = 2050


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExpenseCategory(str, Enum):
    salaries = "Salaries"
    software_tools = "Software & Tools"
    infrastructure_hosting = "Infrastructure & Hosting"
    hardware_equipment = "Hardware & Equipment"
    security_compliance = "Security & Compliance"
    operational_administrative = "Operational & Administrative"
    continuous_learning_rd = "Continuous Learning & R&D"


EXPENSE_CATEGORY_ENUM = SAEnum(
    ExpenseCategory,
    name="expensecategory",
    native_enum=False,
    length=40,
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class ExpenseColumnsMixin(TimestampMixin):
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)


class Expense(Base, ExpenseColumnsMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    __table_args__ = (
        UniqueConstraint("category", "month", "year", name="uq_expense_category_period"),
        Index("ix_expenses_year_month", "year", "month"),
        Index("ix_expenses_created_at", "created_at"),
        CheckConstraint(
            f"amount_cents > 0 AND amount_cents <= {MAX_AMOUNT_CENTS}",
            name="ck_expenses_amount_range",
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_expenses_month_range"),
        CheckConstraint(
            f"year BETWEEN {MIN_YEAR} AND {MAX_YEAR}", name="ck_expenses_year_range"
        ),
    )


class ArchivedExpense(Base, ExpenseColumnsMixin):
    __tablename__ = "expenses_archive"

    # Copied from the live row, never generated here.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_expenses_archive_year_month", "year", "month"),
        Index("ix_expenses_archive_category", "category"),
        Index("ix_expenses_archive_archived_at", "archived_at"),
        Index("ix_expenses_archive_created_at", "created_at"),
        CheckConstraint(
            "archived_at >= created_at", name="ck_expenses_archive_archived_after"
        ),
    )
