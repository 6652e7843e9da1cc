from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional, Protocol, Union

from models import ExpenseCategory


class GroupBy(str, Enum):
    month = "month"
    year = "year"
    category = "category"


class ExpenseLike(Protocol):
    category: ExpenseCategory
    amount_cents: int
    month: int
    year: int


@dataclass
class CategoryAmount:
    category: ExpenseCategory
    amount_cents: int


@dataclass
class PeriodAmount:
    month: int
    year: int
    amount_cents: int


@dataclass
class MonthlyTrend:
    month: int
    year: int
    total_cents: int
    category_breakdown: list[CategoryAmount] = field(default_factory=list)


@dataclass
class YearlyTrend:
    year: int
    total_cents: int
    category_breakdown: list[CategoryAmount] = field(default_factory=list)


@dataclass
class CategoryTrend:
    category: ExpenseCategory
    total_cents: int
    monthly_breakdown: list[PeriodAmount] = field(default_factory=list)


TrendGroup = Union[MonthlyTrend, YearlyTrend, CategoryTrend]


@dataclass
class TrendSummary:
    total_cents: int
    average_cents: int
    # 0 when there are no groups; group_count tells that apart from a real zero.
    highest_cents: int
    lowest_cents: int
    group_count: int
    period_start: Optional[str] = None
    period_end: Optional[str] = None


@dataclass
class TrendResult:
    group_by: GroupBy
    groups: list[TrendGroup]
    summary: TrendSummary


def _add(bucket: dict, key, amount: int) -> None:
    bucket[key] = bucket.get(key, 0) + amount


def summarize(totals: list[int]) -> TrendSummary:
    if not totals:
        return TrendSummary(0, 0, 0, 0, 0)
    total = sum(totals)
    average = (Decimal(total) / Decimal(len(totals))).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return TrendSummary(
        total_cents=total,
        average_cents=int(average),
        highest_cents=max(totals),
        lowest_cents=min(totals),
        group_count=len(totals),
    )


def aggregate(records: Iterable[ExpenseLike], group_by: GroupBy) -> TrendResult:
    group_by = GroupBy(group_by)
    groups: list[TrendGroup]

    if group_by == GroupBy.category:
        by_category: dict[ExpenseCategory, dict[tuple[int, int], int]] = {}
        for record in records:
            months = by_category.setdefault(ExpenseCategory(record.category), {})
            _add(months, (record.year, record.month), record.amount_cents)
        groups = [
            CategoryTrend(
                category=category,
                total_cents=sum(months.values()),
                monthly_breakdown=[
                    PeriodAmount(month=m, year=y, amount_cents=amount)
                    for (y, m), amount in sorted(months.items())
                ],
            )
            for category, months in by_category.items()
        ]
        groups.sort(key=lambda g: (-g.total_cents, g.category.value))
    elif group_by == GroupBy.year:
        by_year: dict[int, dict[ExpenseCategory, int]] = {}
        for record in records:
            categories = by_year.setdefault(record.year, {})
            _add(categories, ExpenseCategory(record.category), record.amount_cents)
        groups = [
            YearlyTrend(
                year=year,
                total_cents=sum(categories.values()),
                category_breakdown=[
                    CategoryAmount(category=c, amount_cents=a)
                    for c, a in categories.items()
                ],
            )
            for year, categories in sorted(by_year.items())
        ]
    else:
        by_month: dict[tuple[int, int], dict[ExpenseCategory, int]] = {}
        for record in records:
            categories = by_month.setdefault((record.year, record.month), {})
            _add(categories, ExpenseCategory(record.category), record.amount_cents)
        groups = [
            MonthlyTrend(
                month=month,
                year=year,
                total_cents=sum(categories.values()),
                category_breakdown=[
                    CategoryAmount(category=c, amount_cents=a)
                    for c, a in categories.items()
                ],
            )
            for (year, month), categories in sorted(by_month.items())
        ]

    summary = summarize([g.total_cents for g in groups])
    return TrendResult(group_by=group_by, groups=groups, summary=summary)
