from dataclasses import dataclass

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base
from errors import RangeError, StoreError
from models import Expense, ExpenseCategory
from schemas import TrendsQuery
from services import TrendService
from trends import (
    CategoryTrend,
    GroupBy,
    MonthlyTrend,
    YearlyTrend,
    aggregate,
)

SALARIES = ExpenseCategory.salaries
TOOLS = ExpenseCategory.software_tools
HOSTING = ExpenseCategory.infrastructure_hosting


@dataclass
class Row:
    category: ExpenseCategory
    month: int
    year: int
    amount_cents: int


def _example_rows() -> list[Row]:
    return [
        Row(SALARIES, 1, 2024, 5_000_000),
        Row(TOOLS, 1, 2024, 200_000),
        Row(SALARIES, 2, 2024, 5_100_000),
    ]


def _breakdown_sum(group) -> int:
    if isinstance(group, CategoryTrend):
        return sum(p.amount_cents for p in group.monthly_breakdown)
    return sum(c.amount_cents for c in group.category_breakdown)


def test_monthly_grouping_example():
    result = aggregate(_example_rows(), GroupBy.month)

    assert [(g.year, g.month, g.total_cents) for g in result.groups] == [
        (2024, 1, 5_200_000),
        (2024, 2, 5_100_000),
    ]
    january = result.groups[0]
    assert isinstance(january, MonthlyTrend)
    assert [(c.category, c.amount_cents) for c in january.category_breakdown] == [
        (SALARIES, 5_000_000),
        (TOOLS, 200_000),
    ]
    assert result.summary.total_cents == 10_300_000
    assert result.summary.average_cents == 5_150_000
    assert result.summary.highest_cents == 5_200_000
    assert result.summary.lowest_cents == 5_100_000
    assert result.summary.group_count == 2


def test_yearly_grouping_sums_categories_across_months():
    rows = _example_rows() + [Row(HOSTING, 12, 2023, 99)]
    result = aggregate(rows, GroupBy.year)

    assert [g.year for g in result.groups] == [2023, 2024]
    year_2024 = result.groups[1]
    assert isinstance(year_2024, YearlyTrend)
    assert year_2024.total_cents == 10_300_000
    assert {c.category: c.amount_cents for c in year_2024.category_breakdown} == {
        SALARIES: 10_100_000,
        TOOLS: 200_000,
    }


def test_category_grouping_sorted_by_total_descending():
    result = aggregate(_example_rows(), GroupBy.category)

    assert [g.category for g in result.groups] == [SALARIES, TOOLS]
    salaries = result.groups[0]
    assert isinstance(salaries, CategoryTrend)
    assert [(p.year, p.month, p.amount_cents) for p in salaries.monthly_breakdown] == [
        (2024, 1, 5_000_000),
        (2024, 2, 5_100_000),
    ]


@pytest.mark.parametrize("group_by", list(GroupBy))
def test_group_totals_equal_breakdown_sums_exactly(group_by):
    # One-cent amounts that drift when summed as binary floats.
    rows = [
        Row(category, month, year, cents)
        for year in (2023, 2024)
        for month in range(1, 13)
        for category, cents in ((SALARIES, 10), (TOOLS, 20), (HOSTING, 1))
    ]
    result = aggregate(rows, group_by)

    for group in result.groups:
        assert group.total_cents == _breakdown_sum(group)
    assert result.summary.total_cents == sum(r.amount_cents for r in rows)


def test_summary_is_computed_over_groups_not_records():
    rows = [Row(SALARIES, 1, 2024, 100), Row(TOOLS, 1, 2024, 300), Row(SALARIES, 2, 2024, 50)]
    summary = aggregate(rows, GroupBy.month).summary
    assert summary.highest_cents == 400
    assert summary.lowest_cents == 50
    assert summary.average_cents == 225


def test_average_rounds_half_up_to_whole_cent():
    rows = [Row(SALARIES, 1, 2024, 1), Row(SALARIES, 2, 2024, 2)]
    assert aggregate(rows, GroupBy.month).summary.average_cents == 2


def test_empty_input_uses_zero_sentinels_with_group_count():
    summary = aggregate([], GroupBy.month).summary
    assert summary.total_cents == 0
    assert summary.average_cents == 0
    assert summary.highest_cents == 0
    assert summary.lowest_cents == 0
    assert summary.group_count == 0


def test_category_ties_break_by_name():
    rows = [Row(TOOLS, 1, 2024, 500), Row(HOSTING, 1, 2024, 500)]
    result = aggregate(rows, GroupBy.category)
    assert [g.category for g in result.groups] == [HOSTING, TOOLS]


def _seed(session: Session) -> None:
    for category, month, year, cents in [
        (SALARIES, 10, 2023, 4_000_000),
        (SALARIES, 12, 2023, 4_500_000),
        (TOOLS, 12, 2023, 100_000),
        (SALARIES, 1, 2024, 5_000_000),
        (HOSTING, 1, 2024, 30_000),
        (SALARIES, 3, 2024, 5_200_000),
    ]:
        session.add(
            Expense(category=category, month=month, year=year, amount_cents=cents)
        )
    session.commit()


def test_trend_service_applies_cross_year_range():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        result = TrendService(session).get_trends(
            TrendsQuery(start_year=2023, start_month=11, end_year=2024, end_month=2)
        )

        assert [(g.year, g.month) for g in result.groups] == [(2023, 12), (2024, 1)]
        assert result.summary.total_cents == 4_500_000 + 100_000 + 5_000_000 + 30_000
        assert result.summary.period_start == "2023-11-01"
        assert result.summary.period_end == "2024-02-01"


def test_trend_service_filters_by_category_and_groups_by_year():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        result = TrendService(session).get_trends(
            TrendsQuery(
                start_year=2023,
                end_year=2024,
                category=SALARIES,
                group_by=GroupBy.year,
            )
        )

        assert [(g.year, g.total_cents) for g in result.groups] == [
            (2023, 8_500_000),
            (2024, 10_200_000),
        ]


def test_trend_service_rejects_reversed_range():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(RangeError):
            TrendService(session).get_trends(
                TrendsQuery(start_year=2024, end_year=2024, start_month=6, end_month=2)
            )


def test_trend_service_wraps_store_failures(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        failure = OperationalError("SELECT ...", {}, Exception("database is locked"))

        def locked(*args, **kwargs):
            raise failure

        monkeypatch.setattr(session, "scalars", locked)
        with pytest.raises(StoreError) as excinfo:
            TrendService(session).get_trends(
                TrendsQuery(start_year=2024, end_year=2024)
            )

    assert excinfo.value.code == "store_error"
    assert excinfo.value.__cause__ is failure
