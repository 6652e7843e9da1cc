from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from errors import RangeError


@dataclass(frozen=True)
class PeriodClause:
    """Years ``year_from..year_to`` inclusive, optionally bounded by month."""

    year_from: int
    year_to: int
    month_from: Optional[int] = None
    month_to: Optional[int] = None

    def contains(self, year: int, month: int) -> bool:
        if year < self.year_from or year > self.year_to:
            return False
        if self.month_from is not None and month < self.month_from:
            return False
        if self.month_to is not None and month > self.month_to:
            return False
        return True

    def condition(self, year_col, month_col) -> ColumnElement[bool]:
        if self.year_from == self.year_to:
            parts = [year_col == self.year_from]
        else:
            parts = [year_col >= self.year_from, year_col <= self.year_to]
        if self.month_from is not None:
            parts.append(month_col >= self.month_from)
        if self.month_to is not None:
            parts.append(month_col <= self.month_to)
        return and_(*parts)


@dataclass(frozen=True)
class ResolvedRange:
    start_year: int
    end_year: int
    start_month: Optional[int]
    end_month: Optional[int]
    clauses: tuple[PeriodClause, ...]

    @property
    def period_start(self) -> str:
        return f"{self.start_year:04d}-{(self.start_month or 1):02d}-01"

    @property
    def period_end(self) -> str:
        return f"{self.end_year:04d}-{(self.end_month or 12):02d}-01"

    def contains(self, year: int, month: int) -> bool:
        return any(clause.contains(year, month) for clause in self.clauses)

    def condition(self, year_col, month_col) -> ColumnElement[bool]:
        return or_(*(clause.condition(year_col, month_col) for clause in self.clauses))


def resolve_range(
    start_year: int,
    end_year: int,
    start_month: Optional[int] = None,
    end_month: Optional[int] = None,
) -> ResolvedRange:
    if end_year < start_year:
        raise RangeError(
            f"End year {end_year} is before start year {start_year}",
            details={"start_year": start_year, "end_year": end_year},
        )

    clauses: list[PeriodClause] = []
    if start_year == end_year:
        if (
            start_month is not None
            and end_month is not None
            and end_month < start_month
        ):
            raise RangeError(
                f"End month {end_month} is before start month {start_month}",
                details={"start_month": start_month, "end_month": end_month},
            )
        clauses.append(PeriodClause(start_year, start_year, start_month, end_month))
    else:
        clauses.append(PeriodClause(start_year, start_year, month_from=start_month))
        if end_year - start_year > 1:
            clauses.append(PeriodClause(start_year + 1, end_year - 1))
        clauses.append(PeriodClause(end_year, end_year, month_to=end_month))

    return ResolvedRange(
        start_year=start_year,
        end_year=end_year,
        start_month=start_month,
        end_month=end_month,
        clauses=tuple(clauses),
    )


def years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)
