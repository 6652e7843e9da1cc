from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Optional

from sqlalchemy import cast, delete, func, insert, inspect, select, text
from sqlalchemy.dialects.postgresql import REGCLASS
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import RangeError, StoreError
from models import ArchivedExpense, Expense, utcnow
from monitoring import QueryMonitor
from periods import resolve_range, years_before
from schemas import TrendsQuery
from trends import TrendResult, aggregate

logger = logging.getLogger(__name__)


@dataclass
class ArchiveResult:
    archived_count: int
    deleted_count: int
    cutoff_date: datetime
    skipped_count: int = 0


@dataclass
class ArchiveStats:
    total_archived_records: int
    oldest_record: Optional[datetime]
    newest_record: Optional[datetime]
    size_estimate: str


EMPTY_ARCHIVE_STATS = ArchiveStats(0, None, None, "0 MB")


def _pretty_size(num_bytes: int) -> str:
    if num_bytes < 10 * 1024:
        return f"{num_bytes} bytes"
    if num_bytes < 10 * 1024 * 1024:
        return f"{num_bytes // 1024} kB"
    return f"{num_bytes // (1024 * 1024)} MB"


class _MonitoredService:
    def __init__(self, session: Session, monitor: Optional[QueryMonitor] = None) -> None:
        self.session = session
        self.monitor = monitor

    def _timed(self, label: str) -> ContextManager[None]:
        if self.monitor is None:
            return nullcontext()
        return self.monitor.timed(label)


class TrendService(_MonitoredService):
    def get_trends(self, query: TrendsQuery) -> TrendResult:
        resolved = resolve_range(
            query.start_year, query.end_year, query.start_month, query.end_month
        )
        stmt = (
            select(Expense)
            .where(resolved.condition(Expense.year, Expense.month))
            .order_by(Expense.year, Expense.month, Expense.category)
        )
        if query.category is not None:
            stmt = stmt.where(Expense.category == query.category)

        try:
            with self._timed("trends.query"):
                records = self.session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to retrieve trends data") from exc

        result = aggregate(records, query.group_by)
        result.summary.period_start = resolved.period_start
        result.summary.period_end = resolved.period_end
        logger.debug(
            f"trends: group_by={result.group_by.value} records={len(records)} "
            f"groups={len(result.groups)}"
        )
        return result


class ArchiveService(_MonitoredService):
    def _archive_table_exists(self) -> bool:
        return inspect(self.session.connection()).has_table(
            ArchivedExpense.__tablename__
        )

    def _ensure_archive_table(self) -> None:
        ArchivedExpense.__table__.create(self.session.connection(), checkfirst=True)

    def archive_old_data(
        self,
        retention_years: int,
        batch_size: int,
        *,
        now: Optional[datetime] = None,
    ) -> ArchiveResult:
        """Move live rows created before ``now - retention_years`` to the archive.

        Every batch and the final bulk delete share one transaction, so a
        failure leaves both tables exactly as they were before the run. Ids
        that are already archived (for example after a restore) are skipped,
        which makes re-running safe.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        now = now or utcnow()
        cutoff = years_before(now, retention_years)
        logger.info(f"archive_run: state=counting cutoff={cutoff.isoformat()}")

        try:
            self._ensure_archive_table()
            with self._timed("archive.count"):
                total = self.session.scalar(
                    select(func.count(Expense.id)).where(Expense.created_at < cutoff)
                )
            if not total:
                logger.info("archive_run: state=done reason=nothing_to_archive")
                self.session.commit()
                return ArchiveResult(0, 0, cutoff)

            archived = 0
            skipped = 0
            offset = 0
            batch_no = 0
            while offset < total:
                stmt = (
                    select(Expense)
                    .where(Expense.created_at < cutoff)
                    .order_by(Expense.created_at, Expense.id)
                    .limit(batch_size)
                    .offset(offset)
                )
                batch = self.session.scalars(stmt).all()
                if not batch:
                    break
                batch_no += 1
                logger.debug(
                    f"archive_run: state=migrating batch={batch_no} size={len(batch)}"
                )
                written, already = self._archive_batch(batch, archived_at=now)
                # The bulk delete below bypasses the identity map; keep no stale rows.
                for row in batch:
                    self.session.expunge(row)
                archived += written
                skipped += already
                offset += batch_size

            logger.info(f"archive_run: state=deleting total={total}")
            with self._timed("archive.delete"):
                result = self.session.execute(
                    delete(Expense)
                    .where(Expense.created_at < cutoff)
                    .execution_options(synchronize_session=False)
                )
            deleted = int(result.rowcount or 0)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"archive_run: state=failed cutoff={cutoff.isoformat()}")
            raise StoreError(
                "Archival failed; the run was rolled back",
                details={"cutoff_date": cutoff.isoformat()},
            ) from exc

        logger.info(
            f"archive_run: state=done archived={archived} skipped={skipped} "
            f"deleted={deleted}"
        )
        return ArchiveResult(archived, deleted, cutoff, skipped)

    def _archive_batch(
        self, batch: list[Expense], *, archived_at: datetime
    ) -> tuple[int, int]:
        ids = [row.id for row in batch]
        existing = set(
            self.session.scalars(
                select(ArchivedExpense.id).where(ArchivedExpense.id.in_(ids))
            )
        )
        fresh = [row for row in batch if row.id not in existing]
        if fresh:
            with self._timed("archive.batch"):
                self.session.execute(
                    insert(ArchivedExpense),
                    [
                        {
                            "id": row.id,
                            "category": row.category,
                            "amount_cents": row.amount_cents,
                            "month": row.month,
                            "year": row.year,
                            "created_at": row.created_at,
                            "updated_at": row.updated_at,
                            "archived_at": max(archived_at, row.created_at),
                        }
                        for row in fresh
                    ],
                )
        return len(fresh), len(existing)

    def restore_from_archive(
        self,
        start_date: datetime,
        end_date: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        if end_date < start_date:
            raise RangeError(
                "End date is before start date",
                details={
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                },
            )
        now = now or utcnow()

        try:
            if not self._archive_table_exists():
                return 0
            with self._timed("archive.restore_read"):
                rows = self.session.scalars(
                    select(ArchivedExpense)
                    .where(ArchivedExpense.created_at.between(start_date, end_date))
                    .order_by(ArchivedExpense.created_at, ArchivedExpense.id)
                ).all()
            if not rows:
                logger.info("archive_restore: restored=0 reason=empty_range")
                return 0

            restored = 0
            for row in rows:
                clash = self.session.scalar(
                    select(Expense.id).where(
                        Expense.category == row.category,
                        Expense.month == row.month,
                        Expense.year == row.year,
                        Expense.id != row.id,
                    )
                )
                if clash is not None:
                    logger.warning(
                        f"archive_restore: skipped id={row.id} "
                        f"period={row.year}-{row.month:02d} live_id={clash}"
                    )
                    continue

                live = self.session.get(Expense, row.id)
                if live is None:
                    self.session.add(
                        Expense(
                            id=row.id,
                            category=row.category,
                            amount_cents=row.amount_cents,
                            month=row.month,
                            year=row.year,
                            created_at=row.created_at,
                            updated_at=row.updated_at,
                        )
                    )
                else:
                    live.category = row.category
                    live.amount_cents = row.amount_cents
                    live.month = row.month
                    live.year = row.year
                    live.updated_at = now
                self.session.flush()
                restored += 1
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to restore from archive") from exc

        logger.info(f"archive_restore: restored={restored} requested={len(rows)}")
        return restored

    def cleanup_old_archives(
        self, max_archive_years: int, *, now: Optional[datetime] = None
    ) -> int:
        cutoff = years_before(now or utcnow(), max_archive_years)
        try:
            if not self._archive_table_exists():
                return 0
            with self._timed("archive.cleanup"):
                result = self.session.execute(
                    delete(ArchivedExpense)
                    .where(ArchivedExpense.created_at < cutoff)
                    .execution_options(synchronize_session=False)
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to clean up old archives") from exc

        deleted = int(result.rowcount or 0)
        logger.info(
            f"archive_cleanup: deleted={deleted} cutoff={cutoff.isoformat()}"
        )
        return deleted

    def get_archive_stats(self) -> ArchiveStats:
        try:
            if not self._archive_table_exists():
                return EMPTY_ARCHIVE_STATS
            with self._timed("archive.stats"):
                row = self.session.execute(
                    select(
                        func.count(ArchivedExpense.id).label("total"),
                        func.min(ArchivedExpense.created_at).label("oldest"),
                        func.max(ArchivedExpense.created_at).label("newest"),
                    )
                ).one()
                size = self._size_estimate()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to read archive statistics") from exc

        return ArchiveStats(
            total_archived_records=int(row.total or 0),
            oldest_record=row.oldest,
            newest_record=row.newest,
            size_estimate=size,
        )

    def _size_estimate(self) -> str:
        table_name = ArchivedExpense.__tablename__
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return str(
                self.session.scalar(
                    select(
                        func.pg_size_pretty(
                            func.pg_total_relation_size(cast(table_name, REGCLASS))
                        )
                    )
                )
            )
        if dialect == "sqlite":
            try:
                num_bytes = self.session.scalar(
                    text(
                        "SELECT SUM(pgsize) FROM dbstat WHERE name IN "
                        "(SELECT name FROM sqlite_master WHERE tbl_name = :name)"
                    ),
                    {"name": table_name},
                )
            except OperationalError:
                # SQLite builds without the dbstat virtual table
                logger.debug("archive_stats: dbstat unavailable")
                return "unknown"
            return _pretty_size(int(num_bytes or 0))
        return "unknown"
