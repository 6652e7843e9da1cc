import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 1000.0
MAX_QUERY_TIMES_STORED = 1000


class QueryMonitor:
    def __init__(
        self,
        *,
        slow_threshold_ms: float = SLOW_QUERY_THRESHOLD_MS,
        max_samples: int = MAX_QUERY_TIMES_STORED,
    ) -> None:
        self.slow_threshold_ms = slow_threshold_ms
        self._lock = threading.Lock()
        self._samples: deque[float] = deque(maxlen=max_samples)
        self._total_queries = 0
        self._slow_queries = 0
        self._scope = threading.local()

    def record_query(self, duration_ms: float, label: Optional[str] = None) -> None:
        with self._lock:
            self._total_queries += 1
            self._samples.append(duration_ms)
            slow = duration_ms > self.slow_threshold_ms
            if slow:
                self._slow_queries += 1
        if slow:
            snippet = (label or "")[:200]
            logger.warning(
                f"slow_query: duration_ms={duration_ms:.1f} "
                f"threshold_ms={self.slow_threshold_ms:.0f} label={snippet!r}"
            )

    def in_timed_block(self) -> bool:
        return getattr(self._scope, "depth", 0) > 0

    @contextmanager
    def timed(self, label: str) -> Iterator[None]:
        # Statements run inside the block are recorded once, under the label.
        self._scope.depth = getattr(self._scope, "depth", 0) + 1
        started = time.perf_counter()
        try:
            yield
        finally:
            self._scope.depth -= 1
            self.record_query((time.perf_counter() - started) * 1000, label)

    def get_metrics(self) -> dict[str, object]:
        with self._lock:
            total = self._total_queries
            slow = self._slow_queries
            samples = list(self._samples)
        average = sum(samples) / len(samples) if samples else 0.0
        return {
            "total_queries": total,
            "slow_queries": slow,
            "slow_query_percentage": (slow / total * 100) if total else 0.0,
            "average_query_time": round(average, 2),
        }

    def reset_metrics(self) -> None:
        with self._lock:
            self._samples.clear()
            self._total_queries = 0
            self._slow_queries = 0


def instrument_engine(engine: Engine, monitor: QueryMonitor) -> None:
    def _before(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    def _after(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start_time")
        if not starts:
            return
        duration_ms = (time.perf_counter() - starts.pop()) * 1000
        if monitor.in_timed_block():
            return
        monitor.record_query(duration_ms, statement)

    event.listen(engine, "before_cursor_execute", _before)
    event.listen(engine, "after_cursor_execute", _after)
