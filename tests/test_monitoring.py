import logging

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session

from database import Base
from models import Expense, ExpenseCategory
from monitoring import QueryMonitor, instrument_engine
from schemas import TrendsQuery
from services import TrendService


def test_metrics_start_empty():
    assert QueryMonitor().get_metrics() == {
        "total_queries": 0,
        "slow_queries": 0,
        "slow_query_percentage": 0.0,
        "average_query_time": 0.0,
    }


def test_slow_queries_are_counted_and_logged(caplog):
    monitor = QueryMonitor(slow_threshold_ms=100)
    with caplog.at_level(logging.WARNING, logger="monitoring"):
        monitor.record_query(10.0)
        monitor.record_query(30.0)
        monitor.record_query(250.0, "SELECT * FROM expenses")
        monitor.record_query(10.0)

    metrics = monitor.get_metrics()
    assert metrics["total_queries"] == 4
    assert metrics["slow_queries"] == 1
    assert metrics["slow_query_percentage"] == 25.0
    assert metrics["average_query_time"] == 75.0
    assert "slow_query" in caplog.text
    assert "SELECT * FROM expenses" in caplog.text


def test_samples_window_is_bounded_but_totals_keep_counting():
    monitor = QueryMonitor(max_samples=2)
    for duration in (100.0, 2.0, 4.0):
        monitor.record_query(duration)

    metrics = monitor.get_metrics()
    assert metrics["total_queries"] == 3
    assert metrics["average_query_time"] == 3.0


def test_reset_clears_everything():
    monitor = QueryMonitor(slow_threshold_ms=1)
    monitor.record_query(5.0)
    monitor.reset_metrics()
    assert monitor.get_metrics()["total_queries"] == 0
    assert monitor.get_metrics()["slow_queries"] == 0


def test_timed_records_one_sample():
    monitor = QueryMonitor()
    with monitor.timed("trends.query"):
        pass
    assert monitor.get_metrics()["total_queries"] == 1


def test_engine_instrumentation_times_every_statement():
    engine = create_engine("sqlite:///:memory:")
    monitor = QueryMonitor()
    instrument_engine(engine, monitor)

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        conn.execute(text("SELECT 2"))

    assert monitor.get_metrics()["total_queries"] >= 2


def test_statements_inside_a_timed_block_are_recorded_once():
    engine = create_engine("sqlite:///:memory:")
    monitor = QueryMonitor()
    instrument_engine(engine, monitor)

    with engine.connect() as conn:
        with monitor.timed("archive.stats"):
            conn.execute(text("SELECT 1"))
            conn.execute(text("SELECT 2"))
        conn.execute(text("SELECT 3"))

    assert monitor.get_metrics()["total_queries"] == 2


def test_one_trends_call_records_one_query():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(
            Expense(
                category=ExpenseCategory.salaries,
                amount_cents=100,
                month=1,
                year=2024,
            )
        )
        session.commit()

    monitor = QueryMonitor()
    instrument_engine(engine, monitor)
    with Session(engine) as session:
        TrendService(session, monitor).get_trends(
            TrendsQuery(start_year=2024, end_year=2024)
        )

    assert monitor.get_metrics()["total_queries"] == 1
