"""Tests for ledger clocks."""

from datetime import datetime, timedelta, timezone

from medchain_api.ledger import DatabaseClock, LogicalClock
from medchain_api.ledger.clock import to_naive_utc


def test_logical_clock_is_deterministic():
    """Test that two logical clocks produce identical sequences."""
    a = LogicalClock(start=datetime(2024, 3, 1), step=timedelta(seconds=5))
    b = LogicalClock(start=datetime(2024, 3, 1), step=timedelta(seconds=5))

    assert [a.now() for _ in range(3)] == [b.now() for _ in range(3)]


def test_logical_clock_advances_by_step():
    """Test that each reading advances by the configured step."""
    clock = LogicalClock(start=datetime(2024, 3, 1), step=timedelta(minutes=1))

    assert clock.now() == datetime(2024, 3, 1, 0, 0)
    assert clock.now() == datetime(2024, 3, 1, 0, 1)


def test_to_naive_utc_converts_aware_datetimes():
    """Test normalization of timezone-aware datetimes."""
    aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == datetime(2024, 3, 1, 10, 0)
    assert to_naive_utc(datetime(2024, 3, 1)) == datetime(2024, 3, 1)


def test_database_clock_reads_store_time(session_factory):
    """Test that the database clock returns a naive datetime from the store."""
    value = DatabaseClock(session_factory).now()

    assert isinstance(value, datetime)
    assert value.tzinfo is None
    assert abs(value - datetime.now(timezone.utc).replace(tzinfo=None)) < timedelta(minutes=5)
