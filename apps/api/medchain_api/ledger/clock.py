"""Commit clocks for the ledger.

Commit timestamps must be agreed by every process writing to the ledger so
that replayed history is identical wherever it is read. Local wall-clock time
is never used.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC (storage representation)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class LedgerClock(Protocol):
    """Source of commit timestamps."""

    def now(self) -> datetime:
        ...


class DatabaseClock:
    """Reads ``CURRENT_TIMESTAMP`` from the ledger's own database.

    All application processes share one transactional store, so its clock is
    the single authority for commit time.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def now(self) -> datetime:
        with self.session_factory() as db:
            value = db.execute(select(func.current_timestamp())).scalar_one()
        if isinstance(value, str):
            # Some SQLite builds hand back the raw text
            value = datetime.fromisoformat(value)
        return to_naive_utc(value)


class LogicalClock:
    """Deterministic clock that advances a fixed step on every reading."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self._current = to_naive_utc(start or datetime(2024, 1, 1))
        self._step = step
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            value = self._current
            self._current = self._current + self._step
        return value
