"""Detached access-log appends.

Reads hand an access event to a writer and return immediately. The writer
appends it to the record's access log on the ledger with its own retry and
failure channel; nothing it does can block or fail the read.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Optional

from medchain_api.errors import VersionConflictError
from medchain_api.ledger.service import Ledger
from medchain_api.schemas.records import AccessEvent, MedicalRecord
from medchain_api.settings import Settings, get_settings
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)

FailureCallback = Callable[[str, str, BaseException], None]


def append_access_event(
    ledger: Ledger,
    record_id: str,
    actor_id: str,
    actor_org: str,
    accessed_at: Optional[datetime] = None,
    max_retries: int = 3,
) -> AccessEvent:
    """Append a VIEWED event to a record's access log.

    ``accessed_at`` is the ledger time drawn when the read happened; it
    defaults to the current ledger time. Uses an optimistic version check and
    re-reads on conflict, up to ``max_retries`` times. The anchored digest and
    every other field of the record are carried over unchanged.
    """
    accessed_at = accessed_at or ledger.now()
    attempt = 0
    while True:
        entry = ledger.latest(record_id)
        record = MedicalRecord.from_ledger(entry.value)

        timestamp = accessed_at
        # Access log timestamps are non-decreasing
        if record.access_log and timestamp < record.access_log[-1].timestamp:
            timestamp = record.access_log[-1].timestamp

        event = AccessEvent(actor_id=actor_id, actor_org=actor_org, timestamp=timestamp)
        updated = record.model_copy(update={"access_log": [*record.access_log, event]})
        try:
            ledger.put(record_id, updated.to_ledger(), expected_version=entry.version)
            return event
        except VersionConflictError:
            attempt += 1
            if attempt > max_retries:
                raise
            logger.debug(f"Access log conflict on {record_id}, retry {attempt}/{max_retries}")


class AccessLogWriter:
    """Base writer; subclasses implement ``_submit``."""

    name = "base"

    def __init__(self, on_failure: Optional[FailureCallback] = None):
        self.on_failure = on_failure

    def submit(
        self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[datetime] = None
    ) -> None:
        """Schedule an append stamped with ``accessed_at``. Never raises."""
        try:
            self._submit(record_id, actor_id, actor_org, accessed_at)
        except Exception as e:
            self._fail(record_id, actor_id, e)

    def _submit(self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[datetime]) -> None:
        raise NotImplementedError

    def _fail(self, record_id: str, actor_id: str, error: BaseException) -> None:
        metrics.access_log_failures.labels(writer=self.name).inc()
        logger.warning(f"Access log append dropped for {record_id} by {actor_id}: {error}")
        if self.on_failure is not None:
            try:
                self.on_failure(record_id, actor_id, error)
            except Exception:
                logger.exception("Access log failure callback raised")

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight appends; True when none remain."""
        return True

    def shutdown(self) -> None:
        """Release writer resources."""


class ThreadedAccessLogWriter(AccessLogWriter):
    """Appends on a background thread pool."""

    name = "thread"

    def __init__(
        self,
        ledger: Ledger,
        max_workers: int = 2,
        max_retries: int = 3,
        on_failure: Optional[FailureCallback] = None,
    ):
        super().__init__(on_failure)
        self.ledger = ledger
        self.max_retries = max_retries
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="access-log")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def _submit(self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[datetime]) -> None:
        future = self._executor.submit(self._append, record_id, actor_id, actor_org, accessed_at)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _append(self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[datetime]) -> None:
        # Runs on the pool; failures go to the failure channel, never to the caller
        try:
            append_access_event(self.ledger, record_id, actor_id, actor_org, accessed_at, self.max_retries)
        except Exception as e:
            self._fail(record_id, actor_id, e)
        else:
            logger.debug(f"Access logged for {record_id} by {actor_id}")

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class CeleryAccessLogWriter(AccessLogWriter):
    """Enqueues appends on the Celery worker, which retries on conflicts."""

    name = "celery"

    def _submit(self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[datetime]) -> None:
        from medchain_api.worker.tasks import append_access_event_task

        append_access_event_task.delay(
            record_id, actor_id, actor_org, accessed_at.isoformat() if accessed_at else None
        )


def build_access_log_writer(ledger: Ledger, settings: Optional[Settings] = None) -> AccessLogWriter:
    """Create the configured access-log writer."""
    settings = settings or get_settings()
    writer = settings.access_log_writer.lower()
    if writer == "thread":
        return ThreadedAccessLogWriter(
            ledger,
            max_workers=settings.access_log_workers,
            max_retries=settings.access_log_max_retries,
        )
    if writer == "celery":
        return CeleryAccessLogWriter()
    raise ValueError(f"Unknown access log writer: {settings.access_log_writer}")
