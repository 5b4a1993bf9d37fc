"""Celery tasks for detached ledger writes and event delivery."""

import logging
from datetime import datetime
from typing import Optional

from celery import Task

from medchain_api.db.session import get_session_factory
from medchain_api.errors import LedgerError, NotFoundError
from medchain_api.events.delivery import EventDeliveryService
from medchain_api.ledger import DatabaseClock, Ledger
from medchain_api.records.access_log import append_access_event
from medchain_api.settings import get_settings
from medchain_api.utils import metrics
from medchain_api.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


class LedgerTask(Task):
    """Task with a ledger handle bound to the worker's database."""

    _ledger: Optional[Ledger] = None

    @property
    def ledger(self) -> Ledger:
        """Get ledger."""
        if self._ledger is None:
            session_factory = get_session_factory()
            self._ledger = Ledger(session_factory, DatabaseClock(session_factory))
        return self._ledger


@celery_app.task(
    base=LedgerTask,
    bind=True,
    max_retries=get_settings().access_log_max_retries,
    retry_backoff=True,
    retry_jitter=True,
)
def append_access_event_task(self, record_id: str, actor_id: str, actor_org: str, accessed_at: Optional[str] = None):
    """Append a VIEWED event to a record's access log, retrying on ledger errors.

    ``accessed_at`` is the ISO read time; retries keep it unchanged.
    """
    log_extra = {
        "task": "append_access_event",
        "record_id": record_id,
        "actor_id": actor_id,
        "attempt": self.request.retries + 1,
    }

    try:
        event = append_access_event(
            self.ledger,
            record_id,
            actor_id,
            actor_org,
            accessed_at=datetime.fromisoformat(accessed_at) if accessed_at else None,
            max_retries=0,
        )
    except NotFoundError:
        metrics.access_log_failures.labels(writer="celery").inc()
        logger.error(f"Record {record_id} not found, dropping access event", extra=log_extra)
        return None
    except LedgerError as e:
        if self.request.retries >= self.max_retries:
            metrics.access_log_failures.labels(writer="celery").inc()
            logger.error(f"Access log append for {record_id} failed after max retries: {e}", extra=log_extra)
            raise
        logger.warning(f"Access log append for {record_id} failed, retrying: {e}", extra=log_extra)
        raise self.retry(exc=e)

    logger.info(f"Access logged for {record_id} by {actor_id}", extra=log_extra)
    return event.timestamp.isoformat()


@celery_app.task(bind=True, max_retries=0)
def deliver_event(self, event_type: str, payload: dict):
    """Deliver a custody event to the webhook endpoint (at most once)."""
    delivered = EventDeliveryService().deliver(event_type, payload)
    if not delivered:
        metrics.event_publish_failures.labels(event_type=event_type).inc()
        logger.warning(f"Event {event_type} was not delivered")
    return delivered
