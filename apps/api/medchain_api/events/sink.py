"""Outbound event sink for live dashboards.

Delivery is at-most-once and never blocks or fails the operation that
produced the event.
"""

import logging
from typing import Optional

from medchain_api.settings import Settings, get_settings
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)

RECORD_ADDED = "RecordAdded"
CONSENT_GRANTED = "ConsentGranted"
CONSENT_REVOKED = "ConsentRevoked"
PATIENT_REGISTERED = "PatientRegistered"
DOCTOR_ADDED = "DoctorAdded"
HOSPITAL_ADDED = "HospitalAdded"
ADMIN_ADDED = "AdminAdded"


class EventSink:
    """Base sink; subclasses implement ``_emit``."""

    name = "base"

    def publish(self, event_type: str, payload: dict) -> None:
        """Hand an event to the sink, swallowing delivery problems."""
        try:
            self._emit(event_type, payload)
        except Exception as e:
            metrics.event_publish_failures.labels(event_type=event_type).inc()
            logger.warning(f"Failed to publish {event_type} via {self.name} sink: {e}", exc_info=True)

    def _emit(self, event_type: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingEventSink(EventSink):
    """Writes events to the application log."""

    name = "logging"

    def _emit(self, event_type: str, payload: dict) -> None:
        logger.info(f"[EVENT] {event_type}: {payload}")


class WebhookEventSink(EventSink):
    """Enqueues webhook delivery on the Celery worker."""

    name = "webhook"

    def _emit(self, event_type: str, payload: dict) -> None:
        from medchain_api.worker.tasks import deliver_event

        deliver_event.delay(event_type, payload)


def build_event_sink(settings: Optional[Settings] = None) -> EventSink:
    """Create the configured event sink."""
    settings = settings or get_settings()
    sink = settings.event_sink.lower()
    if sink == "logging":
        return LoggingEventSink()
    if sink == "webhook":
        if not settings.event_webhook_url:
            raise ValueError("EVENT_WEBHOOK_URL required when EVENT_SINK=webhook")
        return WebhookEventSink()
    raise ValueError(f"Unknown event sink: {settings.event_sink}")
