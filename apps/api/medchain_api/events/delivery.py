"""Signed webhook delivery for custody events."""

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import httpx

from medchain_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def compute_signature(payload: bytes, secret: str, timestamp: str) -> str:
    """Compute HMAC signature for a payload with replay protection."""
    # Sign: timestamp + "." + body
    message = timestamp.encode() + b"." + payload
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, secret: str, timestamp: str, header: str) -> bool:
    """Check a ``sha256=...`` signature header in constant time."""
    expected = f"sha256={compute_signature(payload, secret, timestamp)}"
    return hmac.compare_digest(expected, header)


class EventDeliveryService:
    """POSTs events to the configured webhook endpoint (single attempt)."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        """Initialize delivery service."""
        self.settings = settings or get_settings()
        self.client = client

    def build_request(self, event_type: str, payload: dict) -> tuple[bytes, dict]:
        """Serialize payload and build signed headers."""
        body = json.dumps({"event": event_type, "payload": payload}, sort_keys=True).encode()
        timestamp = str(int(datetime.now(timezone.utc).timestamp()))
        headers = {
            "Content-Type": "application/json",
            "X-MedChain-Event": event_type,
            "X-MedChain-Event-Id": uuid.uuid4().hex,
            "X-MedChain-Timestamp": timestamp,
        }
        if self.settings.event_webhook_secret:
            signature = compute_signature(body, self.settings.event_webhook_secret, timestamp)
            headers["X-MedChain-Signature"] = f"sha256={signature}"
        return body, headers

    def deliver(self, event_type: str, payload: dict) -> bool:
        """Attempt delivery once; return True on a 2xx response."""
        url = self.settings.event_webhook_url
        if not url:
            logger.warning(f"No webhook URL configured, dropping {event_type}")
            return False

        body, headers = self.build_request(event_type, payload)
        try:
            if self.client is not None:
                response = self.client.post(url, content=body, headers=headers)
            else:
                with httpx.Client(timeout=self.settings.webhook_timeout_seconds) as client:
                    response = client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery failed for {event_type}: {e}")
            return False

        if 200 <= response.status_code < 300:
            return True
        logger.warning(f"Webhook endpoint returned {response.status_code} for {event_type}")
        return False
