"""Audit timeline models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AuditEventKind(str, Enum):
    """Semantic events derived from ledger history."""

    REGISTERED = "Registered"
    CONSENT_GRANTED = "ConsentGranted"
    CONSENT_REVOKED = "ConsentRevoked"
    RECORD_UPLOADED = "RecordUploaded"
    RECORD_VIEWED = "RecordViewed"


class AuditEvent(BaseModel):
    """One entry of a reconstructed audit timeline."""

    kind: AuditEventKind
    subject_id: str
    actor_id: str
    timestamp: datetime
    tx_id: Optional[str] = None
    provider_id: Optional[str] = None
    record_id: Optional[str] = None
    actor_org: Optional[str] = None
    details: str = ""
