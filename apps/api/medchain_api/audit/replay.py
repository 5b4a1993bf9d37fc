"""Pure replay of ledger history into audit events.

Nothing here touches the ledger; callers hand in history entries and record
snapshots. Malformed input is skipped with a warning and never aborts a replay.
"""

import logging
from typing import Iterable, Optional

from medchain_api.errors import CorruptEntryError
from medchain_api.ledger.service import HistoryEntry
from medchain_api.schemas.audit import AuditEvent, AuditEventKind
from medchain_api.schemas.records import MedicalRecord
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)

# Position within one instant when sorting newest first
_KIND_RANK = {
    AuditEventKind.REGISTERED: 0,
    AuditEventKind.CONSENT_GRANTED: 1,
    AuditEventKind.CONSENT_REVOKED: 1,
    AuditEventKind.RECORD_UPLOADED: 2,
    AuditEventKind.RECORD_VIEWED: 3,
}


def _skip(message: str) -> None:
    metrics.audit_entries_skipped.inc()
    logger.warning(message)


def _consents_of(entry: HistoryEntry) -> Optional[set[str]]:
    """Consent set of a history entry, or None if the entry is unusable."""
    try:
        snapshot = entry.value
    except CorruptEntryError as e:
        _skip(f"Skipping corrupt history entry: {e}")
        return None

    consents = snapshot.get("consents", [])
    if not isinstance(consents, list) or not all(isinstance(c, str) for c in consents):
        _skip(f"Skipping history entry {entry.key}@{entry.version}: consents is not a list of ids")
        return None
    return set(consents)


def replay_consent_history(subject_id: str, entries: Iterable[HistoryEntry]) -> list[AuditEvent]:
    """Derive Registered, ConsentGranted and ConsentRevoked events.

    ``entries`` must be in commit order. Each usable entry is diffed against
    the last usable one before it (the empty set before the first).
    Simultaneous grants and revokes of one commit are emitted by provider id.
    """
    events = []
    previous: set[str] = set()

    for entry in entries:
        if entry.is_delete:
            logger.debug(f"Ignoring tombstone {entry.key}@{entry.version}")
            continue

        current = _consents_of(entry)
        if current is None:
            continue

        if entry.version == 1:
            events.append(
                AuditEvent(
                    kind=AuditEventKind.REGISTERED,
                    subject_id=subject_id,
                    actor_id=subject_id,
                    timestamp=entry.committed_at,
                    tx_id=entry.tx_id,
                    details="Registered on the ledger",
                )
            )

        for provider_id in sorted(current - previous):
            events.append(
                AuditEvent(
                    kind=AuditEventKind.CONSENT_GRANTED,
                    subject_id=subject_id,
                    actor_id=subject_id,
                    timestamp=entry.committed_at,
                    tx_id=entry.tx_id,
                    provider_id=provider_id,
                    details=f"Granted access to: {provider_id}",
                )
            )
        for provider_id in sorted(previous - current):
            events.append(
                AuditEvent(
                    kind=AuditEventKind.CONSENT_REVOKED,
                    subject_id=subject_id,
                    actor_id=subject_id,
                    timestamp=entry.committed_at,
                    tx_id=entry.tx_id,
                    provider_id=provider_id,
                    details=f"Revoked access from: {provider_id}",
                )
            )

        previous = current

    return events


def record_events(record: MedicalRecord) -> list[AuditEvent]:
    """One RecordUploaded event plus one RecordViewed per access log entry."""
    events = [
        AuditEvent(
            kind=AuditEventKind.RECORD_UPLOADED,
            subject_id=record.patient_id,
            actor_id=record.author_id,
            actor_org=record.custodian_org_id or None,
            timestamp=record.created_at,
            record_id=record.record_id,
            details=f"File: {record.display_name}",
        )
    ]
    for access in record.access_log:
        events.append(
            AuditEvent(
                kind=AuditEventKind.RECORD_VIEWED,
                subject_id=record.patient_id,
                actor_id=access.actor_id,
                actor_org=access.actor_org or None,
                timestamp=access.timestamp,
                record_id=record.record_id,
                details=f"Viewed by: {access.actor_id}",
            )
        )
    return events


def newest_first(events: Iterable[AuditEvent]) -> list[AuditEvent]:
    """Sort events for presentation, newest first.

    Events sharing a timestamp are ordered by lifecycle (views before uploads
    before consent changes before registration), then by provider, record and
    actor id.
    """
    ordered = sorted(events, key=lambda e: (e.provider_id or "", e.record_id or "", e.actor_id))
    # Stable, so the id order above survives within each (timestamp, kind) group
    return sorted(ordered, key=lambda e: (e.timestamp, _KIND_RANK[e.kind]), reverse=True)
