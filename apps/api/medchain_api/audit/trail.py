"""Audit timelines reconstructed from ledger history."""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from medchain_api.audit.replay import newest_first, record_events, replay_consent_history
from medchain_api.errors import LedgerError
from medchain_api.ledger.service import Ledger
from medchain_api.schemas.audit import AuditEvent
from medchain_api.schemas.records import RECORD_DOC_TYPE, MedicalRecord
from medchain_api.schemas.users import USER_DOC_TYPE, Role
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)


class AuditTrail:
    """Read-only reconstruction of who did what, from the ledger alone."""

    def __init__(self, ledger: Ledger):
        """Initialize audit trail."""
        self.ledger = ledger

    def _record_events(self, predicate: dict) -> list[AuditEvent]:
        events = []
        for snapshot in self.ledger.query({"docType": RECORD_DOC_TYPE, **predicate}):
            try:
                record = MedicalRecord.from_ledger(snapshot)
            except PydanticValidationError as e:
                metrics.audit_entries_skipped.inc()
                logger.warning(f"Skipping malformed record {snapshot.get('recordId')}: {e}")
                continue
            events.extend(record_events(record))
        return events

    def _consent_events(self, subject_id: str) -> list[AuditEvent]:
        entries = []
        try:
            for entry in self.ledger.history(subject_id):
                entries.append(entry)
        except LedgerError as e:
            metrics.audit_entries_skipped.inc()
            logger.warning(f"History of {subject_id} cut short after {len(entries)} entries: {e}")
        return replay_consent_history(subject_id, entries)

    def audit_log(self, subject_id: str) -> list[AuditEvent]:
        """Timeline of a patient, newest first.

        Combines the replayed consent history of ``subject_id`` with the
        upload and view events of every record belonging to it.
        """
        events = self._consent_events(subject_id)
        events.extend(self._record_events({"patientId": subject_id}))
        logger.debug(f"Reconstructed {len(events)} audit events for {subject_id}")
        return newest_first(events)

    def system_events(self) -> list[AuditEvent]:
        """Timeline across every patient and record, newest first."""
        events = []
        for snapshot in self.ledger.query({"docType": USER_DOC_TYPE, "role": Role.PATIENT.value}):
            subject_id = snapshot.get("userId")
            if not subject_id:
                continue
            events.extend(self._consent_events(subject_id))
        events.extend(self._record_events({}))
        return newest_first(events)

    def recent_activity(self, subject_id: str, limit: Optional[int] = 5) -> list[AuditEvent]:
        """The newest ``limit`` events of a patient's timeline."""
        events = self.audit_log(subject_id)
        return events if limit is None else events[:limit]

    def verify_chain(self, key: str) -> tuple[bool, Optional[str]]:
        """Check the hash chain of a ledger key."""
        valid, error = self.ledger.verify_chain(key)
        if not valid:
            logger.warning(f"Hash chain broken for {key}: {error}")
        return valid, error
