"""Record custody engine.

Writes move through VALIDATING -> CONSENT_CHECK -> ENCRYPT_STORE ->
LEDGER_COMMIT -> DONE; any state may end in FAILED, and the raised error
carries the state it failed in. There is no rollback: a blob stored before a
failed ledger commit stays where it is, and the caller resubmits under a new
record id.

Reads verify the anchored digest and report the verdict as data; a tampered
record is still returned.
"""

import logging
import re
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from medchain_api.consent.service import ConsentService
from medchain_api.errors import (
    AuthorizationError,
    BlobIntegrityError,
    DuplicateError,
    MedChainError,
    NotFoundError,
    ValidationError,
)
from medchain_api.events import sink as event_types
from medchain_api.events.sink import EventSink
from medchain_api.identity.registry import UserRegistry
from medchain_api.ledger.service import Ledger
from medchain_api.records.access_log import AccessLogWriter
from medchain_api.records.integrity import classify, compute_digest
from medchain_api.schemas.records import (
    RECORD_DOC_TYPE,
    ClinicalPayload,
    IntegrityVerdict,
    MedicalRecord,
    RecordView,
)
from medchain_api.schemas.users import PROVIDER_ROLES, IdentityContext, Role
from medchain_api.settings import Settings, get_settings
from medchain_api.storage.service import BlobStore
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)

RECORD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$")


class WriteState(str, Enum):
    """States of a record write."""

    VALIDATING = "VALIDATING"
    CONSENT_CHECK = "CONSENT_CHECK"
    ENCRYPT_STORE = "ENCRYPT_STORE"
    LEDGER_COMMIT = "LEDGER_COMMIT"
    DONE = "DONE"
    FAILED = "FAILED"


class CustodyEngine:
    """Orchestrates consent-gated record writes and reads."""

    def __init__(
        self,
        ledger: Ledger,
        registry: UserRegistry,
        consent: ConsentService,
        blob_store: BlobStore,
        access_log: AccessLogWriter,
        events: EventSink,
        settings: Optional[Settings] = None,
    ):
        """Initialize custody engine with its collaborators."""
        self.ledger = ledger
        self.registry = registry
        self.consent = consent
        self.blob_store = blob_store
        self.access_log = access_log
        self.events = events
        self.settings = settings or get_settings()

    def _parse_payload(self, clinical_payload: Union[ClinicalPayload, Mapping[str, Any], None]) -> ClinicalPayload:
        if clinical_payload is None:
            return ClinicalPayload()
        if isinstance(clinical_payload, ClinicalPayload):
            payload = clinical_payload
        elif isinstance(clinical_payload, Mapping):
            try:
                payload = ClinicalPayload.model_validate(dict(clinical_payload))
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid clinical payload: {e}") from e
        else:
            raise ValidationError("Clinical payload must be a JSON object")

        try:
            size = payload.encoded_size()
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Clinical payload is not JSON-serializable: {e}") from e
        if size > self.settings.max_clinical_payload_bytes:
            raise ValidationError(
                f"Clinical payload exceeds {self.settings.max_clinical_payload_bytes} bytes"
            )
        return payload

    def add_record(
        self,
        identity: IdentityContext,
        patient_id: str,
        record_id: str,
        clinical_payload: Union[ClinicalPayload, Mapping[str, Any], None],
        plaintext: bytes,
    ) -> MedicalRecord:
        """Encrypt, store and anchor a new record for ``patient_id``.

        Args:
            identity: Author claims; the author must be a registered doctor or hospital
            patient_id: Owning patient
            record_id: Fresh record identifier
            clinical_payload: Opaque clinical metadata (JSON object)
            plaintext: Record contents

        Returns:
            The committed record

        Raises:
            AuthorizationError: Author role or consent check failed
            ValidationError: Malformed input
            DuplicateError: ``record_id`` already used
            NotFoundError: Patient does not exist
            StorageError: Blob store failed
            LedgerError: Ledger commit failed
        """
        state = WriteState.VALIDATING
        try:
            author = self.registry.find_user(identity.user_id)
            if author is None or author.role not in PROVIDER_ROLES:
                raise AuthorizationError("Only doctors and hospitals can add records")

            if not RECORD_ID_PATTERN.match(record_id or ""):
                raise ValidationError(f"Invalid record id: {record_id!r}")
            if not isinstance(plaintext, (bytes, bytearray)):
                raise ValidationError("Record contents must be bytes")
            payload = self._parse_payload(clinical_payload)

            if self.ledger.exists(record_id):
                raise DuplicateError(f"The record {record_id} already exists")

            patient = self.registry.get_user(patient_id)
            if patient.role != Role.PATIENT:
                raise ValidationError(f"User {patient_id} is not a patient")

            state = WriteState.CONSENT_CHECK
            if not self.consent.is_authorized(patient_id, author.user_id):
                raise AuthorizationError(
                    f"{author.user_id} does not have consent to upload records for {patient_id}"
                )

            state = WriteState.ENCRYPT_STORE
            digest = compute_digest(bytes(plaintext))
            address = self.blob_store.store(bytes(plaintext))

            state = WriteState.LEDGER_COMMIT
            created_at = self.ledger.now()
            record = MedicalRecord(
                record_id=record_id,
                patient_id=patient_id,
                author_id=author.user_id,
                custodian_org_id=author.org,
                content_address=address,
                content_digest=digest,
                created_at=created_at,
                clinical_payload=payload.to_ledger(),
            )
            self.ledger.put(record_id, record.to_ledger(), expected_version=0, commit_ts=created_at)
            state = WriteState.DONE
        except MedChainError as e:
            e.stage = state.value
            metrics.custody_write_failures.labels(stage=state.value, code=e.code).inc()
            logger.info(f"Record write {record_id} {WriteState.FAILED.value} in {state.value}: {e.code} {e}")
            raise

        metrics.records_added.inc()
        logger.info(f"Record {record_id} anchored for {patient_id} (address={address}, digest={digest})")
        self.events.publish(
            event_types.RECORD_ADDED,
            {
                "recordId": record_id,
                "patientId": patient_id,
                "authorId": author.user_id,
                "custodianOrgId": author.org,
                "contentAddress": address,
                "contentDigest": digest,
            },
        )
        return record

    def _load_record(self, record_id: str) -> MedicalRecord:
        snapshot = self.ledger.get(record_id)
        if snapshot.get("docType") != RECORD_DOC_TYPE:
            raise NotFoundError(f"Record {record_id} not found")
        try:
            return MedicalRecord.from_ledger(snapshot)
        except PydanticValidationError as e:
            raise ValidationError(f"Record {record_id} metadata is malformed: {e}") from e

    def _can_read(self, identity: IdentityContext, patient_id: str) -> bool:
        if identity.user_id == patient_id:
            return True
        return identity.role in PROVIDER_ROLES and self.consent.is_authorized(patient_id, identity.user_id)

    def view_record(self, identity: IdentityContext, record_id: str) -> RecordView:
        """Read a record, verify its digest and log the access.

        Raises:
            NotFoundError: Unknown record
            AuthorizationError: Reader is neither the patient nor a consented provider
            StorageError: Blob missing or substrate failure
        """
        record = self._load_record(record_id)
        if not self._can_read(identity, record.patient_id):
            raise AuthorizationError(f"{identity.user_id} may not read record {record_id}")
        accessed_at = self.ledger.now()

        computed_digest = None
        try:
            plaintext = self.blob_store.retrieve(record.content_address)
        except BlobIntegrityError:
            plaintext = None
            verdict = IntegrityVerdict.TAMPERED
        else:
            verdict, computed_digest = classify(plaintext, record.content_digest)

        metrics.record_views.labels(verdict=verdict.value).inc()
        if verdict == IntegrityVerdict.TAMPERED:
            logger.warning(
                f"Integrity warning on record {record_id}: anchored={record.content_digest} "
                f"computed={computed_digest}"
            )

        self.access_log.submit(record_id, identity.user_id, identity.org, accessed_at)
        return RecordView(record=record, plaintext=plaintext, verdict=verdict, computed_digest=computed_digest)

    def get_record_metadata(self, identity: IdentityContext, record_id: str) -> MedicalRecord:
        """Record envelope without contents; same access rule as reads, not logged."""
        record = self._load_record(record_id)
        if not self._can_read(identity, record.patient_id):
            raise AuthorizationError(f"{identity.user_id} may not read record {record_id}")
        return record

    def _parse_records(self, snapshots: list[dict]) -> list[MedicalRecord]:
        records = []
        for snapshot in snapshots:
            try:
                records.append(MedicalRecord.from_ledger(snapshot))
            except PydanticValidationError:
                logger.warning(f"Skipping malformed record snapshot {snapshot.get('recordId')}")
        return sorted(records, key=lambda record: (record.created_at, record.record_id), reverse=True)

    def records_for_patient(self, identity: IdentityContext, patient_id: str) -> list[MedicalRecord]:
        """All records of a patient, newest first."""
        if not self._can_read(identity, patient_id):
            raise AuthorizationError(f"{identity.user_id} may not list records of {patient_id}")
        self.registry.get_user(patient_id)
        return self._parse_records(self.ledger.query({"docType": RECORD_DOC_TYPE, "patientId": patient_id}))

    def records_by_author(self, identity: IdentityContext, author_id: str) -> list[MedicalRecord]:
        """All records written by ``author_id``, newest first."""
        if identity.user_id != author_id and identity.role != Role.ADMIN:
            raise AuthorizationError("Only the author or an admin can list authored records")
        return self._parse_records(self.ledger.query({"docType": RECORD_DOC_TYPE, "authorId": author_id}))
