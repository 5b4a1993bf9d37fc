"""Medical record models."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from medchain_api.ledger.clock import to_naive_utc

RECORD_DOC_TYPE = "MedicalRecord"


class IntegrityVerdict(str, Enum):
    """Integrity classification attached to a record read."""

    VALID = "VALID"
    TAMPERED = "TAMPERED"
    NO_ANCHOR = "NO_ANCHOR"


class ClinicalPayload(BaseModel):
    """Opaque clinical metadata stored alongside a record.

    Known fields are typed; anything else is carried through untouched.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    record_name: Optional[str] = None
    record_type: Optional[str] = None
    description: Optional[str] = None
    vitals: Optional[dict[str, Any]] = None

    def to_ledger(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def encoded_size(self) -> int:
        return len(json.dumps(self.to_ledger(), sort_keys=True).encode())


class AccessEvent(BaseModel):
    """One VIEWED entry of a record's access log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    actor_id: str = Field(validation_alias=AliasChoices("actorId", "actor_id", "user"))
    actor_org: str = Field(default="", validation_alias=AliasChoices("actorOrg", "actor_org", "org"))
    timestamp: datetime
    action: str = Field(default="VIEWED", exclude=True)

    @field_validator("timestamp")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class MedicalRecord(BaseModel):
    """Record envelope as stored on the ledger.

    Older ledger entries used different field names; they are accepted on read
    and rewritten to the current shape on the next commit.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    record_id: str = Field(validation_alias=AliasChoices("recordId", "record_id"))
    patient_id: str = Field(validation_alias=AliasChoices("patientId", "patient_id"))
    author_id: str = Field(validation_alias=AliasChoices("authorId", "author_id", "doctorId"))
    custodian_org_id: str = Field(
        default="", validation_alias=AliasChoices("custodianOrgId", "custodian_org_id", "hospitalId")
    )
    content_address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contentAddress", "content_address", "ipfsCid", "ipfsHash")
    )
    content_digest: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contentDigest", "content_digest", "fileHash", "checksum")
    )
    created_at: datetime = Field(validation_alias=AliasChoices("createdAt", "created_at", "timestamp"))
    clinical_payload: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("clinicalPayload", "clinical_payload")
    )
    access_log: list[AccessEvent] = Field(
        default_factory=list, validation_alias=AliasChoices("accessLog", "access_log", "accessHistory")
    )
    doc_type: str = Field(default=RECORD_DOC_TYPE, validation_alias=AliasChoices("docType", "doc_type"))

    @field_validator("created_at")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @property
    def display_name(self) -> str:
        return self.clinical_payload.get("recordName") or self.record_id

    def to_ledger(self) -> dict:
        """Serialize to the persisted record shape."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_ledger(cls, snapshot: dict) -> "MedicalRecord":
        return cls.model_validate(snapshot)


class RecordView(BaseModel):
    """Result of a successful record read."""

    record: MedicalRecord
    plaintext: Optional[bytes] = None  # None when the ciphertext failed authentication
    verdict: IntegrityVerdict
    computed_digest: Optional[str] = None
