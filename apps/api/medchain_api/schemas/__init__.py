"""Domain models carried on the ledger and returned to callers."""

from medchain_api.schemas.audit import AuditEvent, AuditEventKind
from medchain_api.schemas.records import (
    RECORD_DOC_TYPE,
    AccessEvent,
    ClinicalPayload,
    IntegrityVerdict,
    MedicalRecord,
    RecordView,
)
from medchain_api.schemas.users import PROVIDER_ROLES, USER_DOC_TYPE, IdentityContext, Role, User

__all__ = [
    "AccessEvent",
    "AuditEvent",
    "AuditEventKind",
    "ClinicalPayload",
    "IdentityContext",
    "IntegrityVerdict",
    "MedicalRecord",
    "PROVIDER_ROLES",
    "RECORD_DOC_TYPE",
    "RecordView",
    "Role",
    "USER_DOC_TYPE",
    "User",
]
