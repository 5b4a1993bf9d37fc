"""User and identity models."""

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    """User roles."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    HOSPITAL = "hospital"
    ADMIN = "admin"


PROVIDER_ROLES = frozenset({Role.DOCTOR, Role.HOSPITAL})

USER_DOC_TYPE = "user"


class IdentityContext(BaseModel):
    """Authenticated caller claims supplied by the identity layer."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role
    org: str = ""

    @property
    def is_provider(self) -> bool:
        return self.role in PROVIDER_ROLES


class User(BaseModel):
    """User snapshot as stored on the ledger."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id", "id"))
    name: str
    role: Role
    org: str = ""
    email: Optional[str] = None
    consents: list[str] = Field(default_factory=list)
    doc_type: str = USER_DOC_TYPE

    def has_consent(self, provider_id: str) -> bool:
        """Check whether ``provider_id`` is in the consent set."""
        return provider_id in self.consents

    def to_ledger(self) -> dict:
        """Serialize to the ledger JSON shape."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_ledger(cls, snapshot: dict) -> "User":
        return cls.model_validate(snapshot)
