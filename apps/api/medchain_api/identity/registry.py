"""User registry on the ledger.

Users share the ledger keyspace with records. A user's role is fixed at
registration; consents are only changed by the consent service.
"""

import logging
import re
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from medchain_api.errors import (
    AuthorizationError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from medchain_api.events import sink as event_types
from medchain_api.events.sink import EventSink
from medchain_api.ledger.service import Ledger
from medchain_api.schemas.users import PROVIDER_ROLES, USER_DOC_TYPE, IdentityContext, Role, User
from medchain_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@-]{0,127}$")

_REGISTRATION_EVENTS = {
    Role.PATIENT: event_types.PATIENT_REGISTERED,
    Role.DOCTOR: event_types.DOCTOR_ADDED,
    Role.HOSPITAL: event_types.HOSPITAL_ADDED,
    Role.ADMIN: event_types.ADMIN_ADDED,
}


class UserRegistry:
    """Privileged registration and lookup of users."""

    def __init__(self, ledger: Ledger, events: EventSink, settings: Optional[Settings] = None):
        """Initialize registry."""
        self.ledger = ledger
        self.events = events
        self.settings = settings or get_settings()

    def find_user(self, user_id: str) -> Optional[User]:
        """Load a user, or None if the key is absent or is not a user."""
        snapshot = self.ledger.find(user_id)
        if snapshot is None or snapshot.get("docType") != USER_DOC_TYPE:
            return None
        try:
            return User.from_ledger(snapshot)
        except PydanticValidationError as e:
            raise LedgerError(f"User {user_id} snapshot is malformed: {e}") from e

    def get_user(self, user_id: str) -> User:
        """Load a user or raise NotFoundError."""
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} does not exist")
        return user

    def load_with_version(self, user_id: str) -> tuple[User, int]:
        """Load a user together with its ledger version."""
        try:
            entry = self.ledger.latest(user_id)
        except NotFoundError:
            raise NotFoundError(f"User {user_id} does not exist")
        snapshot = entry.value
        if snapshot.get("docType") != USER_DOC_TYPE:
            raise NotFoundError(f"User {user_id} does not exist")
        try:
            return User.from_ledger(snapshot), entry.version
        except PydanticValidationError as e:
            raise LedgerError(f"User {user_id} snapshot is malformed: {e}") from e

    def _check_registrar(self, identity: IdentityContext, role: Role) -> None:
        """Enforce which admins may register which roles."""
        if identity.role != Role.ADMIN:
            raise AuthorizationError("Only admins can register users")
        if role == Role.PATIENT and identity.org != self.settings.patient_registrar_org:
            raise AuthorizationError(
                f"Patients can only be registered by {self.settings.patient_registrar_org} admins"
            )
        if role in PROVIDER_ROLES and identity.org != self.settings.provider_registrar_org:
            raise AuthorizationError(
                f"Doctors and hospitals can only be registered by {self.settings.provider_registrar_org} admins"
            )
        if role == Role.ADMIN and identity.org not in (
            self.settings.patient_registrar_org,
            self.settings.provider_registrar_org,
        ):
            raise AuthorizationError("Admins can only be registered by a registrar organization")

    def _create(self, user: User) -> User:
        if self.ledger.exists(user.user_id):
            raise DuplicateError(f"User {user.user_id} already exists")
        self.ledger.put(user.user_id, user.to_ledger(), expected_version=0)
        self.events.publish(_REGISTRATION_EVENTS[user.role], user.to_ledger())
        logger.info(f"Registered {user.role.value} {user.user_id} ({user.org})")
        return user

    def register_user(
        self,
        identity: IdentityContext,
        user_id: str,
        name: str,
        role: Role,
        org: str,
    ) -> User:
        """Register a new user with an empty consent set."""
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")
        self._check_registrar(identity, role)

        if not USER_ID_PATTERN.match(user_id or ""):
            raise ValidationError(f"Invalid user id: {user_id!r}")
        if not name or not name.strip():
            raise ValidationError("Name is required")

        return self._create(User(user_id=user_id, name=name.strip(), role=role, org=org))

    def bootstrap_admin(self, user_id: str, name: str, org: str) -> User:
        """Register the first admin; refused once any admin exists."""
        if self.ledger.query({"docType": USER_DOC_TYPE, "role": Role.ADMIN.value}):
            raise AuthorizationError("An admin already exists; use register_user")
        if not USER_ID_PATTERN.match(user_id or ""):
            raise ValidationError(f"Invalid user id: {user_id!r}")
        return self._create(User(user_id=user_id, name=name, role=Role.ADMIN, org=org))

    def update_user(
        self,
        identity: IdentityContext,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        """Update display fields of a user (admins only)."""
        if identity.role != Role.ADMIN:
            raise AuthorizationError("Only admins can update users")

        user, version = self.load_with_version(user_id)
        changes = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Name must not be empty")
            changes["name"] = name.strip()
        if email is not None:
            changes["email"] = email
        if not changes:
            return user

        updated = user.model_copy(update=changes)
        self.ledger.put(user_id, updated.to_ledger(), expected_version=version)
        logger.info(f"Updated user {user_id}")
        return updated

    def list_users(self, role: Optional[Role] = None) -> list[User]:
        """List users, optionally filtered by role, sorted by id."""
        predicate = {"docType": USER_DOC_TYPE}
        if role is not None:
            predicate["role"] = Role(role).value

        users = []
        for snapshot in self.ledger.query(predicate):
            try:
                users.append(User.from_ledger(snapshot))
            except PydanticValidationError:
                logger.warning(f"Skipping malformed user snapshot {snapshot.get('userId')}")
        return sorted(users, key=lambda user: user.user_id)
