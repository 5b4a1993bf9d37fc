"""Consent graph over a patient's providers."""

import logging

from medchain_api.errors import AuthorizationError, LedgerError, ValidationError
from medchain_api.events import sink as event_types
from medchain_api.events.sink import EventSink
from medchain_api.identity.registry import UserRegistry
from medchain_api.ledger.service import Ledger
from medchain_api.schemas.users import PROVIDER_ROLES, IdentityContext, Role, User
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)


class ConsentService:
    """Grant, revoke and check patient consent."""

    def __init__(self, ledger: Ledger, registry: UserRegistry, events: EventSink):
        """Initialize consent service."""
        self.ledger = ledger
        self.registry = registry
        self.events = events

    def _require_self(self, identity: IdentityContext, patient_id: str, action: str) -> None:
        if identity.user_id != patient_id:
            raise AuthorizationError(f"Only patient {patient_id} can {action} consent")

    def _load_patient(self, patient_id: str) -> tuple[User, int]:
        patient, version = self.registry.load_with_version(patient_id)
        if patient.role != Role.PATIENT:
            raise ValidationError(f"User {patient_id} is not a patient")
        return patient, version

    def grant_consent(self, identity: IdentityContext, patient_id: str, provider_id: str) -> User:
        """Add ``provider_id`` to the patient's consent set.

        Granting to a provider that already holds consent is a no-op.
        """
        self._require_self(identity, patient_id, "grant")
        patient, version = self._load_patient(patient_id)

        provider = self.registry.get_user(provider_id)
        if provider.role not in PROVIDER_ROLES:
            raise ValidationError("Consent can only be granted to doctors or hospitals")

        if patient.has_consent(provider_id):
            logger.info(f"Consent from {patient_id} to {provider_id} already present")
            return patient

        updated = patient.model_copy(update={"consents": [*patient.consents, provider_id]})
        self.ledger.put(patient_id, updated.to_ledger(), expected_version=version)

        metrics.consent_changes.labels(action="grant").inc()
        logger.info(f"Consent granted: {patient_id} -> {provider_id}")
        self.events.publish(
            event_types.CONSENT_GRANTED,
            {"patient": patient_id, "provider": provider_id, "status": "GRANTED"},
        )
        return updated

    def revoke_consent(self, identity: IdentityContext, patient_id: str, provider_id: str) -> User:
        """Remove ``provider_id`` from the patient's consent set."""
        self._require_self(identity, patient_id, "revoke")
        patient, version = self._load_patient(patient_id)

        if not patient.has_consent(provider_id):
            raise ValidationError(f"Provider {provider_id} did not have consent to begin with")

        remaining = [consent for consent in patient.consents if consent != provider_id]
        updated = patient.model_copy(update={"consents": remaining})
        self.ledger.put(patient_id, updated.to_ledger(), expected_version=version)

        metrics.consent_changes.labels(action="revoke").inc()
        logger.info(f"Consent revoked: {patient_id} -> {provider_id}")
        self.events.publish(
            event_types.CONSENT_REVOKED,
            {"patient": patient_id, "provider": provider_id, "status": "REVOKED"},
        )
        return updated

    def is_authorized(self, patient_id: str, provider_id: str) -> bool:
        """Check consent against the current snapshot. No side effects."""
        try:
            patient = self.registry.find_user(patient_id)
        except LedgerError as e:
            logger.warning(f"Consent check on unreadable patient {patient_id}: {e}")
            return False
        if patient is None or patient.role != Role.PATIENT:
            return False
        return patient.has_consent(provider_id)

    def list_consents(self, identity: IdentityContext, patient_id: str) -> list[str]:
        """Current consent set of a patient (patient or admin only)."""
        if identity.user_id != patient_id and identity.role != Role.ADMIN:
            raise AuthorizationError("Only the patient or an admin can list consents")
        patient, _ = self._load_patient(patient_id)
        return sorted(patient.consents)
