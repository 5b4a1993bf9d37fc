"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.orm import sessionmaker

from medchain_api.audit.trail import AuditTrail
from medchain_api.consent.service import ConsentService
from medchain_api.db.session import build_engine, init_db
from medchain_api.events.sink import EventSink
from medchain_api.identity.registry import UserRegistry
from medchain_api.ledger import Ledger, LogicalClock
from medchain_api.records.access_log import ThreadedAccessLogWriter
from medchain_api.records.custody import CustodyEngine
from medchain_api.schemas.users import IdentityContext, Role
from medchain_api.security.encryption import BlobCipher
from medchain_api.settings import Settings
from medchain_api.storage.local import LocalSubstrate
from medchain_api.storage.service import BlobStore


class RecordingEventSink(EventSink):
    """Event sink that keeps published events in memory."""

    name = "recording"

    def __init__(self):
        self.events = []

    def _emit(self, event_type: str, payload: dict) -> None:
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def settings():
    """Settings isolated from the environment's .env file."""
    return Settings(_env_file=None, environment="test", log_format="text")


@pytest.fixture
def session_factory(tmp_path):
    """
    Create a file-backed SQLite ledger database.

    A file (rather than :memory:) lets background access-log writers open
    their own connections.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    init_db(factory)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    """Deterministic ledger clock."""
    return LogicalClock()


@pytest.fixture
def ledger(session_factory, clock):
    """Ledger over the test database."""
    return Ledger(session_factory, clock)


@pytest.fixture
def substrate(tmp_path):
    """Local blob substrate under the test directory."""
    return LocalSubstrate(tmp_path / "blobs")


@pytest.fixture
def blob_store(substrate):
    """Blob store with a fresh key."""
    return BlobStore(BlobCipher(key=BlobCipher.generate_key()), substrate, max_bytes=16 * 1024 * 1024)


@pytest.fixture
def events():
    """Recording event sink."""
    return RecordingEventSink()


@pytest.fixture
def registry(ledger, events, settings):
    """User registry."""
    return UserRegistry(ledger, events, settings)


@pytest.fixture
def consent(ledger, registry, events):
    """Consent service."""
    return ConsentService(ledger, registry, events)


@pytest.fixture
def access_log(ledger):
    """Threaded access-log writer; tests drain it explicitly."""
    writer = ThreadedAccessLogWriter(ledger, max_workers=1)
    yield writer
    writer.shutdown()


@pytest.fixture
def custody(ledger, registry, consent, blob_store, access_log, events, settings):
    """Record custody engine."""
    return CustodyEngine(ledger, registry, consent, blob_store, access_log, events, settings)


@pytest.fixture
def audit(ledger):
    """Audit trail."""
    return AuditTrail(ledger)


@pytest.fixture
def org1_admin(registry) -> IdentityContext:
    """Bootstrapped admin of the patient registrar org."""
    registry.bootstrap_admin("admin1", "Org1 Admin", "Org1MSP")
    return IdentityContext(user_id="admin1", role=Role.ADMIN, org="Org1MSP")


@pytest.fixture
def org2_admin(registry, org1_admin) -> IdentityContext:
    """Admin of the provider registrar org."""
    registry.register_user(org1_admin, "admin2", "Org2 Admin", Role.ADMIN, "Org2MSP")
    return IdentityContext(user_id="admin2", role=Role.ADMIN, org="Org2MSP")


@pytest.fixture
def patient(registry, org1_admin) -> IdentityContext:
    """Registered patient P1."""
    registry.register_user(org1_admin, "P1", "Pat One", Role.PATIENT, "Org1MSP")
    return IdentityContext(user_id="P1", role=Role.PATIENT, org="Org1MSP")


@pytest.fixture
def doctor(registry, org2_admin) -> IdentityContext:
    """Registered doctor D1."""
    registry.register_user(org2_admin, "D1", "Dr One", Role.DOCTOR, "Org2MSP")
    return IdentityContext(user_id="D1", role=Role.DOCTOR, org="Org2MSP")


@pytest.fixture
def hospital(registry, org2_admin) -> IdentityContext:
    """Registered hospital H1."""
    registry.register_user(org2_admin, "H1", "General Hospital", Role.HOSPITAL, "Org2MSP")
    return IdentityContext(user_id="H1", role=Role.HOSPITAL, org="Org2MSP")


@pytest.fixture
def consented_doctor(consent, patient, doctor) -> IdentityContext:
    """D1 holding P1's consent."""
    consent.grant_consent(patient, patient.user_id, doctor.user_id)
    return doctor
