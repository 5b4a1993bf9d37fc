"""Wiring of the custody services."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from medchain_api.audit.trail import AuditTrail
from medchain_api.consent.service import ConsentService
from medchain_api.db.session import get_session_factory
from medchain_api.events.sink import EventSink, build_event_sink
from medchain_api.identity.registry import UserRegistry
from medchain_api.ledger import DatabaseClock, Ledger, LedgerClock
from medchain_api.records.access_log import AccessLogWriter, build_access_log_writer
from medchain_api.records.custody import CustodyEngine
from medchain_api.security.encryption import BlobCipher
from medchain_api.settings import Settings, get_settings
from medchain_api.storage.service import BlobStore, BlobSubstrate, build_substrate


@dataclass
class MedChain:
    """Handles to every service, sharing one ledger."""

    settings: Settings
    ledger: Ledger
    blob_store: BlobStore
    events: EventSink
    access_log: AccessLogWriter
    registry: UserRegistry
    consent: ConsentService
    custody: CustodyEngine
    audit: AuditTrail

    def close(self, timeout: Optional[float] = None) -> None:
        """Wait for pending access-log appends and stop the writer."""
        self.access_log.drain(timeout)
        self.access_log.shutdown()


def build_medchain(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    clock: Optional[LedgerClock] = None,
    substrate: Optional[BlobSubstrate] = None,
    cipher: Optional[BlobCipher] = None,
    events: Optional[EventSink] = None,
    access_log: Optional[AccessLogWriter] = None,
) -> MedChain:
    """Build the services from settings; any collaborator may be injected.

    Raises:
        ValueError: Settings are unsafe outside development
    """
    settings = settings or get_settings()
    settings.validate_production_settings()
    session_factory = session_factory or get_session_factory()
    ledger = Ledger(session_factory, clock or DatabaseClock(session_factory))

    blob_store = BlobStore(
        cipher=cipher or BlobCipher(settings=settings),
        substrate=substrate or build_substrate(settings),
        max_bytes=settings.max_blob_bytes,
    )
    events = events or build_event_sink(settings)
    access_log = access_log or build_access_log_writer(ledger, settings)

    registry = UserRegistry(ledger, events, settings)
    consent = ConsentService(ledger, registry, events)
    custody = CustodyEngine(ledger, registry, consent, blob_store, access_log, events, settings)

    return MedChain(
        settings=settings,
        ledger=ledger,
        blob_store=blob_store,
        events=events,
        access_log=access_log,
        registry=registry,
        consent=consent,
        custody=custody,
        audit=AuditTrail(ledger),
    )
