"""Versioned ledger models."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from medchain_api.db.base import Base


class LedgerState(Base):
    """Current snapshot per key (world state)."""

    __tablename__ = "ledger_state"

    key = Column(String(255), primary_key=True)
    version = Column(Integer, nullable=False)
    doc_type = Column(String(50), nullable=True, index=True)  # user, MedicalRecord
    value_raw = Column(Text, nullable=True)  # NULL when the head is a tombstone
    is_deleted = Column(Boolean, default=False, nullable=False)
    head_hash = Column(String(64), nullable=False)
    committed_at = Column(DateTime, nullable=False)


class LedgerEntry(Base):
    """Append-only per-key history with hash chaining."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)  # global commit sequence
    key = Column(String(255), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    value_raw = Column(Text, nullable=True)
    is_delete = Column(Boolean, default=False, nullable=False)
    tx_id = Column(String(64), nullable=False, unique=True)
    committed_at = Column(DateTime, nullable=False, index=True)
    previous_hash = Column(String(64), nullable=True)  # NULL for first version
    entry_hash = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("key", "version", name="uq_ledger_entries_key_version"),
    )
