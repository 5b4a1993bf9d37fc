"""Versioned key-value ledger with per-key hash-chained history."""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from medchain_api.errors import CorruptEntryError, LedgerError, NotFoundError, VersionConflictError
from medchain_api.ledger.clock import LedgerClock, to_naive_utc
from medchain_api.models import LedgerEntry, LedgerState
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)


def encode_value(value: Mapping[str, Any]) -> str:
    """Deterministic JSON representation of a snapshot."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class HistoryEntry:
    """One committed version of a key."""

    key: str
    version: int
    raw: Optional[str]
    is_delete: bool
    committed_at: datetime
    tx_id: str
    sequence: int
    previous_hash: Optional[str]
    entry_hash: str

    @property
    def value(self) -> Optional[dict]:
        """Decoded snapshot, or None for a tombstone.

        Raises:
            CorruptEntryError: If the stored bytes are not a JSON object
        """
        if self.is_delete:
            return None
        try:
            decoded = json.loads(self.raw)
        except (TypeError, ValueError) as e:
            raise CorruptEntryError(f"Entry {self.key}@{self.version} is not valid JSON: {e}")
        if not isinstance(decoded, dict):
            raise CorruptEntryError(f"Entry {self.key}@{self.version} is not a JSON object")
        return decoded


def _to_history_entry(row: LedgerEntry) -> HistoryEntry:
    return HistoryEntry(
        key=row.key,
        version=row.version,
        raw=row.value_raw,
        is_delete=row.is_delete,
        committed_at=row.committed_at,
        tx_id=row.tx_id,
        sequence=row.id,
        previous_hash=row.previous_hash,
        entry_hash=row.entry_hash,
    )


class LedgerHistory:
    """Lazy, restartable view over the history of one key.

    Each iteration issues a fresh query, oldest version first.
    """

    def __init__(self, session_factory: sessionmaker, key: str, batch_size: int = 100):
        self.session_factory = session_factory
        self.key = key
        self.batch_size = batch_size

    def __iter__(self) -> Iterator[HistoryEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.key == self.key)
            .order_by(LedgerEntry.version.asc())
            .execution_options(yield_per=self.batch_size)
        )
        try:
            with self.session_factory() as db:
                for row in db.scalars(stmt):
                    yield _to_history_entry(row)
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read history for {self.key}: {e}") from e

    def __len__(self) -> int:
        try:
            with self.session_factory() as db:
                return db.scalar(
                    select(func.count()).select_from(LedgerEntry).where(LedgerEntry.key == self.key)
                )
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to count history for {self.key}: {e}") from e


class Ledger:
    """Append-only versioned key-value store.

    Commits are serialized per key with an optimistic version check backed by
    a unique (key, version) constraint. Every commit runs in its own
    transaction.
    """

    def __init__(self, session_factory: sessionmaker, clock: LedgerClock):
        """Initialize ledger over a session factory and commit clock."""
        self.session_factory = session_factory
        self.clock = clock

    def now(self) -> datetime:
        """Current ledger time."""
        return to_naive_utc(self.clock.now())

    def _hash_entry(self, entry_data: dict) -> str:
        """Compute hash of entry data."""
        entry_str = json.dumps(entry_data, sort_keys=True)
        return hashlib.sha256(entry_str.encode()).hexdigest()

    def _entry_data(
        self,
        key: str,
        version: int,
        raw: Optional[str],
        is_delete: bool,
        tx_id: str,
        committed_at: datetime,
        previous_hash: Optional[str],
    ) -> dict:
        return {
            "key": key,
            "version": version,
            "value": raw,
            "is_delete": is_delete,
            "tx_id": tx_id,
            "timestamp": committed_at.isoformat(),
            "previous_hash": previous_hash,
        }

    def _commit(
        self,
        key: str,
        raw: Optional[str],
        doc_type: Optional[str],
        expected_version: Optional[int],
        commit_ts: Optional[datetime],
    ) -> HistoryEntry:
        """Append a new version of ``key`` (tombstone when ``raw`` is None)."""
        is_delete = raw is None
        try:
            with self.session_factory() as db:
                with db.begin():
                    state = db.execute(
                        select(LedgerState).where(LedgerState.key == key).with_for_update()
                    ).scalar_one_or_none()

                    current_version = state.version if state else 0
                    if expected_version is not None and expected_version != current_version:
                        raise VersionConflictError(
                            f"Key {key} is at version {current_version}, expected {expected_version}"
                        )
                    if is_delete and (state is None or state.is_deleted):
                        raise NotFoundError(f"Key {key} not found")

                    committed_at = to_naive_utc(commit_ts) if commit_ts else self.now()
                    # Per-key commit time never goes backwards
                    if state and committed_at < state.committed_at:
                        committed_at = state.committed_at

                    version = current_version + 1
                    tx_id = uuid.uuid4().hex
                    previous_hash = state.head_hash if state else None
                    entry_hash = self._hash_entry(
                        self._entry_data(key, version, raw, is_delete, tx_id, committed_at, previous_hash)
                    )

                    entry = LedgerEntry(
                        key=key,
                        version=version,
                        value_raw=raw,
                        is_delete=is_delete,
                        tx_id=tx_id,
                        committed_at=committed_at,
                        previous_hash=previous_hash,
                        entry_hash=entry_hash,
                    )
                    db.add(entry)

                    if state is None:
                        state = LedgerState(key=key)
                        db.add(state)
                    state.version = version
                    state.value_raw = raw
                    state.is_deleted = is_delete
                    if not is_delete:
                        state.doc_type = doc_type
                    state.head_hash = entry_hash
                    state.committed_at = committed_at

                    db.flush()
                    result = _to_history_entry(entry)
        except IntegrityError as e:
            raise VersionConflictError(f"Concurrent commit on key {key}") from e
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to commit key {key}: {e}") from e

        metrics.ledger_commits.labels(kind="delete" if is_delete else "put").inc()
        logger.debug(f"Committed {key}@{result.version} tx={result.tx_id}")
        return result

    def put(
        self,
        key: str,
        value: Mapping[str, Any],
        expected_version: Optional[int] = None,
        commit_ts: Optional[datetime] = None,
    ) -> HistoryEntry:
        """Commit a new version of ``key`` and append it to history.

        Args:
            key: Ledger key
            value: JSON-serializable snapshot
            expected_version: Fail with VersionConflictError unless the key is at
                this version (0 for a key that must not exist yet)
            commit_ts: Commit timestamp previously drawn from ``now()``

        Returns:
            The committed HistoryEntry
        """
        if not key:
            raise LedgerError("Ledger key must not be empty")
        try:
            raw = encode_value(value)
        except (TypeError, ValueError) as e:
            raise LedgerError(f"Value for {key} is not JSON-serializable: {e}") from e
        return self._commit(key, raw, value.get("docType"), expected_version, commit_ts)

    def delete(self, key: str, expected_version: Optional[int] = None) -> HistoryEntry:
        """Append a tombstone for ``key``."""
        return self._commit(key, None, None, expected_version, None)

    def latest(self, key: str) -> HistoryEntry:
        """Get the newest committed entry for ``key``.

        Raises:
            NotFoundError: If the key was never written or is deleted
        """
        try:
            with self.session_factory() as db:
                row = db.execute(
                    select(LedgerEntry)
                    .where(LedgerEntry.key == key)
                    .order_by(LedgerEntry.version.desc())
                    .limit(1)
                ).scalar_one_or_none()
                entry = _to_history_entry(row) if row else None
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read key {key}: {e}") from e
        if entry is None or entry.is_delete:
            raise NotFoundError(f"Key {key} not found")
        return entry

    def get(self, key: str) -> dict:
        """Get the latest snapshot for ``key`` or raise NotFoundError."""
        return self.latest(key).value

    def find(self, key: str) -> Optional[dict]:
        """Get the latest snapshot for ``key`` or None."""
        try:
            return self.get(key)
        except NotFoundError:
            return None

    def exists(self, key: str) -> bool:
        """Check whether ``key`` has a live snapshot."""
        try:
            with self.session_factory() as db:
                state = db.get(LedgerState, key)
                return state is not None and not state.is_deleted
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read key {key}: {e}") from e

    def history(self, key: str) -> LedgerHistory:
        """Ordered history of ``key``, oldest first."""
        return LedgerHistory(self.session_factory, key)

    def query(self, predicate: Mapping[str, Any]) -> list[dict]:
        """Return current snapshots whose fields equal every item of ``predicate``.

        Result order is unspecified; callers sort before presenting.
        Snapshots that cannot be decoded are skipped with a warning.
        """
        stmt = select(LedgerState).where(LedgerState.is_deleted.is_(False))
        if "docType" in predicate:
            stmt = stmt.where(LedgerState.doc_type == predicate["docType"])

        try:
            with self.session_factory() as db:
                rows = [(state.key, state.value_raw) for state in db.scalars(stmt)]
        except SQLAlchemyError as e:
            raise LedgerError(f"Ledger query failed: {e}") from e

        results = []
        for key, raw in rows:
            try:
                snapshot = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning(f"Skipping undecodable snapshot for key {key}")
                continue
            if not isinstance(snapshot, dict):
                logger.warning(f"Skipping non-object snapshot for key {key}")
                continue
            if all(snapshot.get(field) == expected for field, expected in predicate.items()):
                results.append(snapshot)
        return results

    def verify_chain(self, key: str) -> tuple[bool, Optional[str]]:
        """Verify hash chain integrity for ``key``.

        Returns:
            (is_valid, error) where error describes the first broken link
        """
        previous_hash = None
        expected_version = 1
        for entry in self.history(key):
            if entry.version != expected_version:
                return False, f"Version gap at {key}@{entry.version}"
            if entry.previous_hash != previous_hash:
                return False, f"Previous hash mismatch at {key}@{entry.version}"

            computed_hash = self._hash_entry(
                self._entry_data(
                    entry.key,
                    entry.version,
                    entry.raw,
                    entry.is_delete,
                    entry.tx_id,
                    entry.committed_at,
                    entry.previous_hash,
                )
            )
            if computed_hash != entry.entry_hash:
                return False, f"Entry hash mismatch at {key}@{entry.version}"

            previous_hash = entry.entry_hash
            expected_version += 1

        return True, None
