"""Plaintext digests anchored on the ledger."""

import hashlib
import hmac
from typing import Optional

from medchain_api.schemas.records import IntegrityVerdict


def compute_digest(data: bytes) -> str:
    """SHA-256 hex digest of record contents."""
    return hashlib.sha256(data).hexdigest()


def classify(plaintext: bytes, anchor: Optional[str]) -> tuple[IntegrityVerdict, str]:
    """Compare recomputed digest against the anchored one.

    Returns:
        (verdict, computed_digest)
    """
    computed = compute_digest(plaintext)
    if not anchor:
        return IntegrityVerdict.NO_ANCHOR, computed
    if hmac.compare_digest(computed, anchor.lower()):
        return IntegrityVerdict.VALID, computed
    return IntegrityVerdict.TAMPERED, computed
