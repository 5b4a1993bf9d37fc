"""Error taxonomy for custody operations.

Every failure raised by the core carries a stable ``code``. VALIDATION,
NOT_FOUND, AUTHZ and DUPLICATE are raised before any mutation and are not
retriable. STORAGE_ERROR and LEDGER_ERROR come from the substrates and are
surfaced without automatic retry.

Integrity problems found on read are *not* errors; they are reported as an
``IntegrityVerdict`` on the read result.
"""

from typing import Optional


class MedChainError(Exception):
    """Base error for the custody core."""

    code = "ERROR"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return self.message


class ValidationError(MedChainError):
    """Malformed or semantically invalid input."""

    code = "VALIDATION"


class NotFoundError(MedChainError):
    """Referenced user, record or key does not exist."""

    code = "NOT_FOUND"


class AuthorizationError(MedChainError):
    """Caller is not allowed to perform the operation."""

    code = "AUTHZ"


class DuplicateError(MedChainError):
    """Identifier already in use."""

    code = "DUPLICATE"


class StorageError(MedChainError):
    """Blob substrate failure."""

    code = "STORAGE_ERROR"


class BlobNotFoundError(StorageError):
    """No blob stored under the given address."""


class BlobIntegrityError(StorageError):
    """Stored ciphertext failed authentication on decrypt."""


class LedgerError(MedChainError):
    """Ledger substrate failure."""

    code = "LEDGER_ERROR"


class VersionConflictError(LedgerError):
    """A concurrent commit won the race for this key."""


class CorruptEntryError(LedgerError):
    """A committed value could not be decoded."""
