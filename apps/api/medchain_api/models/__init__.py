"""Database models - import all models here for metadata discovery."""

from medchain_api.models.ledger import LedgerEntry, LedgerState

__all__ = [
    "LedgerState",
    "LedgerEntry",
]
