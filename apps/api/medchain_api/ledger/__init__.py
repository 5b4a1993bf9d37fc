"""Versioned ledger."""

from medchain_api.ledger.clock import DatabaseClock, LedgerClock, LogicalClock
from medchain_api.ledger.service import HistoryEntry, Ledger, LedgerHistory

__all__ = [
    "DatabaseClock",
    "HistoryEntry",
    "Ledger",
    "LedgerClock",
    "LedgerHistory",
    "LogicalClock",
]
