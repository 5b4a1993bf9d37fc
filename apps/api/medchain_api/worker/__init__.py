"""Celery worker for detached ledger writes and event delivery."""
