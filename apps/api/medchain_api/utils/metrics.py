"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_commits = Counter(
    "medchain_ledger_commits_total",
    "Total ledger commits",
    ["kind"],
)

# Custody metrics
records_added = Counter(
    "medchain_records_added_total",
    "Total medical records committed",
)

record_views = Counter(
    "medchain_record_views_total",
    "Total record reads",
    ["verdict"],
)

custody_write_failures = Counter(
    "medchain_custody_write_failures_total",
    "Record writes that ended in FAILED",
    ["stage", "code"],
)

consent_changes = Counter(
    "medchain_consent_changes_total",
    "Consent grants and revocations",
    ["action"],
)

# Access log metrics
access_log_failures = Counter(
    "medchain_access_log_failures_total",
    "Access log appends that were dropped",
    ["writer"],
)

# Blob store metrics
blob_operation_duration = Histogram(
    "medchain_blob_operation_duration_seconds",
    "Blob store operation duration",
    ["operation"],
)

# Event sink metrics
event_publish_failures = Counter(
    "medchain_event_publish_failures_total",
    "Events that could not be handed to the sink",
    ["event_type"],
)

# Audit metrics
audit_entries_skipped = Counter(
    "medchain_audit_entries_skipped_total",
    "History entries skipped during audit replay",
)
