"""Tests for detached access-log writers."""

import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from medchain_api.errors import NotFoundError, VersionConflictError
from medchain_api.records.access_log import (
    AccessLogWriter,
    CeleryAccessLogWriter,
    ThreadedAccessLogWriter,
    append_access_event,
    build_access_log_writer,
)
from medchain_api.schemas.audit import AuditEventKind


@pytest.fixture
def record(custody, consented_doctor):
    """Record R1 uploaded by D1 for P1."""
    return custody.add_record(consented_doctor, "P1", "R1", None, b"data")


def test_append_access_event(ledger, record):
    """Test a direct append."""
    event = append_access_event(ledger, "R1", "P1", "Org1MSP")

    snapshot = ledger.get("R1")
    assert snapshot["accessLog"] == [
        {"actorId": "P1", "actorOrg": "Org1MSP", "timestamp": event.timestamp.isoformat()}
    ]
    assert ledger.latest("R1").version == 2


def test_append_keeps_timestamps_non_decreasing(ledger, record):
    """Test that a lagging clock cannot move the access log backwards."""
    append_access_event(ledger, "R1", "P1", "Org1MSP")
    first = ledger.get("R1")["accessLog"][0]["timestamp"]

    ledger.clock = MagicMock()
    ledger.clock.now.return_value = datetime(2000, 1, 1)
    append_access_event(ledger, "R1", "D1", "Org2MSP")

    log = ledger.get("R1")["accessLog"]
    assert log[1]["timestamp"] == first


def test_append_retries_on_version_conflict(ledger, record):
    """Test that a lost race re-reads and retries."""
    real_put = ledger.put
    calls = []

    def flaky_put(*args, **kwargs):
        calls.append(kwargs.get("expected_version"))
        if len(calls) == 1:
            raise VersionConflictError("lost race")
        return real_put(*args, **kwargs)

    with patch.object(ledger, "put", side_effect=flaky_put):
        append_access_event(ledger, "R1", "P1", "Org1MSP", max_retries=2)

    assert len(calls) == 2
    assert len(ledger.get("R1")["accessLog"]) == 1


def test_append_gives_up_after_max_retries(ledger, record):
    """Test bounded retries."""
    with patch.object(ledger, "put", side_effect=VersionConflictError("lost race")) as mock_put:
        with pytest.raises(VersionConflictError):
            append_access_event(ledger, "R1", "P1", "Org1MSP", max_retries=2)
    assert mock_put.call_count == 3


def test_append_to_unknown_record(ledger):
    """Test NOT_FOUND on a missing record."""
    with pytest.raises(NotFoundError):
        append_access_event(ledger, "R404", "P1", "Org1MSP")


def test_threaded_writer_reports_failures(ledger):
    """Test that failures reach the callback and never the caller."""
    failures = []
    writer = ThreadedAccessLogWriter(ledger, max_workers=1, on_failure=lambda *args: failures.append(args))
    try:
        writer.submit("R404", "P1", "Org1MSP")
        assert writer.drain(5)
    finally:
        writer.shutdown()

    assert len(failures) == 1
    record_id, actor_id, error = failures[0]
    assert (record_id, actor_id) == ("R404", "P1")
    assert isinstance(error, NotFoundError)


def test_threaded_writer_concurrent_appends(ledger, record):
    """Test that concurrent appends all land through version retries."""
    writer = ThreadedAccessLogWriter(ledger, max_workers=4, max_retries=20)
    try:
        for n in range(6):
            writer.submit("R1", f"viewer-{n}", "Org1MSP")
        assert writer.drain(30)
    finally:
        writer.shutdown()

    log = ledger.get("R1")["accessLog"]
    assert sorted(e["actorId"] for e in log) == [f"viewer-{n}" for n in range(6)]
    assert [e["timestamp"] for e in log] == sorted(e["timestamp"] for e in log)


def test_submit_never_raises():
    """Test that scheduling errors are swallowed into the failure channel."""
    failures = []

    class BrokenWriter(AccessLogWriter):
        name = "broken"

        def _submit(self, record_id, actor_id, actor_org, accessed_at):
            raise RuntimeError("queue down")

    BrokenWriter(on_failure=lambda *args: failures.append(args)).submit("R1", "P1", "Org1MSP")
    assert failures[0][2].args == ("queue down",)


def test_celery_writer_enqueues_task():
    """Test that the Celery writer only enqueues."""
    with patch("medchain_api.worker.tasks.append_access_event_task") as mock_task:
        CeleryAccessLogWriter().submit("R1", "P1", "Org1MSP", datetime(2024, 3, 1, 9, 30))
    mock_task.delay.assert_called_once_with("R1", "P1", "Org1MSP", "2024-03-01T09:30:00")


def test_celery_writer_broker_failure_is_swallowed():
    """Test that an unreachable broker does not fail the read path."""
    failures = []
    with patch("medchain_api.worker.tasks.append_access_event_task") as mock_task:
        mock_task.delay.side_effect = ConnectionError("redis down")
        CeleryAccessLogWriter(on_failure=lambda *args: failures.append(args)).submit("R1", "P1", "Org1MSP")
    assert len(failures) == 1


def test_build_access_log_writer(ledger, settings):
    """Test writer selection from settings."""
    writer = build_access_log_writer(ledger, settings)
    assert isinstance(writer, ThreadedAccessLogWriter)
    writer.shutdown()

    settings.access_log_writer = "celery"
    assert isinstance(build_access_log_writer(ledger, settings), CeleryAccessLogWriter)

    settings.access_log_writer = "carrier-pigeon"
    with pytest.raises(ValueError):
        build_access_log_writer(ledger, settings)


def test_append_uses_read_time(ledger, record):
    """Test that the event carries the time of the read, not of the write."""
    read_at = ledger.now()
    for _ in range(3):
        ledger.now()

    event = append_access_event(ledger, "R1", "P1", "Org1MSP", accessed_at=read_at)

    assert event.timestamp == read_at
    assert ledger.get("R1")["accessLog"][0]["timestamp"] == read_at.isoformat()


def test_delayed_append_keeps_view_before_later_revoke(custody, consent, audit, access_log, consented_doctor, patient):
    """Test that a queued append cannot move a view after a later revoke."""
    custody.add_record(consented_doctor, "P1", "R1", None, b"data")
    gate = threading.Event()
    access_log._executor.submit(gate.wait, 5)

    custody.view_record(patient, "R1")
    consent.revoke_consent(patient, "P1", "D1")
    gate.set()
    assert access_log.drain(5)

    timeline = audit.audit_log("P1")
    kinds = [event.kind for event in timeline]
    assert kinds[0] == AuditEventKind.CONSENT_REVOKED
    assert kinds.index(AuditEventKind.CONSENT_REVOKED) < kinds.index(AuditEventKind.RECORD_VIEWED)
