"""
Unit tests for the access audit sink and audit record mapping.

Covers both write modes, buffer overflow in async mode, and the guarantee that
a failing store never surfaces an exception to the caller.
"""

import threading

import pytest

from src.auth.audit import AccessAuditSink, build_audit_record
from src.auth.models import Decision, ExtractionFailure, Principal, ReasonCode
from src.auth.roles import UserRole
from src.data.exceptions import AuditWriteException, DatabaseOperationType
from src.data.models import MAX_USER_AGENT_LENGTH


def _grant() -> Decision:
    return Decision.grant(ReasonCode.GRANTED_ORG_MATCH, "org-a", "organization org-a matches")


def _principal() -> Principal:
    return Principal("d-1", UserRole.DIRECTOR, "org-a", session_id="sess-1")


@pytest.mark.unit
class TestBuildAuditRecord:

    def test_principal_fields(self, make_context):
        context = make_context(method="post", path="/api/organizations/org-a/payments")

        record = build_audit_record(_grant(), _principal(), context, policy_name="RequireRole_Director")

        assert record.user_id == "d-1"
        assert record.role == "Director"
        assert record.http_method == "POST"
        assert record.resource == "POST /api/organizations/org-a/payments"
        assert record.organization_id == "org-a"
        assert record.access_granted is True
        assert record.reason_code == "GRANTED_ORG_MATCH"
        assert record.details == "GRANTED_ORG_MATCH: organization org-a matches"
        assert record.ip_address == "203.0.113.7"
        assert record.user_agent == "pytest-client/1.0"
        assert record.session_id == "sess-1"
        assert record.policy_name == "RequireRole_Director"

    def test_timestamp_taken_from_decision(self, make_context):
        decision = _grant()
        record = build_audit_record(decision, _principal(), make_context())
        assert record.timestamp == decision.timestamp

    def test_extraction_failure_keeps_raw_claims(self, make_context):
        failure = ExtractionFailure(ReasonCode.INVALID_ROLE, raw_user_id="u-3", raw_role="Owner")
        decision = Decision.deny(ReasonCode.INVALID_ROLE, None, "raw role claim 'Owner'")

        record = build_audit_record(decision, failure, make_context())

        assert record.user_id == "u-3"
        assert record.role == "Owner"
        assert record.access_granted is False

    def test_missing_role_is_stored_empty(self, make_context):
        failure = ExtractionFailure(ReasonCode.MISSING_CLAIMS, raw_user_id="u-4", raw_role=None)
        decision = Decision.deny(ReasonCode.MISSING_CLAIMS, None, "missing claims: role")

        record = build_audit_record(decision, failure, make_context())

        assert record.role == ""
        assert record.user_id == "u-4"

    def test_long_user_agent_truncated(self, make_context):
        context = make_context(user_agent="x" * (MAX_USER_AGENT_LENGTH + 50))
        record = build_audit_record(_grant(), _principal(), context)
        assert len(record.user_agent) == MAX_USER_AGENT_LENGTH


@pytest.mark.unit
class TestSyncAuditSink:

    def test_written_before_return(self, audit_sink, audit_store, make_context):
        audit_sink.record(_grant(), _principal(), make_context())

        assert len(audit_store) == 1
        assert audit_sink.total_records_written == 1

    def test_store_failure_is_contained(self, mocker, make_context):
        store = mocker.Mock()
        store.append.side_effect = AuditWriteException("insert failed", operation=DatabaseOperationType.WRITE)
        sink = AccessAuditSink(store, mode="sync")

        sink.record(_grant(), _principal(), make_context())

        assert sink.total_write_failures == 1
        assert sink.total_records_written == 0

    def test_invalid_mode(self, audit_store):
        with pytest.raises(ValueError):
            AccessAuditSink(audit_store, mode="eventually")

    def test_invalid_buffer_size(self, audit_store):
        with pytest.raises(ValueError):
            AccessAuditSink(audit_store, mode="async", buffer_size=0)


@pytest.mark.unit
class TestAsyncAuditSink:

    def test_close_flushes_pending_records(self, audit_store, make_context):
        sink = AccessAuditSink(audit_store, mode="async", flush_interval=0.05)
        for _ in range(3):
            sink.record(_grant(), _principal(), make_context())

        sink.close()

        assert len(audit_store) == 3
        assert sink.closed
        assert sink.get_audit_statistics()['current_buffer_size'] == 0

    def test_writer_thread_started(self, audit_store):
        sink = AccessAuditSink(audit_store, mode="async", flush_interval=0.05)
        try:
            assert sink.processing_thread is not None
            assert sink.processing_thread.name == "AccessAuditWriter"
            assert sink.get_audit_statistics()['writer_alive'] is True
        finally:
            sink.close()

    def test_full_buffer_drops_oldest(self, mocker, audit_store, make_context):
        mocker.patch.object(AccessAuditSink, '_setup_async_processing')
        sink = AccessAuditSink(audit_store, mode="async", buffer_size=2)

        for user_id in ("u-1", "u-2", "u-3"):
            principal = Principal(user_id, UserRole.FINANCE, "org-a")
            sink.record(_grant(), principal, make_context())

        assert sink.total_records_dropped == 1
        assert sink.flush() == 2
        assert [record.user_id for record in audit_store.records] == ["u-2", "u-3"]

    def test_records_after_close_are_written_inline(self, mocker, audit_store, make_context):
        mocker.patch.object(AccessAuditSink, '_setup_async_processing')
        sink = AccessAuditSink(audit_store, mode="async")
        sink.close()

        sink.record(_grant(), _principal(), make_context())

        assert len(audit_store) == 1

    def test_flush_counts_only_successful_writes(self, mocker, make_context):
        mocker.patch.object(AccessAuditSink, '_setup_async_processing')
        store = mocker.Mock()
        store.append.side_effect = [None, RuntimeError("lost"), None]
        sink = AccessAuditSink(store, mode="async")
        for _ in range(3):
            sink.record(_grant(), _principal(), make_context())

        assert sink.flush() == 2
        assert sink.total_write_failures == 1

    def test_close_racing_a_record_never_strands_it(self, mocker, audit_store, make_context):
        mocker.patch.object(AccessAuditSink, '_setup_async_processing')
        sink = AccessAuditSink(audit_store, mode="async")

        class ClosingLock:
            """Lets close() complete just before record() takes the buffer lock."""

            def __enter__(self):
                self._lock = threading.Lock()
                sink.buffer_lock = self._lock
                sink.close()
                self._lock.acquire()

            def __exit__(self, *exc_info):
                self._lock.release()

        sink.buffer_lock = ClosingLock()
        sink.record(_grant(), _principal(), make_context())

        assert sink.closed
        assert len(audit_store) == 1
        assert len(sink.event_buffer) == 0
