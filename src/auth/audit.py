"""
Role Access Audit Trail

Durable, append-only record of every authorization decision, granted or
denied, plus the read-only reporting surface compliance reviews run against
it.

AccessAuditSink
    Called by the authorization engine exactly once per completed evaluation.
    Two write modes are supported:

    - sync: the record is written inline before evaluate() returns. Every
      decision is on disk before the guarded handler runs, at the cost of one
      store round-trip per request.
    - async: the record is queued and a daemon writer thread persists it. The
      request never waits on the store; records still queued when the process
      dies are lost.

    In both modes a failed write is logged and counted and never changes the
    decision or reaches the request pipeline.

AccessAuditService
    Paged searches by user, by organization and across the whole trail,
    aggregate statistics, and administrative entries for role and status
    changes made outside the request pipeline.
"""

from collections import deque
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import Any, Deque, Dict, Optional

import structlog
from prometheus_client import Counter, Gauge

from src.auth.context import RequestContext
from src.auth.models import Decision, ExtractionFailure, Principal, PrincipalOrFailure
from src.auth.roles import UserRole
from src.data.audit_store import AuditStore
from src.data.models import (
    DEFAULT_PAGE_SIZE,
    AuditPage,
    AuditQuery,
    AuditRecord,
    AuditStatistics,
)

logger = structlog.get_logger(__name__)

AUDIT_MODE_SYNC = "sync"
AUDIT_MODE_ASYNC = "async"
AUDIT_MODES = (AUDIT_MODE_SYNC, AUDIT_MODE_ASYNC)

AUDIT_SERVICE_EXTENSION_KEY = "audit_service"

ADMIN_ACTION_METHOD = "ADMIN_ACTION"
ADMIN_USER_AGENT = "Admin Interface"

audit_metrics = {
    'write_failures': Counter(
        'authz_audit_write_failures_total',
        'Audit records that could not be persisted',
        ['mode']
    ),
    'records_written': Counter(
        'authz_audit_records_written_total',
        'Audit records persisted',
        ['mode']
    ),
    'records_dropped': Counter(
        'authz_audit_records_dropped_total',
        'Audit records dropped because the async buffer was full'
    ),
    'buffer_size': Gauge(
        'authz_audit_buffer_size',
        'Audit records waiting in the async buffer'
    ),
}


def build_audit_record(
    decision: Decision,
    principal_or_failure: PrincipalOrFailure,
    context: RequestContext,
    policy_name: Optional[str] = None
) -> AuditRecord:
    """
    Map one completed decision and its request onto an AuditRecord.

    Whatever identity was available is kept: for extraction failures the raw
    user id and raw role string (possibly empty) are stored as claimed.
    """
    user_id: Optional[str] = None
    role = ""
    session_id = context.session_id

    if isinstance(principal_or_failure, Principal):
        user_id = principal_or_failure.user_id
        role = principal_or_failure.role.value
        session_id = principal_or_failure.session_id or session_id
    elif isinstance(principal_or_failure, ExtractionFailure):
        user_id = principal_or_failure.raw_user_id or None
        role = principal_or_failure.raw_role or ""
        session_id = principal_or_failure.session_id or session_id

    method = (context.method or "").upper()
    return AuditRecord(
        user_id=user_id,
        role=role,
        resource=f"{method} {context.path}",
        http_method=method,
        organization_id=decision.resolved_organization_id,
        access_granted=decision.granted,
        reason_code=decision.reason.value,
        policy_name=policy_name,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        details=decision.details,
        session_id=session_id,
        timestamp=decision.timestamp,
    )


class AccessAuditSink:
    """
    Persists one AuditRecord per authorization decision.

    Args:
        store: Append-only audit store
        mode: 'sync' or 'async'
        buffer_size: Maximum queued records in async mode; when full the
            oldest queued record is dropped
        flush_interval: Seconds between writer thread wake-ups in async mode
    """

    def __init__(
        self,
        store: AuditStore,
        mode: str = AUDIT_MODE_SYNC,
        buffer_size: int = 1000,
        flush_interval: float = 0.5
    ):
        if mode not in AUDIT_MODES:
            raise ValueError(f"Unknown audit mode {mode!r}, expected one of {AUDIT_MODES}")
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self.store = store
        self.mode = mode
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval

        self.event_buffer: Deque[AuditRecord] = deque(maxlen=buffer_size)
        self.buffer_lock = Lock()
        self.write_lock = Lock()
        self._wakeup = Event()
        self._closed = False
        self.processing_thread: Optional[Thread] = None

        self.total_records_written = 0
        self.total_write_failures = 0
        self.total_records_dropped = 0

        if self.mode == AUDIT_MODE_ASYNC:
            self._setup_async_processing()

    def _setup_async_processing(self) -> None:
        self.processing_thread = Thread(
            target=self._async_record_processor,
            daemon=True,
            name="AccessAuditWriter"
        )
        self.processing_thread.start()

    def _async_record_processor(self) -> None:
        while not self._closed:
            self._wakeup.wait(self.flush_interval)
            self._wakeup.clear()
            self.flush()

    def record(
        self,
        decision: Decision,
        principal_or_failure: PrincipalOrFailure,
        context: RequestContext,
        policy_name: Optional[str] = None
    ) -> None:
        """
        Record one decision. Never raises.

        In sync mode the write is attempted before returning; in async mode the
        record is queued for the writer thread.
        """
        try:
            audit_record = build_audit_record(decision, principal_or_failure, context, policy_name)
        except Exception as e:
            self._record_failure(e, stage="build")
            return

        if self.mode == AUDIT_MODE_SYNC:
            self._write(audit_record)
            return

        with self.buffer_lock:
            # close() sets _closed under this lock before its final flush
            write_inline = self._closed
            if not write_inline:
                self._enqueue(audit_record)
            buffered = len(self.event_buffer)

        if write_inline:
            self._write(audit_record)
        elif buffered >= self.buffer_size * 0.8:
            self._wakeup.set()

    def _enqueue(self, audit_record: AuditRecord) -> None:
        """Bounded append, oldest record dropped when full. Caller holds buffer_lock."""
        if len(self.event_buffer) == self.buffer_size:
            dropped = self.event_buffer[0]
            self.total_records_dropped += 1
            audit_metrics['records_dropped'].inc()
            logger.warning(
                "audit_buffer_full",
                dropped_record_id=dropped.id,
                buffer_size=self.buffer_size,
            )
        self.event_buffer.append(audit_record)
        audit_metrics['buffer_size'].set(len(self.event_buffer))

    def _write(self, audit_record: AuditRecord) -> bool:
        try:
            with self.write_lock:
                self.store.append(audit_record)
        except Exception as e:
            self._record_failure(e, stage="write", record=audit_record)
            return False

        self.total_records_written += 1
        audit_metrics['records_written'].labels(mode=self.mode).inc()
        return True

    def _record_failure(
        self,
        error: Exception,
        stage: str,
        record: Optional[AuditRecord] = None
    ) -> None:
        self.total_write_failures += 1
        audit_metrics['write_failures'].labels(mode=self.mode).inc()
        logger.warning(
            "audit_write_failed",
            stage=stage,
            mode=self.mode,
            error_type=error.__class__.__name__,
            error=str(error),
            user_id=record.user_id if record else None,
            resource=record.resource if record else None,
            access_granted=record.access_granted if record else None,
        )

    def flush(self) -> int:
        """Write every queued record; returns the number written."""
        with self.buffer_lock:
            if not self.event_buffer:
                return 0
            records_to_write = list(self.event_buffer)
            self.event_buffer.clear()
            audit_metrics['buffer_size'].set(0)

        written = 0
        for audit_record in records_to_write:
            if self._write(audit_record):
                written += 1
        return written

    def close(self, timeout: float = 5.0) -> None:
        """Stop the writer thread and flush what is still queued."""
        with self.buffer_lock:
            if self._closed:
                return
            self._closed = True
        self._wakeup.set()
        if self.processing_thread is not None:
            self.processing_thread.join(timeout)
        remaining = self.flush()
        logger.info(
            "Access audit sink closed",
            mode=self.mode,
            flushed_on_close=remaining,
            total_records_written=self.total_records_written,
            total_write_failures=self.total_write_failures,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def get_audit_statistics(self) -> Dict[str, Any]:
        """Operational counters of the sink itself."""
        with self.buffer_lock:
            buffered = len(self.event_buffer)
        return {
            'mode': self.mode,
            'current_buffer_size': buffered,
            'max_buffer_size': self.buffer_size,
            'total_records_written': self.total_records_written,
            'total_write_failures': self.total_write_failures,
            'total_records_dropped': self.total_records_dropped,
            'writer_alive': bool(self.processing_thread and self.processing_thread.is_alive()),
        }


class AccessAuditService:
    """Compliance reporting and administrative entries over the audit store."""

    def __init__(self, store: AuditStore):
        self.store = store

    def get_user_audit_logs(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        access_granted: Optional[bool] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE
    ) -> AuditPage:
        query = AuditQuery(
            user_id=user_id,
            start=start,
            end=end,
            access_granted=access_granted,
            page=page,
            page_size=page_size,
        )
        return self.store.find(query)

    def get_organization_audit_logs(
        self,
        organization_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        access_granted: Optional[bool] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE
    ) -> AuditPage:
        query = AuditQuery(
            organization_id=organization_id,
            start=start,
            end=end,
            access_granted=access_granted,
            page=page,
            page_size=page_size,
        )
        return self.store.find(query)

    def get_all_audit_logs(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        access_granted: Optional[bool] = None,
        role: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE
    ) -> AuditPage:
        query = AuditQuery(
            start=start,
            end=end,
            access_granted=access_granted,
            role=role,
            page=page,
            page_size=page_size,
        )
        return self.store.find(query)

    def get_audit_statistics(
        self,
        organization_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> AuditStatistics:
        """
        Aggregate access attempts, optionally scoped to one organization and a
        time range. Hours are UTC hours of day (0-23).
        """
        query = AuditQuery(organization_id=organization_id, start=start, end=end)
        return self.store.aggregate_statistics(query)

    def log_role_change(
        self,
        user_id: str,
        changed_by: str,
        previous_role: str,
        new_role: str,
        reason: Optional[str] = None
    ) -> bool:
        """Record a role change made by an administrator. Never raises."""
        details = (
            f"Role changed from {previous_role} to {new_role} by {changed_by}. "
            f"Reason: {reason or 'No reason provided'}"
        )
        return self._log_admin_action(
            user_id, changed_by, "ROLE_CHANGE", f"User Role Change - User {user_id}", details
        )

    def log_status_change(
        self,
        user_id: str,
        changed_by: str,
        previous_active: bool,
        new_active: bool,
        reason: Optional[str] = None
    ) -> bool:
        """Record an account activation or deactivation. Never raises."""
        previous = "Active" if previous_active else "Inactive"
        new = "Active" if new_active else "Inactive"
        details = (
            f"Account status changed from {previous} to {new} by {changed_by}. "
            f"Reason: {reason or 'No reason provided'}"
        )
        return self._log_admin_action(
            user_id, changed_by, "STATUS_CHANGE", f"User Status Change - User {user_id}", details
        )

    def _log_admin_action(
        self,
        user_id: str,
        changed_by: str,
        action: str,
        resource: str,
        details: str
    ) -> bool:
        try:
            self.store.append(AuditRecord(
                user_id=user_id,
                role=UserRole.PLATFORM_STAFF.value,
                resource=resource,
                http_method=ADMIN_ACTION_METHOD,
                access_granted=True,
                reason_code=action,
                user_agent=ADMIN_USER_AGENT,
                details=details,
                session_id=changed_by,
                timestamp=datetime.now(timezone.utc),
            ))
        except Exception as e:
            audit_metrics['write_failures'].labels(mode=AUDIT_MODE_SYNC).inc()
            logger.warning(
                "audit_write_failed",
                stage="admin_action",
                action=action,
                user_id=user_id,
                error_type=e.__class__.__name__,
                error=str(e),
            )
            return False

        logger.info("Administrative action audited", action=action, user_id=user_id)
        return True


__all__ = [
    'AccessAuditSink',
    'AccessAuditService',
    'build_audit_record',
    'AUDIT_MODE_SYNC',
    'AUDIT_MODE_ASYNC',
    'ADMIN_ACTION_METHOD',
    'AUDIT_SERVICE_EXTENSION_KEY',
]
