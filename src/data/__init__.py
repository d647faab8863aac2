"""
Audit Trail Persistence

Pydantic document models and append-only stores for role access audit
records. MongoDB through PyMongo in deployed environments, a lock-protected
in-memory list for tests and local development.
"""

from src.data.audit_store import (
    AuditStore,
    InMemoryAuditStore,
    MongoAuditStore,
    create_audit_store,
)
from src.data.exceptions import (
    AuditQueryException,
    AuditWriteException,
    ConnectionException,
    DatabaseException,
    with_database_retry,
)
from src.data.models import AuditPage, AuditQuery, AuditRecord, AuditStatistics

__all__ = [
    'AuditRecord',
    'AuditQuery',
    'AuditPage',
    'AuditStatistics',
    'AuditStore',
    'InMemoryAuditStore',
    'MongoAuditStore',
    'create_audit_store',
    'DatabaseException',
    'ConnectionException',
    'AuditWriteException',
    'AuditQueryException',
    'with_database_retry',
]
