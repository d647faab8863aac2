"""
Role Access Audit Store

Append-only persistence for access decisions. Two implementations share one
interface:

- MongoAuditStore: PyMongo collection with indexes for the reporting queries
  (per user, per organization, time range). Statistics are computed by an
  aggregation pipeline on the server. Transient driver failures are retried
  with tenacity via with_database_retry.
- InMemoryAuditStore: lock-protected list used by tests and by local
  development without a database.

Neither store offers update or delete. Searches are newest first and paged
with a 1-based page number.
"""

import threading
from collections import Counter
from datetime import timezone
from typing import Any, Dict, Iterator, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

from src.data.exceptions import DatabaseOperationType, with_database_retry
from src.data.models import AuditPage, AuditQuery, AuditRecord, AuditStatistics

logger = structlog.get_logger(__name__)

DEFAULT_COLLECTION_NAME = "role_access_audits"
TOP_RESOURCE_LIMIT = 10


class AuditStore:
    """
    Interface of an append-only audit store.

    append() may raise; the audit sink is responsible for containing the error.
    """

    def append(self, record: AuditRecord) -> None:
        raise NotImplementedError

    def find(self, query: AuditQuery) -> AuditPage:
        raise NotImplementedError

    def aggregate_statistics(self, query: AuditQuery) -> AuditStatistics:
        """
        Counts over every record matching the query filters, ignoring paging.
        Hours are UTC hours of day (0-23).
        """
        raise NotImplementedError

    def ensure_indexes(self) -> None:
        """Create supporting indexes where the backend has any."""

    def health_check(self) -> Dict[str, Any]:
        return {'status': 'healthy', 'backend': self.__class__.__name__}


class InMemoryAuditStore(AuditStore):
    """Process-local audit store."""

    def __init__(self):
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    def _matching(self, query: AuditQuery) -> List[AuditRecord]:
        with self._lock:
            snapshot = list(self._records)
        matched = [record for record in snapshot if query.matches(record)]
        # stable for equal timestamps: later appends first
        matched.reverse()
        matched.sort(key=lambda record: record.timestamp, reverse=True)
        return matched

    def find(self, query: AuditQuery) -> AuditPage:
        matched = self._matching(query)
        items = matched[query.skip:query.skip + query.page_size]
        return AuditPage(
            items=items,
            total_count=len(matched),
            page=query.page,
            page_size=query.page_size,
        )

    def iter_records(self, query: AuditQuery) -> Iterator[AuditRecord]:
        """All records matching the query filters, ignoring paging."""
        return iter(self._matching(query))

    def aggregate_statistics(self, query: AuditQuery) -> AuditStatistics:
        total = granted = 0
        users = set()
        by_role: Counter = Counter()
        by_hour: Counter = Counter()
        by_resource: Counter = Counter()

        for record in self.iter_records(query):
            total += 1
            if record.access_granted:
                granted += 1
            if record.user_id:
                users.add(record.user_id)
            by_role[record.role] += 1
            by_hour[record.timestamp.astimezone(timezone.utc).hour] += 1
            by_resource[record.resource] += 1

        return AuditStatistics(
            total_attempts=total,
            successful_attempts=granted,
            failed_attempts=total - granted,
            unique_users=len(users),
            attempts_by_role=dict(by_role),
            attempts_by_hour=dict(sorted(by_hour.items())),
            top_resources=dict(by_resource.most_common(TOP_RESOURCE_LIMIT)),
            start_date=query.start,
            end_date=query.end,
        )

    @property
    def records(self) -> List[AuditRecord]:
        """Copy of every stored record in insertion order."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class MongoAuditStore(AuditStore):
    """
    MongoDB backed audit store.

    Args:
        collection: PyMongo collection holding audit documents
    """

    def __init__(self, collection: Collection):
        self._collection = collection

    @classmethod
    def from_uri(
        cls,
        uri: str,
        database_name: str,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        **client_options
    ) -> 'MongoAuditStore':
        client_options.setdefault('tz_aware', True)
        client_options.setdefault('serverSelectionTimeoutMS', 5000)
        client = MongoClient(uri, **client_options)
        logger.info(
            "MongoDB audit store configured",
            database=database_name,
            collection=collection_name,
        )
        return cls(client[database_name][collection_name])

    @property
    def collection(self) -> Collection:
        return self._collection

    @staticmethod
    def build_filter(query: AuditQuery) -> Dict[str, Any]:
        """Translate query filters into a MongoDB filter document."""
        filter_dict: Dict[str, Any] = {}
        if query.user_id is not None:
            filter_dict['user_id'] = query.user_id
        if query.organization_id is not None:
            filter_dict['organization_id'] = query.organization_id
        if query.role is not None:
            filter_dict['role'] = query.role
        if query.access_granted is not None:
            filter_dict['access_granted'] = query.access_granted

        time_range: Dict[str, Any] = {}
        if query.start is not None:
            time_range['$gte'] = query.start
        if query.end is not None:
            time_range['$lte'] = query.end
        if time_range:
            filter_dict['timestamp'] = time_range
        return filter_dict

    @with_database_retry(DatabaseOperationType.WRITE)
    def append(self, record: AuditRecord) -> None:
        self._collection.insert_one(record.to_mongo_dict())

    @with_database_retry(DatabaseOperationType.READ)
    def find(self, query: AuditQuery) -> AuditPage:
        filter_dict = self.build_filter(query)
        total = self._collection.count_documents(filter_dict)
        cursor = (
            self._collection.find(filter_dict)
            .sort('timestamp', DESCENDING)
            .skip(query.skip)
            .limit(query.page_size)
        )
        items = [AuditRecord.from_mongo_dict(document) for document in cursor]
        return AuditPage(
            items=items,
            total_count=total,
            page=query.page,
            page_size=query.page_size,
        )

    @staticmethod
    def build_statistics_pipeline(query: AuditQuery) -> List[Dict[str, Any]]:
        """One $match over the query filters, then a $facet per breakdown."""
        def count_by(key: Any) -> List[Dict[str, Any]]:
            return [{'$group': {'_id': key, 'count': {'$sum': 1}}}]

        return [
            {'$match': MongoAuditStore.build_filter(query)},
            {'$facet': {
                'totals': [{'$group': {
                    '_id': None,
                    'total': {'$sum': 1},
                    'granted': {'$sum': {'$cond': ['$access_granted', 1, 0]}},
                }}],
                'users': [
                    {'$match': {'user_id': {'$nin': [None, '']}}},
                    {'$group': {'_id': '$user_id'}},
                    {'$count': 'count'},
                ],
                'by_role': count_by('$role'),
                # MongoDB dates are UTC, so $hour is the UTC hour of day
                'by_hour': count_by({'$hour': '$timestamp'}),
                'top_resources': count_by('$resource') + [
                    {'$sort': {'count': -1, '_id': 1}},
                    {'$limit': TOP_RESOURCE_LIMIT},
                ],
            }},
        ]

    @with_database_retry(DatabaseOperationType.READ)
    def aggregate_statistics(self, query: AuditQuery) -> AuditStatistics:
        results = list(self._collection.aggregate(self.build_statistics_pipeline(query)))
        facets = results[0] if results else {}

        totals = (facets.get('totals') or [{}])[0]
        users = (facets.get('users') or [{}])[0]
        total = totals.get('total', 0)
        granted = totals.get('granted', 0)

        return AuditStatistics(
            total_attempts=total,
            successful_attempts=granted,
            failed_attempts=total - granted,
            unique_users=users.get('count', 0),
            attempts_by_role={row['_id']: row['count'] for row in facets.get('by_role', [])},
            attempts_by_hour=dict(sorted(
                (row['_id'], row['count']) for row in facets.get('by_hour', [])
            )),
            top_resources={row['_id']: row['count'] for row in facets.get('top_resources', [])},
            start_date=query.start,
            end_date=query.end,
        )

    @with_database_retry(DatabaseOperationType.INDEX)
    def ensure_indexes(self) -> None:
        self._collection.create_index(
            [('user_id', ASCENDING), ('timestamp', DESCENDING)],
            name='ix_audit_user_timestamp'
        )
        self._collection.create_index(
            [('organization_id', ASCENDING), ('timestamp', DESCENDING)],
            name='ix_audit_organization_timestamp'
        )
        self._collection.create_index(
            [('timestamp', DESCENDING)],
            name='ix_audit_timestamp'
        )
        self._collection.create_index(
            [('access_granted', ASCENDING), ('timestamp', DESCENDING)],
            name='ix_audit_granted_timestamp'
        )
        logger.info("Audit collection indexes ensured", collection=self._collection.name)

    def health_check(self) -> Dict[str, Any]:
        try:
            self._collection.database.client.admin.command('ping')
            return {'status': 'healthy', 'backend': 'mongodb'}
        except Exception as e:
            logger.warning("Audit store health check failed", error=str(e))
            return {'status': 'unhealthy', 'backend': 'mongodb', 'error': str(e)}


def create_audit_store(
    backend: str,
    uri: Optional[str] = None,
    database_name: Optional[str] = None,
    collection_name: str = DEFAULT_COLLECTION_NAME
) -> AuditStore:
    """Build the configured audit store backend ('mongodb' or 'memory')."""
    backend = (backend or 'memory').lower()
    if backend == 'memory':
        return InMemoryAuditStore()
    if backend == 'mongodb':
        if not uri or not database_name:
            raise ValueError("MongoDB audit store requires a URI and a database name")
        return MongoAuditStore.from_uri(uri, database_name, collection_name)
    raise ValueError(f"Unknown audit store backend: {backend}")


__all__ = [
    'AuditStore',
    'InMemoryAuditStore',
    'MongoAuditStore',
    'create_audit_store',
    'DEFAULT_COLLECTION_NAME',
]
