"""
Unit tests for the audit stores and the audit document models.

The MongoDB store is tested against a mocked PyMongo collection; no server is
started.
"""

from datetime import datetime, timedelta, timezone

import pymongo.errors
import pytest
from pydantic import ValidationError

from src.data.audit_store import (
    InMemoryAuditStore,
    MongoAuditStore,
    create_audit_store,
)
from src.data.exceptions import AuditQueryException, AuditWriteException
from src.data.models import AuditQuery, AuditRecord

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _record(minutes: int = 0, **overrides) -> AuditRecord:
    values = dict(
        user_id="u-1",
        role="Director",
        resource="GET /api/orders",
        http_method="GET",
        organization_id="org-a",
        access_granted=True,
        reason_code="GRANTED_ORG_MATCH",
        timestamp=BASE_TIME + timedelta(minutes=minutes),
    )
    values.update(overrides)
    return AuditRecord(**values)


@pytest.mark.unit
class TestAuditModels:

    def test_naive_timestamp_is_utc(self):
        record = _record(timestamp=datetime(2024, 3, 1, 9, 0))
        assert record.timestamp.tzinfo is not None
        assert record.timestamp == BASE_TIME

    def test_records_are_immutable(self):
        record = _record()
        with pytest.raises(ValidationError):
            record.access_granted = False

    def test_mongo_document_uses_underscore_id(self):
        record = _record()
        document = record.to_mongo_dict()

        assert document['_id'] == record.id
        assert 'id' not in document
        assert AuditRecord.from_mongo_dict(document) == record

    def test_query_rejects_inverted_range(self):
        with pytest.raises(ValidationError):
            AuditQuery(start=BASE_TIME, end=BASE_TIME - timedelta(days=1))

    @pytest.mark.parametrize("page,page_size", [(0, 50), (1, 0), (1, 501)])
    def test_query_rejects_bad_paging(self, page, page_size):
        with pytest.raises(ValidationError):
            AuditQuery(page=page, page_size=page_size)

    def test_query_skip(self):
        assert AuditQuery(page=3, page_size=20).skip == 40


@pytest.mark.unit
class TestInMemoryAuditStore:

    def test_newest_first(self, audit_store):
        for minutes in (5, 1, 9):
            audit_store.append(_record(minutes))

        page = audit_store.find(AuditQuery())

        assert [r.timestamp.minute for r in page.items] == [9, 5, 1]
        assert page.total_count == 3

    def test_paging(self, audit_store):
        for minutes in range(5):
            audit_store.append(_record(minutes))

        page = audit_store.find(AuditQuery(page=2, page_size=2))

        assert [r.timestamp.minute for r in page.items] == [2, 1]
        assert page.total_count == 5
        assert page.total_pages == 3

    def test_filters(self, audit_store):
        audit_store.append(_record(0, user_id="u-1", organization_id="org-a"))
        audit_store.append(_record(1, user_id="u-2", organization_id="org-b", access_granted=False,
                                   reason_code="ORG_MISMATCH"))
        audit_store.append(_record(2, user_id="u-2", organization_id="org-a", role="Finance"))

        assert audit_store.find(AuditQuery(user_id="u-2")).total_count == 2
        assert audit_store.find(AuditQuery(organization_id="org-a")).total_count == 2
        assert audit_store.find(AuditQuery(access_granted=False)).total_count == 1
        assert audit_store.find(AuditQuery(role="Finance")).total_count == 1

    def test_time_range_is_inclusive(self, audit_store):
        for minutes in range(5):
            audit_store.append(_record(minutes))

        query = AuditQuery(start=BASE_TIME + timedelta(minutes=1), end=BASE_TIME + timedelta(minutes=3))

        assert audit_store.find(query).total_count == 3

    def test_iter_records_ignores_paging(self, audit_store):
        for minutes in range(4):
            audit_store.append(_record(minutes))
        assert len(list(audit_store.iter_records(AuditQuery(page_size=1)))) == 4

    def test_aggregate_statistics(self, audit_store):
        audit_store.append(_record(0, user_id="u-1"))
        audit_store.append(_record(70, user_id="u-2", role="Finance", access_granted=False,
                                   reason_code="ORG_MISMATCH", resource="GET /api/payments"))
        audit_store.append(_record(75, user_id=None, role="", access_granted=False,
                                   reason_code="NO_CONTEXT"))

        stats = audit_store.aggregate_statistics(AuditQuery(page_size=1))

        assert stats.total_attempts == 3
        assert stats.failed_attempts == 2
        assert stats.unique_users == 2
        assert stats.attempts_by_role == {"Director": 1, "Finance": 1, "": 1}
        assert stats.attempts_by_hour == {9: 1, 10: 2}
        assert list(stats.top_resources) == ["GET /api/orders", "GET /api/payments"]

    def test_health_check(self, audit_store):
        assert audit_store.health_check()['status'] == 'healthy'


@pytest.mark.unit
class TestMongoAuditStore:

    def test_build_filter(self):
        query = AuditQuery(
            user_id="u-1",
            organization_id="org-a",
            access_granted=False,
            role="Finance",
            start=BASE_TIME,
            end=BASE_TIME + timedelta(days=1),
        )

        assert MongoAuditStore.build_filter(query) == {
            'user_id': "u-1",
            'organization_id': "org-a",
            'role': "Finance",
            'access_granted': False,
            'timestamp': {'$gte': BASE_TIME, '$lte': BASE_TIME + timedelta(days=1)},
        }

    def test_empty_filter(self):
        assert MongoAuditStore.build_filter(AuditQuery()) == {}

    def test_append_inserts_document(self, mocker):
        collection = mocker.MagicMock()
        record = _record()

        MongoAuditStore(collection).append(record)

        collection.insert_one.assert_called_once_with(record.to_mongo_dict())

    def test_append_failure_is_translated(self, mocker):
        collection = mocker.MagicMock()
        collection.insert_one.side_effect = pymongo.errors.OperationFailure("not authorized")

        with pytest.raises(AuditWriteException):
            MongoAuditStore(collection).append(_record())

    def test_find_sorts_and_pages(self, mocker):
        collection = mocker.MagicMock()
        stored = _record()
        collection.count_documents.return_value = 7
        cursor = collection.find.return_value.sort.return_value.skip.return_value.limit.return_value
        cursor.__iter__.return_value = iter([stored.to_mongo_dict()])

        page = MongoAuditStore(collection).find(AuditQuery(user_id="u-1", page=2, page_size=5))

        collection.find.assert_called_once_with({'user_id': "u-1"})
        collection.find.return_value.sort.assert_called_once_with('timestamp', pymongo.DESCENDING)
        collection.find.return_value.sort.return_value.skip.assert_called_once_with(5)
        assert page.items == [stored]
        assert page.total_count == 7

    def test_find_failure_is_translated(self, mocker):
        collection = mocker.MagicMock()
        collection.count_documents.side_effect = pymongo.errors.OperationFailure("bad query")

        with pytest.raises(AuditQueryException):
            MongoAuditStore(collection).find(AuditQuery())

    def test_statistics_pipeline(self):
        pipeline = MongoAuditStore.build_statistics_pipeline(AuditQuery(organization_id="org-a"))

        assert pipeline[0] == {'$match': {'organization_id': "org-a"}}
        facets = pipeline[1]['$facet']
        assert set(facets) == {'totals', 'users', 'by_role', 'by_hour', 'top_resources'}
        assert facets['by_hour'][0]['$group']['_id'] == {'$hour': '$timestamp'}
        assert facets['top_resources'][-1] == {'$limit': 10}

    def test_aggregate_statistics_runs_on_the_server(self, mocker):
        collection = mocker.MagicMock()
        collection.aggregate.return_value = iter([{
            'totals': [{'_id': None, 'total': 5, 'granted': 3}],
            'users': [{'count': 4}],
            'by_role': [{'_id': "Director", 'count': 3}, {'_id': "", 'count': 2}],
            'by_hour': [{'_id': 14, 'count': 1}, {'_id': 9, 'count': 4}],
            'top_resources': [{'_id': "GET /api/orders", 'count': 4}, {'_id': "GET /api/audit", 'count': 1}],
        }])
        query = AuditQuery(start=BASE_TIME)

        stats = MongoAuditStore(collection).aggregate_statistics(query)

        collection.aggregate.assert_called_once_with(MongoAuditStore.build_statistics_pipeline(query))
        collection.find.assert_not_called()
        assert stats.total_attempts == 5
        assert stats.successful_attempts == 3
        assert stats.failed_attempts == 2
        assert stats.unique_users == 4
        assert stats.attempts_by_role == {"Director": 3, "": 2}
        assert list(stats.attempts_by_hour.items()) == [(9, 4), (14, 1)]
        assert stats.top_resources == {"GET /api/orders": 4, "GET /api/audit": 1}
        assert stats.start_date == BASE_TIME

    def test_aggregate_statistics_empty_collection(self, mocker):
        collection = mocker.MagicMock()
        collection.aggregate.return_value = iter([{
            'totals': [], 'users': [], 'by_role': [], 'by_hour': [], 'top_resources': [],
        }])

        stats = MongoAuditStore(collection).aggregate_statistics(AuditQuery())

        assert stats.total_attempts == 0
        assert stats.unique_users == 0
        assert stats.attempts_by_role == {}

    def test_aggregate_failure_is_translated(self, mocker):
        collection = mocker.MagicMock()
        collection.aggregate.side_effect = pymongo.errors.OperationFailure("bad pipeline")

        with pytest.raises(AuditQueryException):
            MongoAuditStore(collection).aggregate_statistics(AuditQuery())

    def test_ensure_indexes(self, mocker):
        collection = mocker.MagicMock()

        MongoAuditStore(collection).ensure_indexes()

        names = {call.kwargs['name'] for call in collection.create_index.call_args_list}
        assert names == {
            'ix_audit_user_timestamp',
            'ix_audit_organization_timestamp',
            'ix_audit_timestamp',
            'ix_audit_granted_timestamp',
        }

    def test_health_check_reports_unreachable_server(self, mocker):
        collection = mocker.MagicMock()
        collection.database.client.admin.command.side_effect = pymongo.errors.ServerSelectionTimeoutError("down")

        health = MongoAuditStore(collection).health_check()

        assert health['status'] == 'unhealthy'


@pytest.mark.unit
class TestCreateAuditStore:

    def test_memory_backend(self):
        assert isinstance(create_audit_store('memory'), InMemoryAuditStore)

    def test_mongodb_requires_location(self):
        with pytest.raises(ValueError):
            create_audit_store('mongodb')

    def test_mongodb_backend(self, mocker):
        client_class = mocker.patch('src.data.audit_store.MongoClient')

        store = create_audit_store('mongodb', uri='mongodb://db:27017', database_name='portal')

        assert isinstance(store, MongoAuditStore)
        client_class.assert_called_once_with(
            'mongodb://db:27017', tz_aware=True, serverSelectionTimeoutMS=5000
        )

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_audit_store('postgres')
