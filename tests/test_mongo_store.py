"""MongoDB存储测试（motor 集合替身）"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock, Mock
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from uptime_monitor.models.alert import (
    Alert, AlertSeverity, AlertStatus, AlertType, NotificationChannel
)
from uptime_monitor.models.health_check import CheckStatus
from uptime_monitor.models.incident import Incident, IncidentStatus, TransitionKind
from uptime_monitor.models.service import Settings
from uptime_monitor.services.incident_detector import IncidentDetector
from uptime_monitor.storage.mongo_store import MongoStore
from uptime_monitor.utils.clock import utcnow
from uptime_monitor.utils.exceptions import ErrorCode, StorageError


class AsyncCursor:
    """支持 sort/limit 链式调用和 async for 的游标替身"""

    def __init__(self, docs):
        self.docs = list(docs)

    def sort(self, *args, **kwargs):
        return self

    def limit(self, *args):
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self.docs:
            yield doc


def mock_store():
    db = MagicMock()
    client = MagicMock()
    client.__getitem__.return_value = db
    return MongoStore('mongodb://localhost:27017', client=client), db


def open_incident_doc(**overrides):
    incident = Incident('api', 'user-api', utcnow() - timedelta(minutes=2))
    doc = incident.to_document()
    doc.update(overrides)
    return doc


class TestIncidentTransitions:
    """事件状态变更只作用于OPEN事件"""

    def setup_method(self):
        self.store, self.db = mock_store()

    @pytest.mark.asyncio
    async def test_increment_guarded_by_open_status(self):
        doc = open_incident_doc(failed_checks=3)
        self.db.incidents.find_one_and_update = AsyncMock(return_value=doc)

        incident = await self.store.increment_failed_checks(doc['id'])

        assert incident.failed_checks == 3
        args = self.db.incidents.find_one_and_update.await_args
        assert args.args[0] == {'id': doc['id'], 'status': 'OPEN'}
        assert args.args[1]['$inc'] == {'failed_checks': 1}
        assert args.kwargs['return_document'] == ReturnDocument.AFTER

    @pytest.mark.asyncio
    async def test_increment_closed_incident_returns_none(self):
        self.db.incidents.find_one_and_update = AsyncMock(return_value=None)

        assert await self.store.increment_failed_checks('closed-id') is None

    @pytest.mark.asyncio
    async def test_close_incident(self):
        doc = open_incident_doc()
        self.db.incidents.find_one = AsyncMock(return_value=doc)
        self.db.incidents.update_one = AsyncMock(return_value=Mock(modified_count=1))
        end_time = utcnow()

        closed = await self.store.close_incident(doc['id'], end_time)

        assert closed.status == IncidentStatus.CLOSED
        assert closed.end_time == end_time
        assert closed.duration >= 120000
        args = self.db.incidents.update_one.await_args.args
        assert args[0] == {'id': doc['id'], 'status': 'OPEN'}
        assert args[1]['$set']['status'] == 'CLOSED'
        assert args[1]['$set']['duration'] == closed.duration

    @pytest.mark.asyncio
    async def test_close_lost_race_returns_none(self):
        """读取后事件已被其他流程关闭时不覆盖"""
        self.db.incidents.find_one = AsyncMock(return_value=open_incident_doc())
        self.db.incidents.update_one = AsyncMock(return_value=Mock(modified_count=0))

        assert await self.store.close_incident('id', utcnow()) is None

    @pytest.mark.asyncio
    async def test_close_already_closed_skips_update(self):
        self.db.incidents.find_one = AsyncMock(return_value=open_incident_doc(status='CLOSED'))
        self.db.incidents.update_one = AsyncMock()

        assert await self.store.close_incident('id', utcnow()) is None
        self.db.incidents.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_open_incident_raises_storage_error(self):
        self.db.incidents.insert_one = AsyncMock(
            side_effect=DuplicateKeyError('E11000 one_open_incident_per_service'))

        with pytest.raises(StorageError, match="已存在未关闭的事件") as exc_info:
            await self.store.insert_incident(Incident('api', 'user-api', utcnow()))

        assert exc_info.value.error_code == ErrorCode.STORAGE_ERROR
        assert exc_info.value.details['collection'] == 'incidents'
        assert isinstance(exc_info.value.cause, DuplicateKeyError)


class TestDetectorOnMongoStore:
    """并发创建事件冲突时检测器沿用已有事件"""

    @pytest.mark.asyncio
    async def test_duplicate_key_reuses_existing_incident(self):
        store, db = mock_store()
        existing = open_incident_doc()
        db.maintenance_windows.find_one = AsyncMock(return_value=None)
        db.maintenance_windows.find = Mock(return_value=AsyncCursor([]))
        db.healthchecks.find = Mock(return_value=AsyncCursor([]))
        db.incidents.find_one = AsyncMock(side_effect=[None, existing])
        db.incidents.insert_one = AsyncMock(side_effect=DuplicateKeyError('E11000'))

        transition = await IncidentDetector(store).detect(
            'api', 'user-api', CheckStatus.DOWN, CheckStatus.UP, utcnow(), Settings())

        assert transition.kind == TransitionKind.CONTINUED
        assert transition.incident.id == existing['id']


class TestIndexes:
    """索引定义"""

    @pytest.mark.asyncio
    async def test_partial_unique_index_on_open_incidents(self):
        store, db = mock_store()
        for name in ('services', 'healthchecks', 'incidents', 'alerts',
                     'maintenance_windows', 'settings', 'heartbeats'):
            getattr(db, name).create_index = AsyncMock()

        await store.ensure_indexes()

        calls = {c.kwargs.get('name'): c for c in db.incidents.create_index.await_args_list}
        open_index = calls['one_open_incident_per_service']
        assert open_index.args[0] == 'service_id'
        assert open_index.kwargs['unique'] is True
        assert open_index.kwargs['partialFilterExpression'] == {'status': 'OPEN'}
        assert calls['incident_id'].kwargs['unique'] is True


class TestAlertsAndSettings:
    """告警终态与全局设置"""

    def setup_method(self):
        self.store, self.db = mock_store()

    def _alert(self) -> Alert:
        return Alert('api', 'user-api', AlertType.INCIDENT_OPENED, AlertSeverity.CRITICAL,
                     '服务故障', '连接超时', channels=[NotificationChannel.SLACK])

    @pytest.mark.asyncio
    async def test_finalize_only_pending(self):
        alert = self._alert()
        alert.mark_sent()
        self.db.alerts.update_one = AsyncMock(return_value=Mock(modified_count=1))

        assert await self.store.finalize_alert(alert) is True
        args = self.db.alerts.update_one.await_args.args
        assert args[0] == {'id': alert.id, 'status': AlertStatus.PENDING.value}
        assert args[1]['$set']['status'] == 'SENT'

        self.db.alerts.update_one = AsyncMock(return_value=Mock(modified_count=0))
        assert await self.store.finalize_alert(alert) is False

    @pytest.mark.asyncio
    async def test_settings_created_with_defaults(self):
        self.db.settings.find_one = AsyncMock(return_value=None)
        self.db.settings.update_one = AsyncMock()

        settings = await self.store.get_settings()

        assert settings.global_alerts_enabled is True
        args = self.db.settings.update_one.await_args
        assert '$setOnInsert' in args.args[1]
        assert args.kwargs['upsert'] is True

    @pytest.mark.asyncio
    async def test_settings_missing_fields_backfilled(self):
        self.db.settings.find_one = AsyncMock(
            return_value={'id': 'global', 'global_alerts_enabled': False})
        self.db.settings.update_one = AsyncMock()

        settings = await self.store.get_settings()

        assert settings.global_alerts_enabled is False
        missing = self.db.settings.update_one.await_args.args[1]['$set']
        assert 'global_health_checks_enabled' in missing
        assert 'global_alerts_enabled' not in missing

    @pytest.mark.asyncio
    async def test_list_incidents_overlapping(self):
        doc = open_incident_doc()
        self.db.incidents.find = Mock(return_value=AsyncCursor([doc]))
        since = utcnow() - timedelta(hours=1)

        incidents = await self.store.list_incidents('api', overlapping_since=since)

        assert [i.id for i in incidents] == [doc['id']]
        query = self.db.incidents.find.call_args.args[0]
        assert query['$or'] == [{'end_time': None}, {'end_time': {'$gte': since}}]
