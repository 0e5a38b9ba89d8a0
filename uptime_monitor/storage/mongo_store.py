"""基于 motor 的 MongoDB 存储实现"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .base import MonitorStore
from ..models.alert import Alert, AlertStatus, AlertType
from ..models.health_check import CheckStatus, HealthCheck
from ..models.incident import Incident, IncidentStatus
from ..models.service import SETTINGS_ID, MaintenanceWindow, Service, Settings
from ..utils.clock import utcnow
from ..utils.exceptions import StorageError
from ..utils.log_manager import get_logger

PROJECTION = {'_id': 0}


class MongoStore(MonitorStore):
    """MongoDB存储

    所有集合以字符串 id 字段作为业务主键，读取时去掉 ``_id``。
    """

    def __init__(self, uri: str, database: str = 'uptime_monitor',
                 client: Optional[AsyncIOMotorClient] = None,
                 server_selection_timeout_ms: int = 5000):
        """
        初始化MongoDB存储

        Args:
            uri: MongoDB连接串
            database: 数据库名称
            client: 已有的客户端（测试时注入）
            server_selection_timeout_ms: 服务器选择超时
        """
        self.client = client or AsyncIOMotorClient(
            uri, tz_aware=True, serverSelectionTimeoutMS=server_selection_timeout_ms)
        self.db = self.client[database]
        self.logger = get_logger('storage.mongodb')

    # 服务
    async def list_services(self, include_deleted: bool = False) -> List[Service]:
        query: Dict[str, Any] = {} if include_deleted else {'deleted_at': None}
        cursor = self.db.services.find(query, PROJECTION)
        return [Service.from_document(doc) async for doc in cursor]

    async def get_service(self, service_id: str) -> Optional[Service]:
        doc = await self.db.services.find_one({'id': service_id, 'deleted_at': None}, PROJECTION)
        return Service.from_document(doc) if doc else None

    async def save_service(self, service: Service) -> None:
        await self.db.services.replace_one({'id': service.id}, service.to_document(), upsert=True)

    async def update_service_status(self, service_id: str, status: CheckStatus,
                                    checked_at: datetime) -> None:
        await self.db.services.update_one(
            {'id': service_id},
            {'$set': {'last_status': status.value, 'last_checked_at': checked_at,
                      'updated_at': utcnow()}}
        )

    async def update_service_dependencies(self, service_id: str,
                                          dependencies: List[str]) -> None:
        await self.db.services.update_one(
            {'id': service_id},
            {'$set': {'dependencies': list(dependencies), 'updated_at': utcnow()}}
        )

    # 健康检查记录
    async def insert_health_check(self, check: HealthCheck) -> None:
        await self.db.healthchecks.insert_one(check.to_document())

    async def get_recent_health_checks(self, service_id: str, limit: int = 10) -> List[HealthCheck]:
        cursor = self.db.healthchecks.find({'service_id': service_id}, PROJECTION) \
            .sort('timestamp', DESCENDING).limit(limit)
        return [HealthCheck.from_document(doc) async for doc in cursor]

    # 事件
    async def get_open_incident(self, service_id: str) -> Optional[Incident]:
        doc = await self.db.incidents.find_one(
            {'service_id': service_id, 'status': IncidentStatus.OPEN.value}, PROJECTION)
        return Incident.from_document(doc) if doc else None

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        doc = await self.db.incidents.find_one({'id': incident_id}, PROJECTION)
        return Incident.from_document(doc) if doc else None

    async def insert_incident(self, incident: Incident) -> None:
        try:
            await self.db.incidents.insert_one(incident.to_document())
        except DuplicateKeyError as e:
            raise StorageError(f"服务 {incident.service_id} 已存在未关闭的事件",
                               collection='incidents', cause=e)

    async def increment_failed_checks(self, incident_id: str) -> Optional[Incident]:
        doc = await self.db.incidents.find_one_and_update(
            {'id': incident_id, 'status': IncidentStatus.OPEN.value},
            {'$inc': {'failed_checks': 1}, '$set': {'updated_at': utcnow()}},
            projection=PROJECTION,
            return_document=ReturnDocument.AFTER
        )
        return Incident.from_document(doc) if doc else None

    async def close_incident(self, incident_id: str, end_time: datetime) -> Optional[Incident]:
        incident = await self.get_incident(incident_id)
        if incident is None or not incident.is_open:
            return None
        incident.close(end_time)
        result = await self.db.incidents.update_one(
            {'id': incident_id, 'status': IncidentStatus.OPEN.value},
            {'$set': {'status': incident.status.value, 'end_time': incident.end_time,
                      'duration': incident.duration, 'updated_at': incident.updated_at}}
        )
        return incident if result.modified_count else None

    async def set_incident_correlation(self, incident_id: str, correlation_id: str,
                                       root_cause_service_id: str) -> None:
        await self.db.incidents.update_one(
            {'id': incident_id},
            {'$set': {'is_correlated': True, 'correlation_id': correlation_id,
                      'root_cause_service_id': root_cause_service_id, 'updated_at': utcnow()}}
        )

    async def add_impacted_services(self, incident_id: str, service_ids: List[str]) -> None:
        await self.db.incidents.update_one(
            {'id': incident_id},
            {'$addToSet': {'impacted_service_ids': {'$each': list(service_ids)}},
             '$set': {'updated_at': utcnow()}}
        )

    async def list_incidents(self, service_id: str,
                             overlapping_since: Optional[datetime] = None) -> List[Incident]:
        query: Dict[str, Any] = {'service_id': service_id}
        if overlapping_since is not None:
            query['$or'] = [{'end_time': None}, {'end_time': {'$gte': overlapping_since}}]
        cursor = self.db.incidents.find(query, PROJECTION).sort('start_time', ASCENDING)
        return [Incident.from_document(doc) async for doc in cursor]

    async def list_correlated_incidents(self, correlation_id: str) -> List[Incident]:
        cursor = self.db.incidents.find({'correlation_id': correlation_id}, PROJECTION) \
            .sort('start_time', ASCENDING)
        return [Incident.from_document(doc) async for doc in cursor]

    # 告警
    async def insert_alert(self, alert: Alert) -> None:
        await self.db.alerts.insert_one(alert.to_document())

    async def finalize_alert(self, alert: Alert) -> bool:
        result = await self.db.alerts.update_one(
            {'id': alert.id, 'status': AlertStatus.PENDING.value},
            {'$set': {'status': alert.status.value, 'error_message': alert.error_message,
                      'sent_at': alert.sent_at, 'updated_at': alert.updated_at}}
        )
        return result.modified_count == 1

    async def count_recent_alerts(self, service_id: str, alert_type: AlertType,
                                  since: datetime) -> int:
        return await self.db.alerts.count_documents(
            {'service_id': service_id, 'type': alert_type.value, 'created_at': {'$gte': since}})

    async def list_alerts(self, status: Optional[AlertStatus] = None,
                          service_id: Optional[str] = None, limit: int = 100) -> List[Alert]:
        query: Dict[str, Any] = {}
        if status is not None:
            query['status'] = status.value
        if service_id is not None:
            query['service_id'] = service_id
        cursor = self.db.alerts.find(query, PROJECTION).sort('created_at', DESCENDING).limit(limit)
        return [Alert.from_document(doc) async for doc in cursor]

    # 维护窗口
    async def insert_maintenance_window(self, window: MaintenanceWindow) -> None:
        await self.db.maintenance_windows.insert_one(window.to_document())

    async def list_maintenance_windows(self, service_id: str) -> List[MaintenanceWindow]:
        cursor = self.db.maintenance_windows.find({'service_id': service_id}, PROJECTION) \
            .sort('start_time', DESCENDING)
        return [MaintenanceWindow.from_document(doc) async for doc in cursor]

    async def get_active_maintenance_window(self, service_id: str,
                                            at: datetime) -> Optional[MaintenanceWindow]:
        doc = await self.db.maintenance_windows.find_one(
            {'service_id': service_id, 'start_time': {'$lte': at}, 'end_time': {'$gte': at}},
            PROJECTION
        )
        return MaintenanceWindow.from_document(doc) if doc else None

    # 全局设置
    async def get_settings(self) -> Settings:
        doc = await self.db.settings.find_one({'id': SETTINGS_ID}, PROJECTION)
        if doc is None:
            settings = Settings()
            await self.db.settings.update_one(
                {'id': SETTINGS_ID}, {'$setOnInsert': settings.to_document()}, upsert=True)
            self.logger.info("已创建默认全局设置")
            return settings

        settings = Settings.from_document(doc)
        missing = {k: v for k, v in settings.to_document().items() if k not in doc}
        if missing:
            await self.db.settings.update_one({'id': SETTINGS_ID}, {'$set': missing})
            self.logger.info(f"全局设置补齐缺失字段: {sorted(missing)}")
        return settings

    async def save_settings(self, settings: Settings) -> None:
        await self.db.settings.replace_one({'id': SETTINGS_ID}, settings.to_document(), upsert=True)

    # 心跳与维护
    async def insert_heartbeat(self, timestamp: datetime) -> None:
        await self.db.heartbeats.insert_one({'timestamp': timestamp, 'status': 'alive'})

    async def ensure_indexes(self) -> None:
        """创建查询和约束所需的索引"""
        await self.db.services.create_index('id', unique=True, name='service_id')
        await self.db.services.create_index('deleted_at', name='service_deleted')

        await self.db.healthchecks.create_index(
            [('service_id', ASCENDING), ('timestamp', DESCENDING)], name='healthcheck_timeline')
        await self.db.healthchecks.create_index('timestamp', name='healthcheck_timestamp')

        await self.db.incidents.create_index('id', unique=True, name='incident_id')
        await self.db.incidents.create_index(
            [('service_id', ASCENDING), ('start_time', DESCENDING)], name='service_timeline')
        await self.db.incidents.create_index(
            'service_id', unique=True, name='one_open_incident_per_service',
            partialFilterExpression={'status': IncidentStatus.OPEN.value})
        await self.db.incidents.create_index('correlation_id', name='incident_correlation')

        await self.db.alerts.create_index('id', unique=True, name='alert_id')
        await self.db.alerts.create_index(
            [('service_id', ASCENDING), ('type', ASCENDING), ('created_at', DESCENDING)],
            name='alert_dedup')
        await self.db.alerts.create_index('status', name='alert_status')

        await self.db.maintenance_windows.create_index(
            [('service_id', ASCENDING), ('start_time', ASCENDING), ('end_time', ASCENDING)],
            name='maintenance_lookup')
        await self.db.settings.create_index('id', unique=True, name='settings_id')
        await self.db.heartbeats.create_index('timestamp', name='heartbeat_timestamp')
        self.logger.info("数据库索引已就绪")

    async def purge_old_records(self, health_checks_before: datetime,
                                incidents_before: datetime, alerts_before: datetime,
                                heartbeats_before: datetime) -> Dict[str, int]:
        deleted = {}
        result = await self.db.healthchecks.delete_many({'timestamp': {'$lt': health_checks_before}})
        deleted['healthchecks'] = result.deleted_count
        result = await self.db.incidents.delete_many(
            {'status': IncidentStatus.CLOSED.value, 'end_time': {'$lt': incidents_before}})
        deleted['incidents'] = result.deleted_count
        result = await self.db.alerts.delete_many({'created_at': {'$lt': alerts_before}})
        deleted['alerts'] = result.deleted_count
        result = await self.db.heartbeats.delete_many({'timestamp': {'$lt': heartbeats_before}})
        deleted['heartbeats'] = result.deleted_count
        return deleted

    async def close(self) -> None:
        self.client.close()
