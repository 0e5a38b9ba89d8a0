"""进程内存储，用于测试和 ``storage.backend: memory`` 试运行"""

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import MonitorStore
from ..models.alert import Alert, AlertStatus, AlertType
from ..models.health_check import CheckStatus, HealthCheck
from ..models.incident import Incident, IncidentStatus
from ..models.service import MaintenanceWindow, Service, Settings
from ..utils.clock import ensure_utc, utcnow
from ..utils.exceptions import StorageError


class MemoryStore(MonitorStore):
    """以文档字典保存记录，读写都做深拷贝，行为上与文档数据库一致"""

    def __init__(self):
        self.services: Dict[str, Dict[str, Any]] = {}
        self.health_checks: List[Dict[str, Any]] = []
        self.incidents: Dict[str, Dict[str, Any]] = {}
        self.alerts: Dict[str, Dict[str, Any]] = {}
        self.maintenance_windows: Dict[str, Dict[str, Any]] = {}
        self.settings: Optional[Dict[str, Any]] = None
        self.heartbeats: List[Dict[str, Any]] = []

    async def list_services(self, include_deleted: bool = False) -> List[Service]:
        return [Service.from_document(copy.deepcopy(doc)) for doc in self.services.values()
                if include_deleted or doc.get('deleted_at') is None]

    async def get_service(self, service_id: str) -> Optional[Service]:
        doc = self.services.get(service_id)
        if doc is None or doc.get('deleted_at') is not None:
            return None
        return Service.from_document(copy.deepcopy(doc))

    async def save_service(self, service: Service) -> None:
        self.services[service.id] = copy.deepcopy(service.to_document())

    async def update_service_status(self, service_id: str, status: CheckStatus,
                                    checked_at: datetime) -> None:
        doc = self.services.get(service_id)
        if doc is not None:
            doc.update(last_status=status.value, last_checked_at=checked_at, updated_at=utcnow())

    async def update_service_dependencies(self, service_id: str,
                                          dependencies: List[str]) -> None:
        doc = self.services.get(service_id)
        if doc is not None:
            doc.update(dependencies=list(dependencies), updated_at=utcnow())

    async def insert_health_check(self, check: HealthCheck) -> None:
        self.health_checks.append(copy.deepcopy(check.to_document()))

    async def get_recent_health_checks(self, service_id: str, limit: int = 10) -> List[HealthCheck]:
        docs = [d for d in self.health_checks if d['service_id'] == service_id]
        docs.sort(key=lambda d: d['timestamp'], reverse=True)
        return [HealthCheck.from_document(copy.deepcopy(d)) for d in docs[:limit]]

    async def get_open_incident(self, service_id: str) -> Optional[Incident]:
        for doc in self.incidents.values():
            if doc['service_id'] == service_id and doc['status'] == IncidentStatus.OPEN.value:
                return Incident.from_document(copy.deepcopy(doc))
        return None

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        doc = self.incidents.get(incident_id)
        return Incident.from_document(copy.deepcopy(doc)) if doc else None

    async def insert_incident(self, incident: Incident) -> None:
        if incident.is_open and await self.get_open_incident(incident.service_id):
            raise StorageError(f"服务 {incident.service_id} 已存在未关闭的事件",
                               collection='incidents')
        self.incidents[incident.id] = copy.deepcopy(incident.to_document())

    async def increment_failed_checks(self, incident_id: str) -> Optional[Incident]:
        doc = self.incidents.get(incident_id)
        if doc is None or doc['status'] != IncidentStatus.OPEN.value:
            return None
        doc['failed_checks'] += 1
        doc['updated_at'] = utcnow()
        return Incident.from_document(copy.deepcopy(doc))

    async def close_incident(self, incident_id: str, end_time: datetime) -> Optional[Incident]:
        doc = self.incidents.get(incident_id)
        if doc is None or doc['status'] != IncidentStatus.OPEN.value:
            return None
        incident = Incident.from_document(copy.deepcopy(doc))
        incident.close(end_time)
        self.incidents[incident_id] = copy.deepcopy(incident.to_document())
        return incident

    async def set_incident_correlation(self, incident_id: str, correlation_id: str,
                                       root_cause_service_id: str) -> None:
        doc = self.incidents.get(incident_id)
        if doc is not None:
            doc.update(is_correlated=True, correlation_id=correlation_id,
                       root_cause_service_id=root_cause_service_id, updated_at=utcnow())

    async def add_impacted_services(self, incident_id: str, service_ids: List[str]) -> None:
        doc = self.incidents.get(incident_id)
        if doc is not None:
            impacted = doc.setdefault('impacted_service_ids', [])
            for service_id in service_ids:
                if service_id not in impacted:
                    impacted.append(service_id)
            doc['updated_at'] = utcnow()

    async def list_incidents(self, service_id: str,
                             overlapping_since: Optional[datetime] = None) -> List[Incident]:
        result = []
        for doc in self.incidents.values():
            if doc['service_id'] != service_id:
                continue
            if overlapping_since is not None and doc.get('end_time') is not None \
                    and ensure_utc(doc['end_time']) < ensure_utc(overlapping_since):
                continue
            result.append(Incident.from_document(copy.deepcopy(doc)))
        result.sort(key=lambda i: i.start_time)
        return result

    async def list_correlated_incidents(self, correlation_id: str) -> List[Incident]:
        docs = [d for d in self.incidents.values()
                if d.get('correlation_id') == correlation_id]
        return sorted((Incident.from_document(copy.deepcopy(d)) for d in docs),
                      key=lambda i: i.start_time)

    async def insert_alert(self, alert: Alert) -> None:
        self.alerts[alert.id] = copy.deepcopy(alert.to_document())

    async def finalize_alert(self, alert: Alert) -> bool:
        doc = self.alerts.get(alert.id)
        if doc is None or doc['status'] != AlertStatus.PENDING.value:
            return False
        doc.update(status=alert.status.value, error_message=alert.error_message,
                   sent_at=alert.sent_at, updated_at=alert.updated_at)
        return True

    async def count_recent_alerts(self, service_id: str, alert_type: AlertType,
                                  since: datetime) -> int:
        return sum(1 for d in self.alerts.values()
                   if d['service_id'] == service_id and d['type'] == alert_type.value
                   and ensure_utc(d['created_at']) >= ensure_utc(since))

    async def list_alerts(self, status: Optional[AlertStatus] = None,
                          service_id: Optional[str] = None, limit: int = 100) -> List[Alert]:
        docs = [d for d in self.alerts.values()
                if (status is None or d['status'] == status.value)
                and (service_id is None or d['service_id'] == service_id)]
        docs.sort(key=lambda d: d['created_at'], reverse=True)
        return [Alert.from_document(copy.deepcopy(d)) for d in docs[:limit]]

    async def insert_maintenance_window(self, window: MaintenanceWindow) -> None:
        self.maintenance_windows[window.id] = copy.deepcopy(window.to_document())

    async def list_maintenance_windows(self, service_id: str) -> List[MaintenanceWindow]:
        return [MaintenanceWindow.from_document(copy.deepcopy(d))
                for d in self.maintenance_windows.values() if d['service_id'] == service_id]

    async def get_settings(self) -> Settings:
        if self.settings is None:
            self.settings = Settings().to_document()
        return Settings.from_document(copy.deepcopy(self.settings))

    async def save_settings(self, settings: Settings) -> None:
        self.settings = copy.deepcopy(settings.to_document())

    async def insert_heartbeat(self, timestamp: datetime) -> None:
        self.heartbeats.append({'timestamp': timestamp, 'status': 'alive'})

    async def ensure_indexes(self) -> None:
        return None

    async def purge_old_records(self, health_checks_before: datetime,
                                incidents_before: datetime, alerts_before: datetime,
                                heartbeats_before: datetime) -> Dict[str, int]:
        def older(doc: Dict[str, Any], key: str, cutoff: datetime) -> bool:
            return ensure_utc(doc[key]) < ensure_utc(cutoff)

        before = len(self.health_checks)
        self.health_checks = [d for d in self.health_checks
                              if not older(d, 'timestamp', health_checks_before)]
        deleted = {'healthchecks': before - len(self.health_checks)}

        stale = [i for i, d in self.incidents.items()
                 if d['status'] == IncidentStatus.CLOSED.value
                 and older(d, 'end_time', incidents_before)]
        for incident_id in stale:
            del self.incidents[incident_id]
        deleted['incidents'] = len(stale)

        stale = [i for i, d in self.alerts.items() if older(d, 'created_at', alerts_before)]
        for alert_id in stale:
            del self.alerts[alert_id]
        deleted['alerts'] = len(stale)

        before = len(self.heartbeats)
        self.heartbeats = [d for d in self.heartbeats
                           if not older(d, 'timestamp', heartbeats_before)]
        deleted['heartbeats'] = before - len(self.heartbeats)
        return deleted
