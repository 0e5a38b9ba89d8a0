"""进程内存储测试"""

from datetime import datetime, timedelta, timezone

import pytest

from uptime_monitor.models.alert import Alert, AlertSeverity, AlertStatus, AlertType
from uptime_monitor.models.health_check import CheckStatus, HealthCheck
from uptime_monitor.models.incident import Incident, IncidentStatus
from uptime_monitor.models.service import (
    ApiProbeConfig, MaintenanceWindow, Service, ServiceType, Settings
)
from uptime_monitor.storage import MemoryStore
from uptime_monitor.utils.exceptions import StorageError

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_service(service_id: str, **kwargs) -> Service:
    return Service(id=service_id, name=service_id, service_type=ServiceType.API,
                   probe=ApiProbeConfig(url='https://example.com'), **kwargs)


def make_alert(service_id: str = 'svc', created_at: datetime = BASE_TIME,
               alert_type: AlertType = AlertType.INCIDENT_OPENED) -> Alert:
    return Alert(service_id, service_id, alert_type, AlertSeverity.CRITICAL, 'title', 'message',
                 created_at=created_at)


class TestMemoryStoreServices:
    """测试服务读写"""

    def setup_method(self):
        self.store = MemoryStore()

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        await self.store.save_service(make_service('svc'))

        service = await self.store.get_service('svc')
        assert service.name == 'svc'
        assert await self.store.get_service('missing') is None

    @pytest.mark.asyncio
    async def test_deleted_services_are_hidden(self):
        await self.store.save_service(make_service('svc', deleted_at=BASE_TIME))

        assert await self.store.get_service('svc') is None
        assert await self.store.list_services() == []
        assert len(await self.store.list_services(include_deleted=True)) == 1

    @pytest.mark.asyncio
    async def test_returned_objects_are_copies(self):
        await self.store.save_service(make_service('svc'))
        service = await self.store.get_service('svc')
        service.dependencies.append('other')

        assert (await self.store.get_service('svc')).dependencies == []

    @pytest.mark.asyncio
    async def test_update_status_and_dependencies(self):
        await self.store.save_service(make_service('svc'))
        await self.store.update_service_status('svc', CheckStatus.DOWN, BASE_TIME)
        await self.store.update_service_dependencies('svc', ['db'])

        service = await self.store.get_service('svc')
        assert service.last_status == CheckStatus.DOWN
        assert service.last_checked_at == BASE_TIME
        assert service.dependencies == ['db']


class TestMemoryStoreRecords:
    """测试探测记录、事件和告警"""

    def setup_method(self):
        self.store = MemoryStore()

    @pytest.mark.asyncio
    async def test_recent_health_checks_newest_first(self):
        for minute in range(5):
            await self.store.insert_health_check(HealthCheck(
                'svc', 'svc', CheckStatus.UP, 10, timestamp=BASE_TIME + timedelta(minutes=minute)))

        checks = await self.store.get_recent_health_checks('svc', limit=3)
        assert [c.timestamp.minute for c in checks] == [4, 3, 2]

    @pytest.mark.asyncio
    async def test_single_open_incident_per_service(self):
        await self.store.insert_incident(Incident('svc', 'svc', BASE_TIME))

        with pytest.raises(StorageError):
            await self.store.insert_incident(Incident('svc', 'svc', BASE_TIME))

    @pytest.mark.asyncio
    async def test_incident_lifecycle(self):
        incident = Incident('svc', 'svc', BASE_TIME)
        await self.store.insert_incident(incident)

        updated = await self.store.increment_failed_checks(incident.id)
        assert updated.failed_checks == 2

        closed = await self.store.close_incident(incident.id, BASE_TIME + timedelta(minutes=3))
        assert closed.status == IncidentStatus.CLOSED
        assert closed.duration == 180000
        assert await self.store.get_open_incident('svc') is None

        assert await self.store.close_incident(incident.id, BASE_TIME) is None
        assert await self.store.increment_failed_checks(incident.id) is None

    @pytest.mark.asyncio
    async def test_list_incidents_overlapping(self):
        old = Incident('svc', 'svc', BASE_TIME)
        old.close(BASE_TIME + timedelta(hours=1))
        recent = Incident('svc', 'svc', BASE_TIME + timedelta(days=2))
        await self.store.insert_incident(old)
        await self.store.insert_incident(recent)

        incidents = await self.store.list_incidents('svc', overlapping_since=BASE_TIME + timedelta(days=1))
        assert [i.id for i in incidents] == [recent.id]
        assert len(await self.store.list_incidents('svc')) == 2

    @pytest.mark.asyncio
    async def test_correlation_updates(self):
        root = Incident('db', 'db', BASE_TIME)
        child = Incident('api', 'api', BASE_TIME)
        await self.store.insert_incident(root)
        await self.store.insert_incident(child)

        await self.store.set_incident_correlation(child.id, root.id, 'db')
        await self.store.set_incident_correlation(root.id, root.id, 'db')
        await self.store.add_impacted_services(root.id, ['api', 'api'])

        correlated = await self.store.list_correlated_incidents(root.id)
        assert {i.id for i in correlated} == {root.id, child.id}
        assert (await self.store.get_incident(root.id)).impacted_service_ids == ['api']

    @pytest.mark.asyncio
    async def test_finalize_alert_only_once(self):
        alert = make_alert()
        await self.store.insert_alert(alert)
        alert.mark_sent()

        assert await self.store.finalize_alert(alert) is True
        assert await self.store.finalize_alert(alert) is False
        stored = await self.store.list_alerts(status=AlertStatus.SENT)
        assert [a.id for a in stored] == [alert.id]

    @pytest.mark.asyncio
    async def test_count_recent_alerts(self):
        await self.store.insert_alert(make_alert(created_at=BASE_TIME))
        await self.store.insert_alert(make_alert(created_at=BASE_TIME + timedelta(minutes=10)))
        await self.store.insert_alert(make_alert(created_at=BASE_TIME + timedelta(minutes=10),
                                                 alert_type=AlertType.INCIDENT_CLOSED))

        since = BASE_TIME + timedelta(minutes=5)
        assert await self.store.count_recent_alerts('svc', AlertType.INCIDENT_OPENED, since) == 1
        assert await self.store.count_recent_alerts('other', AlertType.INCIDENT_OPENED, since) == 0

    @pytest.mark.asyncio
    async def test_maintenance_window_lookup(self):
        window = MaintenanceWindow('svc', BASE_TIME, BASE_TIME + timedelta(hours=1))
        await self.store.insert_maintenance_window(window)

        assert (await self.store.get_active_maintenance_window('svc', BASE_TIME)).id == window.id
        assert await self.store.get_active_maintenance_window(
            'svc', BASE_TIME + timedelta(hours=2)) is None

    @pytest.mark.asyncio
    async def test_settings_default_and_save(self):
        settings = await self.store.get_settings()
        assert settings.global_alerts_enabled is True

        await self.store.save_settings(Settings(global_alerts_enabled=False,
                                                alert_cooldown_minutes=0))
        settings = await self.store.get_settings()
        assert settings.global_alerts_enabled is False
        assert settings.alert_cooldown_minutes == 0

    @pytest.mark.asyncio
    async def test_purge_old_records_keeps_open_incidents(self):
        cutoff = BASE_TIME + timedelta(days=10)
        await self.store.insert_health_check(HealthCheck('svc', 'svc', CheckStatus.UP, 1,
                                                         timestamp=BASE_TIME))
        await self.store.insert_health_check(HealthCheck('svc', 'svc', CheckStatus.UP, 1,
                                                         timestamp=cutoff + timedelta(days=1)))
        closed = Incident('svc', 'svc', BASE_TIME)
        closed.close(BASE_TIME + timedelta(hours=1))
        await self.store.insert_incident(closed)
        still_open = Incident('svc', 'svc', BASE_TIME)
        await self.store.insert_incident(still_open)
        await self.store.insert_alert(make_alert(created_at=BASE_TIME))
        await self.store.insert_heartbeat(BASE_TIME)

        deleted = await self.store.purge_old_records(cutoff, cutoff, cutoff, cutoff)

        assert deleted == {'healthchecks': 1, 'incidents': 1, 'alerts': 1, 'heartbeats': 1}
        assert (await self.store.get_open_incident('svc')).id == still_open.id
        assert len(self.store.health_checks) == 1
