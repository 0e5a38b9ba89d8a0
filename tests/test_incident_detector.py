"""事件检测器测试"""

from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock

from uptime_monitor.models.health_check import CheckStatus, HealthCheck
from uptime_monitor.models.incident import IncidentStatus, TransitionKind
from uptime_monitor.models.service import (
    ApiProbeConfig, MaintenanceWindow, Service, ServiceType, Settings
)
from uptime_monitor.services.incident_correlator import IncidentCorrelator
from uptime_monitor.services.incident_detector import IncidentDetector
from uptime_monitor.storage import MemoryStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
UP = CheckStatus.UP
DOWN = CheckStatus.DOWN


def at(minutes: float) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


class TestIncidentDetector:
    """测试事件状态机"""

    def setup_method(self):
        self.store = MemoryStore()
        self.detector = IncidentDetector(self.store)
        self.opened = AsyncMock()
        self.closed = AsyncMock()
        self.detector.set_incident_callbacks(self.opened, self.closed)
        self.settings = Settings()

    async def _feed(self, statuses):
        """按分钟依次喂入探测结果，模拟 ServiceMonitor 的写入顺序"""
        transitions = []
        previous = None
        for minute, status in enumerate(statuses):
            await self.store.insert_health_check(
                HealthCheck('svc', 'user-api', status, 10, timestamp=at(minute)))
            transitions.append(await self.detector.detect(
                'svc', 'user-api', status, previous, at(minute), self.settings))
            previous = status
        return transitions

    @pytest.mark.asyncio
    async def test_full_incident_lifecycle(self):
        """UP, UP, DOWN, DOWN, UP 产生一个持续两分钟的事件"""
        transitions = await self._feed([UP, UP, DOWN, DOWN, UP])

        assert [t.kind for t in transitions] == [
            TransitionKind.NONE, TransitionKind.NONE, TransitionKind.OPENED,
            TransitionKind.CONTINUED, TransitionKind.CLOSED
        ]
        assert transitions[2].incident.start_time == at(2)
        assert transitions[2].incident.failed_checks == 1
        assert transitions[3].incident.failed_checks == 2

        closed = transitions[4].incident
        assert closed.status == IncidentStatus.CLOSED
        assert closed.end_time == at(4)
        assert closed.duration == 120000

        incidents = await self.store.list_incidents('svc')
        assert len(incidents) == 1

    @pytest.mark.asyncio
    async def test_callbacks_fire_on_edges_only(self):
        await self._feed([UP, DOWN, DOWN, DOWN, UP, UP])

        self.opened.assert_awaited_once()
        self.closed.assert_awaited_once()
        opened_incident, settings = self.opened.await_args.args
        assert opened_incident.service_id == 'svc'
        assert settings is self.settings

    @pytest.mark.asyncio
    async def test_first_probe_down_opens_incident(self):
        """从未探测过的服务首次DOWN即打开事件"""
        transition = await self.detector.detect('svc', 'user-api', DOWN, None, at(0),
                                                self.settings)

        assert transition.kind == TransitionKind.OPENED
        assert (await self.store.get_open_incident('svc')) is not None

    @pytest.mark.asyncio
    async def test_up_without_incident_is_noop(self):
        transition = await self.detector.detect('svc', 'user-api', UP, UP, at(0), self.settings)

        assert transition.kind == TransitionKind.NONE
        assert transition.incident is None
        self.closed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_at_most_one_open_incident(self):
        for minute in range(5):
            await self.detector.detect('svc', 'user-api', DOWN, DOWN if minute else UP,
                                       at(minute), self.settings)

        open_incidents = [i for i in await self.store.list_incidents('svc') if i.is_open]
        assert len(open_incidents) == 1
        assert open_incidents[0].failed_checks == 5

    @pytest.mark.asyncio
    async def test_maintenance_suppresses_transitions(self):
        await self.store.insert_maintenance_window(
            MaintenanceWindow('svc', at(1), at(2), reason='升级'))

        transitions = await self._feed([UP, DOWN, DOWN, DOWN])

        assert [t.kind for t in transitions[1:3]] == [TransitionKind.SUPPRESSED] * 2
        self.opened.assert_awaited_once()
        # 维护窗口内的DOWN不计入事件
        incident = transitions[3].incident
        assert transitions[3].kind == TransitionKind.OPENED
        assert incident.start_time == at(3)

    @pytest.mark.asyncio
    async def test_open_incident_survives_maintenance(self):
        """维护窗口开始前已打开的事件在窗口结束后继续累加"""
        await self.store.insert_maintenance_window(
            MaintenanceWindow('svc', at(2), at(2)))

        transitions = await self._feed([UP, DOWN, DOWN, DOWN])

        assert transitions[1].kind == TransitionKind.OPENED
        assert transitions[2].kind == TransitionKind.SUPPRESSED
        assert transitions[3].kind == TransitionKind.CONTINUED

    @pytest.mark.asyncio
    async def test_backfill_when_previous_down_without_incident(self):
        for minute in range(3):
            await self.store.insert_health_check(
                HealthCheck('svc', 'user-api', DOWN, 10, timestamp=at(minute)))

        transition = await self.detector.detect('svc', 'user-api', DOWN, DOWN, at(3),
                                                self.settings)

        assert transition.kind == TransitionKind.OPENED
        assert transition.incident.start_time == at(0)
        assert transition.incident.failed_checks == 4

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self):
        self.opened.side_effect = RuntimeError("dispatcher down")

        transition = await self.detector.detect('svc', 'user-api', DOWN, UP, at(0),
                                                self.settings)
        assert transition.kind == TransitionKind.OPENED

    @pytest.mark.asyncio
    async def test_reads_settings_when_not_given(self):
        await self.detector.detect('svc', 'user-api', DOWN, UP, at(0))
        _, settings = self.opened.await_args.args
        assert isinstance(settings, Settings)

    @pytest.mark.asyncio
    async def test_correlation_applied_before_callback(self):
        for service in (
            Service(id='db', name='db', service_type=ServiceType.API,
                    probe=ApiProbeConfig(url='https://example.com')),
            Service(id='svc', name='user-api', service_type=ServiceType.API,
                    probe=ApiProbeConfig(url='https://example.com'), dependencies=['db'])
        ):
            await self.store.save_service(service)
        detector = IncidentDetector(self.store, IncidentCorrelator(self.store))
        detector.set_incident_callbacks(self.opened, self.closed)

        root = await detector.detect('db', 'db', DOWN, UP, at(0), self.settings)
        child = await detector.detect('svc', 'user-api', DOWN, UP, at(1), self.settings)

        assert child.incident.correlation_id == root.incident.id
        assert child.incident.root_cause_service_id == 'db'
        notified, _ = self.opened.await_args.args
        assert notified.is_correlated
