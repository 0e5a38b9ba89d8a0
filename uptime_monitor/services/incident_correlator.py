"""事件关联分析

新事件打开时，沿依赖图查找在时间窗口内同时发生的事件，把它们归入同一个
关联组：关联id取根因事件的id，根因事件记录受影响的服务列表。
"""

from datetime import timedelta
from typing import Dict, List, Optional

from .dependency_graph import build_dependents_graph, get_downstream_services
from ..models.incident import Incident
from ..models.service import Service
from ..storage.base import MonitorStore
from ..utils.clock import ensure_utc
from ..utils.log_manager import get_logger

DEFAULT_CORRELATION_WINDOW = timedelta(minutes=2)


class IncidentCorrelator:
    """基于依赖关系的事件关联器"""

    def __init__(self, store: MonitorStore, window: timedelta = DEFAULT_CORRELATION_WINDOW):
        """
        Args:
            store: 存储
            window: 两个事件开始时间相差不超过该窗口才视为同一次故障
        """
        self.store = store
        self.window = window
        self.logger = get_logger('incident_correlator')

    def _within_window(self, first: Incident, second: Incident) -> bool:
        delta = abs(ensure_utc(first.start_time) - ensure_utc(second.start_time))
        return delta <= self.window

    async def correlate(self, incident: Incident) -> Optional[str]:
        """
        对新打开的事件做关联分析

        先看该服务依赖的上游是否已有窗口内的事件（本服务是受影响方），
        否则把本服务视为根因，收集下游依赖方在窗口内的事件。

        Args:
            incident: 刚创建的事件

        Returns:
            Optional[str]: 关联id，未发现关联时为None
        """
        services: Dict[str, Service] = {s.id: s for s in await self.store.list_services()}
        service = services.get(incident.service_id)
        if service is None:
            return None

        root = await self._find_upstream_root(service, incident)
        if root is not None:
            await self._attach(root, [incident])
            self.logger.info(
                f"事件 {incident.id} ({service.name}) 关联到根因服务 {root.service_name} 的事件 {root.id}")
            return root.id

        dependents = build_dependents_graph(services.values())
        impacted: List[Incident] = []
        for dependent_id in get_downstream_services(service.id, dependents):
            dependent_incident = await self.store.get_open_incident(dependent_id)
            if dependent_incident is None or not self._within_window(incident, dependent_incident):
                continue
            if dependent_incident.is_correlated \
                    and dependent_incident.root_cause_service_id not in (None, dependent_id):
                # 已归入其他根因
                continue
            impacted.append(dependent_incident)

        if not impacted:
            return None

        await self._attach(incident, impacted)
        self.logger.info(
            f"服务 {service.name} 被标记为根因，受影响服务: {[i.service_name for i in impacted]}")
        return incident.id

    async def _find_upstream_root(self, service: Service, incident: Incident) -> Optional[Incident]:
        for dependency_id in service.dependencies:
            dependency_incident = await self.store.get_open_incident(dependency_id)
            if dependency_incident is None or not self._within_window(incident, dependency_incident):
                continue
            correlation_id = dependency_incident.correlation_id
            if dependency_incident.is_correlated and correlation_id \
                    and correlation_id != dependency_incident.id:
                root = await self.store.get_incident(correlation_id)
                if root is not None:
                    return root
            return dependency_incident
        return None

    async def _attach(self, root: Incident, impacted: List[Incident]) -> None:
        await self.store.set_incident_correlation(root.id, root.id, root.service_id)
        for item in impacted:
            await self.store.set_incident_correlation(item.id, root.id, root.service_id)
        await self.store.add_impacted_services(root.id, [i.service_id for i in impacted])
