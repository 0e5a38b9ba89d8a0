"""单个服务的探测流水线

探测 -> 写入探测记录 -> 事件检测 -> 回写服务状态，按需探测接口和定时
健康检查任务共用这一流程。
"""

import asyncio
from typing import Dict, Optional

from .incident_detector import IncidentDetector
from ..alerts.integrator import AlertIntegrator
from ..checkers.runner import ProbeRunner
from ..models.health_check import HealthCheck
from ..models.incident import TransitionKind
from ..models.service import Service
from ..storage.base import MonitorStore
from ..utils.clock import utcnow, ensure_utc
from ..utils.exceptions import ServiceNotFoundError
from ..utils.log_manager import get_logger


class ServiceMonitor:
    """服务探测流水线

    同一服务的写入、检测和状态回写在一把锁内串行执行，保证按探测时间
    顺序生效；探测本身不加锁，不同服务之间互不阻塞。
    """

    def __init__(self, store: MonitorStore, runner: ProbeRunner, detector: IncidentDetector,
                 integrator: Optional[AlertIntegrator] = None):
        """
        Args:
            store: 存储
            runner: 探测执行器
            detector: 事件检测器
            integrator: 告警集成器，用于响应变慢告警
        """
        self.store = store
        self.runner = runner
        self.detector = detector
        self.integrator = integrator
        self.logger = get_logger('service_monitor')
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, service_id: str) -> asyncio.Lock:
        return self._locks.setdefault(service_id, asyncio.Lock())

    async def check_service(self, service: Service) -> HealthCheck:
        """
        探测一个服务并处理结果

        Args:
            service: 服务

        Returns:
            HealthCheck: 本次探测记录
        """
        timestamp = utcnow()
        result = await self.runner.run(service.service_type, service.probe_config(), service.name)
        check = HealthCheck.from_probe(service.id, service.name, result, timestamp)

        if result.is_up:
            self.logger.info(f"服务 {service.name} 检查完成: UP, 响应时间: {result.response_time}ms")
        else:
            self.logger.warning(
                f"服务 {service.name} 检查完成: DOWN, 响应时间: {result.response_time}ms, "
                f"错误: {result.error_message}")

        async with self._lock_for(service.id):
            await self.store.insert_health_check(check)

            current = await self.store.get_service(service.id) or service
            last_checked = ensure_utc(current.last_checked_at)
            if last_checked is not None and timestamp < last_checked:
                self.logger.warning(
                    f"服务 {service.name} 的探测结果早于最近一次检查时间，只记录不处理")
                return check

            settings = await self.store.get_settings()
            transition = await self.detector.detect(
                service.id, service.name, check.status, current.last_status, timestamp, settings)
            if transition.kind != TransitionKind.NONE:
                self.logger.debug(f"服务 {service.name} 事件判定: {transition.kind.value}")

            await self.store.update_service_status(service.id, check.status, timestamp)

            if self.integrator is not None and transition.kind != TransitionKind.SUPPRESSED:
                try:
                    await self.integrator.track_response_time(current, check, settings)
                except Exception as e:
                    self.logger.error(f"服务 {service.name} 响应时间告警失败: {e}", exc_info=True)

        return check

    async def check_service_by_id(self, service_id: str) -> HealthCheck:
        """
        按需探测指定服务

        Raises:
            ServiceNotFoundError: 服务不存在或已删除
        """
        service = await self.store.get_service(service_id)
        if service is None or service.is_deleted:
            raise ServiceNotFoundError(service_id)
        self.logger.info(f"立即检查服务: {service.name}")
        return await self.check_service(service)
