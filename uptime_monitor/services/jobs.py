"""注册到调度器中的定时任务"""

import asyncio
from datetime import timedelta
from typing import Dict, Any, List, Optional

from .service_monitor import ServiceMonitor
from ..models.service import Service
from ..storage.base import MonitorStore
from ..utils.clock import utcnow
from ..utils.exceptions import MonitorError
from ..utils.log_manager import get_logger

DEFAULT_RETENTION_DAYS = {
    'health_checks': 30,
    'incidents': 90,
    'alerts': 90,
    'heartbeats': 1,
}

# 探测时间戳晚于任务触发时间，下一次触发又可能落在节拍内任意位置
DEFAULT_DUE_TOLERANCE = 5


class HealthCheckJob:
    """健康检查任务

    每次执行时筛选出距离上次检查已超过 check_interval 的服务并发探测，
    并发数由信号量限制；单个服务的异常只记录日志。due_tolerance 秒以内的
    偏差视为已到期，避免每分钟执行的任务隔一次才探测一次。
    """

    name = 'healthcheck'

    def __init__(self, store: MonitorStore, monitor: ServiceMonitor, max_concurrent: int = 10,
                 due_tolerance: float = DEFAULT_DUE_TOLERANCE):
        self.store = store
        self.monitor = monitor
        self.max_concurrent = max_concurrent
        self.due_tolerance = due_tolerance
        self.logger = get_logger('job.healthcheck')

    async def __call__(self) -> List[str]:
        """
        Returns:
            List[str]: 本次探测的服务id
        """
        settings = await self.store.get_settings()
        if not settings.global_health_checks_enabled:
            self.logger.info("全局健康检查已关闭，跳过本次执行")
            return []

        now = utcnow()
        due = [s for s in await self.store.list_services() if s.is_due(now, self.due_tolerance)]
        if not due:
            self.logger.debug("没有需要检查的服务")
            return []

        self.logger.info(f"开始检查 {len(due)} 个服务")
        semaphore = asyncio.Semaphore(max(self.max_concurrent, 1))
        await asyncio.gather(*(self._check(service, semaphore) for service in due))
        return [s.id for s in due]

    async def _check(self, service: Service, semaphore: asyncio.Semaphore):
        async with semaphore:
            try:
                await self.monitor.check_service(service)
            except MonitorError as e:
                self.logger.error(f"检查服务 {service.name} 失败: {e.format_error()}")
            except Exception as e:
                self.logger.error(f"检查服务 {service.name} 时发生异常: {e}", exc_info=True)


class HeartbeatJob:
    """心跳任务，写入一条存活标记"""

    name = 'heartbeat'

    def __init__(self, store: MonitorStore):
        self.store = store
        self.logger = get_logger('job.heartbeat')

    async def __call__(self):
        await self.store.insert_heartbeat(utcnow())
        self.logger.debug("已写入心跳")


class CleanupJob:
    """清理过期记录

    探测记录、已关闭事件、告警和心跳分别按保留天数删除；OPEN事件永不删除。
    """

    name = 'cleanup'

    def __init__(self, store: MonitorStore, retention: Optional[Dict[str, Any]] = None):
        self.store = store
        self.retention = dict(DEFAULT_RETENTION_DAYS)
        self.retention.update(retention or {})
        self.logger = get_logger('job.cleanup')

    async def __call__(self) -> Dict[str, int]:
        now = utcnow()
        deleted = await self.store.purge_old_records(
            health_checks_before=now - timedelta(days=self.retention['health_checks']),
            incidents_before=now - timedelta(days=self.retention['incidents']),
            alerts_before=now - timedelta(days=self.retention['alerts']),
            heartbeats_before=now - timedelta(days=self.retention['heartbeats'])
        )
        self.logger.info(f"清理过期记录完成: {deleted}")
        return deleted
