"""任务调度器模块

按cron表达式周期性执行已注册的任务。同一任务上一次执行尚未结束时，
本次触发直接跳过而不是排队。
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Any, Optional, Set, Callable, Awaitable, List

from apscheduler.triggers.cron import CronTrigger

from ..storage.base import MonitorStore
from ..utils.clock import utcnow, ensure_utc, isoformat
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import MonitorError, SchedulerError, SchedulerHandlerError
from ..utils.log_manager import get_logger

JobHandler = Callable[[], Awaitable[Any]]


class SchedulerState(str, Enum):
    UNINITIALIZED = 'UNINITIALIZED'
    STARTED = 'STARTED'
    STOPPED = 'STOPPED'


@dataclass
class ScheduledJob:
    name: str
    schedule: str
    trigger: CronTrigger
    handler: JobHandler
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    running: bool = False
    executions: int = 0
    failures: int = 0
    skipped: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def compute_next_run(self, after: datetime) -> None:
        self.next_run_at = self.trigger.get_next_fire_time(None, after)


class JobScheduler:
    """任务调度器

    生命周期：UNINITIALIZED -> STARTED -> STOPPED，停止后不能再次启动或注册任务。
    调度器由启动流程创建并按引用传给需要它的组件（状态接口等）。
    """

    def __init__(self, tick_interval: float = 1.0, store: Optional[MonitorStore] = None):
        """初始化任务调度器

        Args:
            tick_interval: 内部检查间隔（秒），cron 的最小粒度仍是一分钟
            store: 存储，启动时用于创建索引
        """
        self.tick_interval = tick_interval
        self.store = store
        self.state = SchedulerState.UNINITIALIZED
        self.jobs: Dict[str, ScheduledJob] = {}
        self.running_tasks: Set[asyncio.Task] = set()
        self.started_at: Optional[datetime] = None
        self._loop_task: Optional[asyncio.Task] = None
        self.logger = get_logger('scheduler')

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.STARTED

    def register_job(self, name: str, cron_expression: str, handler: JobHandler,
                     run_immediately: bool = False):
        """注册任务

        Args:
            name: 任务名称，全局唯一
            cron_expression: 5段式cron表达式
            handler: 无参数的异步处理函数
            run_immediately: 为True时在启动后的第一次检查即执行

        Raises:
            SchedulerError: 调度器已停止
            ConfigurationError: cron表达式无效
        """
        if self.state == SchedulerState.STOPPED:
            raise SchedulerError(f"调度器已停止，无法注册任务: {name}", job_name=name)

        if name in self.jobs:
            self.logger.warning(f"任务 {name} 已注册，忽略重复注册")
            return

        trigger = ConfigValidator.validate_cron_expression(cron_expression, f'jobs.{name}')
        job = ScheduledJob(name=name, schedule=cron_expression, trigger=trigger, handler=handler)
        now = utcnow()
        if run_immediately:
            job.next_run_at = now
        else:
            job.compute_next_run(now)
        self.jobs[name] = job
        self.logger.info(f"注册任务 {name}: {cron_expression}，下次执行: {isoformat(job.next_run_at)}")

    async def start(self):
        """启动调度器，重复调用无副作用

        Raises:
            SchedulerError: 调度器已停止
        """
        if self.state == SchedulerState.STARTED:
            self.logger.warning("调度器已经在运行")
            return
        if self.state == SchedulerState.STOPPED:
            raise SchedulerError("调度器已停止，不能再次启动")

        if self.store is not None:
            try:
                await self.store.ensure_indexes()
            except MonitorError as e:
                self.logger.error(f"创建索引失败: {e.format_error()}")
            except Exception as e:
                self.logger.error(f"创建索引失败: {e}", exc_info=True)

        self.state = SchedulerState.STARTED
        self.started_at = utcnow()
        self._loop_task = asyncio.create_task(self._schedule_loop())
        self.logger.info(f"调度器已启动，共 {len(self.jobs)} 个任务，检查间隔 {self.tick_interval}s")

    async def stop(self):
        """停止调度器：等待正在执行的任务结束后再停止计时循环"""
        if self.state != SchedulerState.STARTED:
            self.state = SchedulerState.STOPPED
            return

        self.state = SchedulerState.STOPPED
        self.logger.info("正在停止调度器...")

        if self.running_tasks:
            self.logger.info(f"等待 {len(self.running_tasks)} 个正在执行的任务结束")
            await asyncio.gather(*list(self.running_tasks), return_exceptions=True)

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        self.logger.info("调度器已停止")

    async def _schedule_loop(self):
        """调度循环"""
        while self.state == SchedulerState.STARTED:
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"调度循环异常: {e}", exc_info=True)
            await asyncio.sleep(self.tick_interval)

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """执行一次调度检查

        Args:
            now: 当前时间（测试时注入）

        Returns:
            List[str]: 本次触发执行的任务名称
        """
        if self.state != SchedulerState.STARTED:
            return []

        now = ensure_utc(now) if now else utcnow()
        fired = []
        for job in list(self.jobs.values()):
            if job.next_run_at is None or job.next_run_at > now:
                continue

            scheduled_at = job.next_run_at
            job.compute_next_run(max(now, scheduled_at) + timedelta(seconds=1))

            if job.running:
                job.skipped += 1
                self.logger.warning(f"任务 {job.name} 上一次执行尚未结束，跳过本次执行")
                continue

            job.running = True
            job.last_run_at = now
            task = asyncio.create_task(self._run_job(job))
            job.task = task
            self.running_tasks.add(task)
            task.add_done_callback(self.running_tasks.discard)
            fired.append(job.name)

        return fired

    async def _run_job(self, job: ScheduledJob):
        """执行任务处理函数，异常只记录不向外抛出"""
        self.logger.debug(f"开始执行任务: {job.name}")
        job.executions += 1
        try:
            await job.handler()
        except Exception as e:
            job.failures += 1
            error = SchedulerHandlerError(f"任务 {job.name} 执行失败: {e}", job_name=job.name,
                                          cause=e)
            self.logger.error(error.format_error(), exc_info=True)
        finally:
            job.running = False
            job.task = None

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """获取所有任务的状态

        Returns:
            任务名称 -> {registered, last_run_at, currently_running, ...}
        """
        return {
            name: {
                'registered': True,
                'last_run_at': isoformat(job.last_run_at),
                'currently_running': job.running,
                'next_run_at': isoformat(job.next_run_at),
                'schedule': job.schedule,
                'executions': job.executions,
                'failures': job.failures,
                'skipped': job.skipped
            }
            for name, job in self.jobs.items()
        }

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        return {
            'state': self.state.value,
            'is_running': self.is_running,
            'started_at': isoformat(self.started_at),
            'tick_interval': self.tick_interval,
            'total_jobs': len(self.jobs),
            'running_tasks_count': len(self.running_tasks),
            'jobs': self.get_status()
        }
