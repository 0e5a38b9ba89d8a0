"""事件检测模块

把每次探测结果与服务上一次的状态比较，维护每个服务的事件状态机：
没有OPEN事件（NONE）与存在OPEN事件（OPEN）两种状态。
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple

from .incident_correlator import IncidentCorrelator
from ..models.health_check import CheckStatus
from ..models.incident import Incident, IncidentTransition, TransitionKind
from ..models.service import Settings
from ..storage.base import MonitorStore
from ..utils.clock import ensure_utc
from ..utils.exceptions import StorageError
from ..utils.log_manager import get_logger

IncidentListener = Callable[[Incident, Settings], Awaitable[None]]

BACKFILL_LOOKBACK = 10


class IncidentDetector:
    """事件检测器

    状态转换规则：
    - UP/未知 -> DOWN：创建事件，failed_checks 从 1 开始，触发 opened 回调
    - DOWN -> DOWN：已有事件时 failed_checks 加一，不再触发回调；
      没有事件时（如维护窗口刚结束）补建事件
    - 任意 -> UP：存在OPEN事件时关闭它并触发 closed 回调
    - 维护窗口内的结果不产生任何状态转换

    告警阈值为一次失败即告警，去重由告警分发器负责。
    """

    def __init__(self, store: MonitorStore, correlator: Optional[IncidentCorrelator] = None):
        """初始化事件检测器

        Args:
            store: 存储
            correlator: 事件关联器，为None时不做关联分析
        """
        self.store = store
        self.correlator = correlator
        self.logger = get_logger('incident_detector')

        self.on_incident_opened: Optional[IncidentListener] = None
        self.on_incident_closed: Optional[IncidentListener] = None

    def set_incident_callbacks(self, opened: Optional[IncidentListener],
                               closed: Optional[IncidentListener]):
        """设置事件打开/关闭回调

        Args:
            opened: 事件打开时调用
            closed: 事件关闭时调用
        """
        self.on_incident_opened = opened
        self.on_incident_closed = closed

    async def detect(self, service_id: str, service_name: str, new_status: CheckStatus,
                     previous_status: Optional[CheckStatus], timestamp: datetime,
                     settings: Optional[Settings] = None) -> IncidentTransition:
        """处理一次探测结果

        Args:
            service_id: 服务id
            service_name: 服务名称
            new_status: 本次探测状态
            previous_status: 服务上一次的状态，从未探测过为None
            timestamp: 本次探测时间
            settings: 全局设置快照，为None时从存储读取

        Returns:
            IncidentTransition: 本次判定结果
        """
        timestamp = ensure_utc(timestamp)
        if settings is None:
            settings = await self.store.get_settings()

        window = await self.store.get_active_maintenance_window(service_id, timestamp)
        if window is not None:
            self.logger.info(
                f"服务 {service_name} 处于维护窗口 ({window.reason or '无说明'})，"
                f"状态 {new_status.value} 只记录不处理")
            return IncidentTransition(TransitionKind.SUPPRESSED)

        open_incident = await self.store.get_open_incident(service_id)

        if new_status == CheckStatus.DOWN:
            if open_incident is not None:
                updated = await self.store.increment_failed_checks(open_incident.id)
                incident = updated or open_incident
                self.logger.info(
                    f"服务 {service_name} 持续故障，事件 {incident.id} 失败次数: {incident.failed_checks}")
                return IncidentTransition(TransitionKind.CONTINUED, incident)

            if previous_status == CheckStatus.DOWN:
                self.logger.warning(f"服务 {service_name} 处于DOWN状态但没有未关闭的事件，补建事件")
            return await self._open_incident(service_id, service_name, timestamp, settings)

        if open_incident is None:
            return IncidentTransition(TransitionKind.NONE)

        closed = await self.store.close_incident(open_incident.id, timestamp)
        if closed is None:
            self.logger.warning(f"事件 {open_incident.id} 已被其他流程关闭")
            return IncidentTransition(TransitionKind.NONE)

        self.logger.info(
            f"服务 {service_name} 已恢复，事件 {closed.id} 关闭，持续 {closed.duration}ms")
        await self._notify(self.on_incident_closed, closed, settings)
        return IncidentTransition(TransitionKind.CLOSED, closed)

    async def _open_incident(self, service_id: str, service_name: str, timestamp: datetime,
                             settings: Settings) -> IncidentTransition:
        start_time, failed_checks = await self._find_downtime_start(service_id, timestamp)
        incident = Incident(
            service_id=service_id,
            service_name=service_name,
            start_time=start_time,
            failed_checks=failed_checks
        )
        try:
            await self.store.insert_incident(incident)
        except StorageError as e:
            existing = await self.store.get_open_incident(service_id)
            if existing is None:
                raise
            self.logger.warning(f"创建事件冲突，沿用已有事件 {existing.id}: {e.message}")
            return IncidentTransition(TransitionKind.CONTINUED, existing)

        self.logger.warning(
            f"服务 {service_name} 故障，创建事件 {incident.id}，开始时间 {start_time.isoformat()}")

        if self.correlator is not None:
            try:
                await self.correlator.correlate(incident)
            except Exception as e:
                self.logger.error(f"事件 {incident.id} 关联分析失败: {e}", exc_info=True)
            incident = await self.store.get_incident(incident.id) or incident

        await self._notify(self.on_incident_opened, incident, settings)
        return IncidentTransition(TransitionKind.OPENED, incident)

    async def _find_downtime_start(self, service_id: str,
                                   timestamp: datetime) -> Tuple[datetime, int]:
        """沿最近的探测记录向前找连续DOWN的起点

        遇到UP记录或维护窗口内的记录即停止，本次探测本身计为一次失败。
        """
        checks = await self.store.get_recent_health_checks(service_id, limit=BACKFILL_LOOKBACK)
        windows = await self.store.list_maintenance_windows(service_id)

        start_time, failed_checks = timestamp, 1
        for check in checks:
            check_time = ensure_utc(check.timestamp)
            if check_time >= timestamp:
                continue
            if check.status == CheckStatus.UP or any(w.is_active(check_time) for w in windows):
                break
            start_time = check_time
            failed_checks += 1
        return start_time, failed_checks

    async def _notify(self, listener: Optional[IncidentListener], incident: Incident,
                      settings: Settings) -> None:
        if listener is None:
            return
        try:
            await listener(incident, settings)
        except Exception as e:
            self.logger.error(f"事件 {incident.id} 回调执行失败: {e}", exc_info=True)
