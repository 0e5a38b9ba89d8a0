"""告警分发器"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .base import BaseAlerter
from ..models.alert import Alert, AlertSeverity, AlertType, NotificationChannel
from ..models.service import Settings
from ..storage.base import MonitorStore
from ..utils.clock import utcnow
from ..utils.exceptions import DispatchFailure, StateTransitionError
from ..utils.log_manager import get_logger

DEFAULT_COOLDOWN_MINUTES = 5


class AlertDispatcher:
    """告警分发器

    依次检查全局开关、服务开关、维护窗口和冷却期，任一条件成立即静默丢弃
    （不产生告警记录）；否则创建PENDING告警并发送到每个通道。
    """

    def __init__(self, store: MonitorStore, alerters: Optional[Sequence[BaseAlerter]] = None,
                 default_channels: Optional[List[NotificationChannel]] = None,
                 default_cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES):
        """
        初始化告警分发器

        Args:
            store: 存储
            alerters: 已配置的告警通道
            default_channels: 调用方未指定通道时使用的通道
            default_cooldown_minutes: 全局设置未配置冷却期时使用的冷却期
        """
        self.store = store
        self.alerters: Dict[NotificationChannel, BaseAlerter] = {}
        self.default_channels = list(default_channels or [])
        self.default_cooldown_minutes = default_cooldown_minutes
        self.logger = get_logger('alert_dispatcher')

        # 冷却检查与创建记录之间不允许同一 (服务, 类型) 并发穿插
        self._dedup_locks: Dict[Tuple[str, AlertType], asyncio.Lock] = {}

        for alerter in alerters or []:
            self.add_alerter(alerter)

    def add_alerter(self, alerter: BaseAlerter):
        """
        添加告警通道

        Args:
            alerter: 告警通道实例
        """
        self.alerters[alerter.channel] = alerter
        self.logger.info(f"已添加告警通道: {alerter.channel.value}")

    def get_cooldown(self, settings: Settings) -> timedelta:
        minutes = settings.alert_cooldown_minutes
        if minutes is None or isinstance(minutes, bool) or not isinstance(minutes, (int, float)) \
                or minutes < 0:
            minutes = self.default_cooldown_minutes
        return timedelta(minutes=minutes)

    async def notify(self, service_id: str, service_name: str, alert_type: AlertType,
                     severity: AlertSeverity, title: str, message: str,
                     channels: Optional[List[NotificationChannel]] = None,
                     incident_id: Optional[str] = None,
                     settings: Optional[Settings] = None,
                     now: Optional[datetime] = None) -> Optional[Alert]:
        """
        发送告警

        Args:
            service_id: 服务id
            service_name: 服务名称
            alert_type: 告警类型
            severity: 严重级别
            title: 标题
            message: 正文
            channels: 目标通道，为None时使用默认通道
            incident_id: 关联的事件id
            settings: 全局设置快照，为None时从存储读取
            now: 当前时间（测试时注入）

        Returns:
            Optional[Alert]: 告警记录；被抑制时返回None
        """
        now = now or utcnow()
        if settings is None:
            settings = await self.store.get_settings()

        if not settings.global_alerts_enabled:
            self.logger.info(f"全局告警已关闭，跳过 {service_name} 的 {alert_type.value} 告警")
            return None

        service = await self.store.get_service(service_id)
        if service is not None and not service.alerts_enabled:
            self.logger.info(f"服务 {service_name} 已关闭告警，跳过 {alert_type.value} 告警")
            return None

        window = await self.store.get_active_maintenance_window(service_id, now)
        if window is not None:
            self.logger.info(f"服务 {service_name} 处于维护窗口，跳过 {alert_type.value} 告警")
            return None

        lock = self._dedup_locks.setdefault((service_id, alert_type), asyncio.Lock())
        async with lock:
            cooldown = self.get_cooldown(settings)
            if cooldown > timedelta(0):
                recent = await self.store.count_recent_alerts(service_id, alert_type, now - cooldown)
                if recent > 0:
                    self.logger.debug(
                        f"告警去重: {service_name} 的 {alert_type.value} 告警在冷却期内已发送过")
                    return None

            alert = Alert(
                service_id=service_id,
                service_name=service_name,
                alert_type=alert_type,
                severity=severity,
                title=title,
                message=message,
                channels=list(channels if channels is not None else self.default_channels),
                incident_id=incident_id,
                created_at=now,
                updated_at=now
            )
            await self.store.insert_alert(alert)

        await self._deliver(alert)
        return alert

    async def _deliver(self, alert: Alert) -> None:
        """向所有通道发送并把告警更新为终态"""
        if not alert.channels:
            alert.mark_failed("没有配置告警通道")
        else:
            results = await asyncio.gather(
                *(self._send_to_channel(channel, alert) for channel in alert.channels))
            errors = [error for error in results if error]
            if errors:
                alert.mark_failed(errors[0])
            else:
                alert.mark_sent()

        if not await self.store.finalize_alert(alert):
            raise StateTransitionError(f"告警 {alert.id} 已不是PENDING状态")

        if alert.error_message:
            self.logger.error(f"告警 {alert.id} ({alert.title}) 发送失败: {alert.error_message}")
        else:
            self.logger.info(f"告警 {alert.id} ({alert.title}) 已发送到 "
                             f"{[c.value for c in alert.channels]}")

    async def _send_to_channel(self, channel: NotificationChannel, alert: Alert) -> Optional[str]:
        """
        向单个通道的所有目标发送

        某个目标失败不影响其余目标，任何异常都记为该通道的错误。

        Returns:
            Optional[str]: 第一条错误信息，全部成功时为None
        """
        alerter = self.alerters.get(channel)
        if alerter is None:
            return f"告警通道 {channel.value} 未配置"

        destinations = alerter.get_destinations()
        if not destinations:
            return f"告警通道 {channel.value} 没有发送目标"

        first_error = None
        for destination in destinations:
            try:
                await alerter.send(destination, alert.title, alert.message, alert.severity)
            except DispatchFailure as e:
                error = e.message
            except Exception as e:
                error = f"告警通道 {channel.value} 发送异常: {type(e).__name__}: {e}"
            else:
                continue
            self.logger.warning(f"告警 {alert.id} 发送到 {channel.value} 目标失败: {error}")
            first_error = first_error or error
        return first_error
