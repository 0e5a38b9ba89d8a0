"""告警系统集成器

负责连接事件检测器和告警分发器，把事件打开/关闭以及响应变慢转换为告警
"""

from typing import Dict, Any, List, Optional, Type

from .base import BaseAlerter
from .dispatcher import AlertDispatcher
from .email_alerter import EmailAlerter
from .slack_alerter import SlackAlerter
from .teams_alerter import TeamsAlerter
from ..models.alert import Alert, AlertSeverity, AlertType, NotificationChannel
from ..models.health_check import HealthCheck
from ..models.incident import Incident
from ..models.service import Service, Settings
from ..services.incident_detector import IncidentDetector
from ..utils.clock import isoformat
from ..utils.exceptions import ConfigurationError, ErrorCode
from ..utils.formatting import format_duration
from ..utils.log_manager import get_logger

ALERTER_CLASSES: Dict[NotificationChannel, Type[BaseAlerter]] = {
    NotificationChannel.TEAMS: TeamsAlerter,
    NotificationChannel.SLACK: SlackAlerter,
    NotificationChannel.EMAIL: EmailAlerter,
}


def parse_channels(values: Optional[List[Any]]) -> List[NotificationChannel]:
    """
    解析通道名称列表

    Raises:
        ConfigurationError: 通道名称不受支持
    """
    channels = []
    for value in values or []:
        try:
            channels.append(NotificationChannel(value))
        except ValueError:
            supported = [c.value for c in NotificationChannel]
            raise ConfigurationError(f"不支持的告警通道: '{value}'，支持的通道: {supported}",
                                     ErrorCode.ALERT_CONFIG_ERROR)
    return channels


def build_alerters(alerts_config: Optional[Dict[str, Any]]) -> List[BaseAlerter]:
    """
    根据 alerts 配置节创建并校验告警通道

    Args:
        alerts_config: 形如 {teams: {...}, slack: {...}, email: {...}} 的配置

    Returns:
        List[BaseAlerter]: 已配置的通道

    Raises:
        ConfigurationError: 通道配置无效
    """
    alerters = []
    for channel, alerter_class in ALERTER_CLASSES.items():
        channel_config = (alerts_config or {}).get(channel.value)
        if not channel_config:
            continue
        if not isinstance(channel_config, dict):
            raise ConfigurationError(f"告警通道 {channel.value} 的配置必须是字典",
                                     ErrorCode.ALERT_CONFIG_ERROR,
                                     config_path=f"alerts.{channel.value}")
        alerter = alerter_class(channel_config)
        alerter.validate_config()
        alerters.append(alerter)
    return alerters


class AlertIntegrator:
    """告警系统集成器

    作为事件检测器的回调接收事件打开/关闭，生成告警标题和正文后交给
    分发器；另外跟踪UP状态下连续响应变慢的次数，达到阈值时发送降级告警。
    """

    def __init__(self, dispatcher: AlertDispatcher):
        """初始化告警集成器

        Args:
            dispatcher: 告警分发器
        """
        self.dispatcher = dispatcher
        self.logger = get_logger('alert_integrator')

        # service_id -> 连续超过响应时间阈值的次数
        self._slow_counts: Dict[str, int] = {}

    def attach(self, detector: IncidentDetector):
        """把自身注册为事件检测器的回调"""
        detector.set_incident_callbacks(self.incident_opened, self.incident_closed)

    async def incident_opened(self, incident: Incident, settings: Settings) -> Optional[Alert]:
        """事件打开时发送 CRITICAL 告警"""
        message = (f"服务 {incident.service_name} 检测到故障，"
                   f"开始时间: {isoformat(incident.start_time)}，"
                   f"连续失败 {incident.failed_checks} 次")
        if incident.root_cause_service_id and incident.root_cause_service_id != incident.service_id:
            root = await self.dispatcher.store.get_service(incident.root_cause_service_id)
            root_name = root.name if root else incident.root_cause_service_id
            message += f"，疑似由上游服务 {root_name} 故障引起"
        elif incident.impacted_service_ids:
            message += f"，影响下游服务 {len(incident.impacted_service_ids)} 个"

        return await self.dispatcher.notify(
            service_id=incident.service_id,
            service_name=incident.service_name,
            alert_type=AlertType.INCIDENT_OPENED,
            severity=AlertSeverity.CRITICAL,
            title=f"服务故障: {incident.service_name}",
            message=message,
            incident_id=incident.id,
            settings=settings
        )

    async def incident_closed(self, incident: Incident, settings: Settings) -> Optional[Alert]:
        """事件关闭时发送 INFO 恢复通知"""
        minutes = round((incident.duration or 0) / 60000, 1)
        message = (f"服务 {incident.service_name} 已恢复，"
                   f"故障持续 {minutes} 分钟 ({format_duration(incident.duration)})")

        return await self.dispatcher.notify(
            service_id=incident.service_id,
            service_name=incident.service_name,
            alert_type=AlertType.INCIDENT_CLOSED,
            severity=AlertSeverity.INFO,
            title=f"服务恢复: {incident.service_name}",
            message=message,
            incident_id=incident.id,
            settings=settings
        )

    async def track_response_time(self, service: Service, check: HealthCheck,
                                  settings: Settings) -> Optional[Alert]:
        """
        跟踪响应时间，连续 response_time_warning_attempts 次超过阈值时发送降级告警

        每段连续变慢只在达到阈值的那一次告警；DOWN 或恢复正常会重新计数。

        Args:
            service: 服务
            check: 本次探测记录
            settings: 全局设置快照

        Returns:
            Optional[Alert]: 发送的降级告警
        """
        threshold = service.response_time_warning_ms
        if not threshold or not check.is_up or check.response_time <= threshold:
            self._slow_counts.pop(service.id, None)
            return None

        count = self._slow_counts.get(service.id, 0) + 1
        self._slow_counts[service.id] = count
        attempts = max(service.response_time_warning_attempts, 1)
        if count != attempts:
            return None

        self.logger.warning(
            f"服务 {service.name} 连续 {count} 次响应时间超过 {threshold}ms "
            f"(本次 {check.response_time}ms)")
        return await self.dispatcher.notify(
            service_id=service.id,
            service_name=service.name,
            alert_type=AlertType.SERVICE_DEGRADED,
            severity=AlertSeverity.WARNING,
            title=f"服务响应变慢: {service.name}",
            message=(f"服务 {service.name} 连续 {count} 次响应时间超过 {threshold}ms，"
                     f"最近一次 {check.response_time}ms"),
            settings=settings
        )
