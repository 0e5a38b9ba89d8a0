"""告警通道基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from ..models.alert import AlertSeverity, NotificationChannel
from ..utils.log_manager import get_logger


class BaseAlerter(ABC):
    """告警通道抽象基类

    通道只接收 (destination, title, message, severity)，发送失败时抛出
    DispatchFailure；分发器不关心具体传输细节。
    """

    channel: NotificationChannel

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        初始化告警通道

        Args:
            config: 通道配置参数
        """
        self.config = config or {}
        self.logger = get_logger(f'alerter.{self.channel.value}')

    @abstractmethod
    async def send(self, destination: str, title: str, message: str,
                   severity: AlertSeverity) -> None:
        """
        发送一条通知

        Args:
            destination: 目标地址（Webhook URL、收件人邮箱等）
            title: 标题
            message: 正文
            severity: 严重级别

        Raises:
            DispatchFailure: 发送失败
        """

    @abstractmethod
    def validate_config(self) -> None:
        """
        验证通道配置

        Raises:
            ConfigurationError: 配置无效
        """

    def get_destinations(self) -> List[str]:
        """通道默认的发送目标列表"""
        return list(self.config.get('destinations') or [])

    def get_timeout(self) -> float:
        """
        获取超时时间配置

        Returns:
            float: 超时时间（秒）
        """
        return self.config.get('timeout', 10)
