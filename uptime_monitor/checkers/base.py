"""健康检查器基类"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from ..models.health_check import CheckStatus, ProbeResult
from ..models.service import DEFAULT_TIMEOUT_MS
from ..utils.exceptions import ConfigurationError, ErrorCode
from ..utils.log_manager import get_logger


class BaseHealthChecker(ABC):
    """健康检查器抽象基类

    子类在 check_health 中执行一次探测；探测中的传输、超时、认证错误
    都在子类内部转换为DOWN结果，不向调用方抛出。
    """

    service_type: str = ''

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化健康检查器

        Args:
            name: 服务名称
            config: 探测配置参数（timeout 单位为毫秒）
        """
        self.name = name
        self.config = config
        self.logger = get_logger(f'checker.{self.service_type}.{self.name}')

    @abstractmethod
    async def check_health(self) -> ProbeResult:
        """
        执行健康检查并返回结果

        Returns:
            ProbeResult: 统一的探测结果
        """

    @abstractmethod
    def validate_config(self) -> None:
        """
        验证配置参数

        Raises:
            ConfigurationError: 配置缺失或格式错误，错误信息说明具体原因
        """

    def get_timeout_ms(self) -> int:
        """
        获取超时时间配置

        Returns:
            int: 超时时间（毫秒）
        """
        return self.config.get('timeout') or DEFAULT_TIMEOUT_MS

    def get_timeout(self) -> float:
        """超时时间（秒），供客户端库使用"""
        return self.get_timeout_ms() / 1000.0

    def _validate_timeout(self) -> None:
        timeout = self.config.get('timeout', DEFAULT_TIMEOUT_MS)
        if timeout is None:
            return
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError(
                f"服务 '{self.name}' 的 timeout 必须是正数（毫秒）: {timeout!r}",
                ErrorCode.PROBE_CONFIG_ERROR
            )

    def _require_connection_string(self, *schemes: str) -> str:
        connection_string = self.config.get('connection_string')
        if not connection_string or not isinstance(connection_string, str):
            raise ConfigurationError(
                f"服务 '{self.name}' 缺少 connection_string 配置",
                ErrorCode.PROBE_CONFIG_ERROR
            )
        if schemes and not connection_string.startswith(schemes):
            raise ConfigurationError(
                f"服务 '{self.name}' 的 connection_string 必须以 {' 或 '.join(schemes)} 开头",
                ErrorCode.PROBE_CONFIG_ERROR
            )
        return connection_string

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int(round((time.monotonic() - start_time) * 1000))

    def _result(self, start_time: float, error_message: Optional[str] = None,
                status_code: Optional[int] = None,
                metadata: Optional[Dict[str, Any]] = None) -> ProbeResult:
        """根据是否有错误信息构造探测结果"""
        return ProbeResult(
            status=CheckStatus.DOWN if error_message else CheckStatus.UP,
            response_time=self._elapsed_ms(start_time),
            status_code=status_code,
            error_message=error_message,
            metadata=metadata or {}
        )
