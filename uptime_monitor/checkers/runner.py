"""探测执行器：所有服务类型的统一入口"""

import time
from typing import Dict, Any, Union, Optional

from .factory import HealthCheckerFactory, health_checker_factory
from ..models.health_check import CheckStatus, ProbeResult
from ..models.service import ServiceType
from ..utils.exceptions import ConfigurationError, MonitorError
from ..utils.log_manager import get_logger


class ProbeRunner:
    """探测执行器

    run() 永远返回结果而不抛出异常：配置错误、探测器内部未预期的异常都
    转换为带描述信息的DOWN结果，保证一批探测中单个服务的问题不会影响其他服务。
    """

    def __init__(self, factory: Optional[HealthCheckerFactory] = None):
        self.factory = factory or health_checker_factory
        self.logger = get_logger('probe_runner')

    async def run(self, service_type: Union[ServiceType, str], config: Dict[str, Any],
                  service_name: str = '') -> ProbeResult:
        """
        执行一次探测

        Args:
            service_type: 服务类型
            config: 探测配置
            service_name: 服务名称，仅用于日志

        Returns:
            ProbeResult: 探测结果
        """
        start_time = time.monotonic()
        try:
            checker = self.factory.create_checker(service_name, service_type, config)
        except ConfigurationError as e:
            self.logger.warning(f"服务 {service_name} 配置无效: {e.message}")
            return self._down(start_time, e.message)

        try:
            result = await checker.check_health()
        except MonitorError as e:
            self.logger.error(f"服务 {service_name} 探测失败: {e.format_error()}")
            return self._down(start_time, e.message)
        except Exception as e:
            self.logger.error(f"服务 {service_name} 探测时发生未预期的异常: {e}", exc_info=True)
            return self._down(start_time, f"探测异常: {type(e).__name__}: {e}")

        self.logger.debug(
            f"服务 {service_name} 探测完成: {result.status.value}, 响应时间: {result.response_time}ms")
        return result

    @staticmethod
    def _down(start_time: float, error_message: str) -> ProbeResult:
        return ProbeResult(
            status=CheckStatus.DOWN,
            response_time=int(round((time.monotonic() - start_time) * 1000)),
            error_message=error_message
        )
