"""健康检查器工厂"""

from typing import Dict, Type, Any, List, Union

from .base import BaseHealthChecker
from ..models.service import ServiceType, parse_service_type
from ..utils.exceptions import ConfigurationError, ErrorCode


class HealthCheckerFactory:
    """健康检查器工厂类，按服务类型创建检查器"""

    def __init__(self):
        self._checkers: Dict[ServiceType, Type[BaseHealthChecker]] = {}

    def register_checker(self, service_type: ServiceType, checker_class: Type[BaseHealthChecker]):
        """
        注册健康检查器类

        Args:
            service_type: 服务类型
            checker_class: 健康检查器类

        Raises:
            ConfigurationError: 注册失败
        """
        if not issubclass(checker_class, BaseHealthChecker):
            raise ConfigurationError(
                f"检查器类 {checker_class.__name__} 必须继承自 BaseHealthChecker")

        if service_type in self._checkers:
            raise ConfigurationError(f"服务类型 '{service_type.value}' 已经注册了检查器")

        checker_class.service_type = service_type.value
        self._checkers[service_type] = checker_class

    def unregister_checker(self, service_type: ServiceType):
        self._checkers.pop(service_type, None)

    def create_checker(self, service_name: str, service_type: Union[ServiceType, str],
                       config: Dict[str, Any]) -> BaseHealthChecker:
        """
        创建并校验健康检查器实例

        Args:
            service_name: 服务名称
            service_type: 服务类型
            config: 探测配置

        Returns:
            BaseHealthChecker: 已通过配置校验的检查器

        Raises:
            ConfigurationError: 类型不受支持或配置无效
        """
        if not isinstance(service_type, ServiceType):
            service_type = parse_service_type(service_type)

        checker_class = self._checkers.get(service_type)
        if checker_class is None:
            raise ConfigurationError(
                f"服务类型 '{service_type.value}' 没有注册检查器",
                ErrorCode.PROBE_CONFIG_ERROR
            )

        if not isinstance(config, dict):
            raise ConfigurationError(
                f"服务 '{service_name}' 的探测配置必须是字典类型",
                ErrorCode.PROBE_CONFIG_ERROR
            )

        checker = checker_class(service_name, config)
        checker.validate_config()
        return checker

    def get_supported_types(self) -> List[str]:
        return [t.value for t in self._checkers]

    def is_type_supported(self, service_type: Union[ServiceType, str]) -> bool:
        try:
            return ServiceType(service_type) in self._checkers
        except ValueError:
            return False


# 全局工厂实例
health_checker_factory = HealthCheckerFactory()


def register_checker(service_type: ServiceType):
    """
    装饰器：注册健康检查器类

    Args:
        service_type: 服务类型
    """
    def decorator(checker_class: Type[BaseHealthChecker]):
        health_checker_factory.register_checker(service_type, checker_class)
        return checker_class

    return decorator
