"""配置验证工具"""

from datetime import timezone
from typing import Dict, Any, List

from apscheduler.triggers.cron import CronTrigger

from .exceptions import ConfigurationError, ErrorCode

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
STORAGE_BACKENDS = ['mongodb', 'memory']
SERVICE_TYPES = ['api', 'mongodb', 'elasticsearch', 'redis']
ALERT_CHANNELS = ['teams', 'email', 'slack']
SCHEDULER_JOBS = ['healthcheck', 'heartbeat', 'cleanup']
RETENTION_KEYS = ['health_checks', 'incidents', 'alerts', 'heartbeats']


def _require_dict(value: Any, path: str) -> None:
    if not isinstance(value, dict):
        raise ConfigurationError(f"{path} 配置必须是字典类型", config_path=path)


def _require_positive_int(value: Any, path: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{path} 必须是正整数", config_path=path)


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_cron_expression(expression: Any, path: str = 'cron') -> CronTrigger:
        """
        验证5段式cron表达式

        Args:
            expression: cron表达式
            path: 配置路径，用于错误信息

        Returns:
            CronTrigger: 解析后的触发器（UTC）

        Raises:
            ConfigurationError: 表达式无效
        """
        if not isinstance(expression, str) or len(expression.split()) != 5:
            raise ConfigurationError(f"{path} 不是有效的cron表达式: {expression}",
                                     config_path=path)
        try:
            return CronTrigger.from_crontab(expression, timezone=timezone.utc)
        except ValueError as e:
            raise ConfigurationError(f"{path} 不是有效的cron表达式: {expression} ({e})",
                                     config_path=path, cause=e)

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigurationError: 配置验证失败
        """
        _require_dict(global_config, 'global')

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}",
                                     config_path='global.log_level')

        for key in ('max_concurrent_checks', 'correlation_window_seconds', 'log_max_file_size',
                    'log_backup_count'):
            if global_config.get(key) is not None:
                _require_positive_int(global_config[key], f'global.{key}')

        cooldown = global_config.get('alert_cooldown_minutes')
        if cooldown is not None and (isinstance(cooldown, bool) or not isinstance(cooldown, int)
                                     or cooldown < 0):
            raise ConfigurationError("alert_cooldown_minutes 必须是非负整数",
                                     config_path='global.alert_cooldown_minutes')

    @staticmethod
    def validate_storage_config(storage_config: Dict[str, Any]) -> None:
        """验证存储配置"""
        _require_dict(storage_config, 'storage')
        backend = storage_config.get('backend', 'mongodb')
        if backend not in STORAGE_BACKENDS:
            raise ConfigurationError(f"storage.backend 必须是以下值之一: {STORAGE_BACKENDS}",
                                     config_path='storage.backend')
        uri = storage_config.get('uri')
        if uri is not None and (not isinstance(uri, str)
                                or not uri.startswith(('mongodb://', 'mongodb+srv://'))):
            raise ConfigurationError("storage.uri 必须以 mongodb:// 或 mongodb+srv:// 开头",
                                     config_path='storage.uri')

    @staticmethod
    def validate_scheduler_config(scheduler_config: Dict[str, Any]) -> None:
        """验证调度器配置，任务的cron表达式在加载时解析"""
        _require_dict(scheduler_config, 'scheduler')
        tick_interval = scheduler_config.get('tick_interval')
        if tick_interval is not None and (isinstance(tick_interval, bool)
                                          or not isinstance(tick_interval, (int, float))
                                          or tick_interval <= 0):
            raise ConfigurationError("scheduler.tick_interval 必须是正数",
                                     config_path='scheduler.tick_interval')

        jobs = scheduler_config.get('jobs') or {}
        _require_dict(jobs, 'scheduler.jobs')
        for job_name, job_config in jobs.items():
            path = f'scheduler.jobs.{job_name}'
            if job_name not in SCHEDULER_JOBS:
                raise ConfigurationError(f"未知的任务: {job_name}，支持的任务: {SCHEDULER_JOBS}",
                                         config_path=path)
            _require_dict(job_config, path)
            if 'cron' in job_config:
                ConfigValidator.validate_cron_expression(job_config['cron'], f'{path}.cron')

    @staticmethod
    def validate_retention_config(retention_config: Dict[str, Any]) -> None:
        _require_dict(retention_config, 'retention')
        for key, value in retention_config.items():
            if key not in RETENTION_KEYS:
                raise ConfigurationError(f"未知的保留期配置: {key}", config_path=f'retention.{key}')
            _require_positive_int(value, f'retention.{key}')

    @staticmethod
    def validate_api_config(api_config: Dict[str, Any]) -> None:
        _require_dict(api_config, 'api')
        port = api_config.get('port')
        if port is not None:
            _require_positive_int(port, 'api.port')
            if port > 65535:
                raise ConfigurationError("api.port 必须在 1-65535 之间", config_path='api.port')

    @staticmethod
    def validate_alerts_config(alerts_config: Dict[str, Any]) -> None:
        """
        验证告警配置

        只检查结构，通道自身的字段由对应通道的 validate_config 校验。

        Raises:
            ConfigurationError: 配置验证失败
        """
        _require_dict(alerts_config, 'alerts')
        channels = alerts_config.get('default_channels') or []
        if not isinstance(channels, list):
            raise ConfigurationError("alerts.default_channels 必须是列表类型",
                                     config_path='alerts.default_channels')
        for channel in channels:
            if channel not in ALERT_CHANNELS:
                raise ConfigurationError(
                    f"不支持的告警通道: '{channel}'，支持的通道: {ALERT_CHANNELS}",
                    ErrorCode.ALERT_CONFIG_ERROR, config_path='alerts.default_channels')
        for channel in ALERT_CHANNELS:
            if alerts_config.get(channel) is not None:
                _require_dict(alerts_config[channel], f'alerts.{channel}')

    @staticmethod
    def validate_service_config(index: int, config: Dict[str, Any]) -> None:
        """
        验证服务种子配置

        Args:
            index: 服务在列表中的位置
            config: 服务配置

        Raises:
            ConfigurationError: 配置验证失败
        """
        path = f'services[{index}]'
        _require_dict(config, path)

        for field in ('name', 'type'):
            if not config.get(field):
                raise ConfigurationError(f"{path} 缺少必需的配置项: {field}",
                                         config_path=f'{path}.{field}')

        service_type = config.get('type')
        if service_type not in SERVICE_TYPES:
            raise ConfigurationError(
                f"服务 '{config['name']}' 的类型 '{service_type}' 不受支持。支持的类型: {SERVICE_TYPES}",
                config_path=f'{path}.type')

        for key in ('timeout', 'check_interval', 'response_time_warning_ms',
                    'response_time_warning_attempts'):
            if config.get(key) is not None:
                _require_positive_int(config[key], f'{path}.{key}')

        dependencies = config.get('dependencies')
        if dependencies is not None and not isinstance(dependencies, list):
            raise ConfigurationError(f"服务 '{config['name']}' 的 dependencies 必须是列表类型",
                                     config_path=f'{path}.dependencies')

    @staticmethod
    def validate_services_config(services: List[Dict[str, Any]]) -> None:
        """验证服务列表，服务id（缺省为名称）不能重复"""
        if not isinstance(services, list):
            raise ConfigurationError("services 配置必须是列表类型", config_path='services')
        seen = set()
        for index, service in enumerate(services):
            ConfigValidator.validate_service_config(index, service)
            service_id = str(service.get('id') or service['name'])
            if service_id in seen:
                raise ConfigurationError(f"服务id重复: {service_id}",
                                         config_path=f'services[{index}]')
            seen.add(service_id)
