"""配置管理器"""

import copy
import os
from typing import Dict, Any, List, Optional

import yaml

from ..models.service import Service
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigurationError, ErrorCode
from ..utils.log_manager import get_logger

DEFAULT_CONFIG: Dict[str, Any] = {
    'global': {
        'log_level': 'INFO',
        'log_file': None,
        'max_concurrent_checks': 10,
        'correlation_window_seconds': 120,
        'alert_cooldown_minutes': 5,
    },
    'storage': {
        'backend': 'mongodb',
        'uri': 'mongodb://localhost:27017',
        'database': 'uptime_monitor',
    },
    'scheduler': {
        'tick_interval': 1,
        'jobs': {
            'healthcheck': {'cron': '* * * * *', 'run_immediately': True},
            'heartbeat': {'cron': '* * * * *', 'run_immediately': True},
            'cleanup': {'cron': '0 3 * * *', 'run_immediately': False},
        },
    },
    'retention': {
        'health_checks': 30,
        'incidents': 90,
        'alerts': 90,
        'heartbeats': 1,
    },
    'api': {
        'enabled': True,
        'host': '0.0.0.0',
        'port': 8080,
    },
    'alerts': {
        'default_channels': [],
    },
    'services': [],
}

MONGODB_URI_ENV = 'MONGODB_URI'


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """递归合并字典，overrides 优先"""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件，未配置的项使用默认值

        Returns:
            Dict[str, Any]: 合并默认值后的配置字典

        Raises:
            ConfigurationError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigurationError(f"配置文件不存在: {self.config_path}",
                                     ErrorCode.CONFIG_FILE_NOT_FOUND,
                                     config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                raw = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigurationError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                                     config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigurationError(f"没有权限读取配置文件: {self.config_path}",
                                     ErrorCode.CONFIG_FILE_NOT_FOUND,
                                     config_path=self.config_path, cause=e)

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError("配置文件根节点必须是字典类型", ErrorCode.CONFIG_PARSE_ERROR,
                                     config_path=self.config_path)

        self.logger.debug("开始验证配置文件内容")
        self._validate_config(raw)

        config = _merge(DEFAULT_CONFIG, raw)
        env_uri = os.environ.get(MONGODB_URI_ENV)
        if env_uri:
            config['storage']['uri'] = env_uri
            self.logger.info(f"使用环境变量 {MONGODB_URI_ENV} 中的MongoDB连接串")

        self.config = config
        self.logger.info(
            f"配置验证成功，包含 {len(config['services'])} 个服务种子，"
            f"存储后端: {config['storage']['backend']}")
        return self.config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Args:
            config: 配置字典

        Raises:
            ConfigurationError: 配置验证失败
        """
        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'])
        if 'storage' in config:
            ConfigValidator.validate_storage_config(config['storage'])
        if 'scheduler' in config:
            ConfigValidator.validate_scheduler_config(config['scheduler'])
        if 'retention' in config:
            ConfigValidator.validate_retention_config(config['retention'])
        if 'api' in config:
            ConfigValidator.validate_api_config(config['api'])
        if 'alerts' in config:
            ConfigValidator.validate_alerts_config(config['alerts'])
        if 'services' in config:
            ConfigValidator.validate_services_config(config['services'] or [])

    def get_global_config(self) -> Dict[str, Any]:
        return self.config.get('global', {})

    def get_storage_config(self) -> Dict[str, Any]:
        return self.config.get('storage', {})

    def get_scheduler_config(self) -> Dict[str, Any]:
        return self.config.get('scheduler', {})

    def get_retention_config(self) -> Dict[str, Any]:
        return self.config.get('retention', {})

    def get_api_config(self) -> Dict[str, Any]:
        return self.config.get('api', {})

    def get_alerts_config(self) -> Dict[str, Any]:
        return self.config.get('alerts', {})

    def get_job_config(self, job_name: str) -> Optional[Dict[str, Any]]:
        """
        获取指定任务的配置

        Args:
            job_name: 任务名称

        Returns:
            Optional[Dict[str, Any]]: 任务配置，未配置返回None
        """
        return self.get_scheduler_config().get('jobs', {}).get(job_name)

    def get_services(self) -> List[Service]:
        """
        把服务种子列表转换为服务对象，未指定id时以名称作为id

        Raises:
            ConfigurationError: 服务配置无效
        """
        services = []
        for entry in self.config.get('services') or []:
            data = dict(entry)
            data.setdefault('id', data['name'])
            services.append(Service.from_config(data))
        return services
