"""被监控服务、维护窗口与全局设置模型"""

import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List, Type, Union

from .health_check import CheckStatus
from ..utils.clock import utcnow, ensure_utc
from ..utils.exceptions import ConfigurationError, ErrorCode

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_CHECK_INTERVAL = 60


class ServiceType(str, Enum):
    """探测类型"""
    API = 'api'
    MONGODB = 'mongodb'
    ELASTICSEARCH = 'elasticsearch'
    REDIS = 'redis'


@dataclass
class ApiProbeConfig:
    url: Optional[str] = None
    method: str = 'GET'
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class MongoProbeConfig:
    connection_string: Optional[str] = None
    database: Optional[str] = None
    pipelines: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ElasticsearchProbeConfig:
    connection_string: Optional[str] = None


@dataclass
class RedisProbeConfig:
    connection_string: Optional[str] = None
    password: Optional[str] = None
    database: int = 0
    operations: List[Dict[str, Any]] = field(default_factory=list)


ProbeConfig = Union[ApiProbeConfig, MongoProbeConfig, ElasticsearchProbeConfig, RedisProbeConfig]

PROBE_CONFIG_TYPES: Dict[ServiceType, Type] = {
    ServiceType.API: ApiProbeConfig,
    ServiceType.MONGODB: MongoProbeConfig,
    ServiceType.ELASTICSEARCH: ElasticsearchProbeConfig,
    ServiceType.REDIS: RedisProbeConfig,
}


def parse_service_type(value: Any) -> ServiceType:
    """
    解析服务类型

    Raises:
        ConfigurationError: 类型不受支持
    """
    try:
        return ServiceType(value)
    except ValueError:
        supported = [t.value for t in ServiceType]
        raise ConfigurationError(
            f"不支持的服务类型: '{value}'，支持的类型: {supported}",
            ErrorCode.PROBE_CONFIG_ERROR
        )


def build_probe_config(service_type: ServiceType, data: Optional[Dict[str, Any]]) -> ProbeConfig:
    """
    按服务类型构造探测配置，忽略不属于该类型的字段

    字段值本身的合法性由对应的检查器在探测时校验。
    """
    config_class = PROBE_CONFIG_TYPES[service_type]
    data = data or {}
    known = {f.name for f in fields(config_class)}
    return config_class(**{k: v for k, v in data.items() if k in known})


@dataclass
class Service:
    """被监控服务

    服务的增删改由管理端负责，监控核心只读取配置并回写
    last_status / last_checked_at。
    """
    name: str
    service_type: ServiceType
    probe: ProbeConfig
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timeout: int = DEFAULT_TIMEOUT_MS  # 毫秒
    check_interval: int = DEFAULT_CHECK_INTERVAL  # 秒
    alerts_enabled: bool = True
    dependencies: List[str] = field(default_factory=list)
    response_time_warning_ms: Optional[int] = None
    response_time_warning_attempts: int = 3
    last_status: Optional[CheckStatus] = None
    last_checked_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def probe_config(self) -> Dict[str, Any]:
        """交给探测器的配置字典（包含超时）"""
        config = asdict(self.probe)
        config['timeout'] = self.timeout
        return config

    def is_due(self, now: datetime, tolerance: float = 0) -> bool:
        """
        距离上次探测是否已超过检查间隔

        Args:
            now: 当前时间
            tolerance: 允许提前的秒数，用于吸收调度节拍与探测开始之间的偏差
        """
        if self.last_checked_at is None:
            return True
        elapsed = (ensure_utc(now) - ensure_utc(self.last_checked_at)).total_seconds()
        return elapsed + tolerance >= self.check_interval

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.service_type.value,
            'config': asdict(self.probe),
            'timeout': self.timeout,
            'check_interval': self.check_interval,
            'alerts_enabled': self.alerts_enabled,
            'dependencies': list(self.dependencies),
            'response_time_warning_ms': self.response_time_warning_ms,
            'response_time_warning_attempts': self.response_time_warning_attempts,
            'last_status': self.last_status.value if self.last_status else None,
            'last_checked_at': self.last_checked_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'deleted_at': self.deleted_at
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Service':
        service_type = parse_service_type(doc['type'])
        last_status = doc.get('last_status')
        return cls(
            id=doc['id'],
            name=doc['name'],
            service_type=service_type,
            probe=build_probe_config(service_type, doc.get('config')),
            timeout=doc.get('timeout') or DEFAULT_TIMEOUT_MS,
            check_interval=doc.get('check_interval') or DEFAULT_CHECK_INTERVAL,
            alerts_enabled=doc.get('alerts_enabled', True),
            dependencies=list(doc.get('dependencies') or []),
            response_time_warning_ms=doc.get('response_time_warning_ms'),
            response_time_warning_attempts=doc.get('response_time_warning_attempts') or 3,
            last_status=CheckStatus(last_status) if last_status else None,
            last_checked_at=ensure_utc(doc.get('last_checked_at')),
            created_at=ensure_utc(doc.get('created_at')) or utcnow(),
            updated_at=ensure_utc(doc.get('updated_at')) or utcnow(),
            deleted_at=ensure_utc(doc.get('deleted_at'))
        )

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> 'Service':
        """
        从YAML中的服务条目构造服务

        协议相关字段可以直接写在条目上，也可以放在 config 子节点中。

        Raises:
            ConfigurationError: 缺少名称或类型不受支持
        """
        if not data.get('name'):
            raise ConfigurationError("服务配置缺少 name")
        service_type = parse_service_type(data.get('type'))
        probe_fields = dict(data.get('config') or {})
        for key, value in data.items():
            probe_fields.setdefault(key, value)

        kwargs = {
            'name': data['name'],
            'service_type': service_type,
            'probe': build_probe_config(service_type, probe_fields),
            'timeout': data.get('timeout', DEFAULT_TIMEOUT_MS),
            'check_interval': data.get('check_interval', DEFAULT_CHECK_INTERVAL),
            'alerts_enabled': data.get('alerts_enabled', True),
            'dependencies': list(data.get('dependencies') or []),
            'response_time_warning_ms': data.get('response_time_warning_ms'),
            'response_time_warning_attempts': data.get('response_time_warning_attempts', 3),
        }
        if data.get('id'):
            kwargs['id'] = str(data['id'])
        return cls(**kwargs)


@dataclass
class MaintenanceWindow:
    """维护窗口：窗口内的DOWN只记录，不产生事件和告警"""
    service_id: str
    start_time: datetime
    end_time: datetime
    service_name: str = ''
    reason: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, at: datetime) -> bool:
        return ensure_utc(self.start_time) <= ensure_utc(at) <= ensure_utc(self.end_time)

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'reason': self.reason,
            'created_at': self.created_at
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'MaintenanceWindow':
        return cls(
            id=doc['id'],
            service_id=doc['service_id'],
            service_name=doc.get('service_name', ''),
            start_time=ensure_utc(doc['start_time']),
            end_time=ensure_utc(doc['end_time']),
            reason=doc.get('reason'),
            created_at=ensure_utc(doc.get('created_at')) or utcnow()
        )


SETTINGS_ID = 'global'


@dataclass
class Settings:
    """进程级全局设置（单例，id 固定为 global）"""
    global_alerts_enabled: bool = True
    global_health_checks_enabled: bool = True
    alert_cooldown_minutes: Optional[int] = 5
    updated_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': SETTINGS_ID,
            'global_alerts_enabled': self.global_alerts_enabled,
            'global_health_checks_enabled': self.global_health_checks_enabled,
            'alert_cooldown_minutes': self.alert_cooldown_minutes,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> 'Settings':
        """缺失的字段使用默认值补齐"""
        defaults = cls()
        doc = doc or {}
        return cls(
            global_alerts_enabled=doc.get('global_alerts_enabled',
                                          defaults.global_alerts_enabled),
            global_health_checks_enabled=doc.get('global_health_checks_enabled',
                                                 defaults.global_health_checks_enabled),
            alert_cooldown_minutes=doc.get('alert_cooldown_minutes',
                                           defaults.alert_cooldown_minutes),
            updated_at=ensure_utc(doc.get('updated_at')) or defaults.updated_at
        )
