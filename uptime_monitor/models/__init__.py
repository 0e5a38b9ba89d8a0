"""数据模型模块"""

from .health_check import CheckStatus, ProbeResult, HealthCheck
from .incident import Incident, IncidentStatus, IncidentTransition, TransitionKind
from .alert import Alert, AlertType, AlertSeverity, AlertStatus, NotificationChannel
from .service import (
    Service, ServiceType, MaintenanceWindow, Settings, SETTINGS_ID,
    ApiProbeConfig, MongoProbeConfig, ElasticsearchProbeConfig, RedisProbeConfig,
    build_probe_config, parse_service_type
)

__all__ = [
    'CheckStatus', 'ProbeResult', 'HealthCheck',
    'Incident', 'IncidentStatus', 'IncidentTransition', 'TransitionKind',
    'Alert', 'AlertType', 'AlertSeverity', 'AlertStatus', 'NotificationChannel',
    'Service', 'ServiceType', 'MaintenanceWindow', 'Settings', 'SETTINGS_ID',
    'ApiProbeConfig', 'MongoProbeConfig', 'ElasticsearchProbeConfig', 'RedisProbeConfig',
    'build_probe_config', 'parse_service_type'
]
