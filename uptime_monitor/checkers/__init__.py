"""健康检查器模块"""

from .base import BaseHealthChecker
from .factory import HealthCheckerFactory, health_checker_factory, register_checker
from .api_checker import ApiHealthChecker
from .elasticsearch_checker import ElasticsearchHealthChecker
from .mongodb_checker import MongoHealthChecker, validate_pipelines
from .redis_checker import RedisHealthChecker
from .runner import ProbeRunner

__all__ = ['BaseHealthChecker', 'HealthCheckerFactory', 'health_checker_factory',
           'register_checker', 'ApiHealthChecker', 'ElasticsearchHealthChecker',
           'MongoHealthChecker', 'RedisHealthChecker', 'ProbeRunner', 'validate_pipelines']
