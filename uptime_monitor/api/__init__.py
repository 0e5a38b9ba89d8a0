"""HTTP接口模块"""

from .server import MonitorApiServer, error_middleware

__all__ = ['MonitorApiServer', 'error_middleware']
