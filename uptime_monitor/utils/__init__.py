"""工具模块"""

from .exceptions import (
    ErrorCode, MonitorError, ConfigurationError, ProbeFailure, DispatchFailure,
    SchedulerError, SchedulerHandlerError, ValidationError, ServiceNotFoundError,
    StateTransitionError, StorageError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'ErrorCode', 'MonitorError', 'ConfigurationError', 'ProbeFailure', 'DispatchFailure',
    'SchedulerError', 'SchedulerHandlerError', 'ValidationError', 'ServiceNotFoundError',
    'StateTransitionError', 'StorageError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
