"""自定义异常类和错误处理系统"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002
    NOT_FOUND = 1003
    INVALID_STATE_TRANSITION = 1004

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002

    # 探测错误 (3000-3999)
    PROBE_CONFIG_ERROR = 3000
    CONNECTION_ERROR = 3001
    TIMEOUT_ERROR = 3002
    AUTHENTICATION_ERROR = 3003
    INVALID_RESPONSE = 3006

    # 告警错误 (4000-4999)
    ALERT_CONFIG_ERROR = 4000
    ALERT_SEND_ERROR = 4001

    # 调度错误 (5000-5999)
    SCHEDULER_ERROR = 5000
    TASK_EXECUTION_ERROR = 5001

    # 存储错误 (6000-6999)
    STORAGE_ERROR = 6000


class MonitorError(Exception):
    """监控系统基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': ''.join(traceback.format_exception(
                type(self.cause), self.cause, self.cause.__traceback__
            )) if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigurationError(MonitorError):
    """配置缺失或格式错误

    既用于YAML配置文件，也用于单个服务的探测配置。后者在探测器边界
    被转换为DOWN结果，不会中断其他服务的探测。
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        details = dict(details or {})
        if config_path:
            details['config_path'] = config_path
        super().__init__(message, error_code, details, **kwargs)


class ProbeFailure(MonitorError):
    """探测过程中的传输、超时或认证错误"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONNECTION_ERROR,
        service_name: Optional[str] = None,
        service_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        details = dict(details or {})
        if service_name:
            details['service_name'] = service_name
        if service_type:
            details['service_type'] = service_type
        super().__init__(message, error_code, details, **kwargs)


class DispatchFailure(MonitorError):
    """告警通道发送失败"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ALERT_SEND_ERROR,
        channel: Optional[str] = None,
        destination: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        details = dict(details or {})
        if channel:
            details['channel'] = channel
        if destination:
            details['destination'] = destination
        super().__init__(message, error_code, details, **kwargs)


class SchedulerError(MonitorError):
    """调度器生命周期或任务注册错误"""

    def __init__(self, message: str, job_name: Optional[str] = None, **kwargs):
        details = dict(kwargs.pop('details', None) or {})
        if job_name:
            details['job_name'] = job_name
        super().__init__(message, kwargs.pop('error_code', ErrorCode.SCHEDULER_ERROR),
                         details, **kwargs)


class SchedulerHandlerError(SchedulerError):
    """任务处理函数执行时抛出的未捕获异常"""

    def __init__(self, message: str, job_name: Optional[str] = None, **kwargs):
        super().__init__(message, job_name=job_name,
                         error_code=ErrorCode.TASK_EXECUTION_ERROR, **kwargs)


class ValidationError(MonitorError):
    """调用方输入校验失败（依赖环、管道格式、时间窗口等）"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = dict(kwargs.pop('details', None) or {})
        if field:
            details['field'] = field
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details,
                         recoverable=False, **kwargs)


class ServiceNotFoundError(MonitorError):
    """服务不存在或已被删除"""

    def __init__(self, service_id: str, **kwargs):
        super().__init__(
            f"服务不存在: {service_id}",
            ErrorCode.NOT_FOUND,
            {'service_id': service_id},
            recoverable=False,
            **kwargs
        )


class StateTransitionError(MonitorError):
    """对已关闭的事件或已终结的告警进行了非法修改"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.INVALID_STATE_TRANSITION,
                         recoverable=False, **kwargs)


class StorageError(MonitorError):
    """存储层读写失败"""

    def __init__(self, message: str, collection: Optional[str] = None, **kwargs):
        details = dict(kwargs.pop('details', None) or {})
        if collection:
            details['collection'] = collection
        super().__init__(message, ErrorCode.STORAGE_ERROR, details, **kwargs)
