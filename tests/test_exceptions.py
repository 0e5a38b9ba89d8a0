"""异常处理系统测试"""

from uptime_monitor.utils.exceptions import (
    ErrorCode, MonitorError, ConfigurationError, ProbeFailure, DispatchFailure,
    SchedulerError, SchedulerHandlerError, ValidationError, ServiceNotFoundError,
    StateTransitionError, StorageError
)


class TestMonitorError:
    """测试基础异常类"""

    def test_basic_error(self):
        """测试基本属性"""
        error = MonitorError("测试错误")

        assert error.message == "测试错误"
        assert error.error_code == ErrorCode.UNKNOWN_ERROR
        assert error.details == {}
        assert error.cause is None
        assert error.recoverable is True
        assert str(error) == "测试错误"

    def test_to_dict(self):
        """测试转换为字典"""
        cause = ValueError("原始错误")
        error = MonitorError("测试错误", ErrorCode.VALIDATION_ERROR,
                             details={'field': 'name'}, cause=cause)

        error_dict = error.to_dict()
        assert error_dict['error_code'] == ErrorCode.VALIDATION_ERROR.value
        assert error_dict['error_name'] == 'VALIDATION_ERROR'
        assert error_dict['message'] == "测试错误"
        assert error_dict['details'] == {'field': 'name'}
        assert error_dict['cause'] == "原始错误"
        assert 'ValueError' in error_dict['traceback']
        assert 'timestamp' in error_dict

    def test_format_error(self):
        """测试格式化错误信息"""
        error = MonitorError("连接失败", ErrorCode.CONNECTION_ERROR,
                             details={'host': 'localhost'}, cause=OSError("refused"))

        formatted = error.format_error()
        assert formatted.startswith("[CONNECTION_ERROR] 连接失败")
        assert "(详情: host=localhost)" in formatted
        assert "(原因: refused)" in formatted

    def test_format_error_without_details(self):
        """测试没有详情时的格式"""
        assert MonitorError("简单错误").format_error() == "[UNKNOWN_ERROR] 简单错误"


class TestDomainErrors:
    """测试具体异常类"""

    def test_configuration_error(self):
        """测试配置错误"""
        error = ConfigurationError("配置无效", config_path='global.log_level')

        assert isinstance(error, MonitorError)
        assert error.error_code == ErrorCode.CONFIG_VALIDATION_ERROR
        assert error.details['config_path'] == 'global.log_level'

    def test_configuration_error_custom_code(self):
        """测试配置错误自定义错误码"""
        error = ConfigurationError("文件不存在", ErrorCode.CONFIG_FILE_NOT_FOUND)
        assert error.error_code == ErrorCode.CONFIG_FILE_NOT_FOUND
        assert 'config_path' not in error.details

    def test_probe_failure(self):
        """测试探测失败"""
        error = ProbeFailure("连接超时", ErrorCode.TIMEOUT_ERROR,
                             service_name='cache', service_type='redis')

        assert error.error_code == ErrorCode.TIMEOUT_ERROR
        assert error.details == {'service_name': 'cache', 'service_type': 'redis'}

    def test_dispatch_failure(self):
        """测试告警发送失败"""
        error = DispatchFailure("HTTP 500", channel='teams',
                                destination='https://example.com/hook')

        assert error.error_code == ErrorCode.ALERT_SEND_ERROR
        assert error.details['channel'] == 'teams'
        assert error.details['destination'] == 'https://example.com/hook'

    def test_scheduler_errors(self):
        """测试调度器异常"""
        error = SchedulerError("调度器已停止", job_name='healthcheck')
        assert error.error_code == ErrorCode.SCHEDULER_ERROR
        assert error.details['job_name'] == 'healthcheck'

        handler_error = SchedulerHandlerError("任务失败", job_name='cleanup',
                                              cause=RuntimeError("boom"))
        assert isinstance(handler_error, SchedulerError)
        assert handler_error.error_code == ErrorCode.TASK_EXECUTION_ERROR
        assert handler_error.details['job_name'] == 'cleanup'
        assert "(原因: boom)" in handler_error.format_error()

    def test_validation_error(self):
        """测试输入校验错误"""
        error = ValidationError("检测到循环依赖", field='dependencies')

        assert error.error_code == ErrorCode.VALIDATION_ERROR
        assert error.details['field'] == 'dependencies'
        assert error.recoverable is False

    def test_service_not_found(self):
        """测试服务不存在"""
        error = ServiceNotFoundError('svc-1')

        assert error.message == "服务不存在: svc-1"
        assert error.error_code == ErrorCode.NOT_FOUND
        assert error.details['service_id'] == 'svc-1'

    def test_state_transition_and_storage_errors(self):
        """测试状态转换与存储错误"""
        transition = StateTransitionError("事件已关闭")
        assert transition.error_code == ErrorCode.INVALID_STATE_TRANSITION
        assert transition.recoverable is False

        storage = StorageError("写入失败", collection='incidents')
        assert storage.error_code == ErrorCode.STORAGE_ERROR
        assert storage.details['collection'] == 'incidents'
