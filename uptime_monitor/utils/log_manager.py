"""
日志管理器模块

所有组件的日志记录器都挂在统一的根命名空间下，处理器只安装在根记录器上，
重新配置时无需逐个替换子记录器的处理器。
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from enum import Enum

ROOT_LOGGER_NAME = 'uptime_monitor'


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogManager:
    """
    日志管理器类（单例）

    支持控制台输出、按大小轮转的文件输出以及运行时调整日志级别。
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True

        self._root = logging.getLogger(ROOT_LOGGER_NAME)
        self._root.propagate = False
        self._initialized = True
        self._install_handlers()

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志系统

        Args:
            config: 日志配置字典，可选键：
                - log_level: DEBUG/INFO/WARNING/ERROR/CRITICAL
                - log_file: 日志文件路径，为空表示不写文件
                - max_file_size: 单个日志文件最大字节数
                - backup_count: 轮转保留的文件数量
                - enable_console: 是否输出到控制台

        Raises:
            ValueError: 日志级别无效
        """
        if 'log_level' in config and config['log_level']:
            level_str = str(config['log_level']).upper()
            if level_str not in LogLevel.__members__:
                raise ValueError(f"无效的日志级别: {level_str}")
            self._log_level = LogLevel[level_str]

        if 'log_file' in config:
            self._log_file = config['log_file'] or None
        self._max_file_size = config.get('max_file_size', self._max_file_size)
        self._backup_count = config.get('backup_count', self._backup_count)
        self._enable_console = config.get('enable_console', self._enable_console)

        self._install_handlers()

    def _install_handlers(self) -> None:
        """按当前配置重建根记录器的处理器"""
        self._close_handlers()
        self._root.setLevel(self._log_level.value)

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format))
            self._root.addHandler(console_handler)

        if self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format))
            self._root.addHandler(file_handler)

    def _close_handlers(self) -> None:
        for handler in list(self._root.handlers):
            self._root.removeHandler(handler)
            handler.close()

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取组件日志记录器

        Args:
            name: 组件名称，例如 'scheduler' 或 'checker.redis.cache'

        Returns:
            根命名空间下的子日志记录器
        """
        if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
            return logging.getLogger(name)
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')

    def set_level(self, level: LogLevel) -> None:
        """运行时调整日志级别"""
        self._log_level = level
        self._root.setLevel(level.value)

    @property
    def level(self) -> LogLevel:
        return self._log_level

    def get_log_stats(self) -> Dict[str, Any]:
        return {
            'log_level': self._log_level.name,
            'log_file': self._log_file,
            'console_logging_enabled': self._enable_console,
            'handlers': len(self._root.handlers)
        }

    def cleanup(self) -> None:
        """关闭所有处理器"""
        self._close_handlers()


# 全局日志管理器实例
log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷函数"""
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """配置日志系统的便捷函数"""
    log_manager.configure(config)
