"""Redis健康检查器"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Dict, Any, AsyncIterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult
from ..models.service import ServiceType
from ..utils.exceptions import ConfigurationError, ErrorCode


@register_checker(ServiceType.REDIS)
class RedisHealthChecker(BaseHealthChecker):
    """Redis健康检查器

    依次执行配置的命令（如 GET、HGETALL），全部成功即为UP；
    未配置命令时执行 PING。
    """

    def validate_config(self) -> None:
        self._require_connection_string('redis://', 'rediss://', 'unix://')

        database = self.config.get('database', 0)
        if database is not None and (isinstance(database, bool) or not isinstance(database, int)
                                     or database < 0):
            raise ConfigurationError(f"服务 '{self.name}' 的 database 必须是非负整数",
                                     ErrorCode.PROBE_CONFIG_ERROR)

        password = self.config.get('password')
        if password is not None and not isinstance(password, str):
            raise ConfigurationError(f"服务 '{self.name}' 的 password 必须是字符串",
                                     ErrorCode.PROBE_CONFIG_ERROR)

        operations = self.config.get('operations') or []
        if not isinstance(operations, list):
            raise ConfigurationError(f"服务 '{self.name}' 的 operations 必须是数组",
                                     ErrorCode.PROBE_CONFIG_ERROR)
        for index, operation in enumerate(operations):
            if not isinstance(operation, dict) or not isinstance(operation.get('command'), str) \
                    or not operation['command'].strip():
                raise ConfigurationError(
                    f"服务 '{self.name}' 的 operations[{index}] 缺少 command",
                    ErrorCode.PROBE_CONFIG_ERROR
                )
            args = operation.get('args', [])
            if args is not None and not isinstance(args, list):
                raise ConfigurationError(
                    f"服务 '{self.name}' 的 operations[{index}].args 必须是数组",
                    ErrorCode.PROBE_CONFIG_ERROR
                )

        self._validate_timeout()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[redis.Redis]:
        timeout = self.get_timeout()
        client = redis.from_url(
            self.config['connection_string'],
            password=self.config.get('password') or None,
            db=self.config.get('database') or 0,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True
        )
        try:
            yield client
        finally:
            await client.aclose()
            self.logger.debug(f"Redis客户端连接已关闭: {self.name}")

    async def check_health(self) -> ProbeResult:
        """
        执行Redis健康检查

        Returns:
            ProbeResult: 所有命令执行成功时为UP
        """
        start_time = time.monotonic()
        metadata: Dict[str, Any] = {}
        error_message = None
        operations = self.config.get('operations') or []

        try:
            async with self._connect() as client:
                if not operations:
                    await asyncio.wait_for(client.ping(), timeout=self.get_timeout())
                    metadata['ping'] = 'PONG'
                for operation in operations:
                    command = operation['command'].strip().upper()
                    args = operation.get('args') or []
                    try:
                        await asyncio.wait_for(client.execute_command(command, *args),
                                               timeout=self.get_timeout())
                    except RedisError as e:
                        error_message = f"命令 {command} 执行失败: {e}"
                        break
                metadata['operations_executed'] = len(operations)
        except asyncio.TimeoutError:
            error_message = f"Redis操作超时 ({self.get_timeout_ms()}ms)"
        except RedisError as e:
            error_message = f"Redis连接失败: {e}"
        except OSError as e:
            error_message = f"网络错误: {e}"

        if error_message:
            self.logger.warning(f"Redis服务 {self.name} 健康检查失败: {error_message}")
        return self._result(start_time, error_message=error_message, metadata=metadata)
