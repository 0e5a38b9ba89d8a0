"""测试Redis健康检查器"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from uptime_monitor.checkers.redis_checker import RedisHealthChecker
from uptime_monitor.models.health_check import CheckStatus
from uptime_monitor.utils.exceptions import ConfigurationError


def mock_redis_client():
    client = Mock(spec=Redis)
    client.ping = AsyncMock(return_value=True)
    client.execute_command = AsyncMock(return_value='value')
    client.aclose = AsyncMock()
    return client


class TestRedisHealthCheckerConfig:
    """测试RedisHealthChecker配置验证"""

    def test_validate_config_valid(self):
        """测试有效配置验证"""
        RedisHealthChecker('test-redis', {
            'connection_string': 'redis://localhost:6379',
            'password': 'secret',
            'database': 1,
            'operations': [{'command': 'GET', 'args': ['health:key']}]
        }).validate_config()

    def test_validate_config_invalid_scheme(self):
        with pytest.raises(ConfigurationError, match="redis://"):
            RedisHealthChecker('test-redis', {
                'connection_string': 'http://localhost:6379'
            }).validate_config()

    def test_validate_config_invalid_database(self):
        """测试无效数据库配置"""
        with pytest.raises(ConfigurationError, match="database"):
            RedisHealthChecker('test-redis', {
                'connection_string': 'redis://localhost',
                'database': -1
            }).validate_config()

    def test_validate_config_invalid_operations(self):
        with pytest.raises(ConfigurationError, match="operations 必须是数组"):
            RedisHealthChecker('test-redis', {
                'connection_string': 'redis://localhost',
                'operations': 'GET key'
            }).validate_config()
        with pytest.raises(ConfigurationError, match=r"operations\[0\] 缺少 command"):
            RedisHealthChecker('test-redis', {
                'connection_string': 'redis://localhost',
                'operations': [{'args': ['key']}]
            }).validate_config()


class TestRedisHealthChecker:
    """测试Redis探测"""

    def test_client_supports_async_close(self):
        """探测结束时关闭客户端使用的 aclose 需要 redis>=5.0.1"""
        assert callable(getattr(Redis, 'aclose', None))

    @pytest.mark.asyncio
    async def test_ping_without_operations(self):
        """未配置命令时执行PING"""
        client = mock_redis_client()
        with patch('uptime_monitor.checkers.redis_checker.redis.from_url',
                   return_value=client) as from_url:
            result = await RedisHealthChecker('cache', {
                'connection_string': 'redis://localhost:6379',
                'password': 'secret',
                'database': 2,
                'timeout': 1500
            }).check_health()

        assert result.status == CheckStatus.UP
        assert result.metadata['ping'] == 'PONG'
        client.ping.assert_awaited_once()
        client.aclose.assert_awaited_once()

        kwargs = from_url.call_args.kwargs
        assert from_url.call_args.args[0] == 'redis://localhost:6379'
        assert kwargs['password'] == 'secret'
        assert kwargs['db'] == 2
        assert kwargs['socket_timeout'] == 1.5

    @pytest.mark.asyncio
    async def test_operations_executed_in_order(self):
        client = mock_redis_client()
        with patch('uptime_monitor.checkers.redis_checker.redis.from_url', return_value=client):
            result = await RedisHealthChecker('cache', {
                'connection_string': 'redis://localhost:6379',
                'operations': [
                    {'command': 'get', 'args': ['health:key']},
                    {'command': 'HGETALL', 'args': ['health:hash']}
                ]
            }).check_health()

        assert result.status == CheckStatus.UP
        assert result.metadata['operations_executed'] == 2
        assert client.execute_command.await_args_list[0].args == ('GET', 'health:key')
        assert client.execute_command.await_args_list[1].args == ('HGETALL', 'health:hash')
        client.ping.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_command_failure(self):
        client = mock_redis_client()
        client.execute_command = AsyncMock(side_effect=ResponseError('WRONGTYPE'))
        with patch('uptime_monitor.checkers.redis_checker.redis.from_url', return_value=client):
            result = await RedisHealthChecker('cache', {
                'connection_string': 'redis://localhost:6379',
                'operations': [{'command': 'GET', 'args': ['key']}]
            }).check_health()

        assert result.status == CheckStatus.DOWN
        assert result.error_message.startswith("命令 GET 执行失败")
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        client = mock_redis_client()
        client.ping = AsyncMock(side_effect=RedisConnectionError('Connection refused'))
        with patch('uptime_monitor.checkers.redis_checker.redis.from_url', return_value=client):
            result = await RedisHealthChecker('cache', {
                'connection_string': 'redis://localhost:6379'
            }).check_health()

        assert result.status == CheckStatus.DOWN
        assert result.error_message.startswith("Redis连接失败")
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def hang():
            await asyncio.sleep(1)

        client = mock_redis_client()
        client.ping = hang
        with patch('uptime_monitor.checkers.redis_checker.redis.from_url', return_value=client):
            result = await RedisHealthChecker('cache', {
                'connection_string': 'redis://localhost:6379',
                'timeout': 100
            }).check_health()

        assert result.status == CheckStatus.DOWN
        assert result.error_message == "Redis操作超时 (100ms)"
