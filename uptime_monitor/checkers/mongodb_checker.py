"""MongoDB健康检查器"""

import time
from contextlib import asynccontextmanager
from typing import Dict, Any, List, AsyncIterator

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult
from ..models.service import ServiceType
from ..utils.exceptions import ConfigurationError, ErrorCode, ProbeFailure, ValidationError

DEFAULT_DATABASE = 'admin'


def validate_pipelines(pipelines: Any) -> List[Dict[str, Any]]:
    """
    校验聚合管道列表格式

    每一项必须形如 ``{'collection': str, 'pipeline': list}``。

    Args:
        pipelines: 待校验的管道列表

    Returns:
        List[Dict[str, Any]]: 原样返回通过校验的列表

    Raises:
        ValidationError: 格式不正确，错误信息包含出错的下标
    """
    if pipelines is None:
        return []
    if not isinstance(pipelines, list):
        raise ValidationError("pipelines 必须是数组", field='pipelines')

    for index, entry in enumerate(pipelines):
        if not isinstance(entry, dict):
            raise ValidationError(f"pipelines[{index}] 必须是对象", field='pipelines')
        collection = entry.get('collection')
        if not collection or not isinstance(collection, str):
            raise ValidationError(f"pipelines[{index}] 缺少 collection", field='pipelines')
        pipeline = entry.get('pipeline')
        if not isinstance(pipeline, list):
            raise ValidationError(f"pipelines[{index}].pipeline 必须是数组", field='pipelines')
        for stage in pipeline:
            if not isinstance(stage, dict):
                raise ValidationError(f"pipelines[{index}].pipeline 的每个阶段必须是对象",
                                      field='pipelines')
    return pipelines


@register_checker(ServiceType.MONGODB)
class MongoHealthChecker(BaseHealthChecker):
    """MongoDB健康检查器

    对配置的每条聚合管道追加 ``$limit: 1`` 后执行，只验证能否执行，
    不关心返回的数据；未配置管道时执行 ping。
    """

    def validate_config(self) -> None:
        self._require_connection_string('mongodb://', 'mongodb+srv://')

        database = self.config.get('database')
        if database is not None and not isinstance(database, str):
            raise ConfigurationError(f"服务 '{self.name}' 的 database 必须是字符串",
                                     ErrorCode.PROBE_CONFIG_ERROR)

        try:
            validate_pipelines(self.config.get('pipelines'))
        except ValidationError as e:
            raise ConfigurationError(f"服务 '{self.name}' 的管道配置无效: {e.message}",
                                     ErrorCode.PROBE_CONFIG_ERROR, cause=e)

        self._validate_timeout()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncIOMotorClient]:
        """创建一次性客户端，退出时无论成败都关闭"""
        timeout_ms = self.get_timeout_ms()
        client = AsyncIOMotorClient(
            self.config['connection_string'],
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms
        )
        try:
            yield client
        finally:
            client.close()
            self.logger.debug(f"MongoDB客户端连接已关闭: {self.name}")

    async def run_pipelines(self, client: AsyncIOMotorClient) -> List[Dict[str, Any]]:
        """
        逐条执行管道

        Returns:
            每条管道的执行结果 ``{'collection', 'success', 'error'}``
        """
        db = client[self.config.get('database') or DEFAULT_DATABASE]
        results = []
        for entry in self.config.get('pipelines') or []:
            pipeline = list(entry['pipeline']) + [{'$limit': 1}]
            try:
                cursor = db[entry['collection']].aggregate(pipeline)
                await cursor.to_list(length=1)
                results.append({'collection': entry['collection'], 'success': True, 'error': None})
            except PyMongoError as e:
                results.append({'collection': entry['collection'], 'success': False, 'error': str(e)})
        return results

    async def check_health(self) -> ProbeResult:
        """
        执行MongoDB健康检查

        Returns:
            ProbeResult: 所有管道执行成功时为UP
        """
        self.logger.debug(f"开始执行MongoDB健康检查: {self.name}")
        start_time = time.monotonic()
        metadata: Dict[str, Any] = {}
        error_message = None

        try:
            async with self._connect() as client:
                if not self.config.get('pipelines'):
                    await client[self.config.get('database') or DEFAULT_DATABASE].command('ping')
                    metadata['ping'] = 'ok'
                else:
                    results = await self.run_pipelines(client)
                    metadata['pipelines_executed'] = len(results)
                    failed = [r for r in results if not r['success']]
                    if failed:
                        first = failed[0]
                        error_message = f"集合 {first['collection']} 的管道执行失败: {first['error']}"
        except PyMongoError as e:
            error_message = f"MongoDB连接失败: {e}"

        if error_message:
            self.logger.warning(f"MongoDB服务 {self.name} 健康检查失败: {error_message}")
        return self._result(start_time, error_message=error_message, metadata=metadata)

    async def execute_pipelines(self) -> List[Dict[str, Any]]:
        """
        连接数据库并逐条执行管道，用于保存配置前的预校验

        Returns:
            每条管道的执行结果

        Raises:
            ProbeFailure: 无法连接数据库
        """
        try:
            async with self._connect() as client:
                return await self.run_pipelines(client)
        except PyMongoError as e:
            raise ProbeFailure(f"MongoDB连接失败: {e}", service_name=self.name,
                               service_type=ServiceType.MONGODB.value, cause=e)
