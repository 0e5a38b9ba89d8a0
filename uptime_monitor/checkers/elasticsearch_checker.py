"""Elasticsearch健康检查器"""

import asyncio
import time
from typing import Dict, Any

import aiohttp

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult
from ..models.service import ServiceType


@register_checker(ServiceType.ELASTICSEARCH)
class ElasticsearchHealthChecker(BaseHealthChecker):
    """Elasticsearch健康检查器

    请求 ``GET /_cluster/health`` 作为轻量的可达性检查。只要集群正常应答
    （2xx）即为UP，集群颜色记录在 metadata 中；认证失败等非2xx响应和
    传输层错误为DOWN。连接串中的用户名密码会作为Basic认证发送。
    """

    def validate_config(self) -> None:
        self._require_connection_string('http://', 'https://')
        self._validate_timeout()

    def _health_url(self) -> str:
        return self.config['connection_string'].rstrip('/') + '/_cluster/health'

    async def check_health(self) -> ProbeResult:
        start_time = time.monotonic()
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        metadata: Dict[str, Any] = {}

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self._health_url(),
                                       headers={'Accept': 'application/json'}) as response:
                    if response.status in (401, 403):
                        error_message = f"认证失败: HTTP {response.status}"
                    elif not 200 <= response.status < 300:
                        error_message = f"集群返回错误: HTTP {response.status} {response.reason}"
                    else:
                        body = await response.json(content_type=None)
                        if isinstance(body, dict):
                            metadata['cluster_name'] = body.get('cluster_name')
                            metadata['cluster_status'] = body.get('status')
                            metadata['number_of_nodes'] = body.get('number_of_nodes')
                        return self._result(start_time, status_code=response.status,
                                            metadata=metadata)
                    self.logger.warning(f"Elasticsearch服务 {self.name} 健康检查失败: {error_message}")
                    return self._result(start_time, error_message=error_message,
                                        status_code=response.status)
        except asyncio.TimeoutError:
            error_message = f"请求超时 ({self.get_timeout_ms()}ms)"
        except aiohttp.ClientError as e:
            error_message = f"Elasticsearch连接失败: {str(e) or type(e).__name__}"
        except ValueError as e:
            error_message = f"集群响应不是有效的JSON: {e}"
        except OSError as e:
            error_message = f"网络错误: {e}"

        self.logger.warning(f"Elasticsearch服务 {self.name} 健康检查失败: {error_message}")
        return self._result(start_time, error_message=error_message)
