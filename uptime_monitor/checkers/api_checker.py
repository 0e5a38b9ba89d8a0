"""HTTP接口健康检查器"""

import asyncio
import json
import time
from typing import Dict, Any

import aiohttp

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult
from ..models.service import ServiceType
from ..utils.exceptions import ConfigurationError, ErrorCode

USER_AGENT = 'Uptime Monitor Health Checker'
SUPPORTED_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'HEAD', 'OPTIONS', 'PATCH']
BODY_METHODS = ('POST', 'PUT', 'PATCH')


@register_checker(ServiceType.API)
class ApiHealthChecker(BaseHealthChecker):
    """HTTP接口健康检查器

    在超时时间内收到响应即视为UP，状态码只作为信息记录；
    超时、连接错误等传输层异常视为DOWN。
    """

    def validate_config(self) -> None:
        url = self.config.get('url')
        if not url or not isinstance(url, str):
            raise ConfigurationError(f"服务 '{self.name}' 缺少 url 配置",
                                     ErrorCode.PROBE_CONFIG_ERROR)
        if not url.startswith(('http://', 'https://')):
            raise ConfigurationError(
                f"服务 '{self.name}' 的 url 必须以 http:// 或 https:// 开头: {url}",
                ErrorCode.PROBE_CONFIG_ERROR
            )

        method = self.config.get('method') or 'GET'
        if not isinstance(method, str) or method.upper() not in SUPPORTED_METHODS:
            raise ConfigurationError(
                f"服务 '{self.name}' 不支持的HTTP方法: {method}，支持的方法: {SUPPORTED_METHODS}",
                ErrorCode.PROBE_CONFIG_ERROR
            )

        headers = self.config.get('headers')
        if headers is not None and not isinstance(headers, dict):
            raise ConfigurationError(f"服务 '{self.name}' 的 headers 必须是字典类型",
                                     ErrorCode.PROBE_CONFIG_ERROR)

        body = self.config.get('body')
        if body is not None and not isinstance(body, (str, dict, list)):
            raise ConfigurationError(f"服务 '{self.name}' 的 body 必须是字符串或JSON对象",
                                     ErrorCode.PROBE_CONFIG_ERROR)

        self._validate_timeout()

    def _build_request_kwargs(self, method: str) -> Dict[str, Any]:
        headers = {'User-Agent': USER_AGENT}
        headers.update(self.config.get('headers') or {})
        request_kwargs: Dict[str, Any] = {'headers': headers}

        body = self.config.get('body')
        if body is not None and method in BODY_METHODS:
            if isinstance(body, (dict, list)):
                request_kwargs['data'] = json.dumps(body)
                headers.setdefault('Content-Type', 'application/json')
            else:
                request_kwargs['data'] = body
        return request_kwargs

    async def check_health(self) -> ProbeResult:
        """
        执行HTTP接口健康检查

        Returns:
            ProbeResult: 探测结果，status_code 为实际响应状态码
        """
        start_time = time.monotonic()
        url = self.config['url']
        method = (self.config.get('method') or 'GET').upper()
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url,
                                           **self._build_request_kwargs(method)) as response:
                    await response.read()
                    self.logger.debug(f"HTTP {method} {url} 返回状态码 {response.status}")
                    return self._result(
                        start_time,
                        status_code=response.status,
                        metadata={'reason': response.reason}
                    )
        except asyncio.TimeoutError:
            error_message = f"请求超时 ({self.get_timeout_ms()}ms)"
        except aiohttp.ClientError as e:
            error_message = f"HTTP客户端错误: {str(e) or type(e).__name__}"
        except OSError as e:
            error_message = f"网络错误: {e}"

        self.logger.warning(f"服务 {self.name} HTTP探测失败: {error_message}")
        return self._result(start_time, error_message=error_message)
