"""Webhook告警通道基类"""

import asyncio
from abc import abstractmethod
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseAlerter
from ..models.alert import AlertSeverity
from ..utils.exceptions import ConfigurationError, DispatchFailure, ErrorCode


class WebhookAlerter(BaseAlerter):
    """通过 HTTP POST JSON 发送通知的通道

    配置项：
        webhook_urls: 默认的 Webhook 地址列表
        timeout: 请求超时（秒）
        ssl_verify: 是否校验证书，默认 True
    """

    def validate_config(self) -> None:
        urls = self.config.get('webhook_urls') or []
        if not isinstance(urls, list):
            raise ConfigurationError(f"{self.channel.value} 通道的 webhook_urls 必须是数组",
                                     ErrorCode.ALERT_CONFIG_ERROR)
        for url in urls:
            self._check_url(url)

    def _check_url(self, url: Any) -> None:
        parsed = urlparse(url) if isinstance(url, str) else None
        if parsed is None or parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigurationError(f"{self.channel.value} 通道的 Webhook 地址无效: {url}",
                                     ErrorCode.ALERT_CONFIG_ERROR)

    def get_destinations(self):
        return list(self.config.get('webhook_urls') or [])

    @abstractmethod
    def build_payload(self, title: str, message: str, severity: AlertSeverity) -> Dict[str, Any]:
        """构造请求体"""

    async def send(self, destination: str, title: str, message: str,
                   severity: AlertSeverity) -> None:
        payload = self.build_payload(title, message, severity)
        await self._post_json(destination, payload)
        self.logger.info(f"{self.channel.value} 通知发送成功: {title}")

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> None:
        """
        发送 POST 请求，非 2xx 响应视为失败

        Raises:
            DispatchFailure: 网络错误、超时或非 2xx 响应
        """
        channel = self.channel.value
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        ssl = None if self.config.get('ssl_verify', True) else False

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, ssl=ssl) as response:
                    if not 200 <= response.status < 300:
                        response_text = await response.text()
                        self.logger.warning(
                            f"{channel} 通道收到错误响应 "
                            f"(状态码: {response.status}, 响应: {response_text[:200]})")
                        raise DispatchFailure(
                            f"{channel} 通道返回 HTTP {response.status}",
                            channel=channel, destination=url,
                            details={'status_code': response.status}
                        )
        except aiohttp.ClientError as e:
            error_msg = str(e) or type(e).__name__
            if "SSL" in error_msg or "certificate" in error_msg.lower():
                self.logger.error(
                    f"{channel} 通道SSL证书验证失败: {e}，"
                    f"可在配置中添加 'ssl_verify: false' 临时禁用验证")
            else:
                self.logger.error(f"{channel} 通道网络请求失败: {error_msg}")
            raise DispatchFailure(f"{channel} 请求失败: {error_msg}",
                                  channel=channel, destination=url, cause=e)
        except asyncio.TimeoutError as e:
            self.logger.error(f"{channel} 通道请求超时")
            raise DispatchFailure(f"{channel} 请求超时", ErrorCode.ALERT_SEND_ERROR,
                                  channel=channel, destination=url, cause=e)
