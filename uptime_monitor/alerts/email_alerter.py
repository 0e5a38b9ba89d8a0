"""邮件告警通道"""

import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any, List

import aiosmtplib

from .base import BaseAlerter
from ..models.alert import AlertSeverity, NotificationChannel
from ..utils.exceptions import ConfigurationError, DispatchFailure, ErrorCode

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class EmailAlerter(BaseAlerter):
    """通过SMTP发送告警邮件，destination 为收件人地址"""

    channel = NotificationChannel.EMAIL

    def __init__(self, config: Dict[str, Any]):
        """
        初始化邮件告警通道

        Args:
            config: 通道配置，包括 smtp_server、smtp_port、username、password、
                use_tls、use_ssl、from_email、from_name、to_emails
        """
        super().__init__(config)
        self.smtp_server = self.config.get('smtp_server', '')
        self.smtp_port = self.config.get('smtp_port', 587)
        self.username = self.config.get('username', '')
        self.password = self.config.get('password', '')
        self.use_tls = self.config.get('use_tls', True)
        self.use_ssl = self.config.get('use_ssl', False)
        self.from_email = self.config.get('from_email', self.username)
        self.from_name = self.config.get('from_name', '服务可用性监控')

    def validate_config(self) -> None:
        if not self.smtp_server:
            raise ConfigurationError("邮件通道缺少 smtp_server 配置", ErrorCode.ALERT_CONFIG_ERROR)
        if not self.from_email or not EMAIL_PATTERN.match(self.from_email):
            raise ConfigurationError(f"邮件通道发件人地址无效: {self.from_email}",
                                     ErrorCode.ALERT_CONFIG_ERROR)
        for email in self.get_destinations():
            if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
                raise ConfigurationError(f"邮件通道收件人地址无效: {email}",
                                         ErrorCode.ALERT_CONFIG_ERROR)
        if not isinstance(self.smtp_port, int) or self.smtp_port <= 0:
            raise ConfigurationError(f"邮件通道SMTP端口无效: {self.smtp_port}",
                                     ErrorCode.ALERT_CONFIG_ERROR)
        if self.use_ssl and self.use_tls:
            raise ConfigurationError("邮件通道不能同时启用SSL和STARTTLS",
                                     ErrorCode.ALERT_CONFIG_ERROR)

    def get_destinations(self) -> List[str]:
        return list(self.config.get('to_emails') or [])

    def _create_email_message(self, destination: str, title: str, message: str,
                              severity: AlertSeverity) -> MIMEMultipart:
        email_msg = MIMEMultipart()
        email_msg['From'] = formataddr((self.from_name, self.from_email))
        email_msg['To'] = destination
        email_msg['Subject'] = f"[{severity.value}] {title}"
        body = (
            f"{message}\n\n"
            f"严重级别: {severity.value}\n\n"
            "---\n此邮件由服务可用性监控系统自动发送，请勿回复。\n"
        )
        email_msg.attach(MIMEText(body, 'plain', 'utf-8'))
        return email_msg

    async def send(self, destination: str, title: str, message: str,
                   severity: AlertSeverity) -> None:
        email_msg = self._create_email_message(destination, title, message, severity)
        smtp_kwargs: Dict[str, Any] = {
            'hostname': self.smtp_server,
            'port': self.smtp_port,
            'timeout': self.get_timeout(),
            'use_tls': self.use_ssl,
            'start_tls': self.use_tls,
        }
        if self.username:
            smtp_kwargs['username'] = self.username
            smtp_kwargs['password'] = self.password

        try:
            await aiosmtplib.send(email_msg, **smtp_kwargs)
        except (aiosmtplib.SMTPException, OSError) as e:
            self.logger.error(f"SMTP发送失败: {e}")
            raise DispatchFailure(f"SMTP发送失败: {e}", channel=self.channel.value,
                                  destination=destination, cause=e)
        self.logger.info(f"邮件告警发送成功: {self.from_email} -> {destination}")
