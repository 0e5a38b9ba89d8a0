"""告警通道测试"""

import pytest
from aiohttp import web, test_utils
from unittest.mock import AsyncMock, patch

import aiosmtplib

from uptime_monitor.alerts import EmailAlerter, SlackAlerter, TeamsAlerter
from uptime_monitor.models.alert import AlertSeverity
from uptime_monitor.utils.exceptions import ConfigurationError, DispatchFailure


def create_webhook_app(received: list, status: int = 200) -> web.Application:
    async def hook(request: web.Request):
        received.append(await request.json())
        return web.Response(status=status, text='ok' if status < 300 else 'error')

    app = web.Application()
    app.router.add_post('/hook', hook)
    return app


class TestWebhookAlerters:
    """测试 Teams 与 Slack 通道"""

    def test_validate_config(self):
        TeamsAlerter({'webhook_urls': ['https://outlook.office.com/webhook/abc']}).validate_config()

        with pytest.raises(ConfigurationError, match="webhook_urls 必须是数组"):
            SlackAlerter({'webhook_urls': 'https://hooks.slack.com/x'}).validate_config()
        with pytest.raises(ConfigurationError, match="Webhook 地址无效"):
            SlackAlerter({'webhook_urls': ['not-a-url']}).validate_config()

    def test_destinations(self):
        alerter = TeamsAlerter({'webhook_urls': ['https://a/hook', 'https://b/hook']})
        assert alerter.get_destinations() == ['https://a/hook', 'https://b/hook']

    def test_teams_payload(self):
        payload = TeamsAlerter({}).build_payload('服务故障: api', '检测到故障',
                                                 AlertSeverity.CRITICAL)

        assert payload['@type'] == 'MessageCard'
        assert payload['title'] == '服务故障: api'
        assert payload['themeColor'] == 'FF0000'
        facts = payload['sections'][0]['facts']
        assert {'name': 'Message', 'value': '检测到故障'} in facts

    def test_slack_payload(self):
        payload = SlackAlerter({}).build_payload('服务恢复: api', '已恢复', AlertSeverity.INFO)

        assert payload['text'] == '服务恢复: api'
        assert payload['attachments'][0]['text'] == '已恢复'
        assert payload['attachments'][0]['color'] == '#36A64F'

    @pytest.mark.asyncio
    async def test_send_posts_json(self):
        received = []
        async with test_utils.TestServer(create_webhook_app(received)) as server:
            alerter = SlackAlerter({})
            await alerter.send(str(server.make_url('/hook')), '服务故障: api', '检测到故障',
                               AlertSeverity.CRITICAL)

        assert received[0]['text'] == '服务故障: api'

    @pytest.mark.asyncio
    async def test_non_2xx_raises_dispatch_failure(self):
        async with test_utils.TestServer(create_webhook_app([], status=500)) as server:
            alerter = TeamsAlerter({})
            with pytest.raises(DispatchFailure, match="HTTP 500") as exc_info:
                await alerter.send(str(server.make_url('/hook')), 'title', 'message',
                                   AlertSeverity.WARNING)

        assert exc_info.value.details['status_code'] == 500
        assert exc_info.value.details['channel'] == 'teams'

    @pytest.mark.asyncio
    async def test_network_error_raises_dispatch_failure(self):
        alerter = SlackAlerter({'timeout': 2})
        with pytest.raises(DispatchFailure, match="slack"):
            await alerter.send('http://127.0.0.1:1/hook', 'title', 'message',
                               AlertSeverity.INFO)


class TestEmailAlerter:
    """测试邮件通道"""

    def setup_method(self):
        self.config = {
            'smtp_server': 'smtp.example.com',
            'smtp_port': 587,
            'username': 'monitor@example.com',
            'password': 'secret',
            'from_email': 'monitor@example.com',
            'to_emails': ['ops@example.com']
        }

    def test_validate_config(self):
        EmailAlerter(self.config).validate_config()

    def test_validate_invalid_recipient(self):
        self.config['to_emails'] = ['not-an-email']
        with pytest.raises(ConfigurationError, match="收件人地址无效"):
            EmailAlerter(self.config).validate_config()

    def test_validate_missing_server(self):
        del self.config['smtp_server']
        with pytest.raises(ConfigurationError, match="smtp_server"):
            EmailAlerter(self.config).validate_config()

    def test_validate_tls_and_ssl(self):
        self.config['use_ssl'] = True
        with pytest.raises(ConfigurationError, match="SSL"):
            EmailAlerter(self.config).validate_config()

    def test_destinations(self):
        assert EmailAlerter(self.config).get_destinations() == ['ops@example.com']

    @pytest.mark.asyncio
    async def test_send(self):
        with patch('uptime_monitor.alerts.email_alerter.aiosmtplib.send',
                   new_callable=AsyncMock) as mock_send:
            await EmailAlerter(self.config).send('ops@example.com', '服务故障: api',
                                                 '检测到故障', AlertSeverity.CRITICAL)

        message = mock_send.await_args.args[0]
        kwargs = mock_send.await_args.kwargs
        assert message['To'] == 'ops@example.com'
        assert message['Subject'] == '[CRITICAL] 服务故障: api'
        assert kwargs['hostname'] == 'smtp.example.com'
        assert kwargs['port'] == 587
        assert kwargs['start_tls'] is True
        assert kwargs['username'] == 'monitor@example.com'

    @pytest.mark.asyncio
    async def test_send_failure(self):
        with patch('uptime_monitor.alerts.email_alerter.aiosmtplib.send',
                   new_callable=AsyncMock,
                   side_effect=aiosmtplib.SMTPException('auth failed')):
            with pytest.raises(DispatchFailure, match="SMTP发送失败") as exc_info:
                await EmailAlerter(self.config).send('ops@example.com', 'title', 'message',
                                                     AlertSeverity.INFO)

        assert exc_info.value.details['destination'] == 'ops@example.com'
