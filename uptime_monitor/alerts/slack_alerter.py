"""Slack 告警通道"""

from typing import Dict, Any

from .webhook_alerter import WebhookAlerter
from ..models.alert import AlertSeverity, NotificationChannel

SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: '#FF0000',
    AlertSeverity.WARNING: '#FFA500',
    AlertSeverity.INFO: '#36A64F',
}


class SlackAlerter(WebhookAlerter):
    """发送到 Slack Incoming Webhook"""

    channel = NotificationChannel.SLACK

    def build_payload(self, title: str, message: str, severity: AlertSeverity) -> Dict[str, Any]:
        return {
            'text': title,
            'attachments': [{
                'color': SEVERITY_COLORS.get(severity, '#808080'),
                'title': title,
                'text': message,
                'fields': [{'title': 'Severity', 'value': severity.value, 'short': True}],
            }],
        }
