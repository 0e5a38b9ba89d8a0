"""Microsoft Teams 告警通道"""

from typing import Dict, Any

from .webhook_alerter import WebhookAlerter
from ..models.alert import AlertSeverity, NotificationChannel
from ..utils.clock import utcnow

THEME_COLORS = {
    AlertSeverity.CRITICAL: 'FF0000',
    AlertSeverity.WARNING: 'FFA500',
    AlertSeverity.INFO: '00FF00',
}


class TeamsAlerter(WebhookAlerter):
    """以 MessageCard 卡片发送到 Teams Incoming Webhook"""

    channel = NotificationChannel.TEAMS

    def build_payload(self, title: str, message: str, severity: AlertSeverity) -> Dict[str, Any]:
        return {
            '@type': 'MessageCard',
            '@context': 'https://schema.org/extensions',
            'summary': title,
            'themeColor': THEME_COLORS.get(severity, '808080'),
            'title': title,
            'sections': [{
                'activityTitle': self.config.get('activity_title', 'Uptime Monitor'),
                'activitySubtitle': utcnow().strftime('%Y-%m-%d %H:%M:%S UTC'),
                'markdown': True,
                'facts': [
                    {'name': 'Severity', 'value': severity.value},
                    {'name': 'Message', 'value': message},
                ],
            }],
        }
