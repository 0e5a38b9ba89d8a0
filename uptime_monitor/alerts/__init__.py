"""告警模块"""

from .base import BaseAlerter
from .webhook_alerter import WebhookAlerter
from .teams_alerter import TeamsAlerter
from .slack_alerter import SlackAlerter
from .email_alerter import EmailAlerter
from .dispatcher import AlertDispatcher
from .integrator import AlertIntegrator, build_alerters, parse_channels

__all__ = [
    'BaseAlerter',
    'WebhookAlerter',
    'TeamsAlerter',
    'SlackAlerter',
    'EmailAlerter',
    'AlertDispatcher',
    'AlertIntegrator',
    'build_alerters',
    'parse_channels'
]
