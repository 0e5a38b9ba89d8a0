"""告警记录模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from ..utils.clock import utcnow, ensure_utc, isoformat
from ..utils.exceptions import StateTransitionError


class AlertType(str, Enum):
    INCIDENT_OPENED = 'INCIDENT_OPENED'
    INCIDENT_CLOSED = 'INCIDENT_CLOSED'
    SERVICE_DEGRADED = 'SERVICE_DEGRADED'


class AlertSeverity(str, Enum):
    INFO = 'INFO'
    WARNING = 'WARNING'
    CRITICAL = 'CRITICAL'


class AlertStatus(str, Enum):
    PENDING = 'PENDING'
    SENT = 'SENT'
    FAILED = 'FAILED'


class NotificationChannel(str, Enum):
    TEAMS = 'teams'
    EMAIL = 'email'
    SLACK = 'slack'


@dataclass
class Alert:
    """一次告警通知尝试

    状态只能从 PENDING 单向变为 SENT 或 FAILED。
    """
    service_id: str
    service_name: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    channels: List[NotificationChannel] = field(default_factory=list)
    status: AlertStatus = AlertStatus.PENDING
    incident_id: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def _ensure_pending(self) -> None:
        if self.status != AlertStatus.PENDING:
            raise StateTransitionError(
                f"告警 {self.id} 已处于终态 {self.status.value}，不能再次变更")

    def mark_sent(self, sent_at: Optional[datetime] = None) -> None:
        self._ensure_pending()
        self.status = AlertStatus.SENT
        self.sent_at = sent_at or utcnow()
        self.updated_at = self.sent_at

    def mark_failed(self, error_message: str) -> None:
        self._ensure_pending()
        self.status = AlertStatus.FAILED
        self.error_message = error_message
        self.updated_at = utcnow()

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'type': self.alert_type.value,
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'channels': [c.value for c in self.channels],
            'status': self.status.value,
            'incident_id': self.incident_id,
            'error_message': self.error_message,
            'sent_at': self.sent_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Alert':
        return cls(
            id=doc['id'],
            service_id=doc['service_id'],
            service_name=doc.get('service_name', ''),
            alert_type=AlertType(doc['type']),
            severity=AlertSeverity(doc['severity']),
            title=doc.get('title', ''),
            message=doc.get('message', ''),
            channels=[NotificationChannel(c) for c in doc.get('channels') or []],
            status=AlertStatus(doc['status']),
            incident_id=doc.get('incident_id'),
            error_message=doc.get('error_message'),
            sent_at=ensure_utc(doc.get('sent_at')),
            created_at=ensure_utc(doc.get('created_at')) or utcnow(),
            updated_at=ensure_utc(doc.get('updated_at')) or utcnow()
        )

    def to_response(self) -> Dict[str, Any]:
        data = self.to_document()
        for key in ('sent_at', 'created_at', 'updated_at'):
            data[key] = isoformat(data[key])
        return data
