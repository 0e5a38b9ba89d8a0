"""事件（故障区间）模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from ..utils.clock import utcnow, ensure_utc, to_millis, isoformat
from ..utils.exceptions import StateTransitionError


class IncidentStatus(str, Enum):
    OPEN = 'OPEN'
    CLOSED = 'CLOSED'


@dataclass
class Incident:
    """一个服务连续处于DOWN状态的时间区间

    只在OPEN状态下允许累加 failed_checks 或关闭；关闭后不可再修改。
    """
    service_id: str
    service_name: str
    start_time: datetime
    status: IncidentStatus = IncidentStatus.OPEN
    failed_checks: int = 1
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # 毫秒
    is_correlated: bool = False
    correlation_id: Optional[str] = None
    root_cause_service_id: Optional[str] = None
    impacted_service_ids: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status == IncidentStatus.OPEN

    def record_failure(self) -> None:
        """
        累加一次失败探测

        Raises:
            StateTransitionError: 事件已关闭
        """
        if not self.is_open:
            raise StateTransitionError(f"事件 {self.id} 已关闭，不能再累加失败次数")
        self.failed_checks += 1
        self.updated_at = utcnow()

    def close(self, end_time: datetime) -> None:
        """
        关闭事件，duration 只在此处设置一次

        Raises:
            StateTransitionError: 事件已关闭
        """
        if not self.is_open:
            raise StateTransitionError(f"事件 {self.id} 已关闭")
        end_time = ensure_utc(end_time)
        if end_time < ensure_utc(self.start_time):
            end_time = ensure_utc(self.start_time)
        self.end_time = end_time
        self.duration = to_millis(self.start_time, end_time)
        self.status = IncidentStatus.CLOSED
        self.updated_at = utcnow()

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'status': self.status.value,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration': self.duration,
            'failed_checks': self.failed_checks,
            'is_correlated': self.is_correlated,
            'correlation_id': self.correlation_id,
            'root_cause_service_id': self.root_cause_service_id,
            'impacted_service_ids': list(self.impacted_service_ids),
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Incident':
        return cls(
            id=doc['id'],
            service_id=doc['service_id'],
            service_name=doc.get('service_name', ''),
            status=IncidentStatus(doc['status']),
            start_time=ensure_utc(doc['start_time']),
            end_time=ensure_utc(doc.get('end_time')),
            duration=doc.get('duration'),
            failed_checks=doc.get('failed_checks', 1),
            is_correlated=doc.get('is_correlated', False),
            correlation_id=doc.get('correlation_id'),
            root_cause_service_id=doc.get('root_cause_service_id'),
            impacted_service_ids=list(doc.get('impacted_service_ids') or []),
            created_at=ensure_utc(doc.get('created_at')) or utcnow(),
            updated_at=ensure_utc(doc.get('updated_at')) or utcnow()
        )

    def to_response(self) -> Dict[str, Any]:
        data = self.to_document()
        for key in ('start_time', 'end_time', 'created_at', 'updated_at'):
            data[key] = isoformat(data[key])
        return data


class TransitionKind(str, Enum):
    """检测器对一次探测结果作出的判定"""
    OPENED = 'OPENED'
    CONTINUED = 'CONTINUED'
    CLOSED = 'CLOSED'
    NONE = 'NONE'
    SUPPRESSED = 'SUPPRESSED'


@dataclass
class IncidentTransition:
    kind: TransitionKind
    incident: Optional[Incident] = None

    @property
    def is_edge(self) -> bool:
        return self.kind in (TransitionKind.OPENED, TransitionKind.CLOSED)
