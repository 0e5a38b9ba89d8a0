"""健康检查相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime

from ..utils.clock import utcnow, ensure_utc, isoformat


class CheckStatus(str, Enum):
    """单次探测结果状态"""
    UP = 'UP'
    DOWN = 'DOWN'


@dataclass
class ProbeResult:
    """探测器返回的统一结果

    response_time 为毫秒；status_code 只对 api 类型有意义。
    """
    status: CheckStatus
    response_time: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP


@dataclass
class HealthCheck:
    """一次探测执行记录，创建后不再修改"""
    service_id: str
    service_name: str
    status: CheckStatus
    response_time: int
    timestamp: datetime = field(default_factory=utcnow)
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP

    @classmethod
    def from_probe(cls, service_id: str, service_name: str, result: ProbeResult,
                   timestamp: datetime) -> 'HealthCheck':
        return cls(
            service_id=service_id,
            service_name=service_name,
            status=result.status,
            response_time=result.response_time,
            status_code=result.status_code,
            error_message=result.error_message,
            timestamp=timestamp
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'status': self.status.value,
            'response_time': self.response_time,
            'status_code': self.status_code,
            'error_message': self.error_message,
            'timestamp': self.timestamp
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'HealthCheck':
        return cls(
            id=doc['id'],
            service_id=doc['service_id'],
            service_name=doc.get('service_name', ''),
            status=CheckStatus(doc['status']),
            response_time=doc.get('response_time', 0),
            status_code=doc.get('status_code'),
            error_message=doc.get('error_message'),
            timestamp=ensure_utc(doc['timestamp'])
        )

    def to_response(self) -> Dict[str, Any]:
        """按需探测接口的返回体"""
        return {
            'status': self.status.value,
            'response_time': self.response_time,
            'status_code': self.status_code,
            'error_message': self.error_message,
            'timestamp': isoformat(self.timestamp)
        }
