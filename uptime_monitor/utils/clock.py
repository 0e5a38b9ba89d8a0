"""时间工具：系统内部统一使用带时区的UTC时间"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """将无时区信息的时间视为UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(start: datetime, end: datetime) -> int:
    """两个时间点之间的毫秒数"""
    return int(round((ensure_utc(end) - ensure_utc(start)).total_seconds() * 1000))


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None
