"""SLA指标计算

基于事件历史计算可用率、MTTR、MTBF和总故障时长。所有函数都是纯函数，
当前时间由调用方注入。
"""

import math
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from ..models.incident import Incident
from ..models.service import Service
from ..utils.clock import ensure_utc, to_millis
from ..utils.exceptions import ValidationError
from ..utils.formatting import format_duration, format_percentage

TIME_WINDOWS: Dict[str, Optional[timedelta]] = {
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
    'all': None,
}


def parse_time_window(token: Any) -> str:
    """
    校验时间窗口参数

    Raises:
        ValidationError: 不是 7d、30d、all 之一
    """
    if token not in TIME_WINDOWS:
        raise ValidationError(f"无效的时间窗口: {token}，可选值: 7d, 30d, all",
                              field='window')
    return token


def window_start(token: str, now: datetime, created_at: Optional[datetime] = None) -> datetime:
    """
    时间窗口的起点

    all 窗口从服务创建时间开始；没有创建时间时窗口长度为0。
    """
    now = ensure_utc(now)
    span = TIME_WINDOWS[parse_time_window(token)]
    if span is None:
        return min(ensure_utc(created_at), now) if created_at else now
    return now - span


def _incident_end(incident: Incident, now: datetime) -> datetime:
    """OPEN事件按当前时间计算"""
    if incident.end_time is None:
        return now
    return min(ensure_utc(incident.end_time), now)


def clipped_downtime_ms(incidents: List[Incident], start: datetime, now: datetime) -> int:
    """
    事件与 [start, now] 重叠部分的总时长（毫秒）

    Args:
        incidents: 事件列表
        start: 窗口起点
        now: 当前时间

    Returns:
        int: 重叠时长之和
    """
    start, now = ensure_utc(start), ensure_utc(now)
    total = 0
    for incident in incidents:
        overlap_start = max(ensure_utc(incident.start_time), start)
        overlap_end = _incident_end(incident, now)
        if overlap_end > overlap_start:
            total += to_millis(overlap_start, overlap_end)
    return total


def _started_in_window(incidents: List[Incident], start: datetime,
                       now: datetime) -> List[Incident]:
    return [i for i in incidents if start <= ensure_utc(i.start_time) <= now]


def calculate_uptime(incidents: List[Incident], start: datetime, now: datetime) -> float:
    """
    可用率百分比，结果总在 [0, 100] 之间；窗口长度为0时视为100
    """
    window_ms = to_millis(start, now)
    if window_ms <= 0:
        return 100.0
    downtime = clipped_downtime_ms(incidents, start, now)
    uptime = 100.0 * (window_ms - downtime) / window_ms
    return max(0.0, min(100.0, uptime))


def calculate_mttr(incidents: List[Incident], start: datetime, now: datetime) -> float:
    """窗口内开始且已关闭的事件的平均持续时长（毫秒），没有时为0"""
    start, now = ensure_utc(start), ensure_utc(now)
    durations = [i.duration for i in _started_in_window(incidents, start, now)
                 if not i.is_open and i.duration is not None]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def calculate_mtbf(incidents: List[Incident], start: datetime, now: datetime,
                   created_at: Optional[datetime] = None) -> float:
    """
    平均故障间隔（毫秒）= 窗口长度 / 窗口内开始的事件数

    服务创建时间晚于窗口起点时，以创建时间作为窗口起点。
    窗口内没有事件时返回无穷大。
    """
    start, now = ensure_utc(start), ensure_utc(now)
    count = len(_started_in_window(incidents, start, now))
    if count == 0:
        return math.inf
    bounded_start = max(start, ensure_utc(created_at)) if created_at else start
    window_ms = max(to_millis(bounded_start, now), 0)
    return window_ms / count


def _duration_entry(milliseconds: float) -> Dict[str, Any]:
    return {
        'milliseconds': None if math.isinf(milliseconds) else int(round(milliseconds)),
        'formatted': format_duration(milliseconds)
    }


def calculate_sla_metrics(service: Service, incidents: List[Incident], time_window: str,
                          now: datetime) -> Dict[str, Any]:
    """
    生成服务在给定时间窗口内的SLA报告

    Args:
        service: 服务
        incidents: 该服务的事件（可以包含窗口外的事件）
        time_window: 7d、30d 或 all
        now: 当前时间

    Returns:
        Dict[str, Any]: 指标报告

    Raises:
        ValidationError: 时间窗口无效
    """
    now = ensure_utc(now)
    start = window_start(time_window, now, service.created_at)

    uptime = calculate_uptime(incidents, start, now)
    mttr = calculate_mttr(incidents, start, now)
    mtbf = calculate_mtbf(incidents, start, now, service.created_at)
    downtime = clipped_downtime_ms(incidents, start, now)

    in_window = _started_in_window(incidents, start, now)
    open_count = sum(1 for i in incidents
                     if i.is_open and ensure_utc(i.start_time) <= now)

    return {
        'service_id': service.id,
        'service_name': service.name,
        'time_window': time_window,
        'window_start': start.isoformat(),
        'window_end': now.isoformat(),
        'metrics': {
            'uptime': {
                'percentage': round(uptime, 4),
                'formatted': format_percentage(uptime)
            },
            'mttr': _duration_entry(mttr),
            'mtbf': _duration_entry(mtbf),
            'total_downtime': _duration_entry(downtime),
            'incident_count': len(in_window),
            'open_incidents': open_count
        }
    }
