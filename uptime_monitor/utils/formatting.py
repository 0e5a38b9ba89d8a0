"""时长格式化工具"""

import math
from typing import Optional


def format_duration(milliseconds: Optional[float]) -> str:
    """
    将毫秒数格式化为易读的时长字符串

    只保留最高的两个单位，例如 ``1d 2h``、``3h 15m``、``4m 30s``、``12s``。

    Args:
        milliseconds: 毫秒数，None 或无穷大表示未定义

    Returns:
        str: 格式化后的时长
    """
    if milliseconds is None or math.isinf(milliseconds):
        return 'N/A'
    if milliseconds <= 0:
        return '0s'

    total_seconds = int(milliseconds // 1000)
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_percentage(value: float) -> str:
    """格式化百分比，保留两位小数"""
    return f"{value:.2f}%"
