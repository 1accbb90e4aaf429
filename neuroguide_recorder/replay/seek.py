"""
Replay Seek - 定位解析

将三种定位方式统一解析为采样点下标 [0, len-1]：
- 归一化位置 p ∈ [0, 1]
- 相对首点的时间偏移（ticks）
- 显式下标

空录制上的定位一律返回 None。
"""

import math
from typing import Optional, Sequence


def _round_half_away(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def nearest_index(timestamps: Sequence[int], target: int) -> Optional[int]:
    """与目标时间戳差值最小的下标，相等时取最靠前的"""
    if not timestamps:
        return None

    best_index = 0
    best_distance = abs(timestamps[0] - target)
    for index in range(1, len(timestamps)):
        distance = abs(timestamps[index] - target)
        if distance < best_distance:
            best_index = index
            best_distance = distance
    return best_index


def resolve_offset(timestamps: Sequence[int], offset: int) -> Optional[int]:
    """按时间偏移定位"""
    if not timestamps:
        return None
    return nearest_index(timestamps, timestamps[0] + int(offset))


def resolve_normalized(timestamps: Sequence[int], position: float) -> Optional[int]:
    """按归一化位置定位"""
    if not timestamps:
        return None
    if math.isnan(position):
        position = 0.0
    position = min(max(position, 0.0), 1.0)
    if position >= 1.0:
        # 末尾时间戳重复时仍落在最后一个点
        return len(timestamps) - 1
    total = timestamps[-1] - timestamps[0]
    return resolve_offset(timestamps, _round_half_away(position * total))


def resolve_index(length: int, index: int) -> Optional[int]:
    """按下标定位，越界时钳制"""
    if length <= 0:
        return None
    return min(max(int(index), 0), length - 1)
