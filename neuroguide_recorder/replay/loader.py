"""
Replay Loader - 录制加载

一次性将录制文件读入内存，校验布局并计算总时长。
加载是全有或全无的：解码失败时不返回任何部分结果。
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Union

from ..errors import CorruptRecordingError, RecorderIOError, RecordingNotFoundError
from .datapoint import DataPoint, decode_points

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedRecording:
    """已加载的录制（不可变）"""

    path: Path
    points: Tuple[DataPoint, ...] = ()
    timestamps: Tuple[int, ...] = field(default=(), repr=False)

    @classmethod
    def from_points(cls, path: Union[str, Path], points: List[DataPoint]) -> "LoadedRecording":
        points = tuple(points)
        return cls(
            path=Path(path),
            points=points,
            timestamps=tuple(p.timestamp for p in points),
        )

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def first_timestamp(self) -> int:
        return self.timestamps[0] if self.timestamps else 0

    @property
    def total_duration(self) -> int:
        """首尾时间差（ticks），少于两个点时为 0"""
        if len(self.timestamps) < 2:
            return 0
        return self.timestamps[-1] - self.timestamps[0]

    def elapsed_at(self, index: int) -> int:
        """指定点相对首点的偏移（ticks）"""
        if not self.timestamps:
            return 0
        return self.timestamps[index] - self.timestamps[0]


def load_recording(path: Union[str, Path]) -> LoadedRecording:
    """
    加载录制文件

    Raises:
        RecordingNotFoundError: 文件不存在
        CorruptRecordingError: 长度不是记录大小的整数倍
        RecorderIOError: 读取失败
    """
    path = Path(path)
    if not path.is_file():
        raise RecordingNotFoundError(f"recording not found: {path}")

    try:
        data = path.read_bytes()
    except FileNotFoundError as e:
        raise RecordingNotFoundError(f"recording not found: {path}") from e
    except OSError as e:
        raise RecorderIOError(f"cannot read {path}: {e}") from e

    try:
        points = decode_points(data)
    except CorruptRecordingError as e:
        logger.warning(f"Corrupt recording {path.name}: {e}")
        raise

    recording = LoadedRecording.from_points(path, points)
    logger.debug(
        f"Loaded recording {path.name}, points: {len(recording)}, "
        f"duration: {recording.total_duration} ticks"
    )
    return recording
