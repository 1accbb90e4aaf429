"""
Replay Catalog - 录制文件管理

提供录制目录的查询功能：
- 列出所有录制
- 按时间/大小/采样数排序
- 生成默认录制名
"""

import logging
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import RecorderConfig
from .datapoint import RECORD_SIZE

logger = logging.getLogger(__name__)


def default_recording_name(
    now: Optional[datetime] = None, extension: str = ".dat"
) -> str:
    """默认录制名，如 Session_2025-01-01_12-00-00.dat"""
    now = now or datetime.now()
    return f"Session_{now:%Y-%m-%d_%H-%M-%S}{extension}"


@dataclass
class RecordingInfo:
    """录制文件摘要"""

    name: str
    path: Path
    size_bytes: int = 0
    modified_time: float = 0.0

    @property
    def point_count(self) -> int:
        """按文件大小推算的采样数"""
        return self.size_bytes // RECORD_SIZE

    @property
    def is_well_formed(self) -> bool:
        return self.size_bytes % RECORD_SIZE == 0

    @property
    def modified_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.modified_time)

    @property
    def size_formatted(self) -> str:
        """格式化大小"""
        if self.size_bytes < 1024:
            return f"{self.size_bytes} B"
        elif self.size_bytes < 1024 * 1024:
            return f"{self.size_bytes / 1024:.1f} KB"
        else:
            return f"{self.size_bytes / (1024 * 1024):.1f} MB"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "point_count": self.point_count,
            "modified_time": self.modified_time,
        }


class RecordingCatalog:
    """
    录制目录

    使用示例：
    ```python
    catalog = RecordingCatalog(config)

    for info in catalog.list_recordings():
        print(f"{info.name}: {info.point_count} points")

    latest = catalog.get_latest()
    ```
    """

    def __init__(self, config: Optional[RecorderConfig] = None):
        self.config = config or RecorderConfig()

    @property
    def directory(self) -> Path:
        return self.config.directory

    def list_recordings(
        self,
        sort_by: str = "time",
        reverse: bool = True,
    ) -> List[RecordingInfo]:
        """
        列出所有录制

        Args:
            sort_by: 排序方式 - "time", "size", "name"
            reverse: 是否降序

        Returns:
            录制摘要列表（目录不存在时为空）
        """
        if not self.directory.is_dir():
            return []

        recordings = []
        for path in self.directory.glob(f"*{self.config.file_extension}"):
            if not path.is_file():
                continue
            info = self._load_info(path)
            if info:
                recordings.append(info)

        if sort_by == "time":
            recordings.sort(key=lambda r: r.modified_time, reverse=reverse)
        elif sort_by == "size":
            recordings.sort(key=lambda r: r.size_bytes, reverse=reverse)
        elif sort_by == "name":
            recordings.sort(key=lambda r: r.name, reverse=reverse)
        else:
            raise ValueError(f"unknown sort key: {sort_by}")

        return recordings

    def _load_info(self, path: Path) -> Optional[RecordingInfo]:
        try:
            stat = path.stat()
        except OSError as e:
            logger.warning(f"Cannot stat recording {path}: {e}")
            return None
        return RecordingInfo(
            name=path.name,
            path=path,
            size_bytes=stat.st_size,
            modified_time=stat.st_mtime,
        )

    def get_recording(self, name: str) -> Optional[RecordingInfo]:
        """获取指定录制摘要"""
        path = self.config.resolve_path(name)
        if not path.is_file():
            return None
        return self._load_info(path)

    def get_latest(self) -> Optional[RecordingInfo]:
        """获取最新录制"""
        recordings = self.list_recordings(sort_by="time", reverse=True)
        return recordings[0] if recordings else None

    def new_name(self, now: Optional[datetime] = None) -> str:
        return default_recording_name(now, self.config.file_extension)

    def get_stats(self) -> Dict[str, Any]:
        """获取统计信息"""
        recordings = self.list_recordings()
        return {
            "total_recordings": len(recordings),
            "total_size": sum(r.size_bytes for r in recordings),
            "total_points": sum(r.point_count for r in recordings),
        }
