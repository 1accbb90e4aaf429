"""
Recorder Config - 配置

录制/回放引擎的配置项与时间刻度换算。
默认值可通过环境变量覆盖：
- NEUROGUIDE_RECORDINGS_DIR: 录制文件目录
- NEUROGUIDE_DEBUG_LOGS: 是否输出调试日志 (1/0)
"""

import os
import time
from datetime import timedelta
from dataclasses import dataclass
from pathlib import Path
from typing import Union

# 默认录制目录
DEFAULT_RECORDINGS_DIR = os.environ.get("NEUROGUIDE_RECORDINGS_DIR", "./recordings")
DEFAULT_FILE_EXTENSION = ".dat"

# 与 .NET DateTime.Ticks 一致：1 tick = 100ns
DEFAULT_TICKS_PER_SECOND = 10_000_000


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off", "")


DEFAULT_SHOW_DEBUG_LOGS = _env_flag("NEUROGUIDE_DEBUG_LOGS", True)


@dataclass
class RecorderConfig:
    """引擎配置"""

    recordings_dir: str = DEFAULT_RECORDINGS_DIR
    file_extension: str = DEFAULT_FILE_EXTENSION
    ticks_per_second: int = DEFAULT_TICKS_PER_SECOND
    show_debug_logs: bool = DEFAULT_SHOW_DEBUG_LOGS
    join_timeout: float = 2.0  # 停止回放线程的最长等待（秒）

    def __post_init__(self):
        if self.ticks_per_second <= 0:
            raise ValueError("ticks_per_second must be positive")
        if self.file_extension and not self.file_extension.startswith("."):
            self.file_extension = "." + self.file_extension

    @property
    def directory(self) -> Path:
        return Path(self.recordings_dir)

    def resolve_path(self, name: Union[str, Path]) -> Path:
        """录制名 -> 文件路径（缺少扩展名时补全）"""
        path = Path(name)
        if not path.suffix and self.file_extension:
            path = path.with_suffix(self.file_extension)
        if path.is_absolute():
            return path
        return self.directory / path

    def ticks_to_seconds(self, ticks: int) -> float:
        return ticks / self.ticks_per_second

    def seconds_to_ticks(self, seconds: float) -> int:
        return int(round(seconds * self.ticks_per_second))

    def ticks_to_timedelta(self, ticks: int) -> timedelta:
        return timedelta(seconds=self.ticks_to_seconds(ticks))

    def timedelta_to_ticks(self, value: timedelta) -> int:
        return self.seconds_to_ticks(value.total_seconds())

    def now_ticks(self) -> int:
        """当前时间（ticks）"""
        return time.time_ns() * self.ticks_per_second // 1_000_000_000
