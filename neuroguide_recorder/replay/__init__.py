"""
Replay Module - 录制与回放引擎

- datapoint: 采样点与二进制编解码
- recorder: 录制写入器
- loader: 录制加载
- seek: 定位解析
- replayer: 回放调度器
- session: 会话状态机
- catalog: 录制目录管理
"""

from .datapoint import (
    DataPoint,
    RECORD_SIZE,
    encode_points,
    decode_points,
    iter_points,
)
from .recorder import RecordingWriter
from .loader import LoadedRecording, load_recording
from .seek import (
    nearest_index,
    resolve_index,
    resolve_normalized,
    resolve_offset,
)
from .replayer import (
    State,
    PlaybackProgress,
    PlaybackContext,
    PlaybackScheduler,
)
from .session import RecorderSession, create_session
from .catalog import RecordingCatalog, RecordingInfo, default_recording_name

__all__ = [
    # DataPoint
    "DataPoint",
    "RECORD_SIZE",
    "encode_points",
    "decode_points",
    "iter_points",
    # Recorder / Loader
    "RecordingWriter",
    "LoadedRecording",
    "load_recording",
    # Seek
    "nearest_index",
    "resolve_index",
    "resolve_normalized",
    "resolve_offset",
    # Replayer
    "State",
    "PlaybackProgress",
    "PlaybackContext",
    "PlaybackScheduler",
    # Session
    "RecorderSession",
    "create_session",
    "RecordingCatalog",
    "RecordingInfo",
    "default_recording_name",
]
