"""
NeuroGuide Recorder - 奖励数据录制与回放

包含:
- replay: 录制、加载、定位与实时回放
- connection: 数据源与输出端
- config: 配置
- errors: 错误类型
"""

from .config import RecorderConfig
from .errors import (
    RecorderError,
    AlreadyBusyError,
    RecordingNotFoundError,
    CorruptRecordingError,
    RecorderIOError,
    HardwareUnavailableError,
    ReentrantCommandError,
)
from .replay import (
    DataPoint,
    RECORD_SIZE,
    encode_points,
    decode_points,
    RecordingWriter,
    LoadedRecording,
    load_recording,
    State,
    PlaybackProgress,
    RecorderSession,
    create_session,
    RecordingCatalog,
    RecordingInfo,
    default_recording_name,
)
from .connection import (
    RewardSource,
    ManualRewardSource,
    UdpRewardSource,
    OutputSink,
    CallbackSink,
    UdpByteSink,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "RecorderConfig",
    # Errors
    "RecorderError",
    "AlreadyBusyError",
    "RecordingNotFoundError",
    "CorruptRecordingError",
    "RecorderIOError",
    "HardwareUnavailableError",
    "ReentrantCommandError",
    # Replay
    "DataPoint",
    "RECORD_SIZE",
    "encode_points",
    "decode_points",
    "RecordingWriter",
    "LoadedRecording",
    "load_recording",
    "State",
    "PlaybackProgress",
    "RecorderSession",
    "create_session",
    "RecordingCatalog",
    "RecordingInfo",
    "default_recording_name",
    # Connection
    "RewardSource",
    "ManualRewardSource",
    "UdpRewardSource",
    "OutputSink",
    "CallbackSink",
    "UdpByteSink",
]
