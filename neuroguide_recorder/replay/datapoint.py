"""
Replay DataPoint - 采样点与二进制编解码

单条记录固定 13 字节，小端序，无文件头/帧/尾：

    id (uint32) | timestamp (int64, ticks) | reward (uint8)

文件即记录的简单拼接。
"""

import struct
from typing import BinaryIO, Iterable, Iterator, List

from pydantic import BaseModel, Field, field_validator

from ..errors import CorruptRecordingError

RECORD_STRUCT = struct.Struct("<IqB")
RECORD_SIZE = RECORD_STRUCT.size  # 13

MAX_ID = 2**32 - 1
MIN_TIMESTAMP = -(2**63)
MAX_TIMESTAMP = 2**63 - 1


class DataPoint(BaseModel):
    """单个采样点"""

    model_config = {"frozen": True}

    id: int = Field(..., ge=0, le=MAX_ID, description="递增序号")
    timestamp: int = Field(..., ge=MIN_TIMESTAMP, le=MAX_TIMESTAMP, description="时间戳 (ticks)")
    reward_active: bool = Field(default=False, description="奖励状态")

    @field_validator("reward_active", mode="before")
    @classmethod
    def normalize_reward(cls, v):
        """字节值按布尔读取：非 0 即 True"""
        if isinstance(v, (bytes, bytearray)):
            return any(v)
        if isinstance(v, int) and not isinstance(v, bool):
            return v != 0
        return v

    @property
    def reward_byte(self) -> int:
        return 1 if self.reward_active else 0

    def to_bytes(self) -> bytes:
        """编码为 13 字节记录"""
        return RECORD_STRUCT.pack(self.id, self.timestamp, self.reward_byte)

    @classmethod
    def from_bytes(cls, data: bytes) -> "DataPoint":
        """从 13 字节记录解码"""
        if len(data) != RECORD_SIZE:
            raise CorruptRecordingError(
                f"record must be {RECORD_SIZE} bytes, got {len(data)}"
            )
        point_id, timestamp, reward = RECORD_STRUCT.unpack(data)
        # struct 已保证取值范围
        return cls.model_construct(
            id=point_id, timestamp=timestamp, reward_active=reward != 0
        )


def encode_points(points: Iterable[DataPoint]) -> bytes:
    """编码采样点序列"""
    return b"".join(point.to_bytes() for point in points)


def decode_points(data: bytes) -> List[DataPoint]:
    """
    解码完整字节串

    Raises:
        CorruptRecordingError: 长度不是 13 的整数倍
    """
    if len(data) % RECORD_SIZE != 0:
        raise CorruptRecordingError(
            f"byte count {len(data)} is not a multiple of {RECORD_SIZE}"
        )
    return [
        DataPoint.model_construct(id=point_id, timestamp=ts, reward_active=reward != 0)
        for point_id, ts, reward in RECORD_STRUCT.iter_unpack(data)
    ]


def iter_points(stream: BinaryIO) -> Iterator[DataPoint]:
    """从流中逐条读取，流在记录中途结束时报错"""
    while True:
        chunk = stream.read(RECORD_SIZE)
        if not chunk:
            return
        if len(chunk) != RECORD_SIZE:
            raise CorruptRecordingError(
                f"stream ended mid-record ({len(chunk)} of {RECORD_SIZE} bytes)"
            )
        yield DataPoint.from_bytes(chunk)
