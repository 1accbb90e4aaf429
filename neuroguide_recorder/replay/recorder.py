"""
Replay Recorder - 数据录制器

将采样点逐条追加到二进制录制文件：
- 自动分配递增 id（从 0 开始）
- 每条记录写入后刷新，停止时关闭
- 写入失败时释放文件句柄
"""

import logging
from pathlib import Path
from typing import BinaryIO, Optional, Union

from ..errors import RecorderIOError
from .datapoint import DataPoint, MAX_ID

logger = logging.getLogger(__name__)


class RecordingWriter:
    """
    录制文件写入器

    使用示例：
    ```python
    writer = RecordingWriter.begin("recordings/Session_1.dat")
    writer.append(timestamp, True)
    writer.finish()
    ```
    """

    def __init__(self, path: Path, stream: BinaryIO):
        self.path = path
        self._stream: Optional[BinaryIO] = stream
        self._next_id = 0
        self.bytes_written = 0
        self.last_timestamp: Optional[int] = None

    @classmethod
    def begin(cls, path: Union[str, Path]) -> "RecordingWriter":
        """创建（或截断）录制文件"""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            stream = open(path, "wb")
        except OSError as e:
            raise RecorderIOError(f"cannot open {path} for writing: {e}") from e

        logger.debug(f"Opened recording {path}")
        return cls(path, stream)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def points_written(self) -> int:
        return self._next_id

    def append(self, timestamp: int, reward_active: bool) -> DataPoint:
        """追加一个采样点，返回写入的 DataPoint"""
        if self._stream is None:
            raise RecorderIOError(f"recording {self.path} is closed")
        if self._next_id > MAX_ID:
            self.finish()
            raise RecorderIOError(f"recording {self.path} exceeded {MAX_ID + 1} points")

        point = DataPoint(
            id=self._next_id, timestamp=timestamp, reward_active=reward_active
        )

        if self.last_timestamp is not None and timestamp < self.last_timestamp:
            logger.warning(
                f"Out-of-order timestamp in {self.path.name}: "
                f"{timestamp} < {self.last_timestamp} (id {point.id})"
            )

        data = point.to_bytes()
        try:
            self._stream.write(data)
            self._stream.flush()
        except OSError as e:
            self.finish()
            raise RecorderIOError(f"write to {self.path} failed: {e}") from e

        self._next_id += 1
        self.bytes_written += len(data)
        self.last_timestamp = timestamp
        return point

    def finish(self) -> None:
        """刷新并关闭；重复调用无副作用"""
        stream = self._stream
        if stream is None:
            return
        self._stream = None

        try:
            stream.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Flush failed for {self.path}: {e}")
        finally:
            try:
                stream.close()
            except OSError as e:
                logger.error(f"Close failed for {self.path}: {e}")

        logger.debug(
            f"Closed recording {self.path}, points: {self._next_id}, "
            f"bytes: {self.bytes_written}"
        )

    def __enter__(self) -> "RecordingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()
