"""
Replay Replayer - 数据回放器

按录制时间戳的真实间隔回放采样点：
- 独立回放线程，与会话共享同一个 Condition
- 暂停/恢复，暂停期间剩余等待时间冻结
- 等待可被停止/定位立即打断
- 每个采样点向输出端发送一个字节
"""

import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Optional

from pydantic import BaseModel, Field

from ..config import RecorderConfig
from .loader import LoadedRecording

logger = logging.getLogger(__name__)


class State(str, Enum):
    """会话状态"""

    IDLE = "idle"
    RECORDING = "recording"
    PLAYING = "playing"
    PAUSED = "paused"


class PlaybackProgress(BaseModel):
    """回放进度快照"""

    model_config = {"frozen": True}

    cursor: int = Field(default=0, ge=0, description="当前采样点下标")
    elapsed: int = Field(default=0, description="相对首点的偏移 (ticks)")
    total: int = Field(default=0, description="总时长 (ticks)")
    normalized: float = Field(default=0.0, ge=0.0, le=1.0, description="归一化进度")

    @classmethod
    def at(cls, recording: LoadedRecording, index: int) -> "PlaybackProgress":
        """指定采样点处的进度"""
        if recording.is_empty:
            return cls()
        elapsed = recording.elapsed_at(index)
        total = recording.total_duration
        normalized = elapsed / total if total > 0 else 0.0
        return cls(
            cursor=index,
            elapsed=elapsed,
            total=total,
            normalized=min(max(normalized, 0.0), 1.0),
        )


@dataclass
class PlaybackContext:
    """回放期间的共享状态（由会话的 Condition 保护）"""

    recording: LoadedRecording
    cursor: int = 0
    # 暂停时每次定位加一；回放线程据此放弃进行中的等待
    seek_generation: int = 0
    # 累计暂停时长（秒），暂停中时 paused_at 为开始时刻
    paused_seconds: float = 0.0
    paused_at: Optional[float] = None
    progress: PlaybackProgress = field(default_factory=PlaybackProgress)

    def move_to(self, index: int) -> None:
        self.cursor = index
        self.progress = PlaybackProgress.at(self.recording, index)

    def reposition(self, index: int) -> None:
        """暂停时定位：更新位置并使进行中的等待失效"""
        self.move_to(index)
        self.seek_generation += 1

    def mark_paused(self) -> None:
        if self.paused_at is None:
            self.paused_at = time.monotonic()

    def mark_resumed(self) -> None:
        if self.paused_at is not None:
            self.paused_seconds += time.monotonic() - self.paused_at
            self.paused_at = None


class PlaybackScheduler:
    """
    回放调度器

    一个调度器对应一次回放运行；定位时取消旧的运行并以新下标重新创建。
    调度器只读取会话状态，状态切换由会话完成。

    使用示例：
    ```python
    scheduler = PlaybackScheduler(context, condition, sink, config,
                                  state_getter, on_finished)
    scheduler.start()
    ...
    with condition:
        scheduler.cancel()
    scheduler.join()
    ```
    """

    def __init__(
        self,
        context: PlaybackContext,
        condition: threading.Condition,
        sink,
        config: RecorderConfig,
        state_getter: Callable[[], State],
        on_finished: Callable[["PlaybackScheduler"], None],
    ):
        self.context = context
        self.config = config
        self._condition = condition
        self._sink = sink
        self._state = state_getter
        self._on_finished = on_finished

        self._cancelled = False
        self._thread: Optional[threading.Thread] = None

        # 统计
        self.samples_emitted = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_worker_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def start(self) -> None:
        """启动回放线程"""
        self._thread = threading.Thread(
            target=self._run, name="neuroguide-playback", daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        """取消运行（调用方需持有 Condition）"""
        self._cancelled = True
        self._condition.notify_all()

    def join(self, timeout: Optional[float] = None) -> bool:
        """等待回放线程退出；在回放线程内调用时直接返回"""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Playback thread did not exit within %.1fs", timeout or 0.0)
            return False
        return True

    def _run(self) -> None:
        try:
            finished = self._loop()
        except Exception:
            logger.exception("Playback loop failed")
            finished = True

        if finished:
            self._on_finished(self)

    def _loop(self) -> bool:
        """回放循环；返回 True 表示播放到末尾"""
        context = self.context
        recording = context.recording
        length = len(recording)

        with self._condition:
            if self._cancelled:
                return False
            if length == 0:
                return True
            context.cursor = min(max(context.cursor, 0), length - 1)

        while True:
            with self._condition:
                while not self._cancelled and self._state() is State.PAUSED:
                    self._condition.wait()

                if self._cancelled or self._state() is not State.PLAYING:
                    return False
                if context.cursor >= length:
                    return True

                index = context.cursor
                context.move_to(index)
                point = recording.points[index]
                generation = context.seek_generation
                started = time.monotonic()
                paused_before = context.paused_seconds

            self._emit(point.reward_byte)

            delay = 0.0
            if index + 1 < length:
                ticks = recording.timestamps[index + 1] - recording.timestamps[index]
                delay = self.config.ticks_to_seconds(max(ticks, 0))

            with self._condition:
                if not self._wait_delay(started + delay, paused_before, generation):
                    return False
                if context.seek_generation == generation:
                    context.cursor = index + 1

    def _wait_delay(self, deadline: float, paused_before: float, generation: int) -> bool:
        """
        可取消的等待（调用方需持有 Condition）

        截止时间按暂停累计时长顺延，因此暂停期间剩余时间冻结；
        暂停中被定位时放弃本次等待。

        Returns:
            False 表示运行已取消或回放已停止
        """
        context = self.context

        while True:
            if self._cancelled:
                return False
            if context.seek_generation != generation:
                return True

            state = self._state()
            if state is State.PAUSED:
                self._condition.wait()
                continue
            if state is not State.PLAYING:
                return False

            remaining = deadline + (context.paused_seconds - paused_before) - time.monotonic()
            if remaining <= 0:
                return True
            self._condition.wait(remaining)

    def _emit(self, value: int) -> None:
        """发送一个字节；失败只记录不重试"""
        if self._cancelled:
            return
        self.samples_emitted += 1
        if self._sink is None:
            return
        try:
            self._sink.send_byte(value)
        except Exception as e:
            logger.error(f"Output sink error: {e}")
