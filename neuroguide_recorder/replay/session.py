"""
Replay Session - 录制/回放会话状态机

同一时刻只有一个录制或回放会话：

    Idle -> Recording -> Idle
    Idle -> Playing <-> Paused -> Idle

命令按调用顺序串行执行；回放线程与命令共享同一个 Condition。
每次状态切换恰好向每个观察者投递一次，投递在释放锁之后进行，
观察者回调内不允许再发出命令。
"""

import queue
import logging
import threading
from collections import deque
from datetime import timedelta
from pathlib import Path
from typing import Callable, Deque, List, Optional, Union

from ..config import RecorderConfig
from ..errors import (
    AlreadyBusyError,
    HardwareUnavailableError,
    RecorderError,
    RecorderIOError,
    ReentrantCommandError,
)
from .catalog import RecordingCatalog
from .loader import LoadedRecording, load_recording
from .recorder import RecordingWriter
from .replayer import PlaybackContext, PlaybackProgress, PlaybackScheduler, State
from .seek import resolve_index, resolve_normalized, resolve_offset

logger = logging.getLogger(__name__)

StateHandler = Callable[[State], None]


class RecorderSession:
    """
    录制/回放会话

    使用示例：
    ```python
    from neuroguide_recorder import RecorderSession, ManualRewardSource, UdpByteSink

    source = ManualRewardSource()
    with RecorderSession(source=source, sink=UdpByteSink()) as session:

        @session.on_state_change
        def on_state(state):
            print(f"State changed to {state.value}")

        session.record("Session_1.dat")
        source.push(True)
        session.stop()

        session.play("Session_1.dat")
        session.seek(0.5)
    ```
    """

    def __init__(
        self,
        source=None,
        sink=None,
        config: Optional[RecorderConfig] = None,
    ):
        self.config = config or RecorderConfig()
        self.source = source
        self.sink = sink
        self.catalog = RecordingCatalog(self.config)

        self._state = State.IDLE
        self._active_path: Optional[Path] = None
        self._writer: Optional[RecordingWriter] = None
        self._recording_token: Optional[object] = None
        self._reward_handler: Optional[Callable[[int, bool], None]] = None
        self._context: Optional[PlaybackContext] = None
        self._scheduler: Optional[PlaybackScheduler] = None
        self.last_error: Optional[Exception] = None
        self._closed = False

        # 命令串行化；Condition 保护与回放线程共享的状态
        self._command_lock = threading.RLock()
        self._condition = threading.Condition(threading.RLock())

        # 状态通知
        self._pending: Deque[State] = deque()
        self._handlers: List[StateHandler] = []
        self._channels: List["queue.Queue[State]"] = []
        self._delivery_lock = threading.Lock()
        self._local = threading.local()

        self._log("Session created")

    # ==================== 状态查询 ====================

    @property
    def state(self) -> State:
        with self._condition:
            return self._state

    @property
    def active_path(self) -> Optional[Path]:
        """当前录制/回放的文件"""
        with self._condition:
            return self._active_path

    @property
    def progress(self) -> PlaybackProgress:
        """回放进度快照（非回放时为零）"""
        with self._condition:
            if self._context is None:
                return PlaybackProgress()
            return self._context.progress

    @property
    def playback_progress(self) -> float:
        return self.progress.normalized

    @property
    def playback_time(self) -> timedelta:
        return self.config.ticks_to_timedelta(self.progress.elapsed)

    @property
    def total_duration(self) -> timedelta:
        return self.config.ticks_to_timedelta(self.progress.total)

    @property
    def loaded_recording(self) -> Optional[LoadedRecording]:
        with self._condition:
            return self._context.recording if self._context else None

    @property
    def points_recorded(self) -> int:
        with self._condition:
            return self._writer.points_written if self._writer else 0

    def wait_for_state(self, state: State, timeout: Optional[float] = None) -> bool:
        """等待进入指定状态"""
        with self._condition:
            return self._condition.wait_for(lambda: self._state is state, timeout)

    # ==================== 状态通知 ====================

    def on_state_change(self, handler: StateHandler) -> StateHandler:
        """注册状态回调（支持装饰器用法）"""
        with self._condition:
            self._handlers.append(handler)
        return handler

    def off_state_change(self, handler: Optional[StateHandler] = None) -> None:
        """移除状态回调；不指定时全部移除"""
        with self._condition:
            if handler is None:
                self._handlers.clear()
            elif handler in self._handlers:
                self._handlers.remove(handler)

    def subscribe(self) -> "queue.Queue[State]":
        """订阅状态通道，调用方自行轮询"""
        channel: "queue.Queue[State]" = queue.Queue()
        with self._condition:
            self._channels.append(channel)
        return channel

    def unsubscribe(self, channel: "queue.Queue[State]") -> None:
        with self._condition:
            if channel in self._channels:
                self._channels.remove(channel)

    def _set_state(self, state: State) -> None:
        """切换状态（调用方需持有 Condition）"""
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._pending.append(state)
        self._condition.notify_all()
        self._log(f"State {previous.value} -> {state.value}")

    def _deliver(self) -> None:
        """按顺序投递待发送的状态通知"""
        with self._delivery_lock:
            while True:
                with self._condition:
                    if not self._pending:
                        return
                    state = self._pending.popleft()
                    handlers = list(self._handlers)
                    channels = list(self._channels)

                for channel in channels:
                    channel.put(state)

                self._local.delivering = True
                try:
                    for handler in handlers:
                        try:
                            handler(state)
                        except Exception as e:
                            logger.error(f"State handler error: {e}")
                finally:
                    self._local.delivering = False

    def _check_command(self, command: str) -> None:
        if getattr(self._local, "delivering", False):
            raise ReentrantCommandError(f"{command} called from a state handler")
        if self._closed:
            raise RecorderError(f"{command} called on a shut down session")

    def _log(self, message: str) -> None:
        if self.config.show_debug_logs:
            logger.info(message)

    # ==================== 录制 ====================

    def record(self, name: Optional[str] = None) -> Path:
        """
        开始录制

        Args:
            name: 录制名；不指定时使用 Session_<时间>.dat

        Returns:
            录制文件路径
        """
        self._check_command("Record")
        with self._command_lock:
            path = self.config.resolve_path(name or self.catalog.new_name())
            with self._condition:
                if self._state is not State.IDLE:
                    raise AlreadyBusyError("Record", self._state)
                if self.source is None or not self.source.is_ready:
                    raise HardwareUnavailableError("reward source is not ready")

                self._writer = RecordingWriter.begin(path)
                self._active_path = path
                self.last_error = None

                # 每次录制使用独立的回调；停止后仍在分发中的事件不会写入下一次录制
                token = object()

                def on_reward(timestamp: int, reward_active: bool) -> None:
                    self._on_reward(token, timestamp, reward_active)

                self._recording_token = token
                self._reward_handler = on_reward
                try:
                    self.source.subscribe(on_reward)
                except Exception:
                    self._release_recording()
                    raise
                self._set_state(State.RECORDING)
                self._log(f"Recording to {path}")
        self._deliver()
        return path

    def _on_reward(self, token: object, timestamp: int, reward_active: bool) -> None:
        """数据源回调：追加一个采样点"""
        with self._condition:
            if token is not self._recording_token or self._writer is None:
                return
            if self._state is not State.RECORDING:
                return
            try:
                self._writer.append(timestamp, reward_active)
            except RecorderIOError as e:
                logger.error(f"Recording aborted: {e}")
                self.last_error = e
                self._release_recording()
                self._set_state(State.IDLE)
        self._deliver()

    def _release_recording(self) -> None:
        """退订数据源并关闭写入器（调用方需持有 Condition）"""
        if self.source is not None and self._reward_handler is not None:
            try:
                self.source.unsubscribe(self._reward_handler)
            except Exception as e:
                logger.error(f"Failed to detach reward source: {e}")
        self._reward_handler = None
        self._recording_token = None
        if self._writer is not None:
            self._writer.finish()
            self._log(f"Recorded {self._writer.points_written} points to {self._writer.path.name}")
        self._writer = None
        self._active_path = None

    # ==================== 回放 ====================

    def play(self, name: str) -> LoadedRecording:
        """
        加载并开始回放

        Raises:
            AlreadyBusyError: 当前不是 Idle
            RecordingNotFoundError / CorruptRecordingError / RecorderIOError: 加载失败
        """
        self._check_command("Play")
        with self._command_lock:
            with self._condition:
                if self._state is not State.IDLE:
                    raise AlreadyBusyError("Play", self._state)

            path = self.config.resolve_path(name)
            try:
                recording = load_recording(path)
            except RecorderError as e:
                self.last_error = e
                raise

            with self._condition:
                self._context = PlaybackContext(recording=recording)
                self._context.move_to(0)
                self._active_path = path
                self.last_error = None
                self._set_state(State.PLAYING)
                self._start_scheduler()
                self._log(
                    f"Playing {path.name}, points: {len(recording)}, "
                    f"duration: {self.config.ticks_to_seconds(recording.total_duration):.3f}s"
                )
        self._deliver()
        return recording

    def _start_scheduler(self) -> None:
        """启动新的回放运行（调用方需持有 Condition）"""
        self._scheduler = PlaybackScheduler(
            context=self._context,
            condition=self._condition,
            sink=self.sink,
            config=self.config,
            state_getter=lambda: self._state,
            on_finished=self._on_playback_finished,
        )
        self._scheduler.start()

    def _on_playback_finished(self, scheduler: PlaybackScheduler) -> None:
        """回放线程播放到末尾"""
        with self._condition:
            if scheduler.cancelled or scheduler is not self._scheduler:
                return
            self._discard_playback()
            self._log("Playback finished")
        self._deliver()

    def _discard_playback(self) -> None:
        """丢弃已加载的录制并回到 Idle（调用方需持有 Condition）"""
        self._scheduler = None
        self._context = None
        self._active_path = None
        self._set_state(State.IDLE)

    def pause(self) -> None:
        """暂停回放"""
        self._check_command("Pause")
        with self._command_lock:
            with self._condition:
                if self._state is not State.PLAYING:
                    raise AlreadyBusyError("Pause", self._state)
                self._context.mark_paused()
                self._set_state(State.PAUSED)
        self._deliver()

    def resume(self) -> None:
        """恢复回放"""
        self._check_command("Resume")
        with self._command_lock:
            with self._condition:
                if self._state is not State.PAUSED:
                    raise AlreadyBusyError("Resume", self._state)
                self._context.mark_resumed()
                self._set_state(State.PLAYING)
        self._deliver()

    def seek(
        self,
        target: Union[float, int, timedelta, None] = None,
        *,
        normalized: Optional[float] = None,
        offset: Union[int, timedelta, None] = None,
        index: Optional[int] = None,
    ) -> Optional[int]:
        """
        定位回放位置

        位置参数按类型分派：float -> 归一化位置，timedelta -> 时间偏移，
        int -> 采样点下标。也可以用关键字参数指定其中之一。

        Returns:
            定位后的采样点下标；空录制时为 None
        """
        self._check_command("Seek")

        if target is not None:
            if isinstance(target, bool):
                raise TypeError("seek target must be float, int or timedelta")
            if isinstance(target, timedelta):
                offset = target
            elif isinstance(target, float):
                normalized = target
            elif isinstance(target, int):
                index = target
            else:
                raise TypeError("seek target must be float, int or timedelta")

        given = [v for v in (normalized, offset, index) if v is not None]
        if len(given) != 1:
            raise ValueError("seek requires exactly one of normalized, offset or index")

        with self._command_lock:
            with self._condition:
                if self._state not in (State.PLAYING, State.PAUSED):
                    raise AlreadyBusyError("Seek", self._state)

                recording = self._context.recording
                if normalized is not None:
                    resolved = resolve_normalized(recording.timestamps, float(normalized))
                elif offset is not None:
                    ticks = (
                        self.config.timedelta_to_ticks(offset)
                        if isinstance(offset, timedelta)
                        else int(offset)
                    )
                    resolved = resolve_offset(recording.timestamps, ticks)
                else:
                    resolved = resolve_index(len(recording), index)

                if resolved is None:
                    return None

                if self._state is State.PAUSED:
                    self._context.reposition(resolved)
                    self._condition.notify_all()
                    self._log(f"Seek to {resolved} (paused)")
                    return resolved

                scheduler = self._scheduler
                if scheduler is not None:
                    scheduler.cancel()

            if scheduler is not None and not scheduler.join(self.config.join_timeout):
                error = RecorderError(
                    f"playback thread still busy after {self.config.join_timeout:.1f}s, "
                    f"seek aborted"
                )
                logger.error(str(error))
                with self._condition:
                    self._discard_playback()
                    self.last_error = error
                self._deliver()
                raise error

            with self._condition:
                if self._state is not State.PLAYING or self._context is None:
                    return None
                self._context.move_to(resolved)
                self._start_scheduler()
                self._log(f"Seek to {resolved}")
        return resolved

    def seek_seconds(self, seconds: float) -> Optional[int]:
        """按秒定位"""
        return self.seek(offset=self.config.seconds_to_ticks(seconds))

    # ==================== 停止 / 删除 ====================

    def stop(self) -> None:
        """停止录制或回放；Idle 时无操作"""
        self._check_command("Stop")
        with self._command_lock:
            scheduler = None
            with self._condition:
                if self._state is State.IDLE:
                    logger.debug("Stop ignored, session is idle")
                    return

                if self._state is State.RECORDING:
                    self._release_recording()
                    self._set_state(State.IDLE)
                else:
                    scheduler = self._scheduler
                    if scheduler is not None:
                        scheduler.cancel()
                    self._discard_playback()

            if scheduler is not None and not scheduler.join(self.config.join_timeout):
                # 已取消的线程不会再发送；仅等待中的一次发送可能尚未返回
                error = RecorderError(
                    f"playback thread still busy after {self.config.join_timeout:.1f}s"
                )
                logger.error(str(error))
                with self._condition:
                    self.last_error = error
        self._deliver()

    def delete(self, name: str) -> bool:
        """
        删除录制文件

        正在录制/回放该文件时先停止。文件不存在不算错误。

        Returns:
            是否删除了文件
        """
        self._check_command("Delete")
        path = self.config.resolve_path(name)
        with self._command_lock:
            active = self.active_path
            if active is not None and _same_file(active, path):
                self._log(f"Stopping active session before deleting {path.name}")
                self.stop()

            if not path.exists():
                logger.info(f"Delete skipped, no recording at {path}")
                return False

            try:
                path.unlink()
            except FileNotFoundError:
                logger.info(f"Delete skipped, no recording at {path}")
                return False
            except OSError as e:
                raise RecorderIOError(f"cannot delete {path}: {e}") from e

            self._log(f"Deleted recording {path}")
            return True

    # ==================== 生命周期 ====================

    def shutdown(self) -> None:
        """停止当前会话并释放资源；可重复调用"""
        if self._closed:
            return
        self.stop()
        self._closed = True
        with self._condition:
            self._handlers.clear()
            self._channels.clear()
        self._log("Session shut down")

    def __enter__(self) -> "RecorderSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


def _same_file(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


def create_session(
    source=None,
    sink=None,
    recordings_dir: Optional[str] = None,
    show_debug_logs: Optional[bool] = None,
) -> RecorderSession:
    """
    快捷创建会话

    Args:
        source: 奖励数据源
        sink: 回放输出端
        recordings_dir: 录制目录
        show_debug_logs: 是否输出调试日志
    """
    config = RecorderConfig()
    if recordings_dir is not None:
        config.recordings_dir = recordings_dir
    if show_debug_logs is not None:
        config.show_debug_logs = show_debug_logs
    return RecorderSession(source=source, sink=sink, config=config)
