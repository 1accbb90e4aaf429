"""
Tests for replay.session - 会话状态机与实时回放测试

时间刻度设为 1000 ticks/秒，便于用毫秒构造录制。
"""

import sys
import time
import threading
from datetime import timedelta
from pathlib import Path
from typing import List, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from neuroguide_recorder.config import RecorderConfig
from neuroguide_recorder.errors import (
    AlreadyBusyError,
    CorruptRecordingError,
    HardwareUnavailableError,
    RecorderError,
    RecorderIOError,
    RecordingNotFoundError,
    ReentrantCommandError,
)
from neuroguide_recorder.connection import ManualRewardSource
from neuroguide_recorder.replay import (
    RecorderSession,
    RecordingWriter,
    State,
    load_recording,
)


# ==================== Fixtures ====================


class CollectingSink:
    """记录收到的字节与时刻"""

    def __init__(self):
        self.received: List[Tuple[float, int]] = []
        self._condition = threading.Condition()

    def send_byte(self, value: int) -> None:
        with self._condition:
            self.received.append((time.monotonic(), value))
            self._condition.notify_all()

    @property
    def values(self) -> List[int]:
        with self._condition:
            return [v for _, v in self.received]

    def wait_for(self, count: int, timeout: float = 2.0) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: len(self.received) >= count, timeout)


@pytest.fixture
def config(tmp_path):
    return RecorderConfig(
        recordings_dir=str(tmp_path),
        ticks_per_second=1000,
        show_debug_logs=False,
    )


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def source(config):
    return ManualRewardSource(config)


@pytest.fixture
def session(config, source, sink):
    session = RecorderSession(source=source, sink=sink, config=config)
    yield session
    session.shutdown()


def write_recording(config: RecorderConfig, name: str, timestamps, rewards) -> Path:
    path = config.resolve_path(name)
    with RecordingWriter.begin(path) as writer:
        for ts, reward in zip(timestamps, rewards):
            writer.append(ts, reward)
    return path


# ==================== 录制 ====================


class TestRecording:
    """录制测试"""

    def test_record_stop_play_round_trip(self, session, source, sink, config):
        """测试录制后回放得到相同序列"""
        pairs = [(0, False), (10, True), (20, True), (35, False)]

        path = session.record("round_trip")
        assert path.name == "round_trip.dat"
        assert session.state is State.RECORDING

        for ts, reward in pairs:
            source.push(reward, timestamp=ts)
        assert session.points_recorded == 4

        session.stop()
        assert session.state is State.IDLE
        assert source.subscriber_count == 0

        recording = load_recording(path)
        assert [p.id for p in recording.points] == [0, 1, 2, 3]
        assert [(p.timestamp, p.reward_active) for p in recording.points] == pairs

        session.play("round_trip")
        assert session.wait_for_state(State.IDLE, timeout=2.0)
        assert sink.values == [0, 1, 1, 0]

    def test_default_name(self, session):
        """测试默认录制名"""
        path = session.record()
        session.stop()
        assert path.name.startswith("Session_")
        assert path.suffix == ".dat"

    def test_events_after_stop_ignored(self, session, source):
        """测试停止后数据源事件不再写入"""
        path = session.record("a")
        source.push(True, timestamp=1)
        session.stop()
        source.push(True, timestamp=2)
        assert len(load_recording(path)) == 1

    def test_stale_dispatch_not_written_to_next_recording(self, session, source, config):
        """测试上一次录制中仍在分发的事件不会写入新的录制"""
        session.record("first")
        # 分发时拷贝的回调列表
        in_flight = list(source._handlers)
        session.stop()

        second = session.record("second")
        for handler in in_flight:
            handler(5, True)
        source.push(False, timestamp=6)
        session.stop()

        recording = load_recording(second)
        assert [(p.timestamp, p.reward_active) for p in recording.points] == [(6, False)]
        assert len(load_recording(config.resolve_path("first"))) == 0

    def test_hardware_unavailable(self, config, sink):
        """测试数据源未就绪"""
        source = ManualRewardSource(config, ready=False)
        with RecorderSession(source=source, sink=sink, config=config) as session:
            with pytest.raises(HardwareUnavailableError):
                session.record("a")
            assert session.state is State.IDLE
            assert not config.resolve_path("a").exists()

    def test_no_source(self, config):
        """测试未提供数据源"""
        with RecorderSession(config=config) as session:
            with pytest.raises(HardwareUnavailableError):
                session.record("a")

    def test_write_failure_aborts_recording(self, session, source):
        """测试写入失败时中止录制"""

        class BrokenStream:
            def write(self, data):
                raise OSError("disk full")

            def flush(self):
                pass

            def close(self):
                pass

        states = []
        session.on_state_change(states.append)
        session.record("a")
        session._writer._stream.close()
        session._writer._stream = BrokenStream()

        source.push(True, timestamp=1)

        assert session.state is State.IDLE
        assert isinstance(session.last_error, RecorderIOError)
        assert source.subscriber_count == 0
        assert states == [State.RECORDING, State.IDLE]


# ==================== 回放 ====================


class TestPlayback:
    """回放测试"""

    def test_pacing(self, session, sink, config):
        """测试按时间戳间隔发送"""
        write_recording(config, "paced", [0, 100, 300], [False, True, False])

        session.play("paced")
        assert session.wait_for_state(State.IDLE, timeout=3.0)

        assert sink.values == [0, 1, 0]
        times = [t for t, _ in sink.received]
        first_gap = times[1] - times[0]
        second_gap = times[2] - times[1]
        assert 0.09 <= first_gap <= 0.3
        assert 0.19 <= second_gap <= 0.4

    def test_non_monotonic_delta_has_no_delay(self, session, sink, config):
        """测试时间戳倒退时不等待"""
        write_recording(config, "back", [500, 0, 10], [True, False, True])
        start = time.monotonic()
        session.play("back")
        assert session.wait_for_state(State.IDLE, timeout=2.0)
        assert time.monotonic() - start < 0.3
        assert sink.values == [1, 0, 1]

    def test_progress(self, session, sink, config):
        """测试回放进度"""
        write_recording(config, "p", [0, 100, 5000], [False, True, False])
        session.play("p")
        assert sink.wait_for(2)
        time.sleep(0.05)

        progress = session.progress
        assert progress.cursor == 1
        assert progress.elapsed == 100
        assert progress.total == 5000
        assert session.playback_progress == pytest.approx(100 / 5000)
        assert session.playback_time == timedelta(milliseconds=100)
        assert session.total_duration == timedelta(seconds=5)
        session.stop()

    def test_finishes_to_idle(self, session, config):
        """测试播放完毕后回到 Idle 并释放录制"""
        write_recording(config, "short", [0, 10], [True, False])
        states = []
        session.on_state_change(states.append)

        session.play("short")
        assert session.wait_for_state(State.IDLE, timeout=2.0)
        # 投递在状态提交之后进行
        time.sleep(0.05)
        assert states == [State.PLAYING, State.IDLE]
        assert session.loaded_recording is None
        assert session.active_path is None
        assert session.playback_progress == 0.0

    def test_empty_recording(self, session, sink, config):
        """测试空录制立即结束"""
        config.resolve_path("empty").write_bytes(b"")
        session.play("empty")
        assert session.wait_for_state(State.IDLE, timeout=2.0)
        assert sink.values == []

    def test_play_missing(self, session):
        """测试回放不存在的录制"""
        with pytest.raises(RecordingNotFoundError):
            session.play("missing")
        assert session.state is State.IDLE
        assert isinstance(session.last_error, RecordingNotFoundError)

    def test_play_corrupt(self, session, config):
        """测试回放损坏的录制"""
        config.resolve_path("bad").write_bytes(b"\x00" * 20)
        with pytest.raises(CorruptRecordingError):
            session.play("bad")
        assert session.state is State.IDLE
        assert session.loaded_recording is None

    def test_stop_cancels_playback(self, session, sink, config):
        """测试停止后不再发送"""
        write_recording(config, "long", [0, 2000, 4000], [True, True, True])
        session.play("long")
        assert sink.wait_for(1)

        start = time.monotonic()
        session.stop()
        assert time.monotonic() - start < 1.0

        count = len(sink.values)
        time.sleep(0.2)
        assert len(sink.values) == count == 1
        assert session.state is State.IDLE
        assert session.playback_progress == 0.0

    def test_sink_error_does_not_stop_playback(self, config):
        """测试输出端异常不影响回放"""

        class FailingSink:
            calls = 0

            def send_byte(self, value):
                FailingSink.calls += 1
                raise OSError("unreachable")

        write_recording(config, "f", [0, 5, 10], [True, False, True])
        with RecorderSession(sink=FailingSink(), config=config) as session:
            session.play("f")
            assert session.wait_for_state(State.IDLE, timeout=2.0)
        assert FailingSink.calls == 3


class BlockingSink:
    """第一次发送阻塞，直到 release 被设置"""

    def __init__(self):
        self.values: List[int] = []
        self.entered = threading.Event()
        self.release = threading.Event()

    def send_byte(self, value: int) -> None:
        self.values.append(value)
        if len(self.values) == 1:
            self.entered.set()
            self.release.wait(5.0)


class TestJoinTimeout:
    """回放线程未能及时退出"""

    @pytest.fixture
    def blocked(self, tmp_path):
        config = RecorderConfig(
            recordings_dir=str(tmp_path),
            ticks_per_second=1000,
            show_debug_logs=False,
            join_timeout=0.2,
        )
        write_recording(config, "blk", [0, 10, 20], [True, False, True])
        sink = BlockingSink()
        session = RecorderSession(sink=sink, config=config)
        session.play("blk")
        assert sink.entered.wait(2.0)
        yield session, sink
        sink.release.set()
        session.shutdown()

    def test_seek_does_not_start_second_worker(self, blocked):
        """测试等待超时后定位中止且不启动新的回放线程"""
        session, sink = blocked

        with pytest.raises(RecorderError):
            session.seek(index=2)
        assert session.state is State.IDLE
        assert isinstance(session.last_error, RecorderError)

        sink.release.set()
        time.sleep(0.2)
        assert sink.values == [1]

    def test_stop_reports_busy_worker(self, blocked):
        """测试等待超时后停止仍回到 Idle，线程不再发送"""
        session, sink = blocked

        session.stop()
        assert session.state is State.IDLE
        assert isinstance(session.last_error, RecorderError)

        sink.release.set()
        time.sleep(0.2)
        assert sink.values == [1]


class TestPauseResume:
    """暂停/恢复测试"""

    def test_pause_resume_no_duplicate_or_skip(self, session, sink, config):
        """测试暂停恢复后不重复也不遗漏"""
        rewards = [True, False, True, True, False, True]
        write_recording(config, "pr", [i * 60 for i in range(6)], rewards)

        session.play("pr")
        assert sink.wait_for(2)
        session.pause()
        assert session.state is State.PAUSED

        paused_count = len(sink.values)
        time.sleep(0.3)
        # 暂停前可能已有一个点正在发送
        assert len(sink.values) <= paused_count + 1

        session.resume()
        assert session.wait_for_state(State.IDLE, timeout=3.0)
        assert sink.values == [1 if r else 0 for r in rewards]

    def test_pause_freezes_delay(self, session, sink, config):
        """测试暂停期间不计入等待时间"""
        write_recording(config, "fz", [0, 300], [True, False])
        session.play("fz")
        assert sink.wait_for(1)
        session.pause()
        time.sleep(0.4)
        assert len(sink.values) == 1

        resumed = time.monotonic()
        session.resume()
        assert sink.wait_for(2)
        # 剩余约 0.3 秒，而不是立即发送
        assert sink.received[1][0] - resumed >= 0.15

    def test_pause_freezes_delay_before_worker_wakes(self, session, sink, config):
        """测试回放线程未观察到暂停时，暂停时长仍顺延等待"""
        write_recording(config, "fq", [0, 300], [True, False])
        session.play("fq")
        assert sink.wait_for(1)

        with session._condition:
            session.pause()
            time.sleep(0.4)
            session.resume()

        assert sink.wait_for(2, timeout=3.0)
        first, second = sink.received[0][0], sink.received[1][0]
        # 0.3 秒间隔 + 0.4 秒暂停
        assert second - first >= 0.6

    def test_illegal_transitions(self, session, config):
        """测试非法状态切换"""
        with pytest.raises(AlreadyBusyError):
            session.pause()
        with pytest.raises(AlreadyBusyError):
            session.resume()
        with pytest.raises(AlreadyBusyError):
            session.seek(0.5)

        write_recording(config, "x", [0, 5000], [True, False])
        session.play("x")
        with pytest.raises(AlreadyBusyError):
            session.resume()
        session.pause()
        with pytest.raises(AlreadyBusyError):
            session.pause()
        session.stop()


class TestSeek:
    """定位测试"""

    @pytest.fixture
    def paused(self, session, config):
        write_recording(config, "s", [0, 100, 250], [False, True, False])
        session.play("s")
        session.pause()
        return session

    def test_seek_modes_while_paused(self, paused, sink):
        """测试三种定位方式"""
        assert paused.seek(0.0) == 0
        assert paused.seek(1.0) == 2
        assert paused.seek(normalized=0.5) == 1
        assert paused.seek(offset=120) == 1
        assert paused.seek(timedelta(milliseconds=240)) == 2
        assert paused.seek_seconds(0.09) == 1
        assert paused.seek(index=-5) == 0
        assert paused.seek(99) == 2
        assert paused.state is State.PAUSED

    def test_seek_while_paused_updates_progress_only(self, paused, sink):
        """测试暂停时定位只更新进度"""
        emitted = len(sink.values)
        paused.seek(index=1)
        time.sleep(0.1)

        assert len(sink.values) == emitted
        progress = paused.progress
        assert progress.cursor == 1
        assert progress.elapsed == 100
        assert progress.normalized == pytest.approx(100 / 250)

    def test_seek_argument_validation(self, paused):
        """测试定位参数校验"""
        with pytest.raises(ValueError):
            paused.seek()
        with pytest.raises(ValueError):
            paused.seek(normalized=0.5, index=1)
        with pytest.raises(TypeError):
            paused.seek(True)
        with pytest.raises(TypeError):
            paused.seek("0.5")

    def test_paused_seek_resumes_from_new_index(self, session, sink, config):
        """测试暂停定位后从新位置继续"""
        write_recording(config, "ps", [0, 1000, 1001, 1002, 1003], [True, False, True, False, True])
        session.play("ps")
        assert sink.wait_for(1)
        session.pause()
        session.seek(index=2)
        session.resume()

        # 放弃第一个 1 秒的等待
        assert session.wait_for_state(State.IDLE, timeout=0.8)
        assert sink.values == [1, 1, 0, 1]

    def test_paused_seek_abandons_delay_before_worker_wakes(self, session, sink, config):
        """测试回放线程未观察到暂停时，暂停定位仍放弃旧的等待"""
        write_recording(config, "pw", [0, 3000, 3001, 3002], [False, False, True, False])
        session.play("pw")
        assert sink.wait_for(1)

        # 持有 Condition，回放线程在三条命令完成前无法醒来
        with session._condition:
            session.pause()
            session.seek(index=2)
            session.resume()

        start = time.monotonic()
        assert session.wait_for_state(State.IDLE, timeout=2.0)
        assert time.monotonic() - start < 1.0
        assert sink.values == [0, 1, 0]

    def test_seek_while_playing_restarts(self, session, sink, config):
        """测试回放中定位会重启调度且不等待旧的间隔"""
        write_recording(config, "sp", [0, 5000, 5001], [False, False, True])
        session.play("sp")
        assert sink.wait_for(1)

        assert session.seek(index=2) == 2
        assert session.wait_for_state(State.IDLE, timeout=1.0)
        assert sink.values == [0, 1]


# ==================== 状态机 ====================


class TestStateMachine:
    """状态机测试"""

    def test_record_while_playing_rejected(self, session, config):
        """测试回放中录制被拒绝"""
        write_recording(config, "busy", [0, 5000], [True, False])
        session.play("busy")

        with pytest.raises(AlreadyBusyError):
            session.record("other")
        assert session.state is State.PLAYING
        assert not config.resolve_path("other").exists()

        session.pause()
        with pytest.raises(AlreadyBusyError):
            session.record("other")
        assert session.state is State.PAUSED
        session.stop()

    def test_play_while_recording_rejected(self, session, config):
        """测试录制中回放被拒绝"""
        write_recording(config, "r", [0], [True])
        session.record("current")
        with pytest.raises(AlreadyBusyError):
            session.play("r")
        with pytest.raises(AlreadyBusyError):
            session.record("again")
        assert session.state is State.RECORDING
        session.stop()

    def test_stop_idle_is_noop(self, session):
        """测试 Idle 时停止无操作"""
        states = []
        session.on_state_change(states.append)
        session.stop()
        assert session.state is State.IDLE
        assert states == []

    def test_observers_and_channel(self, session):
        """测试回调与订阅通道各收到一次通知"""
        states = []
        handler = session.on_state_change(states.append)
        channel = session.subscribe()

        session.record("obs")
        session.stop()

        assert states == [State.RECORDING, State.IDLE]
        assert channel.get(timeout=1.0) is State.RECORDING
        assert channel.get(timeout=1.0) is State.IDLE
        assert channel.empty()

        session.off_state_change(handler)
        session.unsubscribe(channel)
        session.record("obs2")
        session.stop()
        assert len(states) == 2
        assert channel.empty()

    def test_reentrant_command_rejected(self, session):
        """测试回调内发出命令被拒绝"""
        errors = []

        @session.on_state_change
        def on_state(state):
            try:
                session.stop()
            except ReentrantCommandError as e:
                errors.append(e)

        session.record("re")
        assert session.state is State.RECORDING
        assert len(errors) == 1
        session.off_state_change()
        session.stop()

    def test_shutdown(self, config, source, sink):
        """测试关闭会话"""
        session = RecorderSession(source=source, sink=sink, config=config)
        session.record("sd")
        session.shutdown()
        assert session.state is State.IDLE
        assert source.subscriber_count == 0
        with pytest.raises(RecorderError):
            session.record("sd2")
        session.shutdown()


class TestDelete:
    """删除测试"""

    def test_delete_existing(self, session, config):
        """测试删除录制"""
        path = write_recording(config, "d", [0], [True])
        assert session.delete("d") is True
        assert not path.exists()

    def test_delete_missing_is_noop(self, session):
        """测试删除不存在的录制"""
        assert session.delete("nothing") is False
        assert session.state is State.IDLE

    def test_delete_active_recording(self, session, source):
        """测试删除正在录制的文件"""
        path = session.record("active")
        source.push(True, timestamp=1)

        assert session.delete("active") is True
        assert session.state is State.IDLE
        assert source.subscriber_count == 0
        assert not path.exists()

    def test_delete_playing_recording(self, session, config):
        """测试删除正在回放的文件"""
        path = write_recording(config, "playing", [0, 5000], [True, False])
        session.play("playing")
        assert session.delete("playing.dat") is True
        assert session.state is State.IDLE
        assert not path.exists()

    def test_delete_other_keeps_session(self, session, config):
        """测试删除其他文件不影响当前会话"""
        write_recording(config, "other", [0], [True])
        session.record("mine")
        assert session.delete("other") is True
        assert session.state is State.RECORDING
        session.stop()
