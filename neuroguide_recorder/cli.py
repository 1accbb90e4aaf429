"""
NeuroGuide 奖励数据录制/回放工具

使用方法:
    # 列出现有录制
    neuroguide-recorder list

    # 查看录制信息
    neuroguide-recorder info Session_2025-01-01_12-00-00.dat

    # 录制（监听 UDP 字节，Ctrl+C 或 --duration 结束）
    neuroguide-recorder record --listen-port 50000

    # 回放到 UDP 端口
    neuroguide-recorder play Session_2025-01-01_12-00-00.dat --port 50001

    # 删除录制
    neuroguide-recorder delete Session_2025-01-01_12-00-00.dat
"""

import sys
import time
import argparse
import logging
from typing import List, Optional

from .config import DEFAULT_RECORDINGS_DIR, RecorderConfig
from .errors import RecorderError
from .connection import UdpByteSink, UdpRewardSource
from .replay import RecorderSession, RecordingCatalog, State, load_recording

logger = logging.getLogger("NeuroGuideRecorder")


class Colors:
    """ANSI 颜色代码"""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"

    @classmethod
    def success(cls, text: str) -> str:
        return f"{cls.GREEN}{text}{cls.RESET}"

    @classmethod
    def warning(cls, text: str) -> str:
        return f"{cls.YELLOW}{text}{cls.RESET}"

    @classmethod
    def error(cls, text: str) -> str:
        return f"{cls.RED}{text}{cls.RESET}"

    @classmethod
    def info(cls, text: str) -> str:
        return f"{cls.CYAN}{text}{cls.RESET}"


def _format_seconds(seconds: float) -> str:
    mins, secs = divmod(seconds, 60)
    return f"{int(mins):02d}:{secs:06.3f}"


def cmd_list(args, config: RecorderConfig) -> int:
    catalog = RecordingCatalog(config)
    recordings = catalog.list_recordings(sort_by=args.sort)

    print(f"\n录制文件 ({config.recordings_dir}):")
    print("=" * 70)
    if not recordings:
        print("  (无录制文件)")
        return 0

    for i, info in enumerate(recordings, 1):
        flag = "" if info.is_well_formed else Colors.warning("  [损坏]")
        print(
            f"  {i:2d}. {info.name}  "
            f"大小: {info.size_formatted}  "
            f"采样数: {info.point_count}{flag}"
        )
    stats = catalog.get_stats()
    print("-" * 70)
    print(f"  总计: {stats['total_recordings']} 个录制, {stats['total_points']} 个采样点")
    return 0


def cmd_info(args, config: RecorderConfig) -> int:
    recording = load_recording(config.resolve_path(args.name))
    duration = config.ticks_to_seconds(recording.total_duration)
    active = sum(1 for p in recording.points if p.reward_active)

    print(f"\n{Colors.info(recording.path.name)}")
    print(f"  采样数: {len(recording)}")
    print(f"  时长:   {_format_seconds(duration)}")
    if recording.points:
        print(f"  奖励:   {active}/{len(recording)} ({active / len(recording):.1%})")
    return 0


def cmd_delete(args, config: RecorderConfig) -> int:
    with RecorderSession(config=config) as session:
        if session.delete(args.name):
            print(Colors.success(f"已删除 {args.name}"))
        else:
            print(Colors.warning(f"未找到 {args.name}"))
    return 0


def cmd_record(args, config: RecorderConfig) -> int:
    with UdpRewardSource(args.listen_host, args.listen_port, config=config) as source:
        with RecorderSession(source=source, config=config) as session:
            path = session.record(args.name)
            print(Colors.success(f"● 录制中: {path}"))
            print(Colors.info(f"  监听 {args.listen_host}:{args.listen_port}，Ctrl+C 结束"))

            start = time.monotonic()
            try:
                while session.state is State.RECORDING:
                    if args.duration and time.monotonic() - start >= args.duration:
                        break
                    time.sleep(0.1)
            except KeyboardInterrupt:
                print()

            points = session.points_recorded
            session.stop()
            if session.last_error:
                print(Colors.error(f"录制中断: {session.last_error}"))
                return 1
            print(Colors.success(f"■ 已保存 {points} 个采样点"))
    return 0


def cmd_play(args, config: RecorderConfig) -> int:
    with UdpByteSink(args.host, args.port) as sink:
        with RecorderSession(sink=sink, config=config) as session:
            channel = session.subscribe()
            recording = session.play(args.name)
            if args.seek is not None:
                session.seek(args.seek)

            total = config.ticks_to_seconds(recording.total_duration)
            print(Colors.success(f"▶ 回放 {recording.path.name} -> {args.host}:{args.port}"))

            try:
                while not session.wait_for_state(State.IDLE, timeout=0.5):
                    elapsed = session.playback_time.total_seconds()
                    print(
                        f"\r  {_format_seconds(elapsed)} / {_format_seconds(total)}"
                        f"  ({session.playback_progress:.0%})",
                        end="",
                        flush=True,
                    )
            except KeyboardInterrupt:
                session.stop()
            print()

            states = []
            while not channel.empty():
                states.append(channel.get_nowait().value)
            logger.debug(f"State changes: {' -> '.join(states)}")
            print(Colors.success("■ 回放结束"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neuroguide-recorder",
        description="NeuroGuide 奖励数据录制/回放工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--dir", "-d",
        default=DEFAULT_RECORDINGS_DIR,
        help=f"录制目录 (默认: {DEFAULT_RECORDINGS_DIR})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="输出调试日志",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="列出所有录制")
    p_list.add_argument("--sort", choices=["time", "size", "name"], default="time")
    p_list.set_defaults(func=cmd_list)

    p_info = sub.add_parser("info", help="查看录制信息")
    p_info.add_argument("name")
    p_info.set_defaults(func=cmd_info)

    p_record = sub.add_parser("record", help="录制 UDP 奖励数据")
    p_record.add_argument("name", nargs="?", default=None, help="录制名 (默认: Session_<时间>.dat)")
    p_record.add_argument("--listen-host", default="127.0.0.1")
    p_record.add_argument("--listen-port", type=int, default=50000)
    p_record.add_argument("--duration", type=float, default=None, help="录制时长（秒）")
    p_record.set_defaults(func=cmd_record)

    p_play = sub.add_parser("play", help="回放录制到 UDP")
    p_play.add_argument("name")
    p_play.add_argument("--host", default="127.0.0.1")
    p_play.add_argument("--port", "-p", type=int, default=50001)
    p_play.add_argument("--seek", type=float, default=None, help="起始位置 (0-1)")
    p_play.set_defaults(func=cmd_play)

    p_delete = sub.add_parser("delete", help="删除录制")
    p_delete.add_argument("name")
    p_delete.set_defaults(func=cmd_delete)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    config = RecorderConfig(recordings_dir=args.dir, show_debug_logs=args.verbose)
    try:
        return args.func(args, config)
    except RecorderError as e:
        print(Colors.error(f"错误: {e}"), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
