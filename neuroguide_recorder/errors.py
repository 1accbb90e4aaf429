"""
Recorder Errors - 错误类型

所有命令失败都以下列异常同步抛给调用方。
"""


class RecorderError(Exception):
    """录制/回放引擎错误基类"""


class AlreadyBusyError(RecorderError):
    """当前状态不允许该命令"""

    def __init__(self, command: str, state):
        self.command = command
        self.state = state
        super().__init__(f"{command} rejected while {getattr(state, 'value', state)}")


class RecordingNotFoundError(RecorderError, FileNotFoundError):
    """录制文件不存在"""


class CorruptRecordingError(RecorderError, ValueError):
    """录制文件布局无效"""


class RecorderIOError(RecorderError, OSError):
    """文件打开/读取/写入/删除失败"""


class HardwareUnavailableError(RecorderError):
    """数据源未就绪"""


class ReentrantCommandError(RecorderError):
    """在状态回调内部发出命令"""
