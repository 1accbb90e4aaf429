"""
Connection Module - 数据源与输出端

使用示例：
    from neuroguide_recorder.connection import UdpRewardSource, UdpByteSink

    with UdpRewardSource(port=50000) as source:
        session = RecorderSession(source=source, sink=UdpByteSink(port=50001))
"""

from .source import RewardSource, ManualRewardSource, UdpRewardSource
from .sink import OutputSink, CallbackSink, UdpByteSink

__all__ = [
    "RewardSource",
    "ManualRewardSource",
    "UdpRewardSource",
    "OutputSink",
    "CallbackSink",
    "UdpByteSink",
]
