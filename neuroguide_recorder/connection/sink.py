"""
Output Sink - 回放输出端

回放时每个采样点发送一个字节（0 或 1）。
"""

import socket
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 50000


class OutputSink:
    """输出端基类"""

    def send_byte(self, value: int) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class CallbackSink(OutputSink):
    """将字节交给回调函数"""

    def __init__(self, callback: Callable[[int], None]):
        self.callback = callback

    def send_byte(self, value: int) -> None:
        self.callback(value)


class UdpByteSink(OutputSink):
    """
    UDP 输出端

    每个字节作为一个数据报发送，可直接被 UdpRewardSource 接收，
    用于模拟硬件输出。
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.host = host
        self.port = port
        self.socket: Optional[socket.socket] = None
        self.bytes_sent = 0

    def _ensure_socket(self) -> socket.socket:
        if self.socket is None:
            self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        return self.socket

    def send_byte(self, value: int) -> None:
        sock = self._ensure_socket()
        sock.sendto(bytes([value & 0xFF]), (self.host, self.port))
        self.bytes_sent += 1

    def close(self) -> None:
        if self.socket:
            self.socket.close()
            self.socket = None

    def __enter__(self) -> "UdpByteSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
