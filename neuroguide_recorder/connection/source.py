"""
Reward Source - 奖励数据源

录制时向会话推送 (timestamp, reward_active) 通知：
- ManualRewardSource: 由程序直接推送（替代键盘模拟输入）
- UdpRewardSource: 监听 UDP，每收到一个字节产生一个采样点
"""

import socket
import logging
import threading
from typing import Callable, List, Optional

from ..config import RecorderConfig

logger = logging.getLogger(__name__)

RewardHandler = Callable[[int, bool], None]

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 50000


class RewardSource:
    """数据源基类：管理回调订阅"""

    def __init__(self, config: Optional[RecorderConfig] = None):
        self.config = config or RecorderConfig()
        self._handlers: List[RewardHandler] = []
        self._lock = threading.Lock()

        # 统计
        self.stats = {
            "events": 0,
            "errors": 0,
        }

    @property
    def is_ready(self) -> bool:
        return True

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def subscribe(self, handler: RewardHandler) -> RewardHandler:
        """注册回调（支持装饰器用法）"""
        with self._lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: RewardHandler) -> None:
        """移除回调"""
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def _dispatch(self, timestamp: int, reward_active: bool) -> None:
        """触发回调"""
        with self._lock:
            handlers = list(self._handlers)

        self.stats["events"] += 1
        for handler in handlers:
            try:
                handler(timestamp, reward_active)
            except Exception as e:
                logger.error(f"Reward handler error: {e}")
                self.stats["errors"] += 1


class ManualRewardSource(RewardSource):
    """
    手动数据源

    使用示例：
    ```python
    source = ManualRewardSource()
    session = RecorderSession(source=source)
    session.record()
    source.push(True)                 # 使用当前时间
    source.push(False, timestamp=1234)
    ```
    """

    def __init__(self, config: Optional[RecorderConfig] = None, ready: bool = True):
        super().__init__(config)
        self.ready = ready

    @property
    def is_ready(self) -> bool:
        return self.ready

    def push(self, reward_active: bool, timestamp: Optional[int] = None) -> None:
        """推送一个采样点"""
        if timestamp is None:
            timestamp = self.config.now_ticks()
        self._dispatch(timestamp, bool(reward_active))


class UdpRewardSource(RewardSource):
    """
    UDP 数据源

    每个数据报的首字节作为奖励状态（非 0 为 True），
    以接收时刻作为时间戳。
    """

    def __init__(
        self,
        host: str = DEFAULT_LISTEN_HOST,
        port: int = DEFAULT_LISTEN_PORT,
        config: Optional[RecorderConfig] = None,
    ):
        super().__init__(config)
        self.host = host
        self.port = port

        self.socket: Optional[socket.socket] = None
        self.running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_ready(self) -> bool:
        return self.running and self.socket is not None

    @property
    def address(self):
        """实际绑定地址（port=0 时由系统分配）"""
        if self.socket is None:
            return None
        return self.socket.getsockname()

    def start(self) -> None:
        """开始监听"""
        if self.running:
            logger.info("Reward listener already running")
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind reward listener: {e}")
            raise

        sock.settimeout(0.5)
        self.socket = sock
        self.running = True
        self._thread = threading.Thread(
            target=self._receive_loop, name="neuroguide-reward-listener", daemon=True
        )
        self._thread.start()
        logger.info(f"Reward listener started on {self.address[0]}:{self.address[1]}")

    def stop(self) -> None:
        """停止监听"""
        if not self.running:
            return

        self.running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None

        if self.socket:
            self.socket.close()
            self.socket = None

        logger.info("Reward listener stopped")

    def _receive_loop(self) -> None:
        """接收循环"""
        while self.running and self.socket:
            try:
                data, _ = self.socket.recvfrom(64)
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Reward listener error: {e}")
                    self.stats["errors"] += 1
                break

            if not data:
                continue
            self._dispatch(self.config.now_ticks(), data[0] != 0)

    def __enter__(self) -> "UdpRewardSource":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
