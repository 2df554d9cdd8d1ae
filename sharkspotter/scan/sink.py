import abc
from dataclasses import dataclass
from typing import Optional

from .channel import ScanChannel
from .record import Record


@dataclass
class ScanMatch:
    """worker 发给消费者的一条命中记录。"""

    record: Record
    # ByCopyCount / Unfiltered 命中时为 None
    shark: Optional[str]
    shard: int


class MatchSink(abc.ABC):
    """worker 的输出端，把扫描引擎与具体的输出（通道 / 账本 / 文件）解耦。"""

    @abc.abstractmethod
    def on_match(self, match: ScanMatch) -> None:
        """处理一条命中记录，接收端已关闭时抛出 ChannelDisconnected"""
        pass

    def on_error(self, error: Exception) -> None:
        """某一行被跳过时调用，默认忽略"""
        pass

    def close(self) -> None:
        """所有 worker 结束后由 orchestrator 调用一次"""
        pass


class ChannelSink(MatchSink):
    """把命中记录写入有界通道。"""

    def __init__(self, channel: ScanChannel):
        self.channel = channel

    def on_match(self, match: ScanMatch) -> None:
        self.channel.send(match)

    def close(self) -> None:
        self.channel.close()
