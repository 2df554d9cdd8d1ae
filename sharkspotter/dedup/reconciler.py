import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import (
    ChannelClosed,
    EtagMismatch,
    LedgerCorruption,
    LedgerError,
    RunErrorSet,
    SharkspotterError,
)
from ..scan.channel import ScanChannel
from ..scan.sink import MatchSink, ScanMatch
from ..stats import ScanStats
from .ledger import DuplicateLedger

logger = logging.getLogger("DuplicateReconciler")


@dataclass
class DuplicateInfo:
    """插入常驻记录时发生主键冲突的对象。"""

    object_id: str
    key: str
    etag: str
    shard: int
    value: Dict[str, Any]


class LedgerSink(MatchSink):
    """重复检测模式下 worker 的输出端。

    每条记录先尝试写入常驻记录表，冲突的记录交给重复处理线程。
    """

    def __init__(self, ledger: DuplicateLedger, dup_channel: ScanChannel, stats: Optional[ScanStats] = None):
        self.ledger = ledger
        self.dup_channel = dup_channel
        self.stats = stats

    def on_match(self, match: ScanMatch) -> None:
        record = match.record
        if self.ledger.insert_stub(record.id, record.key, record.etag, match.shard):
            if self.stats:
                self.stats.incr("stubs_inserted")
            return

        if self.stats:
            self.stats.incr("duplicates_found")
        logger.debug(f"object {record.id} already seen, sending to duplicate handler (shard {match.shard})")
        self.dup_channel.send(
            DuplicateInfo(
                object_id=record.id,
                key=record.key,
                etag=record.etag,
                shard=match.shard,
                value=record.value,
            )
        )

    def close(self) -> None:
        self.dup_channel.close()


class DuplicateReconciler:
    """消费重复对象通道，把重复信息合并到账本中。

    - 常驻记录行数不为 1 说明账本已损坏，整个运行停止；
    - etag 不一致只记录错误，不做合并；
    - 其余情况把 shard 并入常驻记录，并保存重复对象的元数据。
    """

    def __init__(
        self,
        ledger: DuplicateLedger,
        channel: ScanChannel,
        errors: RunErrorSet,
        stats: Optional[ScanStats] = None,
        num_threads: int = 1,
        stop_event: Optional[threading.Event] = None,
    ):
        self.ledger = ledger
        self.channel = channel
        self.errors = errors
        self.stats = stats or ScanStats()
        self.num_threads = max(1, num_threads)
        self.stop_event = stop_event
        self._threads: List[threading.Thread] = []

    def handle_duplicate(self, info: DuplicateInfo) -> None:
        stubs = self.ledger.load_stubs(info.object_id)
        if len(stubs) != 1:
            raise LedgerCorruption(
                f"Found {len(stubs)} resident entries for object {info.object_id}, expected 1"
            )
        resident = stubs[0]

        if info.shard in resident.shards:
            # 同一 shard 内按 _id 和 _idx 各扫一遍，同一行会被看到两次
            logger.debug(f"object {info.object_id} seen again on shard {info.shard}, skipping")
            self.stats.incr("same_shard_skipped")
            return

        if resident.etag != info.etag:
            err = EtagMismatch(info.object_id, info.key, resident.etag, info.etag, info.shard)
            logger.error(str(err))
            self.stats.incr("etag_mismatches")
            self.errors.add(err)
            return

        self.ledger.mark_duplicate(info.object_id, info.shard)
        self.ledger.insert_duplicate(info.object_id, info.key, info.value)
        self.stats.incr("duplicates_merged")
        logger.debug(f"merged shard {info.shard} into {info.object_id}")

    def consume(self) -> None:
        """处理线程主循环，通道关闭并清空后退出。"""
        while True:
            try:
                info = self.channel.recv()
            except ChannelClosed:
                return
            try:
                self.handle_duplicate(info)
            except SharkspotterError as e:
                logger.error(f"duplicate handler failed for {info.object_id}: {e}")
                self.errors.add(e)
                if e.fatal:
                    self._abort()
                    return
            except Exception as e:
                logger.error(f"unexpected error handling {info.object_id}: {e}", exc_info=True)
                self.errors.add(LedgerError(f"unexpected error handling {info.object_id}: {e}"))
                self._abort()
                return

    def _abort(self) -> None:
        # 让 worker 的 send() 立即失败，同时停止后续 chunk
        self.channel.close_receiver()
        if self.stop_event is not None:
            self.stop_event.set()

    def start(self) -> None:
        for i in range(self.num_threads):
            t = threading.Thread(target=self.consume, name=f"dup_handler_{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info(f"Started {self.num_threads} duplicate handler threads")

    def join(self) -> None:
        for t in self._threads:
            t.join()
        self._threads = []
