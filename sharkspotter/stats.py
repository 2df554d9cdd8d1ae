import logging
import threading
import time

logger = logging.getLogger("ScanStats")

_COUNTERS = (
    "workers_started",
    "workers_failed",
    "chunks_scanned",
    "rows_seen",
    "rows_skipped",
    "matches_sent",
    "stubs_inserted",
    "duplicates_found",
    "duplicates_merged",
    "etag_mismatches",
    "same_shard_skipped",
)


class ScanStats:
    """一次运行的统计计数，所有 worker 共享，内部加锁。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset_stats()

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.stats[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self.stats[name]

    def get_stats(self) -> dict:
        """获取当前统计信息。"""
        with self._lock:
            stats = self.stats.copy()
        stats["uptime"] = time.time() - stats["last_reset"]
        return stats

    def log_stats(self) -> None:
        """记录并输出统计信息到日志。"""
        stats = self.get_stats()
        logger.info(
            f"扫描统计 - worker: {stats['workers_started']} (失败 {stats['workers_failed']}), "
            f"chunk: {stats['chunks_scanned']}, "
            f"行: {stats['rows_seen']} (跳过 {stats['rows_skipped']}), "
            f"命中: {stats['matches_sent']}, "
            f"重复: {stats['duplicates_found']} (合并 {stats['duplicates_merged']}, "
            f"etag 不一致 {stats['etag_mismatches']}), "
            f"运行时间: {stats['uptime']:.2f}s"
        )

    def reset_stats(self) -> None:
        """重置统计信息。"""
        stats = {name: 0 for name in _COUNTERS}
        stats["last_reset"] = time.time()
        with self._lock:
            self.stats = stats
