import threading
from typing import Iterator, List, Optional


class SharkspotterError(Exception):
    """sharkspotter 所有错误的基类。

    fatal=True 的错误表示本地状态已不可信，整个运行必须停止。
    """

    fatal = False


class ConfigError(SharkspotterError):
    """配置无效，扫描开始前即抛出。"""


class MalformedRecordError(SharkspotterError):
    """单条记录无法解析（缺字段 / JSON 错误），只跳过该行。"""


class ShardQueryError(SharkspotterError):
    """shard 查询端的连接或查询失败。"""


class ShardResolutionError(ShardQueryError):
    """无法把 shard 编号解析为可达的地址。"""


class ChannelDisconnected(SharkspotterError):
    """接收端已关闭，发送失败。属于正常的提前结束信号，不计入最终错误报告。"""


class ChannelClosed(SharkspotterError):
    """所有发送端已结束且通道已清空。"""


class ScanError(SharkspotterError):
    """某个 (shard, index) worker 被中止。"""

    def __init__(self, shard: int, column: str, cause: Optional[BaseException] = None):
        self.shard = shard
        self.column = column
        self.cause = cause
        super().__init__(f"shard {shard} ({column}): {cause}")


class EtagMismatch(SharkspotterError):
    """同一对象在两个 shard 上的 etag 不一致，放弃合并。"""

    def __init__(self, object_id: str, key: str, resident_etag: str, observed_etag: str, shard: int):
        self.object_id = object_id
        self.key = key
        self.resident_etag = resident_etag
        self.observed_etag = observed_etag
        self.shard = shard
        super().__init__(
            f"Found two metadata entries with different etags for {object_id} "
            f"(key={key}, resident={resident_etag}, shard {shard}={observed_etag})"
        )


class LedgerError(SharkspotterError):
    """本地账本发生未知的数据库错误。"""

    fatal = True


class LedgerCorruption(LedgerError):
    """账本不变量被破坏（同一 id 的常驻行数 != 1）。"""


class RunErrorSet:
    """一次运行中所有 worker 上报的错误，按上报顺序保存。

    由 orchestrator 实例持有，worker 并发写入时由内部锁保证每个错误只记录一次。
    """

    def __init__(self) -> None:
        self._errors: List[SharkspotterError] = []
        self._lock = threading.Lock()

    def add(self, error: SharkspotterError) -> None:
        with self._lock:
            self._errors.append(error)

    def extend(self, errors) -> None:
        with self._lock:
            self._errors.extend(errors)

    def all(self) -> List[SharkspotterError]:
        with self._lock:
            return list(self._errors)

    def reportable(self) -> List[SharkspotterError]:
        """去掉 ChannelDisconnected 之后的错误列表。"""
        return [e for e in self.all() if not isinstance(e, ChannelDisconnected)]

    def fatal(self) -> Optional[SharkspotterError]:
        for e in self.all():
            if e.fatal:
                return e
        return None

    def raise_if_errors(self) -> None:
        fatal = self.fatal()
        if fatal is not None:
            raise fatal
        errors = self.reportable()
        if errors:
            raise RunFailed(errors)

    def __len__(self) -> int:
        return len(self.reportable())

    def __iter__(self) -> Iterator[SharkspotterError]:
        return iter(self.reportable())

    def __bool__(self) -> bool:
        return len(self) > 0


class RunFailed(SharkspotterError):
    """运行结束时仍有未被过滤的错误，一并汇报。"""

    def __init__(self, errors: List[SharkspotterError]):
        self.errors = list(errors)
        lines = "".join(f"{e}\n" for e in self.errors)
        super().__init__(f"Sharkspotter encountered the following errors:\n{lines}")
