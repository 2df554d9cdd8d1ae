import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from ..config import MAX_THREADS
from ..errors import ChannelDisconnected, RunErrorSet, ScanError, SharkspotterError
from ..shard.base import INDEX_COLUMNS, AbstractShardClient
from ..stats import ScanStats
from .filter import SelectionPredicate
from .sink import MatchSink
from .worker import scan_shard

logger = logging.getLogger("ScanOrchestrator")

ClientFactory = Callable[[int], AbstractShardClient]


class ScanOrchestrator:
    """
    Runs one scan worker per (shard, index column) on a bounded thread pool.

    Worker failures are collected in a RunErrorSet and never stop the
    other workers, except for fatal errors which set the stop event so
    the remaining workers quit between chunks.
    """

    def __init__(
        self,
        config,
        client_factory: ClientFactory,
        predicate: SelectionPredicate,
        sink: MatchSink,
        stats: Optional[ScanStats] = None,
        errors: Optional[RunErrorSet] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.client_factory = client_factory
        self.predicate = predicate
        self.sink = sink
        self.stats = stats or ScanStats()
        self.errors = errors if errors is not None else RunErrorSet()
        self.stop_event = stop_event or threading.Event()

    @property
    def max_workers(self) -> int:
        return max(1, min(int(self.config.max_threads), MAX_THREADS))

    def _run_worker(self, shard: int, column: str) -> int:
        self.stats.incr("workers_started")
        try:
            client = self.client_factory(shard)
        except SharkspotterError as e:
            raise ScanError(shard, column, e) from e
        try:
            return scan_shard(
                shard,
                column,
                self.config,
                client,
                self.predicate,
                self.sink,
                stats=self.stats,
                stop_event=self.stop_event,
            )
        finally:
            client.close()

    def run(self) -> RunErrorSet:
        shards = range(self.config.min_shard, self.config.max_shard + 1)
        logger.info(
            f"Scanning shards {self.config.min_shard}-{self.config.max_shard} "
            f"with {self.max_workers} threads"
        )

        try:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="shard_scanner"
            ) as executor:
                futures = {
                    executor.submit(self._run_worker, shard, column): (shard, column)
                    for shard in shards
                    for column in INDEX_COLUMNS
                }
                for future in as_completed(futures):
                    shard, column = futures[future]
                    try:
                        chunks = future.result()
                        logger.info(f"shard {shard} ({column}) done, {chunks} chunks")
                    except ChannelDisconnected as e:
                        # 消费端提前退出，其余 worker 也不必继续
                        logger.info(f"shard {shard} ({column}): receiver disconnected")
                        self.errors.add(e)
                        self.stop_event.set()
                    except SharkspotterError as e:
                        logger.error(f"shard {shard} ({column}) failed: {e}")
                        self.stats.incr("workers_failed")
                        self.errors.add(e)
                        if e.fatal:
                            self.stop_event.set()
                    except Exception as e:
                        logger.error(f"shard {shard} ({column}) failed: {e}", exc_info=True)
                        self.stats.incr("workers_failed")
                        self.errors.add(ScanError(shard, column, e))
        finally:
            self.sink.close()

        return self.errors
