import logging
import threading
from typing import Optional

from ..errors import MalformedRecordError, ScanError, ShardQueryError
from ..shard.base import MANTA_TABLE, AbstractShardClient
from ..stats import ScanStats
from .chunk import ChunkCursor
from .filter import SelectionPredicate, matches
from .record import record_from_row
from .sink import MatchSink, ScanMatch

logger = logging.getLogger("ShardScanWorker")


def scan_shard(
    shard: int,
    column: str,
    config,
    client: AbstractShardClient,
    predicate: SelectionPredicate,
    sink: MatchSink,
    stats: Optional[ScanStats] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """按 column 分块扫描一个 shard，把命中的记录交给 sink。

    返回扫描的 chunk 数。查询失败抛出 ScanError；
    sink 的接收端关闭时 ChannelDisconnected 原样向上传递。
    """
    stats = stats or ScanStats()

    try:
        largest_id = client.max_id(column, MANTA_TABLE, no_count=True)
    except (ShardQueryError, MalformedRecordError) as e:
        # 取不到最大 id 时这个索引列按空处理
        logger.error(f"shard {shard}: failed to get largest {column}, using 0: {e}")
        largest_id = 0

    cursor = ChunkCursor(config.begin, config.end_limit, config.chunk_size, largest_id)
    logger.info(
        f"shard {shard}: scanning {column} from {config.begin} to {cursor.last_id} "
        f"in {len(cursor)} chunks"
    )

    scanned = 0
    for window in cursor:
        if stop_event is not None and stop_event.is_set():
            logger.info(f"shard {shard} ({column}): stop requested after {scanned} chunks")
            break

        try:
            for row in client.execute_range_query(
                MANTA_TABLE, column, window.start, window.end, config.chunk_size
            ):
                stats.incr("rows_seen")
                try:
                    record = record_from_row(row)
                except MalformedRecordError as e:
                    logger.error(f"shard {shard}: skipping malformed row: {e}")
                    stats.incr("rows_skipped")
                    sink.on_error(e)
                    continue

                for shark in matches(record, predicate):
                    sink.on_match(ScanMatch(record, shark, shard))
                    stats.incr("matches_sent")
        except ShardQueryError as e:
            raise ScanError(shard, column, e) from e

        scanned += 1
        stats.incr("chunks_scanned")
        logger.debug(
            f"chunk {scanned}: shard={shard} start_id={window.start} end_id={window.end} "
            f"remaining={cursor.remaining(window)} "
            f"percent_complete={cursor.percent_complete(window)}"
        )

    return scanned
