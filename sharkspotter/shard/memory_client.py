import json
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

from ..errors import ShardQueryError
from ..scan.record import OBJECT_TYPE, record_type
from .base import MANTA_TABLE, AbstractShardClient, check_index_column, chunk_query

logger = logging.getLogger("InMemoryShardClient")


class InMemoryShardClient(AbstractShardClient):
    """在内存中模拟一个 shard，行格式与 direct db 返回的一致。

    用于测试和离线排查：可以从 <fixture_dir>/shard_<n>.json 加载
    （JSON 数组或每行一个 JSON 对象）。
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, shard: Optional[int] = None):
        self.rows = list(rows or [])
        self.shard = shard
        self.queries: List[tuple] = []
        self.closed = False

    @classmethod
    def from_fixture(cls, fixture_dir: str, shard: int) -> "InMemoryShardClient":
        path = os.path.join(fixture_dir, f"shard_{shard}.json")
        if not os.path.exists(path):
            raise ShardQueryError(f"fixture for shard {shard} not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        try:
            stripped = text.lstrip()
            if stripped.startswith("["):
                rows = json.loads(text)
            else:
                rows = [json.loads(line) for line in text.splitlines() if line.strip()]
        except ValueError as e:
            raise ShardQueryError(f"could not parse fixture {path}: {e}") from e
        logger.debug(f"Loaded {len(rows)} rows for shard {shard} from {path}")
        return cls(rows, shard=shard)

    def execute_range_query(
        self, table: str, column: str, start: int, end: int, limit: int
    ) -> Iterator[Dict[str, Any]]:
        check_index_column(column)
        if self.closed:
            raise ShardQueryError("connection closed")
        self.queries.append((table, column, start, end, limit))
        logger.debug(chunk_query(table, column, start, end, limit))
        selected = [
            row for row in self.rows
            if isinstance(row.get(column), int)
            and start <= row[column] <= end
            and self._is_object(row)
        ]
        selected.sort(key=lambda r: r[column])
        for row in selected[:limit]:
            yield row

    def max_id(self, column: str, table: str = MANTA_TABLE, no_count: bool = True) -> int:
        check_index_column(column)
        if self.closed:
            raise ShardQueryError("connection closed")
        ids = [row[column] for row in self.rows if isinstance(row.get(column), int)]
        return max(ids) if ids else 0

    def close(self) -> None:
        self.closed = True

    @staticmethod
    def _is_object(row: Dict[str, Any]) -> bool:
        rtype = record_type(row)
        if rtype is None and isinstance(row.get("_value"), str):
            try:
                value = json.loads(row["_value"])
            except ValueError:
                # 交给解析阶段记录并跳过
                return True
            if isinstance(value, dict):
                rtype = value.get("type")
        return rtype in (None, OBJECT_TYPE)
