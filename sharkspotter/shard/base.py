import abc
from typing import Any, Dict, Iterator

# 每个 shard 上都有这两个排序列，任意一个都可能有值，必须分别扫描
INDEX_COLUMNS = ("_id", "_idx")
MANTA_TABLE = "manta"


def check_index_column(column: str) -> str:
    if column not in INDEX_COLUMNS:
        raise ValueError(f"unknown index column {column!r}")
    return column


def chunk_query(table: str, column: str, start: int, end: int, limit: int) -> str:
    """单个 chunk 的查询语句（moray sql 接口使用的文本形式）。"""
    check_index_column(column)
    return (
        f"SELECT * FROM {table} WHERE {column} >= {int(start)} AND "
        f"{column} <= {int(end)} AND type = 'object' limit {int(limit)};"
    )


class AbstractShardClient(abc.ABC):
    """单个 shard 的查询接口，连接只属于创建它的 worker"""

    @abc.abstractmethod
    def execute_range_query(
        self, table: str, column: str, start: int, end: int, limit: int
    ) -> Iterator[Dict[str, Any]]:
        """流式返回 column ∈ [start, end] 且 type='object' 的行，最多 limit 行"""
        pass

    @abc.abstractmethod
    def max_id(self, column: str, table: str = MANTA_TABLE, no_count: bool = True) -> int:
        """返回 column 的最大值；no_count 提示服务端不要统计总行数"""
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
