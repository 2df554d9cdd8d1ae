import logging
from typing import Any, Dict, Iterator, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from ..errors import ShardQueryError
from ..scan.record import parse_max_id_value
from .base import MANTA_TABLE, AbstractShardClient, check_index_column

logger = logging.getLogger("PostgresShardClient")


class PostgresShardClient(AbstractShardClient):
    """直连 shard 的 moray postgres 数据库。

    每个 chunk 用一个服务端游标（named cursor）分批拉取，
    内存中最多保留 fetch_size 行。
    """

    def __init__(
        self,
        host: str,
        port: int = 5432,
        dbname: str = "moray",
        user: str = "postgres",
        password: Optional[str] = None,
        query_timeout_ms: int = 10000,
        keepalives_idle: int = 30,
        fetch_size: int = 1000,
        shard: Optional[int] = None,
    ):
        self.host = host
        self.port = port
        self.shard = shard
        self.fetch_size = fetch_size
        self._cursor_seq = 0
        try:
            self._conn = psycopg.connect(
                host=host,
                port=port,
                dbname=dbname,
                user=user,
                password=password,
                keepalives=1,
                keepalives_idle=keepalives_idle,
                options=f"-c statement_timeout={int(query_timeout_ms)}",
                row_factory=dict_row,
            )
        except psycopg.Error as e:
            logger.error(f"failed to connect to {host}:{port}: {e}")
            raise ShardQueryError(f"failed to connect to {host}:{port}: {e}") from e
        logger.debug(f"Connected to {host}:{port}/{dbname}")

    def execute_range_query(
        self, table: str, column: str, start: int, end: int, limit: int
    ) -> Iterator[Dict[str, Any]]:
        check_index_column(column)
        query = sql.SQL(
            "SELECT * FROM {table} WHERE {col} >= %s AND {col} <= %s "
            "AND type = 'object' LIMIT %s"
        ).format(table=sql.Identifier(table), col=sql.Identifier(column))

        self._cursor_seq += 1
        name = f"sharkspotter_{column.lstrip('_')}_{self._cursor_seq}"
        try:
            with self._conn.transaction():
                with self._conn.cursor(name=name) as cur:
                    cur.itersize = self.fetch_size
                    cur.execute(query, (start, end, limit))
                    for row in cur:
                        yield row
        except psycopg.Error as e:
            logger.error(f"query error for {self.host}: {e}")
            raise ShardQueryError(f"query error for {self.host}: {e}") from e

    def max_id(self, column: str, table: str = MANTA_TABLE, no_count: bool = True) -> int:
        # MAX() 是聚合查询，本身就不会统计总行数，no_count 无需额外处理
        check_index_column(column)
        query = sql.SQL("SELECT MAX({col}) AS max FROM {table}").format(
            col=sql.Identifier(column), table=sql.Identifier(table)
        )
        try:
            with self._conn.cursor() as cur:
                cur.execute(query)
                row = cur.fetchone()
            self._conn.commit()
        except psycopg.Error as e:
            logger.error(f"max id query error for {self.host}: {e}")
            raise ShardQueryError(f"max id query error for {self.host}: {e}") from e
        return parse_max_id_value([row] if row is not None else [])

    def close(self) -> None:
        try:
            self._conn.close()
        except psycopg.Error as e:
            logger.warning(f"failed to close connection to {self.host}: {e}")
