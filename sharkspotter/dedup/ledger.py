import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import duckdb

from ..errors import LedgerError

logger = logging.getLogger("DuplicateLedger")

STUB_TABLE = "mantastubs"
DUPLICATE_TABLE = "mantaduplicates"


@dataclass
class StubEntry:
    """mantastubs 中的一行：某个对象第一次被看到时的常驻记录。"""

    id: str
    key: str
    etag: str
    duplicate: bool = False
    shards: List[int] = field(default_factory=list)


class DuplicateLedger:
    """基于 DuckDB 的本地账本，id 上的主键约束保证每个对象只有一条常驻记录。

    worker 线程和重复处理线程共享同一个数据库，每个线程使用自己的游标
    （DuckDB 连接本身不是线程安全的）。并发写同一行时 DuckDB 会抛出
    TransactionException，这里按 max_retries 重试。
    """

    def __init__(self, path: str = ":memory:", max_retries: int = 30, retry_delay: float = 0.01):
        self.path = path
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        try:
            self._conn = duckdb.connect(path)
        except duckdb.Error as e:
            raise LedgerError(f"failed to open ledger {path}: {e}") from e
        self._local = threading.local()
        self._cursors: List[Any] = []
        self._lock = threading.Lock()
        logger.info(f"Opened duplicate ledger at {path}")

    @classmethod
    def from_config(cls, config) -> "DuplicateLedger":
        # 不是 DuckDB 文件时 __init__ 抛出 LedgerError，文件保持原样
        ledger = cls(config.ledger_path)
        try:
            # 每次运行使用全新的账本表
            ledger.drop_tables()
            ledger.create_tables()
        except LedgerError:
            ledger.close()
            raise
        return ledger

    def _cursor(self):
        cur = getattr(self._local, "cursor", None)
        if cur is None:
            with self._lock:
                cur = self._conn.cursor()
                self._cursors.append(cur)
            self._local.cursor = cur
        return cur

    def _execute_with_retry(self, sql: str, params=None):
        """执行语句，遇到写冲突时重试。"""
        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return self._cursor().execute(sql, params)
            except duckdb.ConstraintException:
                raise
            except duckdb.TransactionException as e:
                last_exception = e
                logger.debug(f"write conflict (attempt {attempt + 1}): {e}")
                time.sleep(self.retry_delay * (attempt + 1))
            except duckdb.Error as e:
                raise LedgerError(f"ledger query failed: {e}") from e
        raise LedgerError(f"ledger query failed after {self.max_retries} retries: {last_exception}")

    def create_tables(self) -> None:
        cur = self._cursor()
        try:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {STUB_TABLE} (
                    id TEXT PRIMARY KEY,
                    key TEXT,
                    etag TEXT,
                    duplicate BOOLEAN,
                    shards INTEGER[]
                )
                """
            )
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {DUPLICATE_TABLE} (
                    id TEXT PRIMARY KEY,
                    key TEXT,
                    object TEXT
                )
                """
            )
        except duckdb.Error as e:
            raise LedgerError(f"failed to create ledger tables: {e}") from e

    def drop_tables(self) -> None:
        """只删除账本自己的两张表，库里的其他表不动。"""
        cur = self._cursor()
        try:
            existing = cur.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_name IN (?, ?)",
                [STUB_TABLE, DUPLICATE_TABLE],
            ).fetchall()
            if existing:
                logger.warning(f"Dropping ledger tables left in {self.path} by a previous run")
            cur.execute(f"DROP TABLE IF EXISTS {DUPLICATE_TABLE}")
            cur.execute(f"DROP TABLE IF EXISTS {STUB_TABLE}")
        except duckdb.Error as e:
            raise LedgerError(f"failed to drop ledger tables: {e}") from e

    def insert_stub(self, object_id: str, key: str, etag: str, shard: int) -> bool:
        """插入常驻记录；id 已存在时返回 False（说明这是一个重复对象）。"""
        try:
            self._execute_with_retry(
                f"INSERT INTO {STUB_TABLE} (id, key, etag, duplicate, shards) "
                f"VALUES (?, ?, ?, false, [?::INTEGER])",
                [object_id, key, etag, shard],
            )
        except duckdb.ConstraintException:
            return False
        return True

    def load_stubs(self, object_id: str) -> List[StubEntry]:
        rows = self._execute_with_retry(
            f"SELECT id, key, etag, duplicate, shards FROM {STUB_TABLE} WHERE id = ?",
            [object_id],
        ).fetchall()
        return [
            StubEntry(id=r[0], key=r[1], etag=r[2], duplicate=bool(r[3]), shards=list(r[4] or []))
            for r in rows
        ]

    def mark_duplicate(self, object_id: str, shard: int) -> None:
        """把 shard 并入常驻记录的 shards 集合并标记为重复。

        读改写在同一条语句里完成，并发合并不会丢失 shard。
        """
        self._execute_with_retry(
            f"UPDATE {STUB_TABLE} SET duplicate = true, "
            f"shards = list_sort(list_distinct(list_append(shards, ?::INTEGER))) "
            f"WHERE id = ?",
            [shard, object_id],
        )

    def insert_duplicate(self, object_id: str, key: str, value: Dict[str, Any]) -> bool:
        """记录一个重复对象的完整元数据；已记录过时返回 False。"""
        try:
            self._execute_with_retry(
                f"INSERT INTO {DUPLICATE_TABLE} (id, key, object) VALUES (?, ?, ?)",
                [object_id, key, json.dumps(value, sort_keys=True)],
            )
        except duckdb.ConstraintException:
            logger.debug(f"duplicate {object_id} already recorded")
            return False
        return True

    def stub_count(self) -> int:
        return self._execute_with_retry(f"SELECT count(*) FROM {STUB_TABLE}").fetchone()[0]

    def duplicate_count(self) -> int:
        return self._execute_with_retry(f"SELECT count(*) FROM {DUPLICATE_TABLE}").fetchone()[0]

    def duplicates(self) -> List[Dict[str, Any]]:
        """所有重复对象：id、key、出现过的 shards 以及元数据。"""
        rows = self._execute_with_retry(
            f"SELECT d.id, d.key, s.shards, d.object FROM {DUPLICATE_TABLE} d "
            f"JOIN {STUB_TABLE} s ON s.id = d.id ORDER BY d.id"
        ).fetchall()
        return [
            {"id": r[0], "key": r[1], "shards": list(r[2] or []), "object": json.loads(r[3])}
            for r in rows
        ]

    def close(self) -> None:
        with self._lock:
            for cur in self._cursors:
                try:
                    cur.close()
                except duckdb.Error as e:
                    logger.warning(f"failed to close ledger cursor: {e}")
            self._cursors = []
            self._conn.close()
        logger.info(f"Closed duplicate ledger {self.path}")
