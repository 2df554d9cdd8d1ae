import json
import logging
import os
import threading
from typing import Dict, IO, Iterable, Optional, Tuple

from .errors import ConfigError
from .scan.record import Record

logger = logging.getLogger("ObjectFileWriter")


class ObjectFileWriter:
    """把命中的对象按行写成 JSON。

    - 指定 output_file 时全部追加到该文件；
    - 否则每个 (shark, shard) 一个文件：<base_dir>/<shark>/shard_<n>.objs，
      目录名去掉 ".<domain>" 后缀。open_shard_files() 在扫描前创建全部文件，
      任何一个已存在都会抛出 FileExistsError。
    full_object=True 写原始行，否则只写对象元数据（_value）。
    """

    def __init__(
        self,
        output_file: Optional[str] = None,
        full_object: bool = False,
        base_dir: str = ".",
        domain: str = "",
    ):
        self.output_file = output_file
        self.full_object = full_object
        self.base_dir = base_dir
        self.domain = domain
        self._files: Dict[Tuple[str, int], IO[str]] = {}
        self._single: Optional[IO[str]] = None
        self._lock = threading.Lock()
        self.written = 0

    @classmethod
    def from_config(cls, config) -> "ObjectFileWriter":
        return cls(config.output_file, full_object=config.full_object, domain=config.domain)

    def shark_dir(self, shark: str) -> str:
        suffix = f".{self.domain}"
        if self.domain and shark.endswith(suffix):
            return shark[: -len(suffix)]
        return shark

    def _create(self, name: str, shard: int) -> IO[str]:
        dir_path = os.path.join(self.base_dir, name)
        os.makedirs(dir_path, exist_ok=True)
        path = os.path.join(dir_path, f"shard_{shard}.objs")
        # "x" 模式：文件已存在时抛出 FileExistsError
        f = open(path, "x", encoding="utf-8")
        logger.info(f"Writing objects for {name} shard {shard} to {path}")
        self._files[(name, shard)] = f
        return f

    def open_shard_files(self, sharks: Iterable[str], shards: Iterable[int]) -> None:
        """扫描前为每个 shark × shard 创建输出文件。"""
        if self.output_file:
            return
        shards = list(shards)
        with self._lock:
            for shark in sharks:
                name = self.shark_dir(shark)
                for shard in shards:
                    if (name, shard) not in self._files:
                        self._create(name, shard)

    def _open(self, shark: Optional[str], shard: int) -> IO[str]:
        if self.output_file:
            if self._single is None:
                self._single = open(self.output_file, "a", encoding="utf-8")
                logger.info(f"Writing objects to {self.output_file}")
            return self._single

        if shark is None:
            raise ConfigError("output_file is required when matches are not tied to a shark")

        name = self.shark_dir(shark)
        f = self._files.get((name, shard))
        if f is None:
            f = self._create(name, shard)
        return f

    def __call__(self, record: Record, shark: Optional[str], shard: int) -> None:
        obj = record.raw if self.full_object else record.value
        line = json.dumps(obj, default=str)
        with self._lock:
            f = self._open(shark, shard)
            f.write(line + "\n")
            self.written += 1

    def close(self) -> None:
        with self._lock:
            for f in self._files.values():
                f.close()
            self._files = {}
            if self._single is not None:
                self._single.close()
                self._single = None
        logger.info(f"Wrote {self.written} objects")
