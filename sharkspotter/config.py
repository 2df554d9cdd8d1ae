from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import List, Optional

from .config_loader import merge_config_with_defaults, namespace_to_dict
from .errors import ConfigError

logger = logging.getLogger("SharkspotterConfig")

# 无论配置多大，扫描线程数都不超过该上限
MAX_THREADS = 100

FILTER_SHARK = "shark"
FILTER_NUM_COPIES = "num_copies"
FILTER_DUPLICATES = "duplicates"
FILTER_TYPES = (FILTER_SHARK, FILTER_NUM_COPIES, FILTER_DUPLICATES)


@dataclass
class Config:
    """一次扫描的全部参数。"""

    min_shard: int = 1
    max_shard: int = 1
    domain: str = ""
    sharks: List[str] = field(default_factory=list)
    chunk_size: int = 100
    begin: int = 0
    # 0 表示不设上限，扫描到 shard 上的最大 id
    end: int = 0
    max_threads: int = 50
    filter_type: str = FILTER_SHARK
    num_copies: Optional[int] = None
    skip_validate_sharks: bool = False
    full_object: bool = False
    output_file: Optional[str] = None

    # shard 连接
    shard_client: str = "postgres"
    host_template: str = "{shard}.rebalancer-postgres.{domain}"
    shard_port: int = 5432
    shard_dbname: str = "moray"
    shard_user: str = "postgres"
    query_timeout_ms: int = 10000
    fixture_dir: Optional[str] = None

    # endpoint 解析 / 存储节点注册表
    resolver: str = "dns"
    etcd_endpoints: List[str] = field(default_factory=lambda: ["127.0.0.1:2379"])
    etcd_prefix: str = "/sharkspotter"

    # 重复检测账本
    db_name: str = "sharkspotter"
    db_path: Optional[str] = None
    dup_handler_threads: int = 2

    channel_capacity: int = 1000
    log_level: str = "INFO"

    @property
    def end_limit(self) -> Optional[int]:
        return self.end if self.end else None

    @property
    def ledger_path(self) -> str:
        if self.db_path:
            return self.db_path
        return f"{self.db_name}.duckdb"

    @classmethod
    def defaults(cls) -> dict:
        return {f.name: getattr(cls(), f.name) for f in fields(cls)}

    @classmethod
    def from_namespace(cls, ns) -> "Config":
        """从 load_config_from_json 得到的 SimpleNamespace 构造配置。

        兼容把扫描参数放在顶层或放在 "sharkspotter" 子节点下两种写法，
        未知字段会被忽略并打印警告。
        """
        section = getattr(ns, "sharkspotter", ns)
        merged = namespace_to_dict(merge_config_with_defaults(section, cls.defaults()))
        known = {f.name for f in fields(cls)}
        for key in sorted(set(merged) - known):
            logger.warning("忽略未知配置项: %s", key)
        return cls(**{k: v for k, v in merged.items() if k in known})


def validate_config(config: Config) -> Config:
    """校验并就地修正配置。

    可修正的问题（线程数超过上限）只打印警告；无法继续的问题抛出 ConfigError。
    """
    if config.max_threads > MAX_THREADS:
        logger.warning(
            "max_threads %d exceeds the hard limit, using %d",
            config.max_threads,
            MAX_THREADS,
        )
        config.max_threads = MAX_THREADS
    if config.max_threads < 1:
        logger.warning("max_threads %d is invalid, using 1", config.max_threads)
        config.max_threads = 1

    if config.min_shard > config.max_shard:
        raise ConfigError(
            f"min_shard ({config.min_shard}) is larger than max_shard ({config.max_shard})"
        )
    if config.chunk_size < 1:
        raise ConfigError(f"chunk_size must be at least 1, got {config.chunk_size}")
    if config.begin < 0:
        raise ConfigError(f"begin must not be negative, got {config.begin}")
    if config.end and config.end < config.begin:
        raise ConfigError(f"end ({config.end}) is smaller than begin ({config.begin})")
    if config.channel_capacity < 1:
        raise ConfigError("channel_capacity must be at least 1")

    if config.filter_type not in FILTER_TYPES:
        raise ConfigError(f"unknown filter type {config.filter_type!r}")
    if config.filter_type == FILTER_SHARK and not config.sharks:
        raise ConfigError("shark filter requires at least one shark")
    if config.filter_type == FILTER_NUM_COPIES:
        if config.num_copies is None or config.num_copies < 0:
            raise ConfigError("num_copies filter requires a non-negative copy count")
    if config.filter_type == FILTER_DUPLICATES:
        if config.dup_handler_threads < 1:
            logger.warning("dup_handler_threads %d is invalid, using 1", config.dup_handler_threads)
            config.dup_handler_threads = 1
        if not config.db_path and not config.db_name:
            raise ConfigError("duplicates filter requires db_path or db_name")

    return config


def fix_shark_domains(sharks: List[str], domain: str) -> List[str]:
    """给缺少域名后缀的存储节点名补上 ".<domain>"。"""
    fixed = []
    for shark in sharks:
        if domain and domain not in shark:
            new_shark = f"{shark}.{domain}"
            logger.warning(
                'Domain "%s" not found in storage node string: "%s", using "%s"',
                domain,
                shark,
                new_shark,
            )
            fixed.append(new_shark)
        else:
            fixed.append(shark)
    return fixed
