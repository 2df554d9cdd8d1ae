import logging
import threading
from typing import Optional

from ..errors import ConfigError
from .base import AbstractShardClient
from .memory_client import InMemoryShardClient
from .postgres_client import PostgresShardClient
from .resolver import DnsShardResolver, EtcdShardResolver, ShardResolver

logger = logging.getLogger("ShardClientFactory")


class ShardClientFactory:
    """shard 客户端工厂：根据配置为每个 worker 创建独立的 AbstractShardClient。"""

    def __init__(self, config, resolver: Optional[ShardResolver] = None):
        self.config = config
        self._resolver = resolver
        self.lock = threading.Lock()

    def _get(self, name: str, default=None):
        val = getattr(self.config, name, None)
        return default if val is None else val

    @property
    def resolver(self) -> ShardResolver:
        if self._resolver is None:
            # 多个 worker 同时创建第一个客户端，只建一个 resolver
            with self.lock:
                if self._resolver is None:
                    self._resolver = self.create_resolver(self.config)
        return self._resolver

    @staticmethod
    def create_resolver(config) -> ShardResolver:
        kind = getattr(config, "resolver", "dns") or "dns"
        if kind == "dns":
            return DnsShardResolver(
                config.host_template, config.domain, port=config.shard_port
            )
        if kind == "etcd":
            # 延迟导入，仅 etcd 模式需要连接 etcd
            from ..registry.etcd import StorageNodeRegistry

            return EtcdShardResolver(
                StorageNodeRegistry.from_config(config), default_port=config.shard_port
            )
        raise ConfigError(f"unknown resolver {kind!r}")

    def create_client(self, shard: int) -> AbstractShardClient:
        client_type = self._get("shard_client", "postgres")

        if client_type == "fixture":
            fixture_dir = self._get("fixture_dir")
            if not fixture_dir:
                raise ConfigError("fixture shard client requires fixture_dir")
            return InMemoryShardClient.from_fixture(fixture_dir, shard)

        if client_type == "postgres":
            endpoint = self.resolver.resolve(shard)
            logger.debug(f"shard {shard}: connecting to {endpoint.host}:{endpoint.port}")
            return PostgresShardClient(
                endpoint.host,
                port=endpoint.port,
                dbname=self._get("shard_dbname", "moray"),
                user=self._get("shard_user", "postgres"),
                query_timeout_ms=int(self._get("query_timeout_ms", 10000)),
                shard=shard,
            )

        raise ConfigError(f"unknown shard client {client_type!r}")

    def __call__(self, shard: int) -> AbstractShardClient:
        return self.create_client(shard)
