import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import etcd3
from etcd3 import Etcd3Client

from ..errors import ConfigError

logger = logging.getLogger("EtcdRegistry")


class EtcdConnectionPool:
    """简单的 etcd 连接池，负责端点探活和重连。"""

    def __init__(self, endpoints: List[str]):
        self.endpoints = endpoints
        self.clients: Dict[str, Optional[Etcd3Client]] = {}
        self.lock = threading.RLock()
        self._init_connections()

    @staticmethod
    def _connect(endpoint: str) -> Etcd3Client:
        host, port = endpoint.split(":")
        client = etcd3.client(host=host, port=int(port))
        client.status()
        return client

    def _init_connections(self) -> None:
        """初始化所有 etcd 连接。"""
        for ep in self.endpoints:
            try:
                self.clients[ep] = self._connect(ep)
                logger.info(f"Connected to etcd {ep}")
            except Exception as e:
                logger.warning(f"Failed to connect {ep}: {e}")
                self.clients[ep] = None

        if not any(self.clients.values()):
            raise ConnectionError("No available etcd endpoints!")

    def get_all_connections(self) -> List[Etcd3Client]:
        """返回所有可用的 etcd 连接，没有可用连接时先尝试重连。"""
        with self.lock:
            available = [c for c in self.clients.values() if c and self._check_connection(c)]
            if not available:
                self._reconnect_all()
                available = [c for c in self.clients.values() if c and self._check_connection(c)]
            return available

    def _check_connection(self, client: Etcd3Client) -> bool:
        """简单探活。"""
        try:
            client.status()
            return True
        except Exception:
            return False

    def _reconnect_all(self) -> None:
        """重连所有当前不可用的端点。"""
        for endpoint, client in self.clients.items():
            if client is not None and self._check_connection(client):
                continue
            try:
                self.clients[endpoint] = self._connect(endpoint)
                logger.info(f"Reconnected to etcd {endpoint}")
            except Exception as e:
                logger.warning(f"Failed to reconnect {endpoint}: {e}")
                self.clients[endpoint] = None

    def execute_with_failover(self, operation: Callable[[Etcd3Client], Any]) -> Any:
        """在可用的 etcd 端点上执行操作，失败自动切换。"""
        last_exception: Optional[Exception] = None

        for client in self.get_all_connections():
            try:
                return operation(client)
            except Exception as e:
                last_exception = e
                logger.warning(f"Operation failed on {getattr(client, '_url', '?')}: {e}")
                continue

        raise last_exception or ConnectionError("Operation failed on all etcd nodes")


class StorageNodeRegistry:
    """存储节点（shark）注册表，保存在 etcd 的 <prefix>/manta_storage/ 下。

    每个 key 的值是一个 JSON 对象，至少包含 manta_storage_id 字段。
    """

    def __init__(self, pool: EtcdConnectionPool, prefix: str = "/sharkspotter"):
        self.pool = pool
        self.prefix = prefix.rstrip("/")

    @classmethod
    def from_config(cls, config) -> "StorageNodeRegistry":
        return cls(EtcdConnectionPool(list(config.etcd_endpoints)), prefix=config.etcd_prefix)

    @property
    def storage_prefix(self) -> str:
        return f"{self.prefix}/manta_storage/"

    def list_storage_nodes(self) -> List[dict]:
        def _scan(client: Etcd3Client) -> List[dict]:
            nodes: List[dict] = []
            for value, meta in client.get_prefix(self.storage_prefix):
                key = meta.key.decode("utf-8") if meta is not None else "?"
                try:
                    node = json.loads(value)
                except (TypeError, ValueError) as e:
                    logger.warning(f"跳过无法解析的存储节点记录 {key}: {e}")
                    continue
                if isinstance(node, dict):
                    nodes.append(node)
            return nodes

        return self.pool.execute_with_failover(_scan)

    def count_storage_nodes(self, shark: str) -> int:
        return sum(1 for n in self.list_storage_nodes() if n.get("manta_storage_id") == shark)

    def validate_sharks(self, sharks: List[str]) -> None:
        """确认每个 shark 在注册表中恰好有一条记录。"""
        nodes = self.list_storage_nodes()
        for shark in sharks:
            count = sum(1 for n in nodes if n.get("manta_storage_id") == shark)
            if count > 1:
                raise ConfigError(f'More than one shark with name "{shark}" found')
            if count == 0:
                raise ConfigError(f'No shark with name "{shark}" found')
            logger.debug(f"Validated shark {shark}")

    def get_shard_endpoint(self, shard: int) -> Optional[str]:
        """读取 <prefix>/shards/<shard>，不存在时返回 None。"""
        key = f"{self.prefix}/shards/{shard}"

        def _get(client: Etcd3Client):
            value, _ = client.get(key)
            return value

        value = self.pool.execute_with_failover(_get)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value
