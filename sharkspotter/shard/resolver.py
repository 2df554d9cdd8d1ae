import abc
import json
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from ..errors import ShardResolutionError

logger = logging.getLogger("ShardResolver")


@dataclass(frozen=True)
class ShardEndpoint:
    host: str
    port: int


class ShardResolver(abc.ABC):
    """把 shard 编号解析为可连接的 postgres 地址"""

    @abc.abstractmethod
    def resolve(self, shard: int) -> ShardEndpoint:
        pass


class DnsShardResolver(ShardResolver):
    """按 host_template 拼出主机名，再用 DNS 查询可达地址。"""

    def __init__(self, host_template: str, domain: str, port: int = 5432):
        self.host_template = host_template
        self.domain = domain
        self.port = port

    def hostname(self, shard: int) -> str:
        return self.host_template.format(shard=shard, domain=self.domain)

    def resolve(self, shard: int) -> ShardEndpoint:
        host = self.hostname(shard)
        try:
            infos = socket.getaddrinfo(host, self.port, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise ShardResolutionError(f"failed to resolve {host}: {e}") from e
        if not infos:
            raise ShardResolutionError(f"no address found for {host}")
        address = infos[0][4][0]
        logger.debug(f"shard {shard}: {host} -> {address}:{self.port}")
        return ShardEndpoint(address, self.port)


class EtcdShardResolver(ShardResolver):
    """从 etcd 的 <prefix>/shards/<shard> 读取地址。

    值可以是 {"host": ..., "port": ...} 形式的 JSON，也可以是 "host:port"。
    """

    def __init__(self, registry, default_port: int = 5432):
        self.registry = registry
        self.default_port = default_port

    def resolve(self, shard: int) -> ShardEndpoint:
        try:
            raw: Optional[str] = self.registry.get_shard_endpoint(shard)
        except Exception as e:
            raise ShardResolutionError(f"etcd lookup for shard {shard} failed: {e}") from e
        if not raw:
            raise ShardResolutionError(f"shard {shard} is not registered in etcd")
        return self._parse(shard, raw)

    def _parse(self, shard: int, raw: str) -> ShardEndpoint:
        try:
            doc = json.loads(raw)
        except ValueError:
            doc = None

        if isinstance(doc, dict):
            host = doc.get("host")
            port = doc.get("port", self.default_port)
        else:
            host, sep, port = raw.strip().rpartition(":")
            if not sep:
                host, port = raw.strip(), self.default_port
        try:
            port = int(port)
        except (TypeError, ValueError) as e:
            raise ShardResolutionError(f"invalid port for shard {shard}: {raw!r}") from e
        if not host:
            raise ShardResolutionError(f"invalid endpoint for shard {shard}: {raw!r}")
        return ShardEndpoint(host, port)
