from .base import AbstractShardClient, INDEX_COLUMNS, MANTA_TABLE
from .memory_client import InMemoryShardClient
from .postgres_client import PostgresShardClient
from .resolver import DnsShardResolver, EtcdShardResolver, ShardEndpoint, ShardResolver
from .factory import ShardClientFactory
