import socket
import threading
import time
import unittest
from unittest.mock import patch

from sharkspotter.config import Config
from sharkspotter.errors import ConfigError, ShardResolutionError
from sharkspotter.shard.factory import ShardClientFactory
from sharkspotter.shard.memory_client import InMemoryShardClient
from sharkspotter.shard.resolver import DnsShardResolver, EtcdShardResolver, ShardEndpoint


class DummyRegistry:
    def __init__(self, entries):
        self.entries = entries

    def get_shard_endpoint(self, shard):
        return self.entries.get(shard)


class DnsShardResolverTests(unittest.TestCase):
    def test_hostname_template(self):
        r = DnsShardResolver("{shard}.rebalancer-postgres.{domain}", "east.example.com")
        self.assertEqual(r.hostname(3), "3.rebalancer-postgres.east.example.com")

    def test_resolve(self):
        r = DnsShardResolver("{shard}.pg.{domain}", "example.com", port=6432)
        infos = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.3", 6432))]
        with patch("sharkspotter.shard.resolver.socket.getaddrinfo", return_value=infos) as gai:
            self.assertEqual(r.resolve(3), ShardEndpoint("10.0.0.3", 6432))
            self.assertEqual(gai.call_args[0][:2], ("3.pg.example.com", 6432))

    def test_resolve_failure(self):
        r = DnsShardResolver("{shard}.pg.{domain}", "example.com")
        with patch("sharkspotter.shard.resolver.socket.getaddrinfo", side_effect=socket.gaierror("nope")):
            with self.assertRaises(ShardResolutionError):
                r.resolve(1)


class EtcdShardResolverTests(unittest.TestCase):
    def test_json_and_host_port(self):
        r = EtcdShardResolver(DummyRegistry({
            1: '{"host": "10.0.0.1", "port": 6432}',
            2: "10.0.0.2:5433",
            3: "pg3.example.com",
        }))
        self.assertEqual(r.resolve(1), ShardEndpoint("10.0.0.1", 6432))
        self.assertEqual(r.resolve(2), ShardEndpoint("10.0.0.2", 5433))
        self.assertEqual(r.resolve(3), ShardEndpoint("pg3.example.com", 5432))

    def test_missing_or_invalid(self):
        r = EtcdShardResolver(DummyRegistry({2: "host:notaport"}))
        with self.assertRaises(ShardResolutionError):
            r.resolve(1)
        with self.assertRaises(ShardResolutionError):
            r.resolve(2)


class ShardClientFactoryTests(unittest.TestCase):
    def test_fixture_client(self):
        cfg = Config(shard_client="fixture", fixture_dir="/fixtures")
        sentinel = InMemoryShardClient([], shard=4)
        with patch.object(InMemoryShardClient, "from_fixture", return_value=sentinel) as ff:
            self.assertIs(ShardClientFactory(cfg)(4), sentinel)
            ff.assert_called_once_with("/fixtures", 4)

    def test_fixture_requires_dir(self):
        with self.assertRaises(ConfigError):
            ShardClientFactory(Config(shard_client="fixture")).create_client(1)

    def test_postgres_client_uses_resolver(self):
        cfg = Config(shard_client="postgres", shard_dbname="moray", query_timeout_ms=500)
        resolver = EtcdShardResolver(DummyRegistry({7: "10.1.1.7:5432"}))
        with patch("sharkspotter.shard.factory.PostgresShardClient") as pg:
            ShardClientFactory(cfg, resolver=resolver).create_client(7)
            pg.assert_called_once_with(
                "10.1.1.7", port=5432, dbname="moray", user="postgres", query_timeout_ms=500, shard=7
            )

    def test_resolver_created_once_across_threads(self):
        resolver = EtcdShardResolver(DummyRegistry({}))

        def slow_create(config):
            time.sleep(0.05)
            return resolver

        factory = ShardClientFactory(Config(shard_client="postgres"))
        barrier = threading.Barrier(8)
        seen = []
        lock = threading.Lock()

        def get_resolver():
            barrier.wait()
            r = factory.resolver
            with lock:
                seen.append(r)

        with patch.object(ShardClientFactory, "create_resolver", side_effect=slow_create) as create:
            threads = [threading.Thread(target=get_resolver) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            create.assert_called_once()
        self.assertEqual(len(seen), 8)
        self.assertTrue(all(r is resolver for r in seen))

    def test_unknown_kinds(self):
        with self.assertRaises(ConfigError):
            ShardClientFactory(Config(shard_client="moray")).create_client(1)
        with self.assertRaises(ConfigError):
            ShardClientFactory.create_resolver(Config(resolver="consul"))


if __name__ == "__main__":
    unittest.main()
