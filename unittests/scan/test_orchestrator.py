import json
import threading
import unittest

from sharkspotter.config import MAX_THREADS, Config
from sharkspotter.errors import ChannelDisconnected, ScanError, ShardQueryError
from sharkspotter.scan.channel import ScanChannel
from sharkspotter.scan.filter import ByLocation
from sharkspotter.scan.orchestrator import ScanOrchestrator
from sharkspotter.scan.sink import ChannelSink, MatchSink
from sharkspotter.shard.memory_client import InMemoryShardClient
from sharkspotter.stats import ScanStats


def make_row(i, shark="1.stor", shard=1):
    oid = f"obj-{shard}-{i}"
    value = {"objectId": oid, "key": f"/k/{oid}", "type": "object", "sharks": [{"manta_storage_id": shark}]}
    return {"_id": i, "_idx": None, "_key": value["key"], "_etag": "E", "type": "object", "_value": json.dumps(value)}


class BrokenShardClient(InMemoryShardClient):
    def execute_range_query(self, table, column, start, end, limit):
        raise ShardQueryError("connection reset")


class CollectingSink(MatchSink):
    def __init__(self):
        self.matches = []
        self.errors = []
        self.closed = False
        self._lock = threading.Lock()

    def on_match(self, match):
        with self._lock:
            self.matches.append(match)

    def on_error(self, error):
        self.errors.append(error)

    def close(self):
        self.closed = True


class ScanOrchestratorTests(unittest.TestCase):
    def config(self, **kwargs):
        base = dict(min_shard=1, max_shard=3, sharks=["1.stor"], chunk_size=2, begin=1)
        base.update(kwargs)
        return Config(**base)

    def test_worker_failure_isolated(self):
        def factory(shard):
            rows = [make_row(i, shard=shard) for i in range(1, 6)]
            if shard == 2:
                return BrokenShardClient(rows, shard)
            return InMemoryShardClient(rows, shard)

        sink = CollectingSink()
        stats = ScanStats()
        with self.assertLogs("ScanOrchestrator", level="ERROR"):
            errors = ScanOrchestrator(self.config(), factory, ByLocation.of(["1.stor"]), sink, stats=stats).run()

        self.assertTrue(sink.closed)
        self.assertEqual(sorted({m.shard for m in sink.matches}), [1, 3])
        self.assertEqual(len(sink.matches), 10)
        reported = list(errors)
        self.assertEqual(len(reported), 1)
        self.assertIsInstance(reported[0], ScanError)
        self.assertEqual((reported[0].shard, reported[0].column), (2, "_id"))
        self.assertEqual(stats.get("workers_failed"), 1)
        self.assertEqual(stats.get("workers_started"), 6)

    def test_client_creation_failure_reported(self):
        def factory(shard):
            if shard == 3:
                raise ShardQueryError("no route to shard 3")
            return InMemoryShardClient([make_row(1, shard=shard)], shard)

        with self.assertLogs("ScanOrchestrator", level="ERROR"):
            errors = ScanOrchestrator(self.config(), factory, ByLocation.of(["1.stor"]), CollectingSink()).run()
        self.assertEqual(sorted((e.shard, e.column) for e in errors), [(3, "_id"), (3, "_idx")])

    def test_malformed_rows_skipped(self):
        rows = [make_row(1), {"_id": 2, "_idx": None, "_etag": "E", "type": "object", "_value": "{bad"}, make_row(3)]
        sink = CollectingSink()
        stats = ScanStats()
        errors = ScanOrchestrator(
            self.config(max_shard=1),
            lambda shard: InMemoryShardClient(rows, shard),
            ByLocation.of(["1.stor"]),
            sink,
            stats=stats,
        ).run()
        self.assertEqual(len(errors), 0)
        self.assertEqual(len(sink.matches), 2)
        self.assertEqual(len(sink.errors), 1)
        self.assertEqual(stats.get("rows_skipped"), 1)

    def test_disconnection_suppressed(self):
        channel = ScanChannel(capacity=1, poll_interval=0.01)
        rows = [make_row(i) for i in range(1, 200)]
        orchestrator = ScanOrchestrator(
            self.config(chunk_size=10),
            lambda shard: InMemoryShardClient(rows, shard),
            ByLocation.of(["1.stor"]),
            ChannelSink(channel),
        )
        result = {}
        t = threading.Thread(target=lambda: result.setdefault("errors", orchestrator.run()))
        t.start()
        channel.recv(timeout=5)
        channel.close_receiver()
        t.join(timeout=10)
        self.assertFalse(t.is_alive())

        errors = result["errors"]
        self.assertEqual(len(errors), 0)
        self.assertFalse(errors)
        self.assertTrue(any(isinstance(e, ChannelDisconnected) for e in errors.all()))
        errors.raise_if_errors()

    def test_thread_count_capped(self):
        orchestrator = ScanOrchestrator(
            self.config(max_threads=MAX_THREADS * 10), lambda s: InMemoryShardClient([], s), ByLocation.of(["x"]), CollectingSink()
        )
        self.assertEqual(orchestrator.max_workers, MAX_THREADS)


if __name__ == "__main__":
    unittest.main()
