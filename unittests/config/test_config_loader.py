import json
import os
import tempfile
import unittest

from sharkspotter.config import MAX_THREADS, Config, fix_shark_domains, validate_config
from sharkspotter.config_loader import dict_to_namespace, load_config_from_json, namespace_to_dict
from sharkspotter.errors import ConfigError


class ConfigLoaderTests(unittest.TestCase):
    def test_load_config_from_json(self):
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "config.json")
            data = {"sharkspotter": {"min_shard": 2, "max_shard": 4, "sharks": ["1.stor"]}, "other": 3}
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            ns = load_config_from_json(path)
            self.assertEqual(ns.other, 3)
            self.assertEqual(ns.sharkspotter.max_shard, 4)

            config = Config.from_namespace(ns)
            self.assertEqual((config.min_shard, config.max_shard), (2, 4))
            self.assertEqual(config.sharks, ["1.stor"])
            self.assertEqual(config.chunk_size, 100)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config_from_json("/nonexistent/sharkspotter.json")

    def test_unknown_keys_ignored(self):
        ns = dict_to_namespace({"chunk_size": 5, "moray_port": 2021})
        with self.assertLogs("SharkspotterConfig", level="WARNING"):
            config = Config.from_namespace(ns)
        self.assertEqual(config.chunk_size, 5)

    def test_dict_to_namespace_nested(self):
        d = {"a": 1, "b": {"c": 2, "d": [{"x": 10}, 5]}}
        ns = dict_to_namespace(d)
        self.assertEqual(ns.b.d[0].x, 10)
        self.assertEqual(namespace_to_dict(ns), d)


class ValidateConfigTests(unittest.TestCase):
    def test_thread_ceiling_clamped(self):
        config = Config(sharks=["1.stor"], max_threads=MAX_THREADS * 5)
        with self.assertLogs("SharkspotterConfig", level="WARNING"):
            validate_config(config)
        self.assertEqual(config.max_threads, MAX_THREADS)

    def test_invalid_configs(self):
        bad = [
            Config(sharks=["1.stor"], min_shard=5, max_shard=1),
            Config(sharks=["1.stor"], chunk_size=0),
            Config(sharks=["1.stor"], begin=10, end=5),
            Config(filter_type="shark", sharks=[]),
            Config(filter_type="num_copies"),
            Config(filter_type="bogus"),
            Config(filter_type="duplicates", db_name="", db_path=None),
        ]
        for config in bad:
            with self.assertRaises(ConfigError):
                validate_config(config)

    def test_end_zero_is_unbounded(self):
        config = validate_config(Config(sharks=["1.stor"], begin=10, end=0))
        self.assertIsNone(config.end_limit)
        self.assertEqual(Config(end=20).end_limit, 20)

    def test_ledger_path(self):
        self.assertEqual(Config(db_name="dups").ledger_path, "dups.duckdb")
        self.assertEqual(Config(db_path="/tmp/x.db").ledger_path, "/tmp/x.db")


class FixSharkDomainsTests(unittest.TestCase):
    def test_appends_missing_domain(self):
        with self.assertLogs("SharkspotterConfig", level="WARNING"):
            fixed = fix_shark_domains(["1.stor", "2.stor.east.example.com"], "east.example.com")
        self.assertEqual(fixed, ["1.stor.east.example.com", "2.stor.east.example.com"])

    def test_empty_domain(self):
        self.assertEqual(fix_shark_domains(["1.stor"], ""), ["1.stor"])


if __name__ == "__main__":
    unittest.main()
