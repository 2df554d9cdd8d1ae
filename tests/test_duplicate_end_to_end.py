import json

import pytest

from sharkspotter import Config, DuplicateLedger, EtagMismatch, InMemoryShardClient, RunFailed
from sharkspotter.api import run_duplicate_detector
from sharkspotter.cli import main


def make_row(i, oid, etag="E1", sharks=("1.stor",), idx=None):
    value = {"objectId": oid, "key": f"/acct/stor/{oid}", "type": "object", "sharks": [{"manta_storage_id": s} for s in sharks]}
    return {"_id": i, "_idx": idx, "_key": value["key"], "_etag": etag, "type": "object", "_value": json.dumps(value)}


def shard_rows():
    return {
        1: [make_row(1, "dup-a"), make_row(2, "uniq-1"), make_row(3, "dup-b")],
        2: [make_row(1, "dup-a"), make_row(2, "uniq-2")],
        3: [make_row(1, "uniq-3"), make_row(2, "dup-a"), make_row(3, "dup-b")],
    }


def dedup_config(**kwargs):
    base = dict(min_shard=1, max_shard=3, filter_type="duplicates", chunk_size=2, begin=1, dup_handler_threads=2)
    base.update(kwargs)
    return Config(**base)


def detect(rows):
    ledger = DuplicateLedger(":memory:")
    run_duplicate_detector(dedup_config(), ledger=ledger, client_factory=lambda shard: InMemoryShardClient(rows[shard], shard))
    return ledger


def test_duplicates_recorded_once_per_id():
    ledger = detect(shard_rows())
    try:
        assert ledger.stub_count() == 5
        dups = {d["id"]: d for d in ledger.duplicates()}
        assert sorted(dups) == ["dup-a", "dup-b"]
        assert dups["dup-a"]["shards"] == [1, 2, 3]
        assert dups["dup-b"]["shards"] == [1, 3]
        assert dups["dup-a"]["object"]["objectId"] == "dup-a"
        for oid in ("uniq-1", "uniq-2", "uniq-3"):
            stub = ledger.load_stubs(oid)[0]
            assert not stub.duplicate
            assert len(stub.shards) == 1
    finally:
        ledger.close()


def test_repeated_runs_agree():
    results = []
    for _ in range(2):
        ledger = detect(shard_rows())
        results.append((ledger.stub_count(), ledger.duplicates()))
        ledger.close()
    assert results[0] == results[1]


def test_etag_mismatch_abandons_merge():
    rows = {
        1: [make_row(1, "obj", etag="E1")],
        2: [make_row(1, "obj", etag="E2")],
        3: [],
    }
    ledger = DuplicateLedger(":memory:")
    try:
        with pytest.raises(RunFailed) as exc_info:
            run_duplicate_detector(
                dedup_config(), ledger=ledger, client_factory=lambda shard: InMemoryShardClient(rows[shard], shard)
            )
        assert [type(e) for e in exc_info.value.errors] == [EtagMismatch]
        assert ledger.duplicate_count() == 0
        stub = ledger.load_stubs("obj")[0]
        assert not stub.duplicate
        assert len(stub.shards) == 1
    finally:
        ledger.close()


def test_row_indexed_by_both_columns_is_not_a_duplicate():
    rows = {
        1: [make_row(1, "only-once", idx=1)],
        2: [make_row(1, "other", idx=1)],
    }
    ledger = DuplicateLedger(":memory:")
    try:
        run_duplicate_detector(
            dedup_config(max_shard=2), ledger=ledger, client_factory=lambda shard: InMemoryShardClient(rows[shard], shard)
        )
        assert ledger.stub_count() == 2
        assert ledger.duplicate_count() == 0
        stub = ledger.load_stubs("only-once")[0]
        assert not stub.duplicate
        assert stub.shards == [1]
    finally:
        ledger.close()


def test_cli_duplicates_mode(tmp_path):
    fixtures = tmp_path / "fixtures"
    fixtures.mkdir()
    for shard, rows in shard_rows().items():
        (fixtures / f"shard_{shard}.json").write_text(json.dumps(rows), encoding="utf-8")
    db_path = tmp_path / "dups.duckdb"

    argv = [
        "-m", "1", "-M", "3", "-f", "duplicates", "-c", "2", "-b", "1",
        "--db-path", str(db_path), "--shard-client", "fixture", "--fixture-dir", str(fixtures),
    ]
    assert main(argv) == 0
    assert main(argv) == 0

    ledger = DuplicateLedger(str(db_path))
    try:
        assert [d["id"] for d in ledger.duplicates()] == ["dup-a", "dup-b"]
    finally:
        ledger.close()


def load_report_script():
    import importlib.util
    import os

    path = os.path.join(os.path.dirname(__file__), "..", "scripts", "report_duplicates.py")
    spec = importlib.util.spec_from_file_location("report_duplicates", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_report_script(tmp_path, capsys):
    db_path = tmp_path / "report.duckdb"
    ledger = DuplicateLedger.from_config(dedup_config(db_path=str(db_path)))
    ledger.insert_stub("obj-1", "/k/1", "E1", 1)
    ledger.insert_stub("obj-2", "/k/2", "E1", 1)
    ledger.mark_duplicate("obj-1", 2)
    ledger.insert_duplicate("obj-1", "/k/1", {"objectId": "obj-1"})
    ledger.close()

    report = load_report_script()
    assert report.main(["--db-path", str(db_path), "--list"]) == 1
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "[duplicates] objects=2 duplicates=1"
    assert json.loads(out[1]) == {"id": "obj-1", "key": "/k/1", "shards": [1, 2]}

    assert report.main(["--db-path", str(tmp_path / "missing.duckdb")]) == 2
