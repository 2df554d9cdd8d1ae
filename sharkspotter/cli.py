import argparse
import logging
import sys
from typing import List, Optional

from .api import run, run_duplicate_detector
from .config import (
    FILTER_DUPLICATES,
    FILTER_NUM_COPIES,
    FILTER_TYPES,
    Config,
    validate_config,
)
from .config_loader import load_config_from_json
from .errors import ConfigError, SharkspotterError
from .log import init_logger
from .output import ObjectFileWriter

logger = logging.getLogger("SharkspotterCLI")

# 命令行参数名 -> Config 字段
_ARG_FIELDS = {
    "min_shard": "min_shard",
    "max_shard": "max_shard",
    "domain": "domain",
    "shark": "sharks",
    "chunk_size": "chunk_size",
    "begin": "begin",
    "end": "end",
    "max_threads": "max_threads",
    "filter": "filter_type",
    "num_copies": "num_copies",
    "output_file": "output_file",
    "shard_client": "shard_client",
    "fixture_dir": "fixture_dir",
    "db_path": "db_path",
    "log_level": "log_level",
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sharkspotter",
        description="Find the objects that reference a storage node, or that are "
        "under-replicated or duplicated across metadata shards.",
    )
    ap.add_argument("-m", "--min_shard", type=int, help="Beginning shard number (default: 1)")
    ap.add_argument("-M", "--max_shard", type=int, help="Ending shard number (default: 1)")
    ap.add_argument("-d", "--domain", help="Domain that the shards are in")
    ap.add_argument("-s", "--shark", action="append", help="Find objects that belong to this shark (repeatable)")
    ap.add_argument("-c", "--chunk-size", dest="chunk_size", type=int, help="Number of records to scan per query (default: 100)")
    ap.add_argument("-b", "--begin", type=int, help="Index to begin scanning at (default: 0)")
    ap.add_argument("-e", "--end", type=int, help="Index to stop scanning at, 0 for no limit (default: 0)")
    ap.add_argument("-t", "--max_threads", type=int, help="Maximum number of scanning threads (default: 50)")
    ap.add_argument("-f", "--filter", choices=FILTER_TYPES, help="What to look for (default: shark)")
    ap.add_argument("-n", "--num_copies", type=int, help="Report objects with more than this many copies")
    ap.add_argument("-o", "--output_file", help="Write all objects to this file")
    ap.add_argument("-F", "--full_object", action="store_true", help="Write the full metadata row instead of the object")
    ap.add_argument("--skip_validate_sharks", action="store_true", help="Do not check the sharks against the storage node registry")
    ap.add_argument("--shard-client", dest="shard_client", choices=("postgres", "fixture"), help="How to reach the shards (default: postgres)")
    ap.add_argument("--fixture-dir", dest="fixture_dir", help="Directory holding shard_<n>.json fixtures")
    ap.add_argument("--db-path", dest="db_path", help="Duplicate ledger location (duplicates filter)")
    ap.add_argument("--config", help="JSON config file; command line flags override it")
    ap.add_argument("--log-level", dest="log_level", help="Log level (default: INFO)")
    return ap


def config_from_args(args: argparse.Namespace) -> Config:
    if args.config:
        config = Config.from_namespace(load_config_from_json(args.config))
    else:
        config = Config()

    for arg_name, field_name in _ARG_FIELDS.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            setattr(config, field_name, value)
    if args.full_object:
        config.full_object = True
    if args.skip_validate_sharks:
        config.skip_validate_sharks = True
    if args.num_copies is not None and args.filter is None:
        config.filter_type = FILTER_NUM_COPIES
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except (OSError, ValueError, TypeError, ConfigError) as e:
        print(f"Error parsing args: {e}", file=sys.stderr)
        return 1

    init_logger(config.log_level)

    try:
        if config.filter_type == FILTER_DUPLICATES:
            ledger = run_duplicate_detector(config)
            ledger.close()
            return 0

        if config.filter_type == FILTER_NUM_COPIES and not config.output_file:
            raise ConfigError("num_copies filter requires an output file (-o)")

        validate_config(config)
        writer = ObjectFileWriter.from_config(config)
        try:
            writer.open_shard_files(config.sharks or [], range(config.min_shard, config.max_shard + 1))
            run(config, writer)
        finally:
            writer.close()
    except SharkspotterError as e:
        logger.error(str(e))
        return 1
    except FileExistsError as e:
        logger.error(f"refusing to overwrite existing output: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
