#!/usr/bin/env python3
"""Summarise a duplicate ledger written by `sharkspotter -f duplicates`.

Usage:
  python scripts/report_duplicates.py [--db-path sharkspotter.duckdb] [--list]

Prints how many objects were seen and how many were found on more than one
shard. With --list, also prints one JSON line per duplicate (id, key, shards).
Exits with status 1 when duplicates exist so it can gate automation.
"""
import argparse
import json
import os
import sys

from sharkspotter.dedup.ledger import DuplicateLedger


def main(argv=None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument('--db-path', default='sharkspotter.duckdb')
    ap.add_argument('--list', action='store_true', help='Print every duplicate as a JSON line')
    args = ap.parse_args(argv)

    if not os.path.exists(args.db_path):
        print(f'[duplicates] ledger {args.db_path} not found', file=sys.stderr)
        return 2

    ledger = DuplicateLedger(args.db_path)
    try:
        stubs = ledger.stub_count()
        duplicates = ledger.duplicates()
    finally:
        ledger.close()

    print(f'[duplicates] objects={stubs} duplicates={len(duplicates)}')
    if args.list:
        for d in duplicates:
            print(json.dumps({'id': d['id'], 'key': d['key'], 'shards': d['shards']}))
    return 1 if duplicates else 0


if __name__ == '__main__':
    sys.exit(main())
