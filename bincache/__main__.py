#!/usr/bin/env python3
"""
Command line access to an S3 binary cache.

Usage:
    python -m bincache s3://my-cache ls
    python -m bincache s3://my-cache get nix-cache-info
    python -m bincache "s3://my-cache?narinfo-compression=xz" put abc.narinfo ./abc.narinfo
    python -m bincache s3://my-cache exists log/abc-hello.drv

    # Settings from the environment instead of the URI
    BINCACHE_BUCKET=my-cache python -m bincache env ls
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from bincache import __version__
from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.core.errors import CacheStoreError
from bincache.observability.logging import LogLevel, StructuredLogger, setup_logging
from bincache.observability.metrics import MetricsCollector
from bincache.storage.binary_cache import S3BinaryCacheStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bincache",
        description="S3 binary cache transport",
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "store",
        help="store URI (s3://bucket?setting=value...) or 'env' for BINCACHE_* variables",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    parser.add_argument("--json", action="store_true", help="JSON log output")
    parser.add_argument(
        "--aws-debug",
        action="store_true",
        help="keep botocore logging at the configured level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("ls", help="list every store path with a .narinfo")

    get_parser = subparsers.add_parser("get", help="download a file")
    get_parser.add_argument("path", help="file path inside the cache")
    get_parser.add_argument("--output", "-o", type=Path, help="write to file instead of stdout")

    put_parser = subparsers.add_parser("put", help="upload a file")
    put_parser.add_argument("path", help="file path inside the cache")
    put_parser.add_argument("source", type=Path, help="local file to upload")
    put_parser.add_argument("--mime-type", default=C.DEFAULT_MIME_TYPE)

    exists_parser = subparsers.add_parser("exists", help="check whether a file exists")
    exists_parser.add_argument("path", help="file path inside the cache")

    stats_parser = subparsers.add_parser("stats", help="print operation counters after init")
    stats_parser.add_argument(
        "--prometheus",
        action="store_true",
        help="also print process metrics in Prometheus text format",
    )

    return parser


def _load_config(store: str) -> S3StoreConfig:
    if store == "env":
        return S3StoreConfig.from_env()
    return S3StoreConfig.from_uri(store)


def _run(store: S3BinaryCacheStore, args: argparse.Namespace) -> int:
    if args.command == "ls":
        for path in sorted(store.query_all_valid_paths()):
            print(path.hash_part)
        return 0

    if args.command == "get":
        if args.output is None:
            store.get_file(args.path, sys.stdout.buffer.write)
            sys.stdout.buffer.flush()
        else:
            with args.output.open("wb") as out:
                store.get_file(args.path, out.write)
        return 0

    if args.command == "put":
        with args.source.open("rb") as source:
            stats = store.upsert_file(args.path, source, args.mime_type)
        print(f"{stats.bytes} bytes in {stats.duration_ms} ms")
        return 0

    if args.command == "exists":
        found = store.file_exists(args.path)
        print("yes" if found else "no")
        return 0 if found else 1

    if args.command == "stats":
        store.init()
        print(f"want-mass-query: {store.want_mass_query}")
        print(f"priority: {store.priority}")
        for name, value in store.stats.snapshot().items():
            print(f"{name}: {value}")
        if args.prometheus:
            print(MetricsCollector.get_instance().export_prometheus())
        return 0

    return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    setup_logging(
        LogLevel.DEBUG if args.verbose else LogLevel.WARNING,
        json_output=args.json,
        aws_debug=args.aws_debug,
    )

    try:
        config = _load_config(args.store)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        with StructuredLogger.context(bucket=config.bucket_name, command=args.command):
            with S3BinaryCacheStore(config) as store:
                return _run(store, args)
    except CacheStoreError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
