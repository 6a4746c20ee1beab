"""redis-dumper -- Write a redis database to stdout as replayable commands.

The output is a plain list of RESP commands, so the following round-trips a
database:

    redis-dumper > dump.db        # dump
    redis-cli --pipe < dump.db    # import

Diagnostics and errors go to stderr only; stdout carries nothing but the
dump.

Exit codes
    0     Dump written.
    1     Connection, scan or key read failure (message on stderr).
    2     Invalid option.
    130   Interrupted.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import BinaryIO, Sequence

from redis_dumper import __version__
from redis_dumper.config import DEFAULT_FILTER, DEFAULT_HOST, DEFAULT_PORT, SCAN_COUNT, DumpOptions
from redis_dumper.dump import RedisDumper
from redis_dumper.errors import DumpError

logger = logging.getLogger(__name__)

EPILOG = """\
examples:
  redis-dumper
  redis-dumper -p 6500
  redis-dumper -f 'mydb:*' > mydb.dump.db

The output is a valid list of redis commands.
That means the following will work:
  redis-dumper > dump.db      # Dump redis database
  redis-cli --pipe < dump.db  # Import redis database from generated file
"""


def build_parser() -> argparse.ArgumentParser:
    # -h is the host flag, so help is only available as --help.
    ap = argparse.ArgumentParser(
        prog="redis-dumper",
        description=f"redis-dumper {__version__}: dump a redis database as redis commands",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    ap.add_argument("-h", dest="host", metavar="HOST", help=f"server hostname (default: {DEFAULT_HOST})")
    ap.add_argument("-p", dest="port", metavar="PORT", type=int, help=f"server port (default: {DEFAULT_PORT})")
    ap.add_argument("-d", dest="db", metavar="DB", type=int, help="database number (default: 0)")
    ap.add_argument("-a", dest="auth", metavar="AUTH", help="password")
    ap.add_argument("-f", dest="filter", metavar="FILTER", help=f"key filter (default: {DEFAULT_FILTER})")
    ap.add_argument("--count", type=int, help=f"SCAN COUNT hint per batch (default: {SCAN_COUNT})")
    ap.add_argument("--concurrency", type=int, help="max keys read at once (default: the batch size)")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="log progress to stderr (-vv for debug)")
    ap.add_argument("--help", action="help", help="output this help and exit")
    return ap


def options_from_args(args: argparse.Namespace) -> DumpOptions:
    return DumpOptions.from_env(
        host=args.host,
        port=args.port,
        db=args.db,
        auth=args.auth,
        filter=args.filter,
        count=args.count,
        concurrency=args.concurrency,
    )


def setup_logging(verbosity: int = 0) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"))
    root.addHandler(handler)


async def write_dump(dumper: RedisDumper, out: BinaryIO) -> int:
    """Copy the dump into ``out``; the session is released however this ends."""
    written = 0
    try:
        async for chunk in dumper:
            out.write(chunk)
            written += len(chunk)
        out.flush()
    finally:
        await dumper.cancel()
    return written


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        options = options_from_args(args)
    except ValueError as exc:
        print(f"invalid option: {exc}", file=sys.stderr)
        return 2

    try:
        written = asyncio.run(write_dump(RedisDumper(options), sys.stdout.buffer))
    except DumpError as exc:
        print("Dump failed with an error:", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except BrokenPipeError:
        print("Dump aborted: output closed", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    logger.info("Wrote %d bytes", written)
    return 0
