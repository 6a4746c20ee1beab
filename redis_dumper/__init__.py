"""Dump a redis database as a stream of replayable redis commands."""

__version__ = "0.1.0"

from redis_dumper.config import DumpOptions
from redis_dumper.dump import RedisDumper, dump, resolve_key
from redis_dumper.errors import DumpConnectionError, DumpError, ResolutionError, ScanError
from redis_dumper.records import KeyRecord, KeyType, parse_ttl, serialize_record
from redis_dumper.resp import encode_command, parse_commands
from redis_dumper.scan import KeyScanner

__all__ = [
    "DumpConnectionError",
    "DumpError",
    "DumpOptions",
    "KeyRecord",
    "KeyScanner",
    "KeyType",
    "RedisDumper",
    "ResolutionError",
    "ScanError",
    "dump",
    "encode_command",
    "parse_commands",
    "parse_ttl",
    "resolve_key",
    "serialize_record",
]
