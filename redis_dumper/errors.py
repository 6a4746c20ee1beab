"""Fatal dump failures.

Every error here ends the session: the connection is released and the error
is raised once from ``RedisDumper.pull()``. Unsupported key types and
unparseable TTLs are not errors and never show up here.
"""
from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

# redis-py failures that mean the connection itself is gone, as opposed to a
# command being rejected by the server.
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError)


class DumpError(Exception):
    """Base class for errors that abort a dump."""


class DumpConnectionError(DumpError):
    """The store connection could not be opened, authenticated or kept."""


class ScanError(DumpError):
    def __init__(self, pattern: str, message: str) -> None:
        super().__init__(f"SCAN failed for pattern {pattern!r}: {message}")
        self.pattern = pattern


class ResolutionError(DumpError):
    def __init__(self, key: bytes, message: str) -> None:
        super().__init__(f"failed to read key {key!r}: {message}")
        self.key = key
