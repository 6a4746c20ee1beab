"""Connection and scan settings for a dump session."""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Any, Mapping

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6379
DEFAULT_FILTER = "*"

# SCAN COUNT hint; also the default ceiling on keys resolved concurrently.
SCAN_COUNT = 100

ENV_PREFIX = "REDIS_DUMPER_"


@dataclass(frozen=True)
class DumpOptions:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db: int = 0
    auth: str | None = None
    filter: str = DEFAULT_FILTER
    count: int = SCAN_COUNT
    # None: at most one batch (``count`` keys) is resolved at a time.
    concurrency: int | None = None

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.db < 0:
            raise ValueError(f"db must be >= 0, got {self.db}")
        if self.count < 1:
            raise ValueError(f"count must be >= 1, got {self.count}")
        if self.concurrency is not None and self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")

    @property
    def max_in_flight(self) -> int:
        return self.concurrency or self.count

    def connection_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for a redis-py connection pool."""
        return {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "password": self.auth,
            "decode_responses": False,
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "DumpOptions":
        """Build options from ``REDIS_DUMPER_*`` variables, then apply overrides.

        Overrides set to None are ignored so argparse results can be passed
        straight through.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, cast in (("host", str), ("port", int), ("db", int), ("auth", str), ("filter", str)):
            raw = env.get(ENV_PREFIX + name.upper())
            if raw:
                values[name] = cast(raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
