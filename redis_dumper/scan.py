"""Cursor-driven key enumeration.

``KeyScanner`` issues one ``SCAN cursor MATCH pattern COUNT n`` per
``next_batch()`` call and never reads ahead, so the caller decides when the
next page is fetched. A page may be empty while the scan is still running;
only the cursor coming back to 0 ends it.
"""
from __future__ import annotations

import logging
from typing import Any

from redis.exceptions import RedisError

from redis_dumper.config import DEFAULT_FILTER, SCAN_COUNT
from redis_dumper.errors import CONNECTION_ERRORS, DumpConnectionError, ScanError

logger = logging.getLogger(__name__)

START_CURSOR = 0


class KeyScanner:
    def __init__(self, client: Any, pattern: str = DEFAULT_FILTER, count: int = SCAN_COUNT) -> None:
        self._client = client
        self.pattern = pattern
        self.count = count
        self._cursor = START_CURSOR
        self.exhausted = False
        self.pages = 0

    async def next_batch(self) -> list[bytes] | None:
        """Return the next page of keys, or None once the scan has finished."""
        if self.exhausted:
            return None
        try:
            cursor, keys = await self._client.scan(
                cursor=self._cursor, match=self.pattern, count=self.count
            )
        except CONNECTION_ERRORS as exc:
            raise DumpConnectionError(f"connection lost during SCAN: {exc}") from exc
        except RedisError as exc:
            raise ScanError(self.pattern, str(exc)) from exc

        self._cursor = int(cursor)
        self.pages += 1
        if self._cursor == START_CURSOR:
            self.exhausted = True
        logger.debug("SCAN page %d: %d keys, next cursor %d", self.pages, len(keys), self._cursor)
        return list(keys)
