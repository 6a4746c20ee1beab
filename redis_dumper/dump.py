"""Streaming dump of a redis keyspace as replayable commands.

``RedisDumper`` is driven entirely by its consumer: every ``pull()`` either
hands back bytes that are already serialized or advances the session by
starting key resolutions, fetching the next SCAN page, or waiting for a
resolution to finish. Nothing runs between pulls except resolutions that were
already started.

Session state is explicit:

    _keys        unresolved keys of the current SCAN page
    _in_flight   resolutions started but not finished
    _exhausted   the scanner has reported its final page

and the stream ends exactly when ``_exhausted`` holds, ``_keys`` is empty and
``_in_flight`` is zero (``finished``).

Output chunks are complete per-key command runs, delivered in the order the
resolutions complete. Keys are therefore not in SCAN order and a consumer must
not expect them to be.

Example:

    async with dump(DumpOptions(port=6380, filter="user:*")) as dumper:
        async for chunk in dumper:
            out.write(chunk)
"""
from __future__ import annotations

import asyncio
from collections import deque
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError

from redis_dumper.config import DumpOptions
from redis_dumper.errors import CONNECTION_ERRORS, DumpConnectionError, ResolutionError
from redis_dumper.records import KeyRecord, KeyType, serialize_record
from redis_dumper.scan import KeyScanner

logger = logging.getLogger(__name__)


async def load_value(client: Any, key: bytes, key_type: KeyType) -> Any:
    """Fetch a key's value in the flat shape ``KeyRecord`` expects."""
    if key_type is KeyType.STRING:
        return await client.get(key)
    if key_type is KeyType.LIST:
        return await client.lrange(key, 0, -1)
    if key_type is KeyType.SET:
        return list(await client.smembers(key))
    if key_type is KeyType.ZSET:
        # Raw score bytes, so scores replay exactly as the store printed them.
        pairs = await client.zrange(key, 0, -1, withscores=True, score_cast_func=bytes)
        return [item for pair in pairs for item in pair]
    if key_type is KeyType.HASH:
        mapping = await client.hgetall(key)
        return [item for pair in mapping.items() for item in pair]
    raise ValueError(f"no value loader for type {key_type.value!r}")


async def _value_and_ttl(client: Any, key: bytes, key_type: KeyType) -> list[Any]:
    value_task = asyncio.ensure_future(load_value(client, key, key_type))
    ttl_task = asyncio.ensure_future(client.ttl(key))
    try:
        return await asyncio.gather(value_task, ttl_task)
    except BaseException:
        # gather leaves the sibling running when one side fails.
        for task in (value_task, ttl_task):
            task.cancel()
        await asyncio.gather(value_task, ttl_task, return_exceptions=True)
        raise


async def resolve_key(client: Any, key: bytes) -> KeyRecord | None:
    """Read type, value and TTL of one key.

    Returns None when the key should be skipped: its type is not supported
    or it disappeared after it was scanned.
    """
    try:
        key_type = KeyType.from_reply(await client.type(key))
        if key_type is KeyType.OTHER:
            logger.debug("Skipping key %r: unsupported type", key)
            return None
        value, ttl = await _value_and_ttl(client, key, key_type)
    except CONNECTION_ERRORS as exc:
        raise DumpConnectionError(f"connection lost while reading {key!r}: {exc}") from exc
    except RedisError as exc:
        raise ResolutionError(key, str(exc)) from exc

    if value is None or (key_type is not KeyType.STRING and not value):
        logger.debug("Skipping key %r: gone before its value was read", key)
        return None
    return KeyRecord(key=key, type=key_type, value=value, ttl=ttl)


class RedisDumper:
    """Pull-based stream of RESP commands recreating a database.

    A client may be passed in for tests or custom connection setups; the
    session takes ownership of it and closes it on teardown. Without one, a
    private blocking connection pool is created on the first pull, sized so
    every in-flight key can fetch its value and TTL in parallel.
    """

    def __init__(self, options: DumpOptions | None = None, *, client: Any = None) -> None:
        self.options = options or DumpOptions()
        self._client = client
        self._pool: aioredis.BlockingConnectionPool | None = None
        self._scanner: KeyScanner | None = None
        self._keys: list[bytes] = []
        self._exhausted = False
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()
        self._ready: deque = deque()
        self._error: BaseException | None = None
        self._progress: asyncio.Event | None = None
        self._closed = False
        self.keys_dumped = 0
        self.keys_skipped = 0
        self.bytes_dumped = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def finished(self) -> bool:
        return self._exhausted and not self._keys and self._in_flight == 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "RedisDumper":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.pull()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self) -> "RedisDumper":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cancel()

    async def pull(self) -> bytes | None:
        """Next chunk of the dump, or None at end of stream.

        Raises the session's fatal error once; the session is closed by then.
        """
        if self._closed:
            return None
        try:
            if self._scanner is None:
                await self._open()
            while not self._closed:
                if self._error is not None:
                    error, self._error = self._error, None
                    raise error
                self._start_resolutions()
                if self._ready:
                    chunk = self._ready.popleft()
                    self.bytes_dumped += len(chunk)
                    return chunk
                if not self._keys and not self._exhausted and self._has_capacity():
                    await self._next_batch()
                    continue
                if self.finished:
                    logger.info(
                        "Dump complete: %d keys, %d skipped, %d bytes",
                        self.keys_dumped, self.keys_skipped, self.bytes_dumped,
                    )
                    await self._close()
                    return None
                self._progress.clear()
                await self._progress.wait()
        except Exception:
            # A cancel() that raced this pull already ended the stream.
            if self._closed:
                return None
            await self._close()
            raise
        return None

    async def collect(self) -> bytes:
        """Drain the whole dump into memory."""
        return b"".join([chunk async for chunk in self])

    async def cancel(self) -> None:
        """Abandon the dump and release the connection. Safe to repeat."""
        if self._closed:
            return
        logger.info("Dump cancelled after %d keys", self.keys_dumped)
        await self._close()

    aclose = cancel

    async def _open(self) -> None:
        self._progress = asyncio.Event()
        if self._client is None:
            self._pool = aioredis.BlockingConnectionPool(
                max_connections=2 * self.options.max_in_flight + 1,
                timeout=None,
                retry=Retry(NoBackoff(), 0),
                **self.options.connection_kwargs(),
            )
            self._client = aioredis.Redis(connection_pool=self._pool, retry=Retry(NoBackoff(), 0))
        try:
            await self._client.ping()
        except RedisError as exc:
            raise DumpConnectionError(
                f"cannot connect to {self.options.host}:{self.options.port} db {self.options.db}: {exc}"
            ) from exc
        logger.info(
            "Connected to %s:%d db %d, filter %r",
            self.options.host, self.options.port, self.options.db, self.options.filter,
        )
        self._scanner = KeyScanner(self._client, self.options.filter, self.options.count)

    async def _next_batch(self) -> None:
        batch = await self._scanner.next_batch()
        if batch is None:
            self._exhausted = True
        else:
            self._keys = batch

    def _has_capacity(self) -> bool:
        return self._in_flight < self.options.max_in_flight

    def _start_resolutions(self) -> None:
        while self._keys and self._has_capacity():
            key = self._keys.pop()
            self._in_flight += 1
            task = asyncio.ensure_future(self._dump_key(key))
            self._tasks.add(task)
            task.add_done_callback(self._on_resolved)

    async def _dump_key(self, key: bytes) -> bytes:
        record = await resolve_key(self._client, key)
        if record is None:
            return b""
        return serialize_record(record)

    def _on_resolved(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._in_flight -= 1
        self._progress.set()
        if task.cancelled():
            return
        exc = task.exception()
        if self._closed:
            return
        if exc is not None:
            if self._error is None:
                self._error = exc
            return
        chunk = task.result()
        if chunk:
            self._ready.append(chunk)
            self.keys_dumped += 1
        else:
            self.keys_skipped += 1

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._keys = []
        self._ready.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._progress is not None:
            self._progress.set()
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        logger.info("Connection to %s:%d closed", self.options.host, self.options.port)


def dump(options: DumpOptions | None = None, **kwargs: Any) -> RedisDumper:
    """Create a dump session; keyword arguments build ``DumpOptions``."""
    if options is None:
        options = DumpOptions(**kwargs)
    elif kwargs:
        raise TypeError("pass either options or keyword arguments, not both")
    return RedisDumper(options)
