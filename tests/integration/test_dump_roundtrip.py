#!/usr/bin/env python3
"""Dump a real redis-server, replay through ``redis-cli --pipe``, compare.

Skipped when redis-server or redis-cli is not installed.
"""
from __future__ import annotations

import asyncio
import contextlib
import os
import pathlib
import subprocess
import sys
import time

import pytest
import redis

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))
from _redis_server import redis_binaries, replay, start_redis

from redis_dumper.config import DumpOptions
from redis_dumper.dump import RedisDumper
from redis_dumper.errors import DumpConnectionError
from redis_dumper.resp import encode_command, parse_commands

ROOT = pathlib.Path(__file__).resolve().parents[2]
BINARIES = redis_binaries()

NAUGHTY_STRINGS = [
    "",
    " ",
    "undefined",
    "null",
    "\\",
    "\r\n",
    "*1\r\n$4\r\nPING\r\n",
    "0xffffffff",
    "-1E+02",
    "Ω≈ç√∫˜µ≤≥÷",
    "田中さんにあげて下さい",
    "👾 🙇 💁 🙅 🙆",
    "<script>alert(123)</script>",
    "'; DROP TABLE users; --",
    "$(touch /tmp/blns.fail)",
    "\x00\x01\x02",
]


@contextlib.contextmanager
def redis_server(password: str | None = None):
    if BINARIES is None:
        pytest.skip("redis-server or redis-cli not found")
    server = start_redis(BINARIES, password=password)
    try:
        yield server
    finally:
        server.stop()


def client_for(server, db: int = 0, password: str | None = None) -> redis.Redis:
    return redis.Redis(host=server.host, port=server.port, db=db, password=password)


def dump_bytes(server, **opts) -> bytes:
    return asyncio.run(RedisDumper(DumpOptions(host=server.host, port=server.port, **opts)).collect())


def test_empty_database():
    with redis_server() as server:
        assert dump_bytes(server) == b""


def test_strings_roundtrip():
    with redis_server() as server:
        r = client_for(server)
        for s in NAUGHTY_STRINGS:
            r.set(s, s)
        data = dump_bytes(server)
        r.flushdb()
        replay(BINARIES, server, data)
        for s in NAUGHTY_STRINGS:
            assert r.get(s) == s.encode()


def test_collections_roundtrip():
    with redis_server() as server:
        r = client_for(server)
        items = [os.urandom(20) for _ in range(100)]
        scores = {os.urandom(20): i for i in range(100)}
        fields = {os.urandom(10): os.urandom(10) for _ in range(100)}
        r.rpush("list", *items)
        r.sadd("set", *items)
        r.zadd("zset", scores)
        r.hset("hash", mapping=fields)
        r.zadd("fractional", {"a": 0.1, "b": -2.5, "c": 1e20})

        expected_zset = r.zrange("zset", 0, -1, withscores=True)
        expected_fractional = r.zrange("fractional", 0, -1, withscores=True)
        data = dump_bytes(server)
        r.flushdb()
        replay(BINARIES, server, data)

        assert r.lrange("list", 0, -1) == items
        assert r.smembers("set") == set(items)
        assert r.zrange("zset", 0, -1, withscores=True) == expected_zset
        assert r.zrange("fractional", 0, -1, withscores=True) == expected_fractional
        assert r.hgetall("hash") == fields


def test_ttl_is_preserved():
    with redis_server() as server:
        r = client_for(server)
        r.set("temp", "v", ex=1000)
        r.rpush("templist", "a", "b")
        r.expire("templist", 500)
        r.set("forever", "v")
        data = dump_bytes(server)
        r.flushdb()
        replay(BINARIES, server, data)
        assert 990 <= r.ttl("temp") <= 1000
        assert 490 <= r.ttl("templist") <= 500
        assert r.ttl("forever") == -1


def test_unsupported_types_are_skipped():
    with redis_server() as server:
        r = client_for(server)
        r.xadd("events", {"f": "v"})
        r.set("k", "v")
        assert dump_bytes(server) == encode_command([b"SET", b"k", b"v"])


def test_filter():
    with redis_server() as server:
        r = client_for(server)
        r.set("my:key", "value")
        r.set("other:key", "value")
        assert dump_bytes(server, filter="my:*") == encode_command([b"SET", b"my:key", b"value"])


def test_db_selection():
    with redis_server() as server:
        client_for(server, db=1).set("in:one", "1")
        client_for(server, db=0).set("in:zero", "0")
        keys = {command[1] for command in parse_commands(dump_bytes(server, db=1))}
        assert keys == {b"in:one"}


def test_many_keys_small_batches():
    with redis_server() as server:
        r = client_for(server)
        pipe = r.pipeline()
        for i in range(1000):
            pipe.set(f"k:{i}", i)
        pipe.execute()
        commands = parse_commands(dump_bytes(server, count=7, concurrency=4))
        assert sorted(c[1] for c in commands) == sorted(f"k:{i}".encode() for i in range(1000))


def test_auth():
    with redis_server(password="s3cret") as server:
        client_for(server, password="s3cret").set("k", "v")
        assert dump_bytes(server, auth="s3cret") == encode_command([b"SET", b"k", b"v"])
        with pytest.raises(DumpConnectionError):
            dump_bytes(server, auth="wrong")


def test_cancel_after_partial_read_releases_connections():
    with redis_server() as server:
        r = client_for(server)
        for i in range(500):
            r.set(f"k:{i}", i)

        async def scenario():
            dumper = RedisDumper(DumpOptions(host=server.host, port=server.port, count=50))
            assert await dumper.pull() is not None
            await dumper.cancel()
            assert await dumper.pull() is None

        asyncio.run(scenario())
        deadline = time.time() + 2
        while len(r.client_list()) > 1 and time.time() < deadline:
            time.sleep(0.05)
        assert len(r.client_list()) == 1


def test_cli_writes_dump_to_stdout():
    with redis_server() as server:
        client_for(server).set("my:key", "value")
        client_for(server).set("other:key", "value")
        out = subprocess.run(
            [sys.executable, "-m", "redis_dumper", "-h", server.host, "-p", str(server.port), "-f", "my:*"],
            capture_output=True,
            check=True,
            cwd=ROOT,
            timeout=30,
        )
        assert out.stdout == encode_command([b"SET", b"my:key", b"value"])


def test_cli_reports_errors_on_stderr():
    with redis_server(password="s3cret") as server:
        out = subprocess.run(
            [sys.executable, "-m", "redis_dumper", "-p", str(server.port), "-a", "wrong"],
            capture_output=True,
            cwd=ROOT,
            timeout=30,
        )
        assert out.returncode == 1
        assert out.stdout == b""
        assert b"Dump failed with an error:" in out.stderr


def main() -> int:
    if BINARIES is None:
        print("SKIP: redis-server or redis-cli not found (install redis-server or build third_party/redis)")
        return 0
    for name, fn in sorted(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
    print("dump round-trip tests passed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
