"""Key records and the commands that recreate them.

Each supported type maps to a fixed run of commands:

    string  SET key value
    list    DEL key, RPUSH key v1 .. vn
    set     DEL key, SADD key m1 .. mn
    zset    DEL key, ZADD key s1 m1 .. sn mn
    hash    DEL key, HMSET key f1 v1 .. fn vn

followed by ``EXPIRE key ttl`` when the key has a TTL. Anything else
produces no commands at all.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from redis_dumper.resp import encode_command


class KeyType(Enum):
    STRING = "string"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    HASH = "hash"
    OTHER = "other"

    @classmethod
    def from_reply(cls, reply: str | bytes) -> "KeyType":
        """Map a TYPE reply to a key type; unknown names become OTHER."""
        if isinstance(reply, bytes):
            reply = reply.decode("utf-8", errors="replace")
        try:
            key_type = cls(reply)
        except ValueError:
            return cls.OTHER
        return key_type


Value = Union[bytes, "list[bytes]"]


@dataclass(frozen=True)
class KeyRecord:
    """A key as read from the store.

    ``value`` is the raw bytes for strings and a flat list otherwise: list
    elements, set members, ``member, score`` pairs for sorted sets (store
    ranking order) and ``field, value`` pairs for hashes. ``ttl`` is the raw
    TTL reply.
    """

    key: bytes
    type: KeyType
    value: Value
    ttl: Any = -1


def parse_ttl(raw: Any) -> int | None:
    """Seconds to re-apply, or None for keys that should not expire."""
    if isinstance(raw, bool) or not isinstance(raw, (int, str, bytes)):
        return None
    try:
        ttl = int(raw)
    except (TypeError, ValueError):
        return None
    if ttl < 0:
        return None
    return ttl


def _set_string(record: KeyRecord) -> list[bytes]:
    return [encode_command([b"SET", record.key, record.value])]


def _rebuild(verb: bytes) -> Callable[[KeyRecord], list[bytes]]:
    def frames(record: KeyRecord) -> list[bytes]:
        return [
            encode_command([b"DEL", record.key]),
            encode_command([verb, record.key, *record.value]),
        ]

    return frames


def _rebuild_zset(record: KeyRecord) -> list[bytes]:
    # ZRANGE gives member, score; ZADD wants score, member.
    args = []
    pairs = iter(record.value)
    for member, score in zip(pairs, pairs):
        args.append(score)
        args.append(member)
    return [
        encode_command([b"DEL", record.key]),
        encode_command([b"ZADD", record.key, *args]),
    ]


_FRAME_BUILDERS: dict[KeyType, Callable[[KeyRecord], list[bytes]]] = {
    KeyType.STRING: _set_string,
    KeyType.LIST: _rebuild(b"RPUSH"),
    KeyType.SET: _rebuild(b"SADD"),
    KeyType.ZSET: _rebuild_zset,
    KeyType.HASH: _rebuild(b"HMSET"),
}

if set(_FRAME_BUILDERS) != set(KeyType) - {KeyType.OTHER}:
    raise RuntimeError("every supported key type needs a frame builder")


def record_frames(record: KeyRecord) -> list[bytes]:
    """Encoded commands for one key, EXPIRE last."""
    build = _FRAME_BUILDERS.get(record.type)
    if build is None:
        return []
    frames = build(record)
    ttl = parse_ttl(record.ttl)
    if ttl is not None:
        frames.append(encode_command([b"EXPIRE", record.key, ttl]))
    return frames


def serialize_record(record: KeyRecord) -> bytes:
    return b"".join(record_frames(record))
