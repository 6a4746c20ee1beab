"""RESP framing for dump output.

``encode_command`` produces one array-of-bulk-strings frame, the only shape a
dump ever contains. ``parse_commands`` reads such frames back from a byte
buffer so a dump can be inspected without a server.
"""
from __future__ import annotations

from dataclasses import dataclass
import io
from typing import BinaryIO


@dataclass
class RespError:
    message: str


def _arg_to_bytes(a: str | bytes | int) -> bytes:
    if isinstance(a, bytes):
        return a
    return str(a).encode("utf-8", errors="surrogatepass")


def encode_command(args: list[str | bytes | int]) -> bytes:
    out = [f"*{len(args)}\r\n".encode()]
    for arg in args:
        b = _arg_to_bytes(arg)
        out.append(f"${len(b)}\r\n".encode())
        out.append(b + b"\r\n")
    return b"".join(out)


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        raise ValueError(f"truncated frame: wanted {n} bytes, got {len(data)}")
    return data


def _read_line(stream: BinaryIO) -> bytes:
    line = stream.readline()
    if not line.endswith(b"\r\n"):
        raise ValueError("truncated frame: missing CRLF")
    return line[:-2]


def read_resp(stream: BinaryIO):
    prefix = _read_exact(stream, 1)
    if prefix == b"+":
        return _read_line(stream).decode()
    if prefix == b"-":
        return RespError(_read_line(stream).decode())
    if prefix == b":":
        return int(_read_line(stream))
    if prefix == b"$":
        n = int(_read_line(stream))
        if n == -1:
            return None
        data = _read_exact(stream, n)
        _read_exact(stream, 2)
        return data
    if prefix == b"*":
        n = int(_read_line(stream))
        if n == -1:
            return None
        return [read_resp(stream) for _ in range(n)]
    raise ValueError(f"Unsupported RESP prefix: {prefix!r}")


def parse_commands(data: bytes) -> list[list[bytes]]:
    """Split a dump into its commands, each a list of raw arguments."""
    stream = io.BytesIO(data)
    commands = []
    while stream.tell() < len(data):
        frame = read_resp(stream)
        if not isinstance(frame, list):
            raise ValueError(f"expected a command array, got {frame!r}")
        commands.append(frame)
    return commands
