"""Wire codec - big-endian primitives over asyncio streams.

Encodings match Java's ``DataInputStream``/``DataOutputStream``:

  int32 / int64   big-endian, signed
  bool            1 byte, nonzero is true
  utf             uint16 byte length + modified UTF-8
  bytes           int32 length + raw bytes

Any read that cannot be completed raises ``ERR_TRUNCATED_STREAM`` or
``ERR_MALFORMED_STREAM``; a flush to a closed peer raises
``ERR_STREAM_CLOSED``. The codec never resynchronizes; callers end the
connection instead.
"""

from __future__ import annotations

import asyncio
import struct
from typing import Protocol

from android_app_bridge.errors import (
    malformed_stream_error,
    stream_closed_error,
    truncated_stream_error,
)

_INT32 = struct.Struct(">i")
_INT64 = struct.Struct(">q")
_UINT16 = struct.Struct(">H")

MAX_UTF_LENGTH = 0xFFFF
# Upper bound for length-prefixed byte blocks (checksums are a few dozen bytes)
MAX_BLOCK_LENGTH = 16 * 1024 * 1024


class StreamSink(Protocol):
    """The subset of ``asyncio.StreamWriter`` the codec writes through."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


def encode_int(value: int) -> bytes:
    try:
        return _INT32.pack(value)
    except struct.error as exc:
        raise malformed_stream_error(f"int32 out of range: {value}") from exc


def encode_long(value: int) -> bytes:
    try:
        return _INT64.pack(value)
    except struct.error as exc:
        raise malformed_stream_error(f"int64 out of range: {value}") from exc


def encode_bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def encode_modified_utf8(text: str) -> bytes:
    """Encode text the way ``DataOutputStream.writeUTF`` does, without the prefix."""
    out = bytearray()
    units = text.encode("utf-16-be", "surrogatepass")
    for i in range(0, len(units), 2):
        unit = (units[i] << 8) | units[i + 1]
        if 0x0001 <= unit <= 0x007F:
            out.append(unit)
        elif unit <= 0x07FF:
            out.append(0xC0 | (unit >> 6))
            out.append(0x80 | (unit & 0x3F))
        else:
            out.append(0xE0 | (unit >> 12))
            out.append(0x80 | ((unit >> 6) & 0x3F))
            out.append(0x80 | (unit & 0x3F))
    return bytes(out)


def decode_modified_utf8(data: bytes) -> str:
    """Decode modified UTF-8 produced by ``writeUTF``."""
    # 0xC0 never appears in standard UTF-8, so this only touches encoded NULs
    normalized = data.replace(b"\xc0\x80", b"\x00")
    try:
        decoded = normalized.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError as exc:
        raise malformed_stream_error(f"invalid modified UTF-8: {exc.reason}") from exc
    # Recombine surrogate pairs that were encoded as two 3-byte sequences
    return decoded.encode("utf-16-be", "surrogatepass").decode("utf-16-be", "surrogatepass")


def encode_utf(text: str) -> bytes:
    body = encode_modified_utf8(text)
    if len(body) > MAX_UTF_LENGTH:
        raise malformed_stream_error(f"encoded string too long: {len(body)} bytes")
    return _UINT16.pack(len(body)) + body


def encode_block(data: bytes) -> bytes:
    return _INT32.pack(len(data)) + data


class WireReader:
    """Reads protocol primitives from an ``asyncio.StreamReader``."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader

    async def read_fully(self, size: int) -> bytes:
        """Read exactly ``size`` bytes or raise ``ERR_TRUNCATED_STREAM``."""
        if size == 0:
            return b""
        try:
            return await self._reader.readexactly(size)
        except asyncio.IncompleteReadError as exc:
            raise truncated_stream_error(size, len(exc.partial)) from exc
        except ConnectionError as exc:
            raise truncated_stream_error(size, 0) from exc

    async def read_int(self) -> int:
        value: int = _INT32.unpack(await self.read_fully(_INT32.size))[0]
        return value

    async def read_long(self) -> int:
        value: int = _INT64.unpack(await self.read_fully(_INT64.size))[0]
        return value

    async def read_bool(self) -> bool:
        return (await self.read_fully(1)) != b"\x00"

    async def read_utf(self) -> str:
        length: int = _UINT16.unpack(await self.read_fully(_UINT16.size))[0]
        return decode_modified_utf8(await self.read_fully(length))

    async def read_block(self) -> bytes:
        length = await self.read_int()
        if length < 0 or length > MAX_BLOCK_LENGTH:
            raise malformed_stream_error(f"invalid block length: {length}")
        return await self.read_fully(length)


class WireWriter:
    """Buffers protocol primitives onto a stream; ``drain`` flushes them."""

    def __init__(self, writer: StreamSink) -> None:
        self._writer = writer

    def write_int(self, value: int) -> None:
        self._writer.write(encode_int(value))

    def write_long(self, value: int) -> None:
        self._writer.write(encode_long(value))

    def write_bool(self, value: bool) -> None:
        self._writer.write(encode_bool(value))

    def write_utf(self, text: str) -> None:
        self._writer.write(encode_utf(text))

    def write_block(self, data: bytes) -> None:
        self._writer.write(encode_block(data))

    async def drain(self) -> None:
        """Flush buffered writes; raises ``ERR_STREAM_CLOSED`` if the peer is gone."""
        try:
            await self._writer.drain()
        except ConnectionError as exc:
            raise stream_closed_error(str(exc) or type(exc).__name__) from exc
