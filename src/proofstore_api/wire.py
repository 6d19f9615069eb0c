from __future__ import annotations
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, List, Optional, Sequence, Tuple

from .crypto import DIGEST_SIZE
from .errors import (
    ConnectionClosed,
    ErrorCode,
    FramingError,
    ParseError,
    ProtocolError,
    RemoteError,
)
from .pipeline import decode_text
from .settings import settings

"""Length-prefixed, tagged frames.

    frame   = u32 BE length || payload      (length counts the payload)
    payload = u8 tag || body

Index bodies are u64 BE integers; digest bodies are 32 raw bytes; text
bodies are UTF-8; ERROR bodies are u16 BE code || UTF-8 message.
"""

logger = logging.getLogger(__name__)

HEADER = struct.Struct(">I")
INDEX = struct.Struct(">Q")
ERROR_CODE = struct.Struct(">H")


class Tag(IntEnum):
    DATA = 0x01
    ROOT = 0x02
    INDICES = 0x03
    LEAF = 0x04
    PROOF = 0x05
    UPDATE_INDEX = 0x06
    NEW_VALUE = 0x07
    ERROR = 0x7F


@dataclass(frozen=True)
class Frame:
    tag: Tag
    body: bytes


def encode_frame(tag: Tag, body: bytes = b"") -> bytes:
    payload = bytes([int(tag)]) + body
    return HEADER.pack(len(payload)) + payload


# ---- body codecs ---------------------------------------------------------


def encode_text(text: str) -> bytes:
    return text.encode("utf-8")


def encode_indices(indices: Sequence[int]) -> bytes:
    if not indices:
        raise ValueError("at least one index is required")
    try:
        return b"".join(INDEX.pack(i) for i in indices)
    except struct.error as e:
        raise ValueError(f"index does not fit in u64: {e}") from e


def decode_indices(body: bytes) -> List[int]:
    if not body or len(body) % INDEX.size != 0:
        raise ParseError(
            f"index body of {len(body)} bytes is not a positive multiple of {INDEX.size}"
        )
    return [v for (v,) in INDEX.iter_unpack(body)]


def decode_index(body: bytes) -> int:
    if len(body) != INDEX.size:
        raise ParseError(f"expected a single {INDEX.size}-byte index, got {len(body)} bytes")
    return INDEX.unpack(body)[0]


def decode_digest(body: bytes) -> bytes:
    if len(body) != DIGEST_SIZE:
        raise FramingError(f"digest frame carries {len(body)} bytes, expected {DIGEST_SIZE}")
    return body


def encode_error(code: ErrorCode, message: str) -> bytes:
    return ERROR_CODE.pack(int(code)) + message.encode("utf-8")


def decode_error(body: bytes) -> Tuple[int, str]:
    if len(body) < ERROR_CODE.size:
        raise FramingError("truncated error frame")
    (code,) = ERROR_CODE.unpack_from(body)
    return code, body[ERROR_CODE.size :].decode("utf-8", errors="replace")


# ---- stream I/O ----------------------------------------------------------


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = stream.read(n - len(buf))
        except OSError as e:
            raise ConnectionClosed(f"read failed: {e}") from e
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


class FrameReader:
    """Blocking reader of whole frames from a binary stream."""

    def __init__(self, stream: BinaryIO, max_frame_bytes: Optional[int] = None):
        self.stream = stream
        self.max_frame_bytes = max_frame_bytes or settings.max_frame_bytes

    def read_frame(self) -> Frame:
        header = _read_exact(self.stream, HEADER.size)
        if not header:
            raise ConnectionClosed("connection closed by peer")
        if len(header) < HEADER.size:
            raise FramingError(f"truncated frame header ({len(header)} of {HEADER.size} bytes)")
        (length,) = HEADER.unpack(header)
        if length == 0:
            raise FramingError("empty frame (missing tag)")
        if length > self.max_frame_bytes:
            raise FramingError(
                f"declared frame length {length} exceeds limit {self.max_frame_bytes}"
            )
        payload = _read_exact(self.stream, length)
        if len(payload) != length:
            raise FramingError(
                f"declared frame length {length} but only {len(payload)} bytes readable"
            )
        try:
            tag = Tag(payload[0])
        except ValueError:
            raise ProtocolError(f"unknown message tag 0x{payload[0]:02x}") from None
        logger.debug("recv %s (%d bytes)", tag.name, length - 1)
        return Frame(tag, payload[1:])

    def expect(self, *tags: Tag) -> Frame:
        """Read one frame of the given tag(s); ERROR frames raise their error."""
        frame = self.read_frame()
        if frame.tag is Tag.ERROR and Tag.ERROR not in tags:
            code, message = decode_error(frame.body)
            raise RemoteError.from_frame(code, message)
        if frame.tag not in tags:
            expected = "/".join(t.name for t in tags)
            raise ProtocolError(f"expected {expected}, got {frame.tag.name}")
        return frame

    def read_digest(self, tag: Tag) -> bytes:
        return decode_digest(self.expect(tag).body)

    def read_text(self, tag: Tag) -> str:
        return decode_text(self.expect(tag).body)


class FrameWriter:
    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def write_frame(self, tag: Tag, body: bytes = b"") -> None:
        try:
            self.stream.write(encode_frame(tag, body))
            self.stream.flush()
        except OSError as e:
            raise ConnectionClosed(f"write failed: {e}") from e
        logger.debug("sent %s (%d bytes)", tag.name, len(body))

    def write_text(self, tag: Tag, text: str) -> None:
        self.write_frame(tag, encode_text(text))

    def write_indices(self, tag: Tag, indices: Sequence[int]) -> None:
        self.write_frame(tag, encode_indices(indices))

    def write_error(self, code: ErrorCode, message: str) -> None:
        self.write_frame(Tag.ERROR, encode_error(code, message))
