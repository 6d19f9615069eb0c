from __future__ import annotations
from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Stable codes carried in ERROR frames (u16 on the wire)."""

    INTERNAL = 1
    CONNECTION_CLOSED = 2
    FRAMING = 3
    PARSE = 4
    INDEX_OUT_OF_RANGE = 5
    PROTOCOL = 6
    PROOF_VERIFICATION = 7
    ROOT_MISMATCH = 8


class ProofStoreError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class ConnectionClosed(ProofStoreError, OSError):
    """Peer closed the stream or a read/write on it failed."""

    code = ErrorCode.CONNECTION_CLOSED


class FramingError(ProofStoreError):
    """Declared frame length disagrees with what could be read, or is out of bounds."""

    code = ErrorCode.FRAMING


class ParseError(ProofStoreError, ValueError):
    """Frame body could not be decoded (bad index encoding, invalid UTF-8, ...)."""

    code = ErrorCode.PARSE


class IndexOutOfRange(ProofStoreError, IndexError):
    code = ErrorCode.INDEX_OUT_OF_RANGE

    def __init__(self, index: int, leaf_count: int, message: Optional[str] = None):
        super().__init__(
            message or f"leaf index {index} out of range for {leaf_count} leaves"
        )
        self.index = index
        self.leaf_count = leaf_count


class ProtocolError(ProofStoreError):
    """Unexpected message for the current session state, or unknown tag."""

    code = ErrorCode.PROTOCOL


class ProofVerificationFailure(ProofStoreError):
    """An audit proof did not reproduce the committed root.

    Treated as evidence of tampering: the session that raised it is aborted.
    """

    code = ErrorCode.PROOF_VERIFICATION

    def __init__(self, message: str, root: Optional[bytes] = None):
        super().__init__(message)
        self.root = root


class RootMismatchFailure(ProofStoreError):
    """The root recomputed locally after an update differs from the server's."""

    code = ErrorCode.ROOT_MISMATCH

    def __init__(self, message: str, declared_root: bytes, computed_root: bytes):
        super().__init__(message)
        self.declared_root = declared_root
        self.computed_root = computed_root


class RemoteError(ProofStoreError):
    """The peer answered with an ERROR frame."""

    @classmethod
    def from_frame(cls, code: int, message: str) -> ProofStoreError:
        if code == ErrorCode.INDEX_OUT_OF_RANGE:
            # message carries "index leaf_count" ahead of the human text
            head, _, text = message.partition(":")
            parts = head.split()
            if len(parts) == 2 and all(p.isdigit() for p in parts):
                return IndexOutOfRange(int(parts[0]), int(parts[1]), text.strip() or None)
        try:
            err_code = ErrorCode(code)
        except ValueError:
            err_code = ErrorCode.INTERNAL
        return cls(f"remote error {code}: {message}", err_code)
