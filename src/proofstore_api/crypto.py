from __future__ import annotations
import hashlib

DIGEST_SIZE = 32


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash_item(item: str) -> bytes:
    """Leaf digest of a single item (UTF-8 bytes, no prefix)."""
    return sha256(item.encode("utf-8"))


def hash_pair(left: bytes, right: bytes) -> bytes:
    """Internal node digest: sha256(left || right). Operand order matters."""
    return sha256(left + right)


def to_hex(digest: bytes) -> str:
    return digest.hex()
