from __future__ import annotations
from typing import List

from .crypto import hash_item
from .errors import ParseError

"""Item pipeline for submitted text.

Guardrails:
- Items are whitespace-delimited tokens, in submission order; nothing is
  normalised, so the same text always yields the same leaves.
- Empty submissions are rejected before a tree is built.
"""


def decode_text(payload: bytes) -> str:
    """Decode a UTF-8 text body; raise ParseError on invalid bytes."""
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"invalid UTF-8 in text payload: {e.reason}") from e


def split_items(text: str) -> List[str]:
    items = text.split()
    if not items:
        raise ParseError("text payload contains no items")
    return items


def single_item(text: str) -> str:
    """A replacement value must be exactly one item."""
    items = split_items(text)
    if len(items) != 1:
        raise ParseError(f"expected a single item, got {len(items)}")
    return items[0]


def hash_leaves(items: List[str]) -> List[bytes]:
    """Leaf digests of `items`, in order."""
    return [hash_item(item) for item in items]
