from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from .crypto import DIGEST_SIZE, hash_pair
from .errors import IndexOutOfRange, ParseError
from .pipeline import hash_leaves

"""Binary Merkle tree over an ordered sequence of leaf digests.

Odd-width rule: when a level has an odd number of nodes the last one is
carried up to the next level unchanged (not hashed, not duplicated). Tree
construction, proof generation, proof verification and path derivation all
follow this rule; a tree over N leaves therefore has ceil(log2(N)) levels
above the leaves.
"""


class Direction(str, Enum):
    """Where the sibling sits relative to the working digest at one level."""

    LEFT = "left"  # working = H(sibling || working)
    RIGHT = "right"  # working = H(working || sibling)
    PROMOTED = "promoted"  # lone node, carried up; no sibling consumed


def _parent_width(width: int) -> int:
    return (width + 1) // 2


def tree_depth(leaf_count: int) -> int:
    """Number of levels above the leaves, i.e. ceil(log2(leaf_count))."""
    if leaf_count < 1:
        raise ValueError("leaf_count must be positive")
    return (leaf_count - 1).bit_length()


def derive_path(leaf_count: int, index: int) -> List[Direction]:
    """Directions from leaf `index` up to the root, one per level."""
    depth = tree_depth(leaf_count)
    if index < 0 or index >= leaf_count:
        raise IndexOutOfRange(index, leaf_count)
    path: List[Direction] = []
    width = leaf_count
    idx = index
    for _ in range(depth):
        if idx % 2 == 1:
            path.append(Direction.LEFT)
        elif idx + 1 < width:
            path.append(Direction.RIGHT)
        else:
            path.append(Direction.PROMOTED)
        idx //= 2
        width = _parent_width(width)
    return path


@dataclass(frozen=True)
class MerkleProof:
    """Ordered sibling digests needed to rebuild the root from known leaves."""

    hashes: Tuple[bytes, ...] = field(default_factory=tuple)

    def proof_hashes(self) -> List[bytes]:
        return list(self.hashes)

    def __len__(self) -> int:
        return len(self.hashes)

    def to_bytes(self) -> bytes:
        return b"".join(self.hashes)

    @classmethod
    def from_bytes(cls, data: bytes) -> "MerkleProof":
        if len(data) % DIGEST_SIZE != 0:
            raise ParseError(
                f"proof length {len(data)} is not a multiple of {DIGEST_SIZE}"
            )
        return cls(
            tuple(
                bytes(data[i : i + DIGEST_SIZE])
                for i in range(0, len(data), DIGEST_SIZE)
            )
        )


@dataclass(frozen=True)
class MerkleTree:
    leaves: Tuple[bytes, ...]
    levels: Tuple[Tuple[bytes, ...], ...]  # level 0 = leaves, last = (root,)

    @classmethod
    def from_leaves(cls, leaves: Sequence[bytes]) -> "MerkleTree":
        if not leaves:
            raise ValueError("no leaves")
        lvl = tuple(leaves)
        levels = [lvl]
        while len(lvl) > 1:
            nxt = []
            for i in range(0, len(lvl), 2):
                if i + 1 < len(lvl):
                    nxt.append(hash_pair(lvl[i], lvl[i + 1]))
                else:
                    nxt.append(lvl[i])  # promote lone node unchanged
            lvl = tuple(nxt)
            levels.append(lvl)
        return cls(tuple(leaves), tuple(levels))

    @classmethod
    def from_items(cls, items: Iterable[str]) -> "MerkleTree":
        return cls.from_leaves(hash_leaves(list(items)))

    @property
    def root(self) -> bytes:
        return self.levels[-1][0]

    @property
    def leaf_count(self) -> int:
        return len(self.leaves)

    @property
    def depth(self) -> int:
        return len(self.levels) - 1

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.leaf_count:
            raise IndexOutOfRange(index, self.leaf_count)

    def with_leaf(self, index: int, leaf: bytes) -> "MerkleTree":
        """New tree with one leaf replaced; rebuilt from scratch."""
        self._check_index(index)
        leaves = list(self.leaves)
        leaves[index] = leaf
        return MerkleTree.from_leaves(leaves)

    def proof(self, indices: Iterable[int]) -> MerkleProof:
        """Minimal multi-leaf proof for `indices`.

        Per level (leaves first), sibling digests of the known nodes are
        emitted in ascending node order, skipping siblings that are known
        themselves and nodes promoted without a sibling.
        """
        known = sorted(set(indices))
        if not known:
            raise ValueError("no indices to prove")
        for i in known:
            self._check_index(i)
        out: List[bytes] = []
        for level in self.levels[:-1]:
            known_set = set(known)
            for i in known:
                sibling = i ^ 1
                if sibling >= len(level) or sibling in known_set:
                    continue
                out.append(level[sibling])
            known = sorted({i // 2 for i in known})
        return MerkleProof(tuple(out))


def verify_proof(
    root: bytes,
    leaves: Iterable[Tuple[int, bytes]],
    leaf_count: int,
    proof: MerkleProof,
) -> bool:
    """Recompute the root from (index, leaf digest) pairs and `proof`.

    Returns False for any inconsistency instead of raising.
    """
    if leaf_count < 1:
        return False
    known: Dict[int, bytes] = {}
    for index, leaf in leaves:
        if index < 0 or index >= leaf_count:
            return False
        if index in known and known[index] != leaf:
            return False
        known[index] = leaf
    if not known:
        return False

    hashes = list(proof.hashes)
    pos = 0
    width = leaf_count
    while width > 1:
        nxt: Dict[int, bytes] = {}
        for i in sorted(known):
            parent = i // 2
            if parent in nxt:
                continue  # already folded together with its left sibling
            sibling = i ^ 1
            if sibling >= width:
                nxt[parent] = known[i]
                continue
            if sibling in known:
                sib = known[sibling]
            else:
                if pos >= len(hashes):
                    return False
                sib = hashes[pos]
                pos += 1
            if i % 2 == 0:
                nxt[parent] = hash_pair(known[i], sib)
            else:
                nxt[parent] = hash_pair(sib, known[i])
        known = nxt
        width = _parent_width(width)

    if pos != len(hashes):
        return False
    return known.get(0) == root
