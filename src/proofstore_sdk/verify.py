import hmac
from typing import Sequence

from proofstore_api.crypto import hash_item, hash_pair
from proofstore_api.merkle import Direction, MerkleProof, verify_proof


def verify_leaves(
    root: bytes,
    indices: Sequence[int],
    leaf_digests: Sequence[bytes],
    leaf_count: int,
    proof: MerkleProof,
) -> bool:
    """Return True if the leaves at `indices` reproduce `root` with `proof`.

    `indices` and `leaf_digests` are parallel sequences, as received from
    the server (one LEAF frame per requested index).
    """
    if len(indices) != len(leaf_digests):
        return False
    return verify_proof(root, zip(indices, leaf_digests), leaf_count, proof)


def recompute_root(
    new_value: str, sibling_digests: Sequence[bytes], path: Sequence[Direction]
) -> bytes:
    """Fold a replacement value up to a candidate root.

    `sibling_digests` come from a previously verified single-leaf proof for
    the same index and `path` from derive_path(); PROMOTED levels carry the
    working digest up without consuming a sibling.
    """
    needed = sum(1 for d in path if d is not Direction.PROMOTED)
    if needed != len(sibling_digests):
        raise ValueError(
            f"path needs {needed} sibling digests, got {len(sibling_digests)}"
        )
    h = hash_item(new_value)
    siblings = iter(sibling_digests)
    for direction in path:
        if direction is Direction.PROMOTED:
            continue
        sibling = next(siblings)
        if direction is Direction.LEFT:
            h = hash_pair(sibling, h)
        else:
            h = hash_pair(h, sibling)
    return h


def roots_match(declared: bytes, computed: bytes) -> bool:
    return hmac.compare_digest(declared, computed)
