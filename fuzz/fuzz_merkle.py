"""Fuzz harness for tree construction & multi-leaf proof verification."""
from __future__ import annotations
import atheris
import sys
import hashlib

with atheris.instrument_imports():
    from proofstore_api.merkle import MerkleProof, MerkleTree, verify_proof


def TestOneInput(data: bytes):  # noqa: N802
    if len(data) < 3:
        return
    # Split data deterministically into pseudo-leaves (bounded count)
    # Use fixed-size chunks to avoid quadratic blowups.
    size = max(1, min(32, data[0]))
    chunks = [data[i : i + size] for i in range(2, min(len(data), 2 + size * 64), size)]
    leaves = [hashlib.sha256(c).digest() for c in chunks if c]
    if not leaves:
        return
    tree = MerkleTree.from_leaves(leaves)
    # Index subset from the second byte used as a bitmask over a window
    start = data[-1] % len(leaves)
    mask = data[1] or 1
    idx = [start + b for b in range(8) if mask >> b & 1 and start + b < len(leaves)]
    if not idx:
        return
    proof = MerkleProof.from_bytes(tree.proof(idx).to_bytes())
    pairs = [(i, leaves[i]) for i in idx]
    if not verify_proof(tree.root, pairs, len(leaves), proof):
        raise RuntimeError("valid multi-leaf proof failed")


def main():
    atheris.Setup(sys.argv, TestOneInput, enable_python_coverage=True)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
