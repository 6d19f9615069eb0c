"""Single-leaf proofs with mutation, plus update recomputation."""
from __future__ import annotations
import atheris
import sys
import hashlib
import random

with atheris.instrument_imports():
    from proofstore_api.merkle import MerkleProof, MerkleTree, derive_path, verify_proof
    from proofstore_sdk.verify import recompute_root


def TestOneInput(data: bytes):  # noqa: N802
    if len(data) < 8:
        return
    # Derive variable chunk size & mutation seed
    seed = int.from_bytes(data[:4], 'little')
    random.seed(seed)
    chunk_len = 1 + (data[4] % 32)
    body = data[5:]
    items = [body[i:i+chunk_len].hex() for i in range(0, min(len(body), chunk_len * 16), chunk_len)]
    if len(items) < 2:
        return
    tree = MerkleTree.from_items(items)
    idx = seed % len(items)
    proof = list(tree.proof([idx]).hashes)
    leaf = tree.leaves[idx]
    # With some probability, mutate one sibling to exercise negative path
    if random.random() < 0.2 and proof:
        k = random.randrange(len(proof))
        sib = proof[k]
        proof[k] = bytes([(sib[0] ^ 0x01)]) + sib[1:]
        if verify_proof(tree.root, [(idx, leaf)], len(items), MerkleProof(tuple(proof))):
            raise RuntimeError("tampered proof unexpectedly verified")
        return
    if not verify_proof(tree.root, [(idx, leaf)], len(items), MerkleProof(tuple(proof))):
        raise RuntimeError("valid proof failed")
    new_value = hashlib.sha256(data).hexdigest()
    updated = list(items)
    updated[idx] = new_value
    computed = recompute_root(new_value, proof, derive_path(len(items), idx))
    if computed != MerkleTree.from_items(updated).root:
        raise RuntimeError("recomputed root differs from rebuilt tree")


def main():
    atheris.Setup(sys.argv, TestOneInput, enable_python_coverage=True)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
