import hashlib
import itertools
import math

import pytest

from proofstore_api.errors import IndexOutOfRange, ParseError
from proofstore_api.merkle import (
    Direction,
    MerkleProof,
    MerkleTree,
    derive_path,
    tree_depth,
    verify_proof,
)
from proofstore_api.pipeline import hash_leaves


def h(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def items(n):
    return [f"item-{i}" for i in range(n)]


def flip_bit(digest: bytes, bit: int) -> bytes:
    b = bytearray(digest)
    b[bit // 8] ^= 1 << (bit % 8)
    return bytes(b)


def test_merkle_basic():
    leaves = [hashlib.sha256(f"leaf-{i}".encode()).digest() for i in range(5)]
    tree = MerkleTree.from_leaves(leaves)
    assert tree.root
    proof = tree.proof([2])
    assert verify_proof(tree.root, [(2, leaves[2])], 5, proof)


def test_empty_tree_rejected():
    with pytest.raises(ValueError):
        MerkleTree.from_leaves([])


def test_from_items_hashes_each_item():
    words = ["No", "More", "Segmentation"]
    tree = MerkleTree.from_items(words)
    assert list(tree.leaves) == hash_leaves(words) == [h(w.encode()) for w in words]
    assert MerkleTree.from_items(iter(words)) == tree


def test_known_root_four_items():
    tree = MerkleTree.from_items(["No", "More", "Segmentation", "Faults"])
    expected = h(h(h(b"No") + h(b"More")) + h(h(b"Segmentation") + h(b"Faults")))
    assert tree.root == expected
    assert tree.leaf_count == 4
    assert tree.depth == 2


def test_single_leaf_root_is_leaf():
    tree = MerkleTree.from_items(["alone"])
    assert tree.root == h(b"alone")
    assert tree.depth == 0


def test_lone_node_promoted_unchanged():
    l = [h(x.encode()) for x in "abcde"]
    three = MerkleTree.from_leaves(l[:3])
    assert three.root == h(h(l[0] + l[1]) + l[2])
    five = MerkleTree.from_leaves(l)
    h01, h23 = h(l[0] + l[1]), h(l[2] + l[3])
    assert five.levels[1] == (h01, h23, l[4])
    assert five.root == h(h(h01 + h23) + l[4])


def test_root_depends_on_order():
    a = MerkleTree.from_items(["x", "y", "z"])
    b = MerkleTree.from_items(["y", "x", "z"])
    assert a.root != b.root


def test_with_leaf_rebuilds():
    tree = MerkleTree.from_items(["No", "More", "Segmentation", "Faults"])
    updated = tree.with_leaf(1, h(b"Less"))
    assert updated.root == MerkleTree.from_items(["No", "Less", "Segmentation", "Faults"]).root
    assert tree.leaves[1] == h(b"More")  # original untouched
    with pytest.raises(IndexOutOfRange):
        tree.with_leaf(4, h(b"x"))


# ---- paths -------------------------------------------------------------


@pytest.mark.parametrize(
    "n,i,expected",
    [
        (4, 0, [Direction.RIGHT, Direction.RIGHT]),
        (4, 1, [Direction.LEFT, Direction.RIGHT]),
        (4, 2, [Direction.RIGHT, Direction.LEFT]),
        (4, 3, [Direction.LEFT, Direction.LEFT]),
        (3, 2, [Direction.PROMOTED, Direction.LEFT]),
        (5, 4, [Direction.PROMOTED, Direction.PROMOTED, Direction.LEFT]),
        (6, 5, [Direction.LEFT, Direction.PROMOTED, Direction.LEFT]),
        (1, 0, []),
    ],
)
def test_derive_path_examples(n, i, expected):
    assert derive_path(n, i) == expected


def test_path_length_is_ceil_log2():
    for n in range(2, 70):
        for i in range(n):
            path = derive_path(n, i)
            assert len(path) == math.ceil(math.log2(n)) == tree_depth(n)


def test_path_agrees_with_tree_and_single_proof():
    for n in range(1, 40):
        tree = MerkleTree.from_items(items(n))
        assert tree.depth == tree_depth(n)
        for i in range(n):
            path = derive_path(n, i)
            siblings = [d for d in path if d is not Direction.PROMOTED]
            assert len(siblings) == len(tree.proof([i]))


def test_derive_path_out_of_range():
    with pytest.raises(IndexOutOfRange):
        derive_path(4, 4)
    with pytest.raises(IndexOutOfRange):
        derive_path(4, -1)
    with pytest.raises(ValueError):
        derive_path(0, 0)


# ---- proofs ------------------------------------------------------------


def test_pair_proof_is_minimal():
    tree = MerkleTree.from_items(["No", "More", "Segmentation", "Faults"])
    proof = tree.proof([0, 1])
    assert proof.hashes == (h(h(b"Segmentation") + h(b"Faults")),)
    proof = tree.proof([1, 2])
    assert proof.hashes == (h(b"No"), h(b"Faults"))


def test_proof_omits_promoted_levels():
    tree = MerkleTree.from_items(items(5))
    assert len(tree.proof([4])) == 1
    assert tree.proof([4]).hashes == (tree.levels[2][0],)


def test_honest_round_trip_all_pairs_and_singles():
    for n in range(1, 18):
        tree = MerkleTree.from_items(items(n))
        subsets = [[i] for i in range(n)] + [[i, i + 1] for i in range(n - 1)]
        for idx in subsets:
            proof = tree.proof(idx)
            pairs = [(i, tree.leaves[i]) for i in idx]
            assert verify_proof(tree.root, pairs, n, proof), (n, idx)


def test_honest_round_trip_arbitrary_subsets():
    n = 11
    tree = MerkleTree.from_items(items(n))
    for size in (2, 3, 5, 11):
        for idx in itertools.islice(itertools.combinations(range(n), size), 40):
            proof = tree.proof(idx)
            pairs = [(i, tree.leaves[i]) for i in idx]
            assert verify_proof(tree.root, pairs, n, proof)


def test_full_subset_needs_no_siblings():
    tree = MerkleTree.from_items(items(7))
    proof = tree.proof(range(7))
    assert len(proof) == 0
    assert verify_proof(tree.root, enumerate(tree.leaves), 7, proof)


def test_leaf_order_in_request_is_irrelevant():
    tree = MerkleTree.from_items(items(6))
    proof = tree.proof([4, 1])
    assert proof == tree.proof([1, 4])
    assert verify_proof(tree.root, [(4, tree.leaves[4]), (1, tree.leaves[1])], 6, proof)


def test_proof_serialization_round_trip():
    tree = MerkleTree.from_items(items(9))
    proof = tree.proof([2, 3])
    raw = proof.to_bytes()
    assert len(raw) == 32 * len(proof)
    restored = MerkleProof.from_bytes(raw)
    assert restored == proof
    pairs = [(2, tree.leaves[2]), (3, tree.leaves[3])]
    assert verify_proof(tree.root, pairs, 9, restored) == verify_proof(
        tree.root, pairs, 9, proof
    )
    assert MerkleProof.from_bytes(b"") == MerkleProof()


def test_proof_from_bytes_rejects_partial_digest():
    with pytest.raises(ParseError):
        MerkleProof.from_bytes(b"\x00" * 33)


def test_tamper_any_sibling_bit():
    for n in (2, 3, 4, 5, 8, 13):
        tree = MerkleTree.from_items(items(n))
        for idx in ([0], [n - 1], [0, 1], [n - 2, n - 1]):
            proof = tree.proof(idx)
            pairs = [(i, tree.leaves[i]) for i in idx]
            for k in range(len(proof)):
                for bit in (0, 7, 131, 255):
                    hashes = list(proof.hashes)
                    hashes[k] = flip_bit(hashes[k], bit)
                    forged = MerkleProof(tuple(hashes))
                    assert not verify_proof(tree.root, pairs, n, forged)


def test_substituted_leaf_fails():
    tree = MerkleTree.from_items(items(6))
    proof = tree.proof([2, 3])
    assert not verify_proof(tree.root, [(2, h(b"evil")), (3, tree.leaves[3])], 6, proof)
    # swapping two values between positions changes the committed order
    assert not verify_proof(tree.root, [(2, tree.leaves[3]), (3, tree.leaves[2])], 6, proof)


def test_verify_rejects_malformed_inputs():
    tree = MerkleTree.from_items(items(4))
    proof = tree.proof([1])
    good = [(1, tree.leaves[1])]
    assert verify_proof(tree.root, good, 4, proof)
    assert not verify_proof(tree.root, [], 4, proof)
    assert not verify_proof(tree.root, [(4, tree.leaves[1])], 4, proof)
    assert not verify_proof(tree.root, good, 0, proof)
    assert not verify_proof(tree.root, good, 5, proof)
    assert not verify_proof(tree.root, good, 4, MerkleProof(proof.hashes[:-1]))
    assert not verify_proof(tree.root, good, 4, MerkleProof(proof.hashes + (h(b"x"),)))
    assert not verify_proof(
        tree.root, good + [(1, h(b"other"))], 4, proof
    )


def test_generate_out_of_range():
    tree = MerkleTree.from_items(items(4))
    with pytest.raises(IndexOutOfRange) as exc:
        tree.proof([2, 4])
    assert exc.value.index == 4 and exc.value.leaf_count == 4
    with pytest.raises(IndexOutOfRange):
        tree.proof([-1])
    with pytest.raises(ValueError):
        tree.proof([])


def test_reordered_data_fails_against_original_root():
    original = ["No", "More", "Segmentation", "Faults"]
    tree = MerkleTree.from_items(original)
    pairs = [(0, h(b"No")), (1, h(b"More"))]
    assert verify_proof(tree.root, pairs, 4, tree.proof([0, 1]))

    shuffled = MerkleTree.from_items(original[::-1])
    assert not verify_proof(tree.root, pairs, 4, shuffled.proof([0, 1]))
    shuffled_pairs = [(0, shuffled.leaves[0]), (1, shuffled.leaves[1])]
    assert not verify_proof(tree.root, shuffled_pairs, 4, tree.proof([0, 1]))
