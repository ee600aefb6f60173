"""Tests for crypto Merkle tree module."""

from __future__ import annotations

import hashlib

import pytest

from herdledger.core.crypto.merkle import (
    MerkleTree,
    ProofStep,
    build_tree,
    compute_inclusion_proof,
    compute_merkle_root,
    verify_inclusion_proof,
)


def _sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode()).hexdigest()


def _pair(left: str, right: str) -> str:
    return hashlib.sha256((left + right).encode()).hexdigest()


class TestComputeMerkleRoot:
    """Tests for Merkle root computation."""

    def test_single_leaf(self) -> None:
        h = _sha256_hex("leaf0")
        assert compute_merkle_root([h]) == h

    def test_two_leaves(self) -> None:
        h0 = _sha256_hex("leaf0")
        h1 = _sha256_hex("leaf1")
        assert compute_merkle_root([h0, h1]) == _pair(h0, h1)

    def test_odd_level_duplicates_last_node(self) -> None:
        """Three leaves: the third is paired with itself, never promoted."""
        h0, h1, h2 = (_sha256_hex(f"leaf{i}") for i in range(3))
        expected = _pair(_pair(h0, h1), _pair(h2, h2))
        assert compute_merkle_root([h0, h1, h2]) == expected

    def test_five_leaves_duplicate_on_every_odd_level(self) -> None:
        h = [_sha256_hex(f"leaf{i}") for i in range(5)]
        level1 = [_pair(h[0], h[1]), _pair(h[2], h[3]), _pair(h[4], h[4])]
        level2 = [_pair(level1[0], level1[1]), _pair(level1[2], level1[2])]
        assert compute_merkle_root(h) == _pair(level2[0], level2[1])

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            compute_merkle_root([])

    def test_order_matters(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(4)]
        assert compute_merkle_root(leaves) != compute_merkle_root(list(reversed(leaves)))


class TestInclusionProof:
    """Tests for inclusion proof generation and verification."""

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 8, 13])
    def test_every_leaf_verifies(self, size: int) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(size)]
        root = compute_merkle_root(leaves)
        for index, leaf in enumerate(leaves):
            proof = compute_inclusion_proof(leaves, index)
            assert verify_inclusion_proof(leaf, proof, root)

    def test_single_leaf_has_empty_proof(self) -> None:
        leaf = _sha256_hex("only")
        assert compute_inclusion_proof([leaf], 0) == []

    def test_proof_steps_name_sibling_side(self) -> None:
        h0 = _sha256_hex("leaf0")
        h1 = _sha256_hex("leaf1")
        assert compute_inclusion_proof([h0, h1], 0) == [ProofStep(h1, "right")]
        assert compute_inclusion_proof([h0, h1], 1) == [ProofStep(h0, "left")]

    def test_wrong_leaf_fails(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(4)]
        root = compute_merkle_root(leaves)
        proof = compute_inclusion_proof(leaves, 1)
        assert not verify_inclusion_proof(_sha256_hex("intruder"), proof, root)

    def test_tampered_sibling_fails(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(6)]
        root = compute_merkle_root(leaves)
        proof = compute_inclusion_proof(leaves, 2)
        proof[0] = ProofStep(_sha256_hex("forged"), proof[0].side)
        assert not verify_inclusion_proof(leaves[2], proof, root)

    def test_unknown_side_fails(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(2)]
        root = compute_merkle_root(leaves)
        assert not verify_inclusion_proof(leaves[0], [(leaves[1], "up")], root)

    def test_out_of_range(self) -> None:
        leaves = [_sha256_hex("leaf0")]
        with pytest.raises(ValueError, match="out of range"):
            compute_inclusion_proof(leaves, 1)
        with pytest.raises(ValueError, match="empty"):
            compute_inclusion_proof([], 0)


class TestMerkleTree:
    """Tests for the MerkleTree dataclass and build_tree."""

    def test_tree_matches_functions(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(7)]
        tree = MerkleTree(leaves=leaves)
        assert tree.root == compute_merkle_root(leaves)
        assert tree.size == 7
        assert tree.inclusion_proof(6) == compute_inclusion_proof(leaves, 6)
        assert tree.verify(leaves[6], tree.inclusion_proof(6))

    def test_build_tree_returns_root_and_path_function(self) -> None:
        leaves = [_sha256_hex(f"leaf{i}") for i in range(3)]
        root, path = build_tree(leaves)
        assert root == compute_merkle_root(leaves)
        assert verify_inclusion_proof(leaves[2], path(2), root)

    def test_build_tree_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            build_tree([])
