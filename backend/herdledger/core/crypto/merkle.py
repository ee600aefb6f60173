"""
Merkle tree construction and inclusion proof verification.

Provides batch integrity verification by computing a single root hash from
a set of audit entry hashes. Inclusion proofs allow verifying that a specific
entry is part of an anchored batch without replaying the entire tree.

Odd levels are completed by duplicating the last node and hashing it with
itself (``H(x || x)``); the last node is never promoted unhashed. Anchored
roots depend on this rule, so it must not change.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal, NamedTuple

SIDE_LEFT: Literal["left"] = "left"
SIDE_RIGHT: Literal["right"] = "right"


class ProofStep(NamedTuple):
    """One hop of an authentication path: the sibling and the side it sits on."""

    sibling_hash: str
    side: Literal["left", "right"]


def _hash_pair(left: str, right: str) -> str:
    """Hash two hex-encoded digests together in left-right order."""
    hasher = hashlib.sha256()
    hasher.update(left.encode("utf-8"))
    hasher.update(right.encode("utf-8"))
    return hasher.hexdigest()


def _next_level(level: Sequence[str]) -> list[str]:
    next_level: list[str] = []
    for i in range(0, len(level), 2):
        left = level[i]
        right = level[i + 1] if i + 1 < len(level) else level[i]
        next_level.append(_hash_pair(left, right))
    return next_level


def _build_levels(hashes: Sequence[str]) -> list[list[str]]:
    """Return every tree level, leaves first and the root level last."""
    levels = [list(hashes)]
    while len(levels[-1]) > 1:
        levels.append(_next_level(levels[-1]))
    return levels


def _proof_from_levels(levels: Sequence[Sequence[str]], index: int) -> list[ProofStep]:
    proof: list[ProofStep] = []
    idx = index
    for level in levels[:-1]:
        if idx % 2 == 0:
            sibling_idx = idx + 1 if idx + 1 < len(level) else idx
            proof.append(ProofStep(level[sibling_idx], SIDE_RIGHT))
        else:
            proof.append(ProofStep(level[idx - 1], SIDE_LEFT))
        idx //= 2
    return proof


def compute_merkle_root(hashes: Sequence[str]) -> str:
    """Compute the Merkle root from a list of leaf hashes.

    If the list has an odd number of elements at any level, the last
    element is duplicated to form a complete pair.

    Parameters
    ----------
    hashes:
        List of hex-encoded SHA-256 hashes (the leaves).

    Returns
    -------
    str
        Hex-encoded SHA-256 Merkle root hash.

    Raises
    ------
    ValueError
        If ``hashes`` is empty.
    """
    if not hashes:
        raise ValueError("Cannot compute Merkle root from empty list")

    level = list(hashes)
    while len(level) > 1:
        level = _next_level(level)
    return level[0]


def compute_inclusion_proof(hashes: Sequence[str], index: int) -> list[ProofStep]:
    """Compute an inclusion proof for the leaf at ``index``.

    The proof is a list of ``(sibling_hash, side)`` steps where ``side``
    is ``"left"`` or ``"right"`` indicating which side the sibling sits on.

    Raises
    ------
    ValueError
        If ``hashes`` is empty or ``index`` is out of range.
    """
    if not hashes:
        raise ValueError("Cannot compute proof from empty list")
    if index < 0 or index >= len(hashes):
        raise ValueError(f"Index {index} out of range for {len(hashes)} hashes")
    return _proof_from_levels(_build_levels(hashes), index)


def verify_inclusion_proof(
    leaf_hash: str,
    proof: Sequence[tuple[str, str]],
    root: str,
) -> bool:
    """Verify that a leaf hash is included in a Merkle tree with the given root.

    Parameters
    ----------
    leaf_hash:
        Hex-encoded hash of the leaf to verify.
    proof:
        Inclusion proof as returned by ``compute_inclusion_proof()``.
    root:
        Expected Merkle root hash.

    Returns
    -------
    bool
        ``True`` if the proof is valid and the leaf is included.
    """
    current = leaf_hash
    for sibling_hash, side in proof:
        if side == SIDE_LEFT:
            current = _hash_pair(sibling_hash, current)
        elif side == SIDE_RIGHT:
            current = _hash_pair(current, sibling_hash)
        else:
            return False
    return current == root


@dataclass
class MerkleTree:
    """A Merkle tree built from a batch of audit entry hashes.

    Attributes
    ----------
    leaves:
        The original leaf hashes, in anchoring order.
    root:
        The computed Merkle root hash.
    """

    leaves: list[str] = field(default_factory=list)
    root: str = ""
    _levels: list[list[str]] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.leaves:
            self._levels = _build_levels(self.leaves)
            if not self.root:
                self.root = self._levels[-1][0]

    def inclusion_proof(self, index: int) -> list[ProofStep]:
        """Return the inclusion proof for the leaf at ``index``."""
        if index < 0 or index >= len(self.leaves):
            raise ValueError(f"Index {index} out of range for {len(self.leaves)} hashes")
        return _proof_from_levels(self._levels, index)

    def verify(self, leaf_hash: str, proof: Sequence[tuple[str, str]]) -> bool:
        """Verify an inclusion proof against this tree's root."""
        return verify_inclusion_proof(leaf_hash, proof, self.root)

    @property
    def size(self) -> int:
        """Number of leaves in the tree."""
        return len(self.leaves)


def build_tree(leaf_hashes: Sequence[str]) -> tuple[str, Callable[[int], list[ProofStep]]]:
    """Build a tree over ``leaf_hashes`` and return ``(root, path_fn)``.

    ``path_fn(index)`` returns the authentication path for that leaf.
    """
    if not leaf_hashes:
        raise ValueError("Cannot compute Merkle root from empty list")
    tree = MerkleTree(leaves=list(leaf_hashes))
    return tree.root, tree.inclusion_proof
