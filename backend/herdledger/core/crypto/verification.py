"""
Audit chain and entry verification utilities.

Provides functions to verify the integrity of hash chains, both individual
entries and full sequences. These are pure functions operating on plain
mappings, decoupled from the persistence layer.

Break convention: the reported break is the first entry whose *own* checks
fail. Tampering with any hashed field of entry ``i`` (or with its stored
``current_hash``) reports ``i``; rewriting entry ``i`` and re-hashing it
consistently reports ``i + 1``, whose ``previous_hash`` no longer links.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from herdledger.core.crypto.canonicalization import CanonicalizationError
from herdledger.core.crypto.hash_chain import (
    GENESIS_HASH,
    HASH_ALGORITHM_SHA256,
    HASH_CANONICALIZATION_RFC8785,
    build_hash_material,
    compute_entry_hash,
)


@dataclass
class ChainVerificationResult:
    """Result of verifying a hash chain.

    Attributes
    ----------
    is_valid:
        ``True`` if the entire chain is intact.
    total_entries:
        Number of entries examined (the stream length at read time).
    verified_count:
        Number of entries successfully verified before the first break.
    broken_at_index:
        Zero-based index where the chain first broke, or ``None``.
    broken_at_entry_id:
        Identifier of the first broken entry, or ``None``.
    errors:
        Human-readable descriptions of integrity violations.
    """

    is_valid: bool = True
    total_entries: int = 0
    verified_count: int = 0
    broken_at_index: int | None = None
    broken_at_entry_id: str | None = None
    errors: list[str] = field(default_factory=list)


def recompute_entry_hash(entry: Mapping[str, Any], prev_hash: str) -> str:
    """Recompute an entry's hash from its stored identity fields and payload."""
    material = build_hash_material(
        entry_id=entry["id"],
        entity_type=entry["entity_type"],
        entity_id=entry["entity_id"],
        event_type=entry["event_type"],
        actor_id=entry["actor_id"],
        actor_role=entry["actor_role"],
        timestamp=entry["timestamp"],
        chain_sequence=entry["chain_sequence"],
        payload=entry["payload"],
    )
    return compute_entry_hash(
        material,
        prev_hash,
        canonicalization=entry.get("hash_canonicalization") or HASH_CANONICALIZATION_RFC8785,
        hash_algorithm=entry.get("hash_algorithm") or HASH_ALGORITHM_SHA256,
    )


def verify_entry(entry: Mapping[str, Any], prev_hash: str | None) -> bool:
    """Verify a single entry's hash against its claimed predecessor.

    Parameters
    ----------
    entry:
        Entry mapping containing ``current_hash`` and the hashed fields.
    prev_hash:
        The hash of the previous entry, or ``None`` for the genesis entry.

    Returns
    -------
    bool
        ``True`` if the stored ``current_hash`` matches the recomputed hash.
    """
    stored_hash = entry.get("current_hash")
    if stored_hash is None:
        return False

    effective_prev = prev_hash if prev_hash is not None else GENESIS_HASH
    try:
        expected = recompute_entry_hash(entry, effective_prev)
    except (CanonicalizationError, KeyError, ValueError):
        return False
    return bool(stored_hash == expected)


class ChainVerifier:
    """Incremental chain-continuity checker.

    Entries are fed one at a time in stream order, so a chain can be checked
    while it is paged out of storage. Checking stops at the first break.
    """

    def __init__(self) -> None:
        self.result = ChainVerificationResult()
        self._prev_hash = GENESIS_HASH
        self._index = 0

    @property
    def broken(self) -> bool:
        return not self.result.is_valid

    def _fail(self, entry: Mapping[str, Any], message: str) -> bool:
        self.result.is_valid = False
        self.result.broken_at_index = self._index
        self.result.broken_at_entry_id = str(entry.get("id"))
        self.result.errors.append(f"Entry at index {self._index}: {message}")
        return False

    def feed(self, entry: Mapping[str, Any]) -> bool:
        """Check the next entry. Returns ``False`` once the chain is broken.

        Entries fed after a break are counted but no longer checked.
        """
        self.result.total_entries += 1
        if self.broken:
            return False

        stored_hash = entry.get("current_hash")
        stored_prev = entry.get("previous_hash")
        sequence = entry.get("chain_sequence")

        if stored_hash is None:
            return self._fail(entry, "missing current_hash")
        if sequence != self._index:
            return self._fail(
                entry, f"chain_sequence mismatch (stored={sequence!r}, expected={self._index})"
            )
        if stored_prev != self._prev_hash:
            return self._fail(
                entry,
                f"previous_hash mismatch (stored={stored_prev!r}, expected={self._prev_hash!r})",
            )

        try:
            recomputed = recompute_entry_hash(entry, self._prev_hash)
        except (CanonicalizationError, KeyError, ValueError) as exc:
            return self._fail(entry, f"cannot recompute hash ({exc})")

        if recomputed != stored_hash:
            return self._fail(
                entry, f"hash mismatch (stored={stored_hash!r}, recomputed={recomputed!r})"
            )

        self.result.verified_count += 1
        self._prev_hash = stored_hash
        self._index += 1
        return True


def verify_hash_chain(entries: Iterable[Mapping[str, Any]]) -> ChainVerificationResult:
    """Verify the integrity of a sequence of chained audit entries.

    Entries must be ordered by ``chain_sequence`` (ascending). Each entry's
    ``current_hash`` is recomputed from its fields and the previous entry's
    hash, then compared to the stored value.
    """
    verifier = ChainVerifier()
    for entry in entries:
        verifier.feed(entry)
    return verifier.result
