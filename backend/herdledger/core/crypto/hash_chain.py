"""
SHA-256 hash chaining for sequential audit entry integrity.

Each entry hash is computed as ``SHA256(canonical_json(entry_fields) + prev_hash)``,
creating a tamper-evident chain where modifying any entry invalidates all
subsequent hashes.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from herdledger.core.crypto.canonicalization import (
    CANONICALIZATION_RFC8785,
    SHA256_ALGORITHM,
    canonicalize_jcs_bytes,
)

HASH_CANONICALIZATION_RFC8785 = CANONICALIZATION_RFC8785
HASH_ALGORITHM_SHA256 = SHA256_ALGORITHM

# Convenience constant for the genesis (first) entry in a stream.
GENESIS_HASH: str = "0" * 64


def canonical_json(
    data: Mapping[str, Any],
    *,
    canonicalization: str = HASH_CANONICALIZATION_RFC8785,
) -> bytes:
    """Produce deterministic JSON bytes from a mapping.

    Parameters
    ----------
    data:
        The mapping to serialize.

    Returns
    -------
    bytes
        UTF-8 encoded canonical JSON.
    """
    if canonicalization == HASH_CANONICALIZATION_RFC8785:
        return canonicalize_jcs_bytes(data)
    raise ValueError(f"Unsupported hash canonicalization: {canonicalization}")


def build_hash_material(
    *,
    entry_id: UUID | str,
    entity_type: str,
    entity_id: str,
    event_type: str,
    actor_id: str,
    actor_role: str,
    timestamp: datetime,
    chain_sequence: int,
    payload: Mapping[str, Any],
) -> dict[str, Any]:
    """Assemble the identity fields and payload covered by an entry hash."""
    return {
        "id": str(entry_id),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "event_type": event_type,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "timestamp": timestamp,
        "chain_sequence": chain_sequence,
        "payload": dict(payload),
    }


def compute_entry_hash(
    entry_fields: Mapping[str, Any],
    prev_hash: str,
    *,
    canonicalization: str = HASH_CANONICALIZATION_RFC8785,
    hash_algorithm: str = HASH_ALGORITHM_SHA256,
) -> str:
    """Compute the SHA-256 hash for an audit entry in a chain.

    The hash covers both the entry fields and the previous entry's hash,
    creating a sequential integrity chain.

    Parameters
    ----------
    entry_fields:
        Mapping of entry fields to include in the hash, usually built with
        :func:`build_hash_material`.
    prev_hash:
        Hex-encoded SHA-256 hash of the previous entry in the stream.
        Use :data:`GENESIS_HASH` for the first entry.

    Returns
    -------
    str
        Hex-encoded SHA-256 digest.
    """
    if hash_algorithm != HASH_ALGORITHM_SHA256:
        raise ValueError(f"Unsupported hash algorithm: {hash_algorithm}")
    payload = canonical_json(entry_fields, canonicalization=canonicalization)
    hasher = hashlib.sha256()
    hasher.update(payload)
    hasher.update(prev_hash.encode("utf-8"))
    return hasher.hexdigest()
