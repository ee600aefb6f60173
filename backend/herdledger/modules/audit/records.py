"""Storage-independent records passed between the audit services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from herdledger.core.crypto.hash_chain import HASH_ALGORITHM_SHA256, HASH_CANONICALIZATION_RFC8785
from herdledger.core.crypto.signing import SIGNATURE_ALGORITHM_ED25519


@dataclass(frozen=True, slots=True)
class Actor:
    """Identity of whoever caused an audited action."""

    actor_id: str
    role: str
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """One immutable, hash-chained entry of an entity's audit stream."""

    id: UUID
    entity_type: str
    entity_id: str
    event_type: str
    actor_id: str
    actor_role: str
    created_at: datetime
    payload: dict[str, Any]
    chain_sequence: int
    previous_hash: str
    current_hash: str
    hash_algorithm: str = HASH_ALGORITHM_SHA256
    hash_canonicalization: str = HASH_CANONICALIZATION_RFC8785
    signature: str | None = None
    signer_public_key_id: str | None = None
    anchor_snapshot_id: UUID | None = None

    @property
    def stream(self) -> tuple[str, str]:
        return (self.entity_type, self.entity_id)

    @property
    def is_anchored(self) -> bool:
        return self.anchor_snapshot_id is not None

    def to_chain_dict(self) -> dict[str, Any]:
        """Return the mapping consumed by the chain verification primitives."""
        return {
            "id": str(self.id),
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "event_type": self.event_type,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "timestamp": self.created_at,
            "chain_sequence": self.chain_sequence,
            "payload": self.payload,
            "previous_hash": self.previous_hash,
            "current_hash": self.current_hash,
            "hash_algorithm": self.hash_algorithm,
            "hash_canonicalization": self.hash_canonicalization,
        }


@dataclass(frozen=True, slots=True)
class AnchorSnapshot:
    """A batch of entries whose Merkle root was anchored to a ledger."""

    id: UUID
    created_at: datetime
    entry_ids: list[str]
    leaf_hashes: list[str]
    merkle_root: str
    ledger: str
    transaction_id: str
    block_reference: str
    confirmed_at: datetime
    explorer_url: str | None = None
    receipt_token: bytes | None = None
    signature: str | None = None
    signature_kid: str | None = None
    entry_count: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entry_count", len(self.entry_ids))


@dataclass(frozen=True, slots=True)
class KeyPair:
    """An actor's registered Ed25519 public key."""

    key_id: str
    actor_id: str
    public_key_pem: str
    created_at: datetime
    private_key_encrypted: str | None = None
    algorithm: str = SIGNATURE_ALGORITHM_ED25519
    superseded_at: datetime | None = None

    @property
    def is_custodial(self) -> bool:
        return self.private_key_encrypted is not None
