"""Pydantic schemas for audit trail API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditEntryResponse(BaseModel):
    """Single audit entry in API responses."""

    model_config = ConfigDict(from_attributes=True)

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
    hash_algorithm: str
    hash_canonicalization: str

    signature: str | None = None
    signer_public_key_id: str | None = None
    anchor_snapshot_id: UUID | None = None


class AuditEntryListResponse(BaseModel):
    """One page of a stream, ordered by chain_sequence."""

    entity_type: str
    entity_id: str
    items: list[AuditEntryResponse]
    next_after_sequence: int | None = None


class ChainVerificationResponse(BaseModel):
    """Result of verifying the hash chain of one entity stream."""

    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    entity_id: str
    is_valid: bool
    total_entries: int
    verified_count: int
    broken_at_index: int | None = None
    broken_at_entry_id: str | None = None
    errors: list[str]


class ProofStepResponse(BaseModel):
    """One hop of a Merkle authentication path."""

    sibling_hash: str
    side: str


class InclusionVerificationResponse(BaseModel):
    """Result of verifying an entry against its anchored Merkle root."""

    is_valid: bool
    entry_id: UUID
    snapshot_id: UUID | None = None
    leaf_hash: str | None = None
    merkle_root: str | None = None
    proof: list[ProofStepResponse]
    receipt_verified: bool | None = None
    errors: list[str]


class AnchorSnapshotResponse(BaseModel):
    """An anchored Merkle batch."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    entry_count: int
    entry_ids: list[str]
    merkle_root: str
    ledger: str
    transaction_id: str
    block_reference: str
    explorer_url: str | None = None
    confirmed_at: datetime
    signature: str | None = None
    signature_kid: str | None = None
    receipt_token_present: bool = False


class AnchorCycleResponse(BaseModel):
    """Outcome of a manually triggered anchor cycle."""

    status: str
    pending_count: int
    anchored_count: int
    snapshot: AnchorSnapshotResponse | None = None


class CertificateDataResponse(BaseModel):
    """Verified facts printed on an anchoring certificate."""

    model_config = ConfigDict(from_attributes=True)

    entry_id: UUID
    entity_type: str
    entity_id: str
    event_type: str
    actor_id: str
    actor_role: str
    timestamp: datetime
    current_hash: str
    snapshot_id: UUID
    merkle_root: str
    ledger: str
    transaction_id: str
    block_reference: str
    explorer_url: str | None = None
    anchored_at: datetime
    snapshot_entry_count: int
    inclusion_verified: bool


class ActorEntryListResponse(BaseModel):
    """One page of an actor's entries across streams, newest first."""

    actor_id: str
    items: list[AuditEntryResponse]
    limit: int
    offset: int


class AnchorSnapshotListResponse(BaseModel):
    """One page of anchored batches, newest first."""

    items: list[AnchorSnapshotResponse]
    limit: int
    offset: int


class StreamRef(BaseModel):
    """Identifies one entity stream."""

    entity_type: str = Field(min_length=1, max_length=100)
    entity_id: str = Field(min_length=1, max_length=255)


class BatchVerificationRequest(BaseModel):
    """Streams to verify together."""

    streams: list[StreamRef] = Field(min_length=1, max_length=100)


class BatchVerificationResponse(BaseModel):
    """Chain checks of several streams plus a Merkle root over all their hashes."""

    is_valid: bool
    total_entries: int
    merkle_root: str | None = None
    streams: list[ChainVerificationResponse]
    missing: list[StreamRef]
