"""
SQLAlchemy ORM models for the audit trail.

Column types are portable (``Uuid``, ``JSON``) so the same schema runs on
PostgreSQL in production and SQLite in tests; JSON columns become JSONB on
PostgreSQL.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON().with_variant(JSONB(), "postgresql"),
        list[str]: JSON().with_variant(JSONB(), "postgresql"),
    }


# =============================================================================
# Audit Hash Chain
# =============================================================================


class AuditEntryRow(Base):
    """
    One immutable entry in an entity's audit stream.

    Rows are only ever inserted; the single permitted update sets
    ``anchor_snapshot_id`` once, when the entry is anchored.
    """

    __tablename__ = "audit_entries"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="CREATE, UPDATE, DELETE, APPROVE, REJECT, SIGN, ...",
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Hashed; assigned by the application, never by the database",
    )

    chain_sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="0-based position in the (entity_type, entity_id) stream",
    )
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    current_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hash",
    )
    hash_algorithm: Mapped[str] = mapped_column(String(16), nullable=False, default="sha-256")
    hash_canonicalization: Mapped[str] = mapped_column(
        String(16), nullable=False, default="rfc8785"
    )

    signature: Mapped[str | None] = mapped_column(
        Text,
        comment="Base64 Ed25519 signature of the entry signing payload",
    )
    signer_public_key_id: Mapped[str | None] = mapped_column(String(64))
    anchor_snapshot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("anchor_snapshots.id"),
    )

    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "chain_sequence",
            name="uq_audit_entries_stream_sequence",
        ),
        UniqueConstraint("current_hash", name="uq_audit_entries_current_hash"),
        Index("ix_audit_entries_unanchored", "anchor_snapshot_id", "created_at", "id"),
        Index("ix_audit_entries_actor", "actor_id", "created_at"),
    )


class AnchorSnapshotRow(Base):
    """A Merkle root over a batch of entries, anchored to an external ledger."""

    __tablename__ = "anchor_snapshots"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    entry_ids: Mapped[list[str]] = mapped_column(
        nullable=False,
        comment="Covered entry IDs in leaf order",
    )
    leaf_hashes: Mapped[list[str]] = mapped_column(
        nullable=False,
        comment="current_hash of each covered entry at selection time",
    )
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    merkle_root: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 Merkle root hash",
    )
    ledger: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    block_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    explorer_url: Mapped[str | None] = mapped_column(Text)
    confirmed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    receipt_token: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        comment="Raw ledger receipt, e.g. an RFC 3161 timestamp token",
    )
    signature: Mapped[str | None] = mapped_column(
        Text,
        comment="Ed25519 signature of merkle_root",
    )
    signature_kid: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (Index("ix_anchor_snapshots_created_at", "created_at"),)


class ActorKeyPairRow(Base):
    """
    Ed25519 public key registered for an actor.

    The private key is only stored (encrypted) for custodial actors. Rows
    are superseded, never deleted.
    """

    __tablename__ = "actor_keypairs"

    key_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="SHA-256 fingerprint of the DER public key",
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    private_key_encrypted: Mapped[str | None] = mapped_column(Text)
    algorithm: Mapped[str] = mapped_column(String(20), nullable=False, default="Ed25519")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_actor_keypairs_actor", "actor_id", "superseded_at"),)
