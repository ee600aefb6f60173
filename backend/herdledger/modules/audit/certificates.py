"""Flat data behind a downloadable anchoring certificate.

Rendering (PDF, HTML, ...) is left to the consumer; this module only
assembles verified facts about one anchored entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from herdledger.core.logging import get_logger
from herdledger.modules.audit.chain_store import ChainStore
from herdledger.modules.audit.errors import EntryNotAnchoredError, IntegrityError
from herdledger.modules.audit.verification_service import VerificationService

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CertificateData:
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
    explorer_url: str | None
    anchored_at: datetime
    snapshot_entry_count: int
    inclusion_verified: bool


class CertificateService:
    """Builds certificate data only for entries whose inclusion proves out."""

    def __init__(self, chain_store: ChainStore, verification: VerificationService) -> None:
        self._chain_store = chain_store
        self._verification = verification

    async def certificate_data(self, entry_id: UUID) -> CertificateData:
        entry = await self._chain_store.get_entry(entry_id)
        if entry.anchor_snapshot_id is None:
            raise EntryNotAnchoredError(f"Audit entry {entry_id} is not anchored yet")

        inclusion = await self._verification.verify_inclusion(entry_id)
        if not inclusion.is_valid:
            logger.warning(
                "certificate_refused",
                entry_id=str(entry_id),
                errors=inclusion.errors,
            )
            raise IntegrityError(
                f"Inclusion proof failed for entry {entry_id}: " + "; ".join(inclusion.errors)
            )

        snapshot = await self._verification.load_snapshot(entry.anchor_snapshot_id)
        return CertificateData(
            entry_id=entry.id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            event_type=entry.event_type,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role,
            timestamp=entry.created_at,
            current_hash=entry.current_hash,
            snapshot_id=snapshot.id,
            merkle_root=snapshot.merkle_root,
            ledger=snapshot.ledger,
            transaction_id=snapshot.transaction_id,
            block_reference=snapshot.block_reference,
            explorer_url=snapshot.explorer_url,
            anchored_at=snapshot.confirmed_at,
            snapshot_entry_count=snapshot.entry_count,
            inclusion_verified=True,
        )
