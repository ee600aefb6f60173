"""Chain-continuity and Merkle inclusion checks over stored audit data."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from herdledger.core.crypto.canonicalization import CanonicalizationError
from herdledger.core.crypto.merkle import (
    MerkleTree,
    ProofStep,
    compute_merkle_root,
    verify_inclusion_proof,
)
from herdledger.core.crypto.verification import (
    ChainVerificationResult,
    ChainVerifier,
    recompute_entry_hash,
)
from herdledger.core.ledger.tsa import verify_timestamp_token
from herdledger.core.logging import audit_stream_context, get_logger
from herdledger.modules.audit.chain_store import ChainStore
from herdledger.modules.audit.errors import NotFoundError
from herdledger.modules.audit.records import AnchorSnapshot, AuditEntry
from herdledger.modules.audit.repository import AuditRepository

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class InclusionVerification:
    """Whether an entry is provably part of its anchored Merkle root.

    ``receipt_verified`` is ``None`` when the ledger receipt carries nothing
    that can be checked offline.
    """

    is_valid: bool
    entry_id: UUID
    snapshot_id: UUID | None = None
    leaf_hash: str | None = None
    merkle_root: str | None = None
    proof: list[ProofStep] = field(default_factory=list)
    receipt_verified: bool | None = None
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StreamVerification:
    """Chain check of one stream inside a batch verification."""

    entity_type: str
    entity_id: str
    result: ChainVerificationResult


@dataclass(frozen=True, slots=True)
class BatchVerification:
    """Chain checks of several streams, with one Merkle root over all their hashes.

    Streams with no entries are listed in ``missing`` and do not affect
    ``is_valid``. ``merkle_root`` is ``None`` when no stream had entries.
    """

    is_valid: bool
    total_entries: int
    merkle_root: str | None
    streams: list[StreamVerification] = field(default_factory=list)
    missing: list[tuple[str, str]] = field(default_factory=list)


class VerificationService:
    """Read-only integrity checks; takes no locks."""

    def __init__(self, repository: AuditRepository, chain_store: ChainStore) -> None:
        self._repository = repository
        self._chain_store = chain_store

    async def verify_chain(self, entity_type: str, entity_id: str) -> ChainVerificationResult:
        """Replay the stream up to its latest sequence at call time.

        Entries appended while the check runs are not examined. A broken
        chain is reported in the result, not raised.
        """
        latest = await self._chain_store.latest_sequence(entity_type, entity_id)
        if latest is None:
            raise NotFoundError(f"Audit stream {entity_type}/{entity_id} not found")
        result, _ = await self._replay(entity_type, entity_id, latest)
        return result

    async def verify_chains(self, streams: Iterable[tuple[str, str]]) -> BatchVerification:
        """Verify several streams and fold every entry hash into one Merkle root.

        Each stream is read up to its latest sequence at the time it is
        reached. Duplicate streams are checked once.
        """
        checked: list[StreamVerification] = []
        missing: list[tuple[str, str]] = []
        all_hashes: list[str] = []
        for entity_type, entity_id in dict.fromkeys(streams):
            latest = await self._chain_store.latest_sequence(entity_type, entity_id)
            if latest is None:
                missing.append((entity_type, entity_id))
                continue
            result, hashes = await self._replay(entity_type, entity_id, latest)
            checked.append(StreamVerification(entity_type, entity_id, result))
            all_hashes.extend(hashes)

        batch = BatchVerification(
            is_valid=all(stream.result.is_valid for stream in checked),
            total_entries=len(all_hashes),
            merkle_root=compute_merkle_root(all_hashes) if all_hashes else None,
            streams=checked,
            missing=missing,
        )
        logger.info(
            "audit_batch_verified",
            is_valid=batch.is_valid,
            stream_count=len(checked),
            missing_count=len(missing),
            total_entries=batch.total_entries,
        )
        return batch

    async def _replay(
        self, entity_type: str, entity_id: str, latest: int
    ) -> tuple[ChainVerificationResult, list[str]]:
        verifier = ChainVerifier()
        hashes: list[str] = []
        with audit_stream_context(entity_type, entity_id):
            async for entry in self._chain_store.stream_for(
                entity_type, entity_id, until_sequence=latest
            ):
                verifier.feed(entry.to_chain_dict())
                hashes.append(entry.current_hash)

            result = verifier.result
            if result.is_valid:
                logger.info("audit_chain_verified", total_entries=result.total_entries)
            else:
                logger.warning(
                    "audit_chain_broken",
                    broken_at_index=result.broken_at_index,
                    broken_at_entry_id=result.broken_at_entry_id,
                )
        return result, hashes

    async def load_snapshot(self, snapshot_id: UUID) -> AnchorSnapshot:
        snapshot = await self._repository.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Anchor snapshot {snapshot_id} not found")
        return snapshot

    async def verify_inclusion(self, entry_id: UUID) -> InclusionVerification:
        """Prove that the entry, as stored now, is covered by its anchored root.

        The leaf is recomputed from the entry's fields, and the path is rebuilt
        from the snapshot's stored leaves, so tampering with the entry, a
        sibling leaf or the root all fail the check.
        """
        entry = await self._chain_store.get_entry(entry_id)
        if entry.anchor_snapshot_id is None:
            return InclusionVerification(
                is_valid=False,
                entry_id=entry.id,
                errors=["Entry is not anchored yet"],
            )
        snapshot = await self.load_snapshot(entry.anchor_snapshot_id)
        return self._check_inclusion(entry, snapshot)

    def _check_inclusion(self, entry: AuditEntry, snapshot: AnchorSnapshot) -> InclusionVerification:
        errors: list[str] = []
        try:
            leaf_hash = recompute_entry_hash(entry.to_chain_dict(), entry.previous_hash)
        except (CanonicalizationError, KeyError, ValueError) as exc:
            return InclusionVerification(
                is_valid=False,
                entry_id=entry.id,
                snapshot_id=snapshot.id,
                merkle_root=snapshot.merkle_root,
                errors=[f"Cannot recompute entry hash ({exc})"],
            )
        if leaf_hash != entry.current_hash:
            errors.append("Entry fields no longer match the stored current_hash")

        proof: list[ProofStep] = []
        try:
            index = snapshot.entry_ids.index(str(entry.id))
        except ValueError:
            errors.append("Entry is not listed in its anchor snapshot")
            index = None

        if index is not None:
            if index >= len(snapshot.leaf_hashes) or snapshot.leaf_hashes[index] != leaf_hash:
                errors.append("Snapshot leaf does not match the recomputed entry hash")
            if snapshot.leaf_hashes:
                proof = MerkleTree(leaves=list(snapshot.leaf_hashes)).inclusion_proof(
                    min(index, len(snapshot.leaf_hashes) - 1)
                )
            if not verify_inclusion_proof(leaf_hash, proof, snapshot.merkle_root):
                errors.append("Inclusion proof does not reproduce the anchored Merkle root")

        receipt_verified: bool | None = None
        if snapshot.receipt_token is not None and snapshot.ledger == "rfc3161":
            receipt_verified = verify_timestamp_token(snapshot.receipt_token, snapshot.merkle_root)
            if not receipt_verified:
                errors.append("Ledger receipt does not cover the Merkle root")

        if errors:
            logger.warning(
                "audit_inclusion_failed",
                entry_id=str(entry.id),
                snapshot_id=str(snapshot.id),
                errors=errors,
            )
        return InclusionVerification(
            is_valid=not errors,
            entry_id=entry.id,
            snapshot_id=snapshot.id,
            leaf_hash=leaf_hash,
            merkle_root=snapshot.merkle_root,
            proof=proof,
            receipt_verified=receipt_verified,
            errors=errors,
        )
