"""Service layer for Merkle anchoring of audit entries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from herdledger.core.config import Settings, get_settings
from herdledger.core.crypto.merkle import MerkleTree
from herdledger.core.crypto.signing import sign_merkle_root
from herdledger.core.ledger.base import LedgerClient, LedgerClientError, LedgerReceipt
from herdledger.core.logging import get_logger
from herdledger.modules.audit.errors import AnchorSubmissionError
from herdledger.modules.audit.records import AnchorSnapshot
from herdledger.modules.audit.repository import AuditRepository

logger = get_logger(__name__)

AnchorCycleStatus = Literal["anchored", "skipped", "busy"]


@dataclass(frozen=True, slots=True)
class AnchorCycleResult:
    """Outcome of one anchor cycle."""

    status: AnchorCycleStatus
    snapshot: AnchorSnapshot | None = None
    pending_count: int = 0

    @property
    def anchored_count(self) -> int:
        return self.snapshot.entry_count if self.snapshot is not None else 0


class AnchoringService:
    """Batch unanchored entries into a Merkle root and anchor it to a ledger.

    Only one cycle runs at a time; a cycle requested while another is in
    flight returns ``busy`` immediately instead of queueing.
    """

    def __init__(
        self,
        repository: AuditRepository,
        ledger_client: LedgerClient,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._ledger = ledger_client
        self._settings = settings or get_settings()
        self._cycle_lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._cycle_lock.locked()

    async def run_anchor_cycle(self) -> AnchorCycleResult:
        """Anchor the oldest pending entries, if there are enough of them.

        Raises
        ------
        AnchorSubmissionError
            The ledger failed, timed out or did not confirm. Nothing is
            written and the entries stay pending.
        ConcurrencyConflictError
            A covered entry was anchored by another writer meanwhile.
        """
        if self._cycle_lock.locked():
            logger.info("anchor_cycle_busy")
            return AnchorCycleResult(status="busy")

        async with self._cycle_lock:
            pending = await self._repository.list_unanchored(
                max(1, int(self._settings.anchor_max_batch_size))
            )
            if len(pending) < self._settings.anchor_min_batch_size:
                logger.info(
                    "anchor_cycle_skipped",
                    pending_count=len(pending),
                    min_batch_size=self._settings.anchor_min_batch_size,
                )
                return AnchorCycleResult(status="skipped", pending_count=len(pending))

            leaf_hashes = [entry.current_hash for entry in pending]
            tree = MerkleTree(leaves=leaf_hashes)

            signature: str | None = None
            signature_kid: str | None = None
            if self._settings.audit_signing_key:
                signature = sign_merkle_root(tree.root, self._settings.audit_signing_key)
                signature_kid = self._settings.audit_signing_key_id

            receipt = await self._submit(tree.root, len(pending))

            snapshot = AnchorSnapshot(
                id=uuid4(),
                created_at=datetime.now(UTC),
                entry_ids=[str(entry.id) for entry in pending],
                leaf_hashes=leaf_hashes,
                merkle_root=tree.root,
                ledger=self._ledger.name,
                transaction_id=receipt.transaction_id,
                block_reference=receipt.block_reference,
                confirmed_at=receipt.confirmed_at,
                explorer_url=self._ledger.build_explorer_url(receipt.transaction_id),
                receipt_token=receipt.receipt_token,
                signature=signature,
                signature_kid=signature_kid,
            )
            try:
                await self._repository.record_snapshot(snapshot)
            except Exception:
                # The root is on the ledger but no snapshot points at it.
                logger.error(
                    "anchor_receipt_orphaned",
                    snapshot_id=str(snapshot.id),
                    merkle_root=snapshot.merkle_root,
                    ledger=snapshot.ledger,
                    transaction_id=snapshot.transaction_id,
                    block_reference=snapshot.block_reference,
                    entry_count=snapshot.entry_count,
                    exc_info=True,
                )
                raise

        logger.info(
            "anchor_cycle_completed",
            snapshot_id=str(snapshot.id),
            merkle_root=snapshot.merkle_root,
            entry_count=snapshot.entry_count,
            ledger=snapshot.ledger,
            transaction_id=snapshot.transaction_id,
        )
        return AnchorCycleResult(
            status="anchored", snapshot=snapshot, pending_count=len(pending)
        )

    async def _submit(self, merkle_root: str, entry_count: int) -> LedgerReceipt:
        timeout = self._settings.anchor_submit_timeout_seconds
        try:
            receipt = await asyncio.wait_for(self._ledger.submit_root(merkle_root), timeout)
        except TimeoutError as exc:
            logger.warning(
                "anchor_submission_failed",
                reason="timeout",
                merkle_root=merkle_root,
                entry_count=entry_count,
                timeout_seconds=timeout,
            )
            raise AnchorSubmissionError(
                f"Ledger did not answer within {timeout:g}s"
            ) from exc
        except LedgerClientError as exc:
            logger.warning(
                "anchor_submission_failed",
                reason="ledger_error",
                merkle_root=merkle_root,
                entry_count=entry_count,
                error=str(exc),
            )
            raise AnchorSubmissionError(str(exc)) from exc

        if not receipt.confirmed:
            logger.warning(
                "anchor_submission_failed",
                reason="unconfirmed",
                merkle_root=merkle_root,
                transaction_id=receipt.transaction_id,
            )
            raise AnchorSubmissionError(
                f"Ledger transaction {receipt.transaction_id} was not confirmed"
            )
        return receipt

    async def anchor_all_pending(self, *, max_batches: int | None = None) -> list[AnchorSnapshot]:
        """Run cycles until one anchors nothing (or ``max_batches`` is hit)."""
        snapshots: list[AnchorSnapshot] = []
        batches = 0
        while True:
            if max_batches is not None and batches >= max_batches:
                break
            result = await self.run_anchor_cycle()
            if result.snapshot is None:
                break
            snapshots.append(result.snapshot)
            batches += 1
        return snapshots
