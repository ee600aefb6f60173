"""Single entry point wiring the audit trail services together."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any
from uuid import UUID

from herdledger.core.config import Settings, get_settings
from herdledger.core.crypto.verification import ChainVerificationResult
from herdledger.core.encryption import SigningKeyVault
from herdledger.core.ledger import LedgerClient, build_ledger_client
from herdledger.modules.audit.anchoring_service import AnchorCycleResult, AnchoringService
from herdledger.modules.audit.certificates import CertificateData, CertificateService
from herdledger.modules.audit.chain_store import ChainStore
from herdledger.modules.audit.records import Actor, AnchorSnapshot, AuditEntry
from herdledger.modules.audit.repository import AuditRepository
from herdledger.modules.audit.scheduler import AnchorScheduler
from herdledger.modules.audit.signature_service import GeneratedKeyPair, SignatureService
from herdledger.modules.audit.verification_service import (
    BatchVerification,
    InclusionVerification,
    VerificationService,
)


def _check_page(limit: int, offset: int) -> None:
    if limit < 1 or offset < 0:
        raise ValueError(f"Invalid page (limit={limit}, offset={offset})")


class AuditTrail:
    """Tamper-evident audit trail for entity lifecycles.

    Construct one per process and share it; append locks and the anchor
    single-flight guard live on this instance.
    """

    def __init__(
        self,
        repository: AuditRepository,
        *,
        ledger_client: LedgerClient | None = None,
        settings: Settings | None = None,
        vault: SigningKeyVault | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if vault is None:
            vault = SigningKeyVault.from_settings(self.settings)

        self.repository = repository
        self.ledger_client = ledger_client or build_ledger_client(self.settings)
        self.signatures = SignatureService(repository, vault=vault)
        self.chain_store = ChainStore(
            repository,
            signature_service=self.signatures,
            lock_timeout_seconds=self.settings.audit_append_lock_timeout_seconds,
            page_size=self.settings.audit_stream_page_size,
        )
        self.anchoring = AnchoringService(repository, self.ledger_client, settings=self.settings)
        self.verification = VerificationService(repository, self.chain_store)
        self.certificates = CertificateService(self.chain_store, self.verification)
        self.scheduler = AnchorScheduler.from_settings(self.anchoring, self.settings)

    # Chain

    async def append(
        self,
        entity_type: str,
        entity_id: str,
        event_type: str,
        payload: Mapping[str, Any],
        actor: Actor,
        *,
        sign: bool = False,
        private_key_pem: str | None = None,
    ) -> AuditEntry:
        return await self.chain_store.append(
            entity_type,
            entity_id,
            event_type,
            payload,
            actor,
            sign=sign,
            private_key_pem=private_key_pem,
        )

    def stream_for(
        self,
        entity_type: str,
        entity_id: str,
        *,
        after_sequence: int = -1,
        until_sequence: int | None = None,
    ) -> AsyncIterator[AuditEntry]:
        return self.chain_store.stream_for(
            entity_type,
            entity_id,
            after_sequence=after_sequence,
            until_sequence=until_sequence,
        )

    async def get_entry(self, entry_id: UUID) -> AuditEntry:
        return await self.chain_store.get_entry(entry_id)

    async def entries_by_actor(
        self,
        actor_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        entity_type: str | None = None,
        event_type: str | None = None,
    ) -> list[AuditEntry]:
        """Entries recorded by one actor across all streams, newest first."""
        _check_page(limit, offset)
        return await self.repository.list_entries_by_actor(
            actor_id,
            limit=limit,
            offset=offset,
            entity_type=entity_type,
            event_type=event_type,
        )

    # Verification

    async def verify_chain(self, entity_type: str, entity_id: str) -> ChainVerificationResult:
        return await self.verification.verify_chain(entity_type, entity_id)

    async def verify_chains(self, streams: Iterable[tuple[str, str]]) -> BatchVerification:
        return await self.verification.verify_chains(streams)

    async def verify_inclusion(self, entry_id: UUID) -> InclusionVerification:
        return await self.verification.verify_inclusion(entry_id)

    async def certificate_data(self, entry_id: UUID) -> CertificateData:
        return await self.certificates.certificate_data(entry_id)

    async def get_snapshot(self, snapshot_id: UUID) -> AnchorSnapshot:
        return await self.verification.load_snapshot(snapshot_id)

    async def list_snapshots(self, *, limit: int = 50, offset: int = 0) -> list[AnchorSnapshot]:
        _check_page(limit, offset)
        return await self.repository.list_snapshots(limit=limit, offset=offset)

    # Anchoring

    async def run_anchor_cycle(self) -> AnchorCycleResult:
        return await self.anchoring.run_anchor_cycle()

    async def anchor_all_pending(self, *, max_batches: int | None = None) -> list[AnchorSnapshot]:
        return await self.anchoring.anchor_all_pending(max_batches=max_batches)

    # Signatures

    def generate_keypair(self) -> tuple[str, str]:
        return self.signatures.generate_keypair()

    def sign(self, canonical_payload: bytes | str, private_key_pem: str) -> str:
        return self.signatures.sign(canonical_payload, private_key_pem)

    def verify(self, canonical_payload: bytes | str, signature: str, public_key_pem: str) -> bool:
        return self.signatures.verify(canonical_payload, signature, public_key_pem)

    async def onboard_actor(self, actor_id: str, *, custodial: bool = False) -> GeneratedKeyPair:
        return await self.signatures.onboard_actor(actor_id, custodial=custodial)

    async def verify_entry_signature(self, entry_id: UUID) -> bool:
        entry = await self.chain_store.get_entry(entry_id)
        return await self.signatures.verify_entry(entry)
