"""
Append-only, per-entity hash chains.

Every ``(entity_type, entity_id)`` pair owns one stream. Appends to the same
stream are serialized by an asyncio lock owned by the store; the repository
then performs read-latest + insert as one atomic unit, so two appends can
never share a ``chain_sequence``.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from cryptography.exceptions import UnsupportedAlgorithm

from herdledger.core.crypto.canonicalization import normalize_for_hashing
from herdledger.core.crypto.hash_chain import (
    GENESIS_HASH,
    HASH_ALGORITHM_SHA256,
    HASH_CANONICALIZATION_RFC8785,
    build_hash_material,
    compute_entry_hash,
)
from herdledger.core.crypto.signing import (
    public_key_fingerprint,
    public_key_pem_from_private,
    sign_payload,
)
from herdledger.core.logging import audit_stream_context, get_logger
from herdledger.modules.audit.errors import (
    ConcurrencyConflictError,
    KeyCustodyError,
    NotFoundError,
)
from herdledger.modules.audit.records import Actor, AuditEntry
from herdledger.modules.audit.repository import AuditRepository
from herdledger.modules.audit.signature_service import SignatureService, build_signing_payload

logger = get_logger(__name__)


class ChainStore:
    """Appends hash-chained entries and streams them back in order."""

    def __init__(
        self,
        repository: AuditRepository,
        *,
        signature_service: SignatureService | None = None,
        lock_timeout_seconds: float = 5.0,
        page_size: int = 500,
    ) -> None:
        self._repository = repository
        self._signature_service = signature_service
        self._lock_timeout = lock_timeout_seconds
        self._page_size = page_size
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, stream: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(stream)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[stream] = lock
        return lock

    @asynccontextmanager
    async def _stream_lock(self, entity_type: str, entity_id: str) -> AsyncIterator[None]:
        lock = self._lock_for((entity_type, entity_id))
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._lock_timeout)
        except TimeoutError as exc:
            logger.warning(
                "audit_append_lock_timeout",
                entity_type=entity_type,
                entity_id=entity_id,
                timeout_seconds=self._lock_timeout,
            )
            raise ConcurrencyConflictError(
                f"Timed out waiting for the append lock of stream {entity_type}/{entity_id}"
            ) from exc
        try:
            yield
        finally:
            lock.release()

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
        """Append one entry to the stream of ``(entity_type, entity_id)``.

        Parameters
        ----------
        payload:
            Mapping of JSON-compatible values. Datetimes, decimals, UUIDs and
            the other types ``normalize_for_hashing`` accepts are coerced
            first; the coerced form is what gets stored and hashed.
        actor:
            Who performed the action.
        sign:
            Sign the entry with the actor's key. Uses ``private_key_pem``
            when given, otherwise the actor's custodial key.

        Returns
        -------
        AuditEntry
            The persisted entry with its chain fields filled in.

        Raises
        ------
        CanonicalizationError
            The payload holds a value with no canonical JSON form.
        KeyCustodyError
            The signing key is missing or is not an Ed25519 private key.
        """
        signing_key: str | None = None
        signer_key_id: str | None = None
        if sign or private_key_pem is not None:
            signing_key = private_key_pem
            if signing_key is None:
                if self._signature_service is None:
                    raise ValueError("sign=True needs private_key_pem or a signature service")
                signing_key = await self._signature_service.private_key_for(actor.actor_id)
            try:
                signer_key_id = public_key_fingerprint(public_key_pem_from_private(signing_key))
            except (TypeError, ValueError, UnsupportedAlgorithm) as exc:
                raise KeyCustodyError(
                    f"Signing key for actor {actor.actor_id} is not a usable Ed25519 private key"
                ) from exc

        entry_id = uuid4()
        entry_payload = normalize_for_hashing(dict(payload))

        def build(latest: AuditEntry | None) -> AuditEntry:
            previous_hash = latest.current_hash if latest is not None else GENESIS_HASH
            sequence = latest.chain_sequence + 1 if latest is not None else 0
            created_at = datetime.now(UTC)
            material = build_hash_material(
                entry_id=entry_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                timestamp=created_at,
                chain_sequence=sequence,
                payload=entry_payload,
            )
            current_hash = compute_entry_hash(material, previous_hash)
            signature = None
            if signing_key is not None:
                signature = sign_payload(
                    build_signing_payload(
                        entry_id=entry_id,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        event_type=event_type,
                        actor_id=actor.actor_id,
                        timestamp=created_at,
                        current_hash=current_hash,
                    ),
                    signing_key,
                )
            return AuditEntry(
                id=entry_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                created_at=created_at,
                payload=entry_payload,
                chain_sequence=sequence,
                previous_hash=previous_hash,
                current_hash=current_hash,
                hash_algorithm=HASH_ALGORITHM_SHA256,
                hash_canonicalization=HASH_CANONICALIZATION_RFC8785,
                signature=signature,
                signer_public_key_id=signer_key_id,
            )

        with audit_stream_context(entity_type, entity_id):
            async with self._stream_lock(entity_type, entity_id):
                entry = await self._repository.append_entry(entity_type, entity_id, build)

            logger.info(
                "audit_entry_appended",
                entry_id=str(entry.id),
                event_type=event_type,
                chain_sequence=entry.chain_sequence,
                signed=entry.signature is not None,
            )
        return entry

    async def stream_for(
        self,
        entity_type: str,
        entity_id: str,
        *,
        after_sequence: int = -1,
        until_sequence: int | None = None,
    ) -> AsyncIterator[AuditEntry]:
        """Yield the stream's entries in sequence order, one page at a time.

        Resume an interrupted read by passing the last sequence seen as
        ``after_sequence``.
        """
        cursor = after_sequence
        while until_sequence is None or cursor < until_sequence:
            page = await self._repository.list_entries(
                entity_type,
                entity_id,
                after_sequence=cursor,
                until_sequence=until_sequence,
                limit=self._page_size,
            )
            for entry in page:
                yield entry
            if len(page) < self._page_size:
                return
            cursor = page[-1].chain_sequence

    async def get_entry(self, entry_id: UUID) -> AuditEntry:
        entry = await self._repository.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Audit entry {entry_id} not found")
        return entry

    async def latest_sequence(self, entity_type: str, entity_id: str) -> int | None:
        return await self._repository.latest_sequence(entity_type, entity_id)
