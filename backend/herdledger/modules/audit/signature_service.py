"""
Actor keypairs and Ed25519 entry signatures.

Entry signatures sit on top of the hash chain: they attribute an entry to a
specific actor (e.g. a veterinarian approving a treatment) and are not part
of the hash input. Private keys are handed back to the actor at onboarding;
only custodial actors have theirs stored, encrypted under the platform
master key.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from herdledger.core.crypto.canonicalization import canonicalize_jcs_bytes
from herdledger.core.crypto.signing import (
    SIGNATURE_ALGORITHM_ED25519,
    generate_signing_keypair,
    public_key_fingerprint,
    sign_payload,
    verify_signature,
)
from herdledger.core.encryption import EncryptionError, SigningKeyVault
from herdledger.core.logging import get_logger
from herdledger.modules.audit.errors import KeyCustodyError, NotFoundError
from herdledger.modules.audit.records import AuditEntry, KeyPair
from herdledger.modules.audit.repository import AuditRepository

logger = get_logger(__name__)


def build_signing_payload(
    *,
    entry_id: Any,
    entity_type: str,
    entity_id: str,
    event_type: str,
    actor_id: str,
    timestamp: datetime,
    current_hash: str,
) -> bytes:
    """Return the canonical bytes an entry signature covers."""
    return canonicalize_jcs_bytes(
        {
            "entry_id": str(entry_id),
            "entity_type": entity_type,
            "entity_id": entity_id,
            "event_type": event_type,
            "actor_id": actor_id,
            "timestamp": timestamp,
            "current_hash": current_hash,
        }
    )


def entry_signing_payload(entry: AuditEntry) -> bytes:
    return build_signing_payload(
        entry_id=entry.id,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        event_type=entry.event_type,
        actor_id=entry.actor_id,
        timestamp=entry.created_at,
        current_hash=entry.current_hash,
    )


@dataclass(frozen=True, slots=True)
class GeneratedKeyPair:
    """Result of onboarding an actor. ``private_key_pem`` is shown once."""

    key_id: str
    actor_id: str
    public_key_pem: str
    private_key_pem: str
    custodial: bool
    algorithm: str = SIGNATURE_ALGORITHM_ED25519


class SignatureService:
    """Onboards actors and checks entry signatures."""

    def __init__(
        self,
        repository: AuditRepository,
        *,
        vault: SigningKeyVault | None = None,
    ) -> None:
        self._repository = repository
        self._vault = vault

    # Primitives

    @staticmethod
    def generate_keypair() -> tuple[str, str]:
        return generate_signing_keypair()

    @staticmethod
    def sign(canonical_payload: bytes | str, private_key_pem: str) -> str:
        return sign_payload(canonical_payload, private_key_pem)

    @staticmethod
    def verify(canonical_payload: bytes | str, signature: str, public_key_pem: str) -> bool:
        return verify_signature(canonical_payload, signature, public_key_pem)

    # Key custody

    async def onboard_actor(self, actor_id: str, *, custodial: bool = False) -> GeneratedKeyPair:
        """Generate and register a fresh keypair for ``actor_id``.

        The actor's previous key, if any, is superseded but kept so that
        older signatures stay verifiable.
        """
        if custodial and self._vault is None:
            raise KeyCustodyError(
                "Custodial keys require encryption_master_key to be configured"
            )

        private_pem, public_pem = generate_signing_keypair()
        key_id = public_key_fingerprint(public_pem)
        encrypted: str | None = None
        if custodial:
            assert self._vault is not None
            encrypted = self._vault.seal(private_pem, signing_key_id=key_id)

        await self._repository.add_keypair(
            KeyPair(
                key_id=key_id,
                actor_id=actor_id,
                public_key_pem=public_pem,
                created_at=datetime.now(UTC),
                private_key_encrypted=encrypted,
            )
        )
        logger.info("actor_keypair_onboarded", actor_id=actor_id, key_id=key_id, custodial=custodial)
        return GeneratedKeyPair(
            key_id=key_id,
            actor_id=actor_id,
            public_key_pem=public_pem,
            private_key_pem=private_pem,
            custodial=custodial,
        )

    async def private_key_for(self, actor_id: str) -> str:
        """Decrypt the active custodial private key of ``actor_id``."""
        keypair = await self._repository.active_keypair(actor_id)
        if keypair is None:
            raise NotFoundError(f"No active signing key for actor {actor_id}")
        if keypair.private_key_encrypted is None:
            raise KeyCustodyError(f"Signing key of actor {actor_id} is not held by the platform")
        if self._vault is None:
            raise KeyCustodyError("encryption_master_key is not configured")
        try:
            return self._vault.open(keypair.private_key_encrypted, signing_key_id=keypair.key_id)
        except EncryptionError as exc:
            raise KeyCustodyError(f"Cannot decrypt signing key {keypair.key_id}") from exc

    async def verify_entry(self, entry: AuditEntry) -> bool:
        """Check ``entry.signature`` against the registered signer key.

        Unsigned entries are reported as not verified. An unknown
        ``signer_public_key_id`` raises :class:`NotFoundError`.
        """
        if not entry.signature or not entry.signer_public_key_id:
            return False
        keypair = await self._repository.get_keypair(entry.signer_public_key_id)
        if keypair is None:
            raise NotFoundError(f"Unknown signer key {entry.signer_public_key_id}")
        if keypair.actor_id != entry.actor_id:
            logger.warning(
                "entry_signer_mismatch",
                entry_id=str(entry.id),
                actor_id=entry.actor_id,
                key_actor_id=keypair.actor_id,
            )
            return False
        return verify_signature(
            entry_signing_payload(entry), entry.signature, keypair.public_key_pem
        )
