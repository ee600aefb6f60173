"""AES-256-GCM sealing of custodial signing keys at rest."""

from __future__ import annotations

import base64
import binascii
import os
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from herdledger.core.config import Settings

_ENC_PREFIX = "enc:v1:"
_NONCE_BYTES = 12
_DEFAULT_KEY_ID = "default"


class EncryptionError(Exception):
    """Raised when a custodial key cannot be sealed or opened."""


class SealedToken(NamedTuple):
    """The parts of an ``enc:v1:<master_key_id>:<base64(nonce || ciphertext)>`` token."""

    master_key_id: str
    nonce: bytes
    ciphertext: bytes


def _decode_master_key(master_key_id: str, key_b64: str) -> bytes:
    try:
        raw_key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError(f"master key '{master_key_id}' is not valid base64") from exc
    if len(raw_key) != 32:
        raise EncryptionError(
            f"master key '{master_key_id}' must be 256 bits (32 bytes), got {len(raw_key)}"
        )
    return raw_key


def parse_sealed_token(token: str) -> SealedToken:
    """Split a sealed token into master key id, nonce and ciphertext."""
    if not token.startswith(_ENC_PREFIX):
        raise EncryptionError("value does not have a supported encrypted prefix")
    master_key_id, sep, payload = token[len(_ENC_PREFIX) :].partition(":")
    if not sep:
        raise EncryptionError("corrupted enc:v1 token (missing key id delimiter)")
    try:
        blob = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError("corrupted enc:v1 token (bad base64)") from exc
    if len(blob) <= _NONCE_BYTES:
        raise EncryptionError("corrupted enc:v1 token (too short)")
    return SealedToken(master_key_id.strip(), blob[:_NONCE_BYTES], blob[_NONCE_BYTES:])


def _signing_key_aad(signing_key_id: str) -> bytes:
    return f"keypair:{signing_key_id}".encode()


class SigningKeyVault:
    """Seal and open actors' Ed25519 private keys under platform master keys.

    Every sealed key is bound to its signing key id through the GCM
    associated data, so a token copied onto another keypair row does not
    open. Several master keys may be loaded at once: new tokens use the
    active one and tokens sealed under retired ones still open until they
    are resealed.
    """

    def __init__(
        self,
        master_key_b64: str | None = None,
        *,
        keyring: dict[str, str] | None = None,
        active_key_id: str = _DEFAULT_KEY_ID,
    ) -> None:
        entries = {
            str(key_id).strip(): str(value).strip()
            for key_id, value in (keyring or {}).items()
            if str(key_id).strip() and str(value).strip()
        }
        active = active_key_id.strip() or _DEFAULT_KEY_ID
        if not entries and master_key_b64:
            entries[active] = master_key_b64.strip()
        if not entries:
            raise EncryptionError("master keyring is empty (set ENCRYPTION_MASTER_KEY)")

        self._keys = {key_id: _decode_master_key(key_id, value) for key_id, value in entries.items()}
        self._active_key_id = active if active in self._keys else next(iter(self._keys))

    @classmethod
    def from_settings(cls, settings: Settings) -> SigningKeyVault | None:
        """Build the vault from configuration, or ``None`` when no master key is set."""
        if not settings.encryption_master_key:
            return None
        return cls(settings.encryption_master_key)

    @property
    def active_key_id(self) -> str:
        return self._active_key_id

    def seal(self, private_key_pem: str, *, signing_key_id: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = AESGCM(self._keys[self._active_key_id]).encrypt(
            nonce, private_key_pem.encode("utf-8"), _signing_key_aad(signing_key_id)
        )
        payload = base64.b64encode(nonce + ciphertext).decode("ascii")
        return f"{_ENC_PREFIX}{self._active_key_id}:{payload}"

    def open(self, token: str, *, signing_key_id: str) -> str:
        sealed = parse_sealed_token(token)
        key = self._keys.get(sealed.master_key_id)
        if key is None:
            raise EncryptionError(f"unknown master key id '{sealed.master_key_id}'")
        try:
            plaintext = AESGCM(key).decrypt(
                sealed.nonce, sealed.ciphertext, _signing_key_aad(signing_key_id)
            )
        except InvalidTag as exc:
            raise EncryptionError(
                "decryption failed: master key or signing key id does not match"
            ) from exc
        return plaintext.decode("utf-8")

    def needs_reseal(self, token: str) -> bool:
        return parse_sealed_token(token).master_key_id != self._active_key_id

    def reseal(self, token: str, *, signing_key_id: str) -> str:
        """Re-encrypt ``token`` under the active master key."""
        return self.seal(self.open(token, signing_key_id=signing_key_id), signing_key_id=signing_key_id)
