"""
Ed25519 digital signing for audit entries and Merkle roots.

Uses the ``cryptography`` library for Ed25519 key generation, signing, and
verification. Entry signatures provide non-repudiation for actor approvals
(veterinarian sign-off, prescription approval); root signatures attribute an
anchored batch to the platform.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

SIGNATURE_ALGORITHM_ED25519 = "Ed25519"


def _to_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, bytes):
        return payload
    return payload.encode("utf-8")


def _load_private_key(private_key_pem: str) -> Ed25519PrivateKey:
    private_key = load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    if not isinstance(private_key, Ed25519PrivateKey):
        raise TypeError("Expected an Ed25519 private key")
    return private_key


def _load_public_key(public_key_pem: str) -> Ed25519PublicKey:
    public_key = load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(public_key, Ed25519PublicKey):
        raise TypeError("Expected an Ed25519 public key")
    return public_key


def generate_signing_keypair() -> tuple[str, str]:
    """Generate a new Ed25519 key pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_pem, public_key_pem)`` as PEM-encoded strings.
    """
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


def public_key_fingerprint(public_key_pem: str) -> str:
    """Return the SHA-256 hex fingerprint of a public key's DER encoding."""
    der = _load_public_key(public_key_pem).public_bytes(
        encoding=Encoding.DER,
        format=PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def public_key_pem_from_private(private_key_pem: str) -> str:
    """Derive the PEM public key matching ``private_key_pem``."""
    return _load_private_key(private_key_pem).public_key().public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


def sign_payload(payload: bytes | str, private_key_pem: str) -> str:
    """Sign canonical payload bytes with an Ed25519 private key.

    Parameters
    ----------
    payload:
        Canonical bytes (or text) to sign.
    private_key_pem:
        PEM-encoded Ed25519 private key.

    Returns
    -------
    str
        Base64-encoded Ed25519 signature.
    """
    signature = _load_private_key(private_key_pem).sign(_to_bytes(payload))
    return base64.b64encode(signature).decode("utf-8")


def verify_signature(payload: bytes | str, signature: str, public_key_pem: str) -> bool:
    """Verify an Ed25519 signature over ``payload``.

    Parameters
    ----------
    payload:
        The canonical bytes (or text) that were signed.
    signature:
        Base64-encoded Ed25519 signature to verify.
    public_key_pem:
        PEM-encoded Ed25519 public key.

    Returns
    -------
    bool
        ``True`` if the signature is valid.
    """
    public_key = _load_public_key(public_key_pem)
    try:
        raw_signature = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    try:
        public_key.verify(raw_signature, _to_bytes(payload))
        return True
    except InvalidSignature:
        return False


def sign_merkle_root(root_hash: str, private_key_pem: str) -> str:
    """Sign a hex-encoded Merkle root hash."""
    return sign_payload(root_hash, private_key_pem)
