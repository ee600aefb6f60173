"""
Cryptographic audit trail primitives.

Pure library modules for tamper-evident integrity:
- **canonicalization**: RFC 8785 canonical JSON with explicit type coercion
- **hash_chain**: SHA-256 hash chaining for sequential entry integrity
- **merkle**: Merkle tree construction and inclusion proof verification
- **signing**: Ed25519 digital signatures for entries and Merkle roots
- **verification**: Chain and entry verification utilities
"""

from herdledger.core.crypto.canonicalization import (
    CANONICALIZATION_RFC8785,
    SHA256_ALGORITHM,
    CanonicalizationError,
    canonicalize_jcs_bytes,
    sha256_hex_jcs,
)
from herdledger.core.crypto.hash_chain import (
    GENESIS_HASH,
    build_hash_material,
    canonical_json,
    compute_entry_hash,
)
from herdledger.core.crypto.merkle import (
    MerkleTree,
    ProofStep,
    build_tree,
    compute_inclusion_proof,
    compute_merkle_root,
    verify_inclusion_proof,
)
from herdledger.core.crypto.signing import (
    generate_signing_keypair,
    public_key_fingerprint,
    public_key_pem_from_private,
    sign_merkle_root,
    sign_payload,
    verify_signature,
)
from herdledger.core.crypto.verification import (
    ChainVerificationResult,
    ChainVerifier,
    verify_entry,
    verify_hash_chain,
)

__all__ = [
    "canonical_json",
    "canonicalize_jcs_bytes",
    "sha256_hex_jcs",
    "CanonicalizationError",
    "CANONICALIZATION_RFC8785",
    "SHA256_ALGORITHM",
    "GENESIS_HASH",
    "build_hash_material",
    "compute_entry_hash",
    "MerkleTree",
    "ProofStep",
    "build_tree",
    "compute_merkle_root",
    "compute_inclusion_proof",
    "verify_inclusion_proof",
    "generate_signing_keypair",
    "public_key_fingerprint",
    "public_key_pem_from_private",
    "sign_payload",
    "sign_merkle_root",
    "verify_signature",
    "ChainVerificationResult",
    "ChainVerifier",
    "verify_entry",
    "verify_hash_chain",
]
