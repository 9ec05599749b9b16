"""
confidential_sdk.crypto — Cryptographic primitives for confidential balances.

Provides:
- Ed25519 point/scalar utilities and multiscalar multiplication
- Pedersen Commitments (C = amount·G + r·H) with a NUMS generator H
- Twisted ElGamal encryption of 64-bit amounts
- Bulletproof range proofs (674 bytes)
- Sigma-protocol validity, equality and public-key proofs
"""

from confidential_sdk.crypto.curve import (
    GROUP_ORDER,
    clamp_scalar,
    decode_point,
    encode_point,
    multiscalar_mul,
    random_scalar,
)
from confidential_sdk.crypto.elgamal import (
    Ciphertext,
    ElGamalKeypair,
    add_amount,
    add_ciphertexts,
    ciphertext_encrypts,
    decrypt,
    encrypt,
    generate_keypair,
    subtract_amount,
    subtract_ciphertexts,
)
from confidential_sdk.crypto.pedersen import (
    G_BYTES,
    H_BYTES,
    PedersenCommitment,
    commit,
    hash_to_curve,
)
from confidential_sdk.crypto.range_proof import (
    RANGE_PROOF_SIZE,
    RangeProof,
    prove_range,
    verify_range,
)
from confidential_sdk.crypto.sigma_proofs import (
    EQUALITY_PROOF_SIZE,
    PUBKEY_VALIDITY_PROOF_SIZE,
    VALIDITY_PROOF_SIZE,
    prove_ciphertext_validity,
    prove_equality,
    prove_pubkey_validity,
    verify_ciphertext_validity,
    verify_equality,
)

__all__ = [
    # Curve
    "GROUP_ORDER",
    "clamp_scalar",
    "decode_point",
    "encode_point",
    "multiscalar_mul",
    "random_scalar",
    # Pedersen
    "G_BYTES",
    "H_BYTES",
    "PedersenCommitment",
    "commit",
    "hash_to_curve",
    # ElGamal
    "Ciphertext",
    "ElGamalKeypair",
    "add_amount",
    "add_ciphertexts",
    "ciphertext_encrypts",
    "decrypt",
    "encrypt",
    "generate_keypair",
    "subtract_amount",
    "subtract_ciphertexts",
    # Range Proofs
    "RANGE_PROOF_SIZE",
    "RangeProof",
    "prove_range",
    "verify_range",
    # Sigma proofs
    "EQUALITY_PROOF_SIZE",
    "PUBKEY_VALIDITY_PROOF_SIZE",
    "VALIDITY_PROOF_SIZE",
    "prove_ciphertext_validity",
    "prove_equality",
    "prove_pubkey_validity",
    "verify_ciphertext_validity",
    "verify_equality",
]
