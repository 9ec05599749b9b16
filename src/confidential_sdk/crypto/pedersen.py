"""
Pedersen Commitment primitives for confidential amounts.

Provides:
- hash_to_curve: NUMS (Nothing-Up-My-Sleeve) generator derivation
- PedersenCommitment: commit / verify / open over Ed25519
- commit(): module-level shortcut returning the 32-byte commitment

Mathematical foundation:
    C = amount·G + r·H
    where G is the Ed25519 base point and H = hash_to_curve(G) is a NUMS point
    with unknown discrete log w.r.t. G. The same C doubles as the commitment
    half of a twisted ElGamal ciphertext, which lets range proofs speak about
    encrypted amounts directly.

References:
    [Ped91] T.P. Pedersen, "Non-Interactive and Information-Theoretic Secure
            Verifiable Secret Sharing", CRYPTO '91, §3.
    [H2C]   IETF RFC 9380 hash-to-curve (try-and-increment variant, with the
            cofactor cleared so H lies in the prime-order subgroup).
"""

from __future__ import annotations

import hashlib

import ecdsa.ellipticcurve as ec

from confidential_sdk.crypto.curve import (
    BASE_POINT,
    clear_cofactor,
    decode_point,
    encode_point,
    is_identity,
    make_point,
    multiscalar_mul,
    point_sub,
    require_scalar,
    scalar_mul,
    validate_amount,
)
from confidential_sdk.errors import InputValidationError, InvalidPointError

G_BYTES = encode_point(BASE_POINT)
"""32-byte encoding of the Ed25519 base point G (value generator)."""

_H2C_DOMAIN = b"confidential-sdk/hash-to-curve/v1"


# ==============================================================================
# hash_to_curve: NUMS generator derivation
# ==============================================================================


def hash_to_curve(seed: bytes, domain: bytes = _H2C_DOMAIN) -> ec.AbstractPoint:
    """
    Derive a NUMS generator from arbitrary seed bytes.

    Algorithm (try-and-increment):
        1. candidate = SHA-512(domain ∥ seed ∥ counter)[:32]
        2. If candidate is not a valid point encoding: counter += 1
        3. Multiply by the cofactor 8; retry on the identity

    Args:
        seed: seed bytes (e.g. the encoding of G, or a label plus index).
        domain: domain-separation tag.

    Returns:
        A prime-order point with no known discrete log relative to G.
    """
    if not seed:
        raise InputValidationError("hash_to_curve seed must be non-empty")

    for counter in range(1000):
        digest = hashlib.sha512(domain + seed + counter.to_bytes(4, "little")).digest()
        try:
            pt = decode_point(digest[:32])
        except InvalidPointError:
            continue
        pt = clear_cofactor(pt)
        if is_identity(pt):
            continue
        return make_point(pt.x(), pt.y())

    raise RuntimeError("hash_to_curve: failed to find a valid point in 1000 iterations")


def _nums_h() -> ec.PointEdwards:
    pt = hash_to_curve(G_BYTES)
    # Precomputation table for the blinding generator, used in every commitment
    return make_point(pt.x(), pt.y(), precompute=True)


# ==============================================================================
# Module-level NUMS constant
# ==============================================================================

H_POINT = _nums_h()
"""The NUMS blinding generator H = hash_to_curve(G)."""

H_BYTES = encode_point(H_POINT)
"""32-byte encoding of H."""


# ==============================================================================
# PedersenCommitment
# ==============================================================================


class PedersenCommitment:
    """
    Pedersen Commitment scheme over Ed25519.

    A commitment C = amount·G + r·H is:
    - **Hiding**: reveals nothing about `amount` without `r`
    - **Binding**: cannot open to a different `(amount', r')` pair
    - **Homomorphic**: C1 + C2 = (a1+a2)·G + (r1+r2)·H
    """

    @staticmethod
    def commit_point(amount: int, blinding: int) -> ec.AbstractPoint:
        """Same as commit() but returns the curve point."""
        validate_amount(amount)
        r = require_scalar(blinding, "blinding")
        return multiscalar_mul([amount, r], [BASE_POINT, H_POINT])

    @staticmethod
    def commit(amount: int, blinding: int) -> bytes:
        """
        Create a Pedersen Commitment C = amount·G + r·H.

        Args:
            amount: committed value in [0, 2^64).
            blinding: non-zero blinding factor r (reduced modulo L).

        Returns:
            32-byte encoding of C. Deterministic in (amount, blinding).

        Raises:
            RangeError: amount outside [0, 2^64).
            InvalidRandomnessError: blinding is zero.
        """
        return encode_point(PedersenCommitment.commit_point(amount, blinding))

    @staticmethod
    def verify(commitment: bytes, amount: int, blinding: int) -> bool:
        """
        Verify that commitment == amount·G + blinding·H.

        Returns:
            True on a match, False for any mismatch or malformed input.
        """
        try:
            return commitment == PedersenCommitment.commit(amount, blinding)
        except InputValidationError:
            return False

    @staticmethod
    def open(commitment: bytes, amount: int) -> bytes:
        """
        Open a commitment by subtracting amount·G, yielding r·H.

        Args:
            commitment: 32-byte commitment C.
            amount: the claimed committed value.

        Returns:
            32-byte encoding of (C - amount·G) = r·H.

        Raises:
            InvalidPointError: commitment does not decode.
        """
        validate_amount(amount)
        c = decode_point(commitment)
        return encode_point(point_sub(c, scalar_mul(amount, BASE_POINT)))


def commit(amount: int, blinding: int) -> bytes:
    """Shortcut for PedersenCommitment.commit(amount, blinding)."""
    return PedersenCommitment.commit(amount, blinding)

