"""
Twisted ElGamal encryption of 64-bit amounts.

Key generation:
    s  ← random non-zero scalar (secret key)
    P  = s⁻¹·H                    (public key)

Encryption of amount a with randomness r:
    commitment = a·G + r·H        (a Pedersen commitment to a)
    handle     = r·P              (decrypt handle bound to the recipient)

Decryption:
    commitment − s·handle = a·G + r·H − r·H = a·G
    followed by a bounded discrete log (baby-step giant-step).

The commitment half is an ordinary Pedersen commitment, so a range proof on
(a, r) speaks about the encrypted amount without revealing it. Ciphertexts
under the same key are additively homomorphic.

References:
    [ElG85] T. ElGamal, "A public key cryptosystem and a signature scheme based
            on discrete logarithms", IEEE Trans. IT 31(4), 1985.
    [CMTA20] Chen, Ma, Tang, Au, "PGC: Decentralized Confidential Payment
            System with Auditability", ESORICS 2020 (twisted ElGamal).
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from functools import lru_cache

import ecdsa.ellipticcurve as ec

from confidential_sdk.crypto.curve import (
    AMOUNT_UPPER_BOUND,
    BASE_POINT,
    GROUP_ORDER,
    IDENTITY,
    POINT_SIZE,
    clamp_scalar,
    decode_point,
    encode_point,
    multiscalar_mul,
    point_add,
    point_neg,
    point_sub,
    points_equal,
    random_scalar,
    require_scalar,
    scalar_mul,
    validate_amount,
)
from confidential_sdk.crypto.pedersen import H_POINT
from confidential_sdk.errors import DecryptionError, InputValidationError, InvalidPointError

CIPHERTEXT_SIZE = 2 * POINT_SIZE

# Default search bound for decryption (plaintexts in [0, 2^32))
DEFAULT_DECRYPT_BOUND = 2**32

_SEED_DOMAIN = b"confidential-sdk/elgamal-keypair/v1"


# ==============================================================================
# Keys
# ==============================================================================


@dataclass(frozen=True)
class ElGamalKeypair:
    """
    An ElGamal keypair. The public key is always derived from the secret key.

    Attributes:
        secret_key: non-zero scalar s (never serialized by this library)
        public_key: 32-byte encoding of P = s⁻¹·H
    """
    secret_key: int = field(repr=False)
    public_key: bytes

    @classmethod
    def from_secret_key(cls, secret_key: int) -> ElGamalKeypair:
        """Derive the keypair for an existing secret key."""
        s = require_scalar(secret_key, "secret_key")
        s_inv = pow(s, GROUP_ORDER - 2, GROUP_ORDER)
        return cls(secret_key=s, public_key=encode_point(scalar_mul(s_inv, H_POINT)))

    @classmethod
    def from_seed(cls, seed: bytes) -> ElGamalKeypair:
        """
        Deterministically derive a keypair from seed material (e.g. a wallet
        signature over a fixed message). The seed must be at least 32 bytes.
        """
        if len(seed) < 32:
            raise InputValidationError(f"Seed must be at least 32 bytes, got {len(seed)}")
        digest = hashlib.sha512(_SEED_DOMAIN + seed).digest()
        return cls.from_secret_key(clamp_scalar(digest[:32]))


def generate_keypair() -> ElGamalKeypair:
    """Generate a fresh keypair from the OS CSPRNG."""
    return ElGamalKeypair.from_secret_key(random_scalar())


# ==============================================================================
# Ciphertexts
# ==============================================================================


@dataclass(frozen=True)
class Ciphertext:
    """
    A twisted ElGamal ciphertext.

    Attributes:
        commitment: 32-byte point a·G + r·H
        handle: 32-byte point r·P
    """
    commitment: bytes
    handle: bytes

    def __post_init__(self) -> None:
        for name in ("commitment", "handle"):
            value = getattr(self, name)
            if not isinstance(value, bytes) or len(value) != POINT_SIZE:
                raise InvalidPointError(f"Ciphertext {name} must be {POINT_SIZE} bytes")

    def to_bytes(self) -> bytes:
        """Serialize as 64 bytes: commitment ∥ handle."""
        return self.commitment + self.handle

    @classmethod
    def from_bytes(cls, data: bytes) -> Ciphertext:
        """
        Parse a 64-byte ciphertext, checking both halves are curve points.

        Raises:
            InputValidationError: wrong length or an invalid point.
        """
        if len(data) != CIPHERTEXT_SIZE:
            raise InputValidationError(
                f"Ciphertext must be {CIPHERTEXT_SIZE} bytes, got {len(data)}"
            )
        commitment, handle = bytes(data[:POINT_SIZE]), bytes(data[POINT_SIZE:])
        decode_point(commitment)
        decode_point(handle)
        return cls(commitment=commitment, handle=handle)

    def points(self) -> tuple[ec.AbstractPoint, ec.AbstractPoint]:
        return decode_point(self.commitment), decode_point(self.handle)

    def __add__(self, other: Ciphertext) -> Ciphertext:
        return add_ciphertexts(self, other)

    def __sub__(self, other: Ciphertext) -> Ciphertext:
        return subtract_ciphertexts(self, other)


def _from_points(commitment: ec.AbstractPoint, handle: ec.AbstractPoint) -> Ciphertext:
    return Ciphertext(commitment=encode_point(commitment), handle=encode_point(handle))


def encrypt(amount: int, pubkey: bytes, randomness: int) -> Ciphertext:
    """
    Encrypt an amount under a public key.

    Args:
        amount: value in [0, 2^64).
        pubkey: 32-byte ElGamal public key.
        randomness: non-zero scalar r.

    Returns:
        Ciphertext(commitment = a·G + r·H, handle = r·P).

    Raises:
        RangeError: amount out of range.
        InvalidRandomnessError: r is zero.
        InvalidPointError: pubkey does not decode.
    """
    validate_amount(amount)
    r = require_scalar(randomness)
    pub = decode_point(pubkey)
    commitment = multiscalar_mul([amount, r], [BASE_POINT, H_POINT])
    return _from_points(commitment, scalar_mul(r, pub))


def encrypt_with_fresh_randomness(amount: int, pubkey: bytes) -> tuple[Ciphertext, int]:
    """Encrypt with a newly drawn randomness; returns (ciphertext, randomness)."""
    r = random_scalar()
    return encrypt(amount, pubkey, r), r


def decrypt_to_point(ciphertext: Ciphertext, secret_key: int) -> ec.AbstractPoint:
    """Return a·G = commitment − s·handle."""
    s = require_scalar(secret_key, "secret_key")
    c, d = ciphertext.points()
    return point_sub(c, scalar_mul(s, d))


@lru_cache(maxsize=4)
def _baby_steps(m: int) -> dict[bytes, int]:
    table: dict[bytes, int] = {}
    pt = IDENTITY
    for j in range(m):
        table[encode_point(pt)] = j
        pt = point_add(pt, BASE_POINT)
    return table


def decrypt(ciphertext: Ciphertext, secret_key: int, max_value: int = DEFAULT_DECRYPT_BOUND) -> int:
    """
    Decrypt a ciphertext whose plaintext lies in [0, max_value).

    Uses baby-step giant-step over a·G, so the cost grows with √max_value;
    the baby-step table is cached per bound.

    Raises:
        DecryptionError: no plaintext in [0, max_value) matches.
    """
    if max_value < 1 or max_value > AMOUNT_UPPER_BOUND:
        raise InputValidationError("max_value must be in [1, 2^64]")

    target = decrypt_to_point(ciphertext, secret_key)
    m = math.isqrt(max_value - 1) + 1
    table = _baby_steps(m)
    giant = point_neg(scalar_mul(m, BASE_POINT))

    for i in range(m):
        j = table.get(encode_point(target))
        if j is not None:
            value = i * m + j
            if value < max_value:
                return value
            break
        target = point_add(target, giant)

    raise DecryptionError(f"Plaintext not found below {max_value}")


def ciphertext_encrypts(ciphertext: Ciphertext, secret_key: int, amount: int) -> bool:
    """Check exactly (no discrete log) whether `ciphertext` decrypts to `amount`."""
    validate_amount(amount)
    return points_equal(decrypt_to_point(ciphertext, secret_key), scalar_mul(amount, BASE_POINT))


# ==============================================================================
# Homomorphic operations
# ==============================================================================


def add_ciphertexts(a: Ciphertext, b: Ciphertext) -> Ciphertext:
    """Ciphertext of a + b (both under the same key)."""
    ac, ad = a.points()
    bc, bd = b.points()
    return _from_points(point_add(ac, bc), point_add(ad, bd))


def subtract_ciphertexts(a: Ciphertext, b: Ciphertext) -> Ciphertext:
    """Ciphertext of a − b (both under the same key)."""
    ac, ad = a.points()
    bc, bd = b.points()
    return _from_points(point_sub(ac, bc), point_sub(ad, bd))


def add_amount(ciphertext: Ciphertext, amount: int) -> Ciphertext:
    """Add a plaintext amount; only the commitment half changes."""
    validate_amount(amount)
    c, d = ciphertext.points()
    return _from_points(point_add(c, scalar_mul(amount, BASE_POINT)), d)


def subtract_amount(ciphertext: Ciphertext, amount: int) -> Ciphertext:
    """Subtract a plaintext amount; only the commitment half changes."""
    validate_amount(amount)
    c, d = ciphertext.points()
    return _from_points(point_sub(c, scalar_mul(amount, BASE_POINT)), d)


def zero_ciphertext() -> Ciphertext:
    """The canonical encryption of zero with zero randomness."""
    return _from_points(IDENTITY, IDENTITY)
