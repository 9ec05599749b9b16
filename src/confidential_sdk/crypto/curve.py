"""
Ed25519 group arithmetic for confidential balances.

Provides:
- Curve constants (field prime, prime group order L, base point G)
- 32-byte point encode/decode (RFC 8032 §5.1.2 / §5.1.3)
- Scalar encoding, clamping and validation
- multiscalar_mul: bucketed multi-exponentiation for proof verification

All points are ecdsa ``PointEdwards`` objects (extended coordinates) or
``ellipticcurve.INFINITY`` for the group identity. Scalars are plain ints
reduced modulo L.

References:
    [RFC8032] Edwards-Curve Digital Signature Algorithm (EdDSA), §5.1.
    [Pip80]   N. Pippenger, "On the evaluation of powers and monomials",
              SIAM J. Computing 9(2), 1980 (bucket method).
"""

from __future__ import annotations

import secrets
from collections.abc import Sequence

import ecdsa.ellipticcurve as ec
from ecdsa.curves import Ed25519

from confidential_sdk.errors import (
    InputValidationError,
    InvalidPointError,
    InvalidRandomnessError,
    RangeError,
)

# ==============================================================================
# Ed25519 constants
# ==============================================================================

# Field prime 2^255 - 19
FIELD_PRIME = 2**255 - 19

# Prime order of the main subgroup
GROUP_ORDER = 2**252 + 27742317777372353535851937790883648493

COFACTOR = 8

# Amounts live in [0, 2^64)
AMOUNT_BITS = 64
AMOUNT_UPPER_BOUND = 2**AMOUNT_BITS

POINT_SIZE = 32
SCALAR_SIZE = 32

_CURVE = Ed25519.curve
_D = _CURVE.d()
_SQRT_M1 = pow(2, (FIELD_PRIME - 1) // 4, FIELD_PRIME)

# Base point with ecdsa's precomputation table enabled
BASE_POINT = Ed25519.generator

IDENTITY = ec.INFINITY
IDENTITY_BYTES = b"\x01" + b"\x00" * 31

Point = ec.PointEdwards


# ==============================================================================
# Point utilities
# ==============================================================================


def make_point(x: int, y: int, *, precompute: bool = False) -> Point:
    """Build an ecdsa PointEdwards from affine coordinates."""
    return ec.PointEdwards(
        _CURVE, x, y, 1, x * y % FIELD_PRIME, GROUP_ORDER, generator=precompute
    )


def is_identity(pt: ec.AbstractPoint) -> bool:
    """Return True for the group identity in either ecdsa representation."""
    return pt == IDENTITY


def decode_point(data: bytes) -> ec.AbstractPoint:
    """
    Decode a 32-byte RFC 8032 point encoding.

    Args:
        data: 32 bytes, little-endian y with the sign of x in the top bit.

    Returns:
        ecdsa PointEdwards (or INFINITY for the identity encoding).

    Raises:
        InvalidPointError: wrong length, non-canonical y, or not on the curve.
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != POINT_SIZE:
        size = len(data) if isinstance(data, (bytes, bytearray)) else type(data).__name__
        raise InvalidPointError(f"Expected {POINT_SIZE} bytes, got {size}")

    raw = int.from_bytes(data, "little")
    sign = raw >> 255
    y = raw & ((1 << 255) - 1)
    if y >= FIELD_PRIME:
        raise InvalidPointError("Non-canonical y coordinate")

    # x^2 = (y^2 - 1) / (d·y^2 + 1)
    y2 = y * y % FIELD_PRIME
    u = (y2 - 1) % FIELD_PRIME
    v = (_D * y2 + 1) % FIELD_PRIME
    x2 = u * pow(v, FIELD_PRIME - 2, FIELD_PRIME) % FIELD_PRIME

    x = pow(x2, (FIELD_PRIME + 3) // 8, FIELD_PRIME)
    if (x * x - x2) % FIELD_PRIME != 0:
        x = x * _SQRT_M1 % FIELD_PRIME
    if (x * x - x2) % FIELD_PRIME != 0:
        raise InvalidPointError(f"Encoding {bytes(data).hex()} is not a curve point")

    if x == 0:
        if sign:
            raise InvalidPointError("Non-canonical encoding of x = 0")
        if y == 1:
            return IDENTITY
    if (x & 1) != sign:
        x = FIELD_PRIME - x

    return make_point(x, y)


def encode_point(pt: ec.AbstractPoint) -> bytes:
    """
    Encode a point as 32 bytes (RFC 8032).

    The identity encodes as 0x01 followed by 31 zero bytes.
    """
    if is_identity(pt):
        return IDENTITY_BYTES
    x, y = pt.x(), pt.y()
    return (y | ((x & 1) << 255)).to_bytes(POINT_SIZE, "little")


def point_add(a: ec.AbstractPoint, b: ec.AbstractPoint) -> ec.AbstractPoint:
    if is_identity(a):
        return b
    if is_identity(b):
        return a
    return a + b


def point_neg(a: ec.AbstractPoint) -> ec.AbstractPoint:
    """Return -a, i.e. (-x, y). PointEdwards has no __neg__."""
    if is_identity(a):
        return IDENTITY
    return make_point((FIELD_PRIME - a.x()) % FIELD_PRIME, a.y())


def point_sub(a: ec.AbstractPoint, b: ec.AbstractPoint) -> ec.AbstractPoint:
    return point_add(a, point_neg(b))


def scalar_mul(k: int, pt: ec.AbstractPoint) -> ec.AbstractPoint:
    """Compute k·pt with k reduced modulo L."""
    k %= GROUP_ORDER
    if k == 0 or is_identity(pt):
        return IDENTITY
    return pt * k


def points_equal(a: ec.AbstractPoint, b: ec.AbstractPoint) -> bool:
    return encode_point(a) == encode_point(b)


def clear_cofactor(pt: ec.AbstractPoint) -> ec.AbstractPoint:
    """Multiply by the cofactor 8 (three doublings)."""
    for _ in range(3):
        if is_identity(pt):
            return IDENTITY
        pt = pt.double()
    return pt


# ==============================================================================
# Multiscalar multiplication
# ==============================================================================


def _window_bits(n: int) -> int:
    if n < 32:
        return 3
    if n < 128:
        return 4
    return 5


def multiscalar_mul(
    scalars: Sequence[int], points: Sequence[ec.AbstractPoint]
) -> ec.AbstractPoint:
    """
    Compute Σ scalars[i]·points[i] with the bucket method.

    Args:
        scalars: integers, reduced modulo L internally.
        points: group elements, same length as scalars.

    Returns:
        The resulting point (INFINITY when the sum is the identity).
    """
    if len(scalars) != len(points):
        raise ValueError(
            f"multiscalar_mul: {len(scalars)} scalars for {len(points)} points"
        )

    pairs = []
    for k, pt in zip(scalars, points):
        k %= GROUP_ORDER
        if k and not is_identity(pt):
            pairs.append((k, pt))
    if not pairs:
        return IDENTITY

    if len(pairs) < 8:
        acc: ec.AbstractPoint = IDENTITY
        for k, pt in pairs:
            acc = point_add(acc, pt * k)
        return acc

    c = _window_bits(len(pairs))
    mask = (1 << c) - 1
    windows = -(-GROUP_ORDER.bit_length() // c)

    result = None
    for w in reversed(range(windows)):
        if result is not None:
            for _ in range(c):
                result = IDENTITY if is_identity(result) else result.double()

        buckets: list[ec.AbstractPoint | None] = [None] * (mask + 1)
        shift = w * c
        for k, pt in pairs:
            idx = (k >> shift) & mask
            if idx:
                bucket = buckets[idx]
                buckets[idx] = pt if bucket is None else point_add(bucket, pt)

        # Σ idx·bucket[idx] via running sums
        running = None
        window_sum = None
        for idx in range(mask, 0, -1):
            bucket = buckets[idx]
            if bucket is not None:
                running = bucket if running is None else point_add(running, bucket)
            if running is not None:
                window_sum = running if window_sum is None else point_add(window_sum, running)

        if window_sum is not None:
            result = window_sum if result is None else point_add(result, window_sum)

    return IDENTITY if result is None else result


# ==============================================================================
# Scalars
# ==============================================================================


def scalar_to_bytes(k: int) -> bytes:
    return (k % GROUP_ORDER).to_bytes(SCALAR_SIZE, "little")


def scalar_from_bytes(data: bytes) -> int:
    """
    Decode a canonical 32-byte little-endian scalar.

    Raises:
        InputValidationError: wrong length or value not reduced modulo L.
    """
    if len(data) != SCALAR_SIZE:
        raise InputValidationError(f"Expected {SCALAR_SIZE}-byte scalar, got {len(data)}")
    k = int.from_bytes(data, "little")
    if k >= GROUP_ORDER:
        raise InputValidationError("Non-canonical scalar encoding")
    return k


def clamp_scalar(raw: bytes) -> int:
    """
    Clamp 32 random bytes into a scalar.

    Clears the low 3 bits, clears bit 255 and sets bit 254, then reduces
    modulo L.
    """
    if len(raw) != SCALAR_SIZE:
        raise InputValidationError(f"Expected {SCALAR_SIZE} bytes, got {len(raw)}")
    buf = bytearray(raw)
    buf[0] &= 248
    buf[31] &= 127
    buf[31] |= 64
    return int.from_bytes(buf, "little") % GROUP_ORDER


def random_scalar() -> int:
    """Return a clamped, non-zero scalar from the OS CSPRNG."""
    while True:
        k = clamp_scalar(secrets.token_bytes(SCALAR_SIZE))
        if k:
            return k


def require_scalar(k: int, name: str = "randomness") -> int:
    """
    Validate a blinding factor or randomness and reduce it modulo L.

    Raises:
        InvalidRandomnessError: non-integer input or zero modulo L.
    """
    if not isinstance(k, int) or isinstance(k, bool):
        raise InvalidRandomnessError(f"{name} must be an integer scalar")
    k %= GROUP_ORDER
    if k == 0:
        raise InvalidRandomnessError(f"{name} must be non-zero")
    return k


def validate_amount(amount: int) -> int:
    """
    Check an amount is an integer in [0, 2^64).

    Raises:
        RangeError: otherwise.
    """
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise RangeError()
    if amount < 0 or amount >= AMOUNT_UPPER_BOUND:
        raise RangeError()
    return amount
