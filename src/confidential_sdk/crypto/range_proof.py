"""
Bulletproof range proofs over Pedersen Commitments.

Provides:
- RangeProof: 674-byte proof that a commitment V = v·G + γ·H hides v ∈ [0, 2^64)
- prove_range / verify_range / check_range
- bulletproof_generators: the 2×64 NUMS vector generators

Protocol (single-value range proof, [Bun18] §4.2 with the inner-product
argument of §3, made non-interactive with a Fiat-Shamir transcript):

    a_L = bits(v), a_R = a_L − 1
    A  = α·H + <a_L, G> + <a_R, H'>          S = ρ·H + <s_L, G> + <s_R, H'>
    y, z ← transcript
    T1 = t1·G + τ1·H                         T2 = t2·G + τ2·H
    x ← transcript
    l = a_L − z + s_L·x                      r = yⁿ∘(a_R + z + s_R·x) + z²·2ⁿ
    t̂ = <l, r>,  τx = τ2·x² + τ1·x + z²·γ,  μ = α + ρ·x
    w ← transcript, Q = w·G
    inner-product argument for <l, r> = t̂ over (G, y⁻ⁿ∘H', Q), 6 rounds

Wire format (674 bytes):
    version (1) ∥ bit length (1) ∥ A ∥ S ∥ T1 ∥ T2 ∥ t̂ ∥ τx ∥ μ ∥ (L_j ∥ R_j)×6 ∥ a ∥ b

The verifier folds the whole inner-product relation into a single
multi-exponentiation.

References:
    [Bun18] B. Bünz et al., "Bulletproofs: Short Proofs for Confidential
            Transactions and More", 2018 IEEE S&P, §3, §4.2, §6.2.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import ecdsa.ellipticcurve as ec

from confidential_sdk.crypto.curve import (
    BASE_POINT,
    GROUP_ORDER,
    POINT_SIZE,
    SCALAR_SIZE,
    decode_point,
    encode_point,
    is_identity,
    multiscalar_mul,
    point_add,
    point_sub,
    random_scalar,
    require_scalar,
    scalar_from_bytes,
    scalar_mul,
    scalar_to_bytes,
    validate_amount,
)
from confidential_sdk.crypto.pedersen import H_POINT, PedersenCommitment, hash_to_curve
from confidential_sdk.crypto.transcript import Transcript
from confidential_sdk.errors import (
    InputValidationError,
    InvalidPointError,
    InvalidProofSizeError,
    ProofCheckError,
)

# ==============================================================================
# Constants
# ==============================================================================

BIT_LENGTH = 64
"""Number of bits proven."""

IPA_ROUNDS = 6
"""log2(BIT_LENGTH) inner-product folding rounds."""

RANGE_PROOF_VERSION = 1

RANGE_PROOF_SIZE = 2 + 4 * POINT_SIZE + 3 * SCALAR_SIZE + 2 * IPA_ROUNDS * POINT_SIZE + 2 * SCALAR_SIZE
"""Serialized size: 674 bytes."""

_GENERATOR_DOMAIN = b"confidential-sdk/bulletproof-generators/v1"

_L = GROUP_ORDER


# ==============================================================================
# Helpers
# ==============================================================================


@lru_cache(maxsize=None)
def bulletproof_generators(
    n: int = BIT_LENGTH,
) -> tuple[tuple[ec.PointEdwards, ...], tuple[ec.PointEdwards, ...]]:
    """Return the NUMS vector generators (G_0..G_{n-1}, H_0..H_{n-1})."""
    gs = tuple(
        hash_to_curve(b"G" + i.to_bytes(4, "little"), _GENERATOR_DOMAIN) for i in range(n)
    )
    hs = tuple(
        hash_to_curve(b"H" + i.to_bytes(4, "little"), _GENERATOR_DOMAIN) for i in range(n)
    )
    return gs, hs


def _inner(a: list[int], b: list[int]) -> int:
    return sum(x * y for x, y in zip(a, b)) % _L


def _powers(base: int, n: int) -> list[int]:
    out = [1] * n
    for i in range(1, n):
        out[i] = out[i - 1] * base % _L
    return out


def _inverse(k: int) -> int:
    return pow(k, _L - 2, _L)


def _range_transcript(commitment: bytes) -> Transcript:
    transcript = Transcript(b"range-proof")
    transcript.append_u64(b"n", BIT_LENGTH)
    transcript.append_point(b"V", commitment)
    return transcript


# ==============================================================================
# Range Proof
# ==============================================================================


@dataclass(frozen=True)
class RangeProof:
    """
    A Bulletproof attesting that a Pedersen Commitment hides a value in [0, 2^64).

    Attributes:
        A, S: vector commitments to the bit decomposition and its blinding.
        T1, T2: commitments to the t(X) polynomial coefficients.
        t_x: evaluation t̂ = <l, r> at the challenge x.
        t_x_blinding: τx, blinding of t̂.
        e_blinding: μ, combined blinding of A and S.
        L_vec, R_vec: inner-product argument cross terms (6 each).
        a, b: final folded scalars.
    """
    A: bytes
    S: bytes
    T1: bytes
    T2: bytes
    t_x: int
    t_x_blinding: int
    e_blinding: int
    L_vec: tuple[bytes, ...]
    R_vec: tuple[bytes, ...]
    a: int
    b: int

    def to_bytes(self) -> bytes:
        """Serialize to the fixed 674-byte wire format."""
        parts = [
            bytes([RANGE_PROOF_VERSION, BIT_LENGTH]),
            self.A,
            self.S,
            self.T1,
            self.T2,
            scalar_to_bytes(self.t_x),
            scalar_to_bytes(self.t_x_blinding),
            scalar_to_bytes(self.e_blinding),
        ]
        for left, right in zip(self.L_vec, self.R_vec):
            parts.append(left)
            parts.append(right)
        parts.append(scalar_to_bytes(self.a))
        parts.append(scalar_to_bytes(self.b))
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> RangeProof:
        """
        Parse the 674-byte wire format.

        Raises:
            InvalidProofSizeError: length is not 674 bytes.
            ProofCheckError: unsupported header or non-canonical scalar.
        """
        if len(data) != RANGE_PROOF_SIZE:
            raise InvalidProofSizeError("range proof", RANGE_PROOF_SIZE, len(data))
        if data[0] != RANGE_PROOF_VERSION or data[1] != BIT_LENGTH:
            raise ProofCheckError(
                f"Unsupported range proof header: version={data[0]} bits={data[1]}"
            )

        offset = 2

        def take(size: int) -> bytes:
            nonlocal offset
            chunk = bytes(data[offset:offset + size])
            offset += size
            return chunk

        try:
            A, S, T1, T2 = (take(POINT_SIZE) for _ in range(4))
            t_x, t_x_blinding, e_blinding = (scalar_from_bytes(take(SCALAR_SIZE)) for _ in range(3))
            L_vec: list[bytes] = []
            R_vec: list[bytes] = []
            for _ in range(IPA_ROUNDS):
                L_vec.append(take(POINT_SIZE))
                R_vec.append(take(POINT_SIZE))
            a = scalar_from_bytes(take(SCALAR_SIZE))
            b = scalar_from_bytes(take(SCALAR_SIZE))
        except InputValidationError as e:
            raise ProofCheckError(f"Malformed range proof: {e}") from None

        return cls(
            A=A, S=S, T1=T1, T2=T2,
            t_x=t_x, t_x_blinding=t_x_blinding, e_blinding=e_blinding,
            L_vec=tuple(L_vec), R_vec=tuple(R_vec), a=a, b=b,
        )


def _prove_inner_product(
    transcript: Transcript,
    Q: ec.AbstractPoint,
    G: list,
    H: list,
    h_factors: list[int],
    a: list[int],
    b: list[int],
) -> tuple[list[bytes], list[bytes], int, int]:
    """
    Inner-product argument for P = <a, G> + <b, h_factors∘H> + <a, b>·Q.

    The y⁻ⁱ factors on H are carried as scalars until the first fold so the
    prover never computes the 64 rescaled generators separately.
    """
    L_vec: list[bytes] = []
    R_vec: list[bytes] = []
    n = len(a)
    while n > 1:
        n //= 2
        a_lo, a_hi = a[:n], a[n:]
        b_lo, b_hi = b[:n], b[n:]
        G_lo, G_hi = G[:n], G[n:]
        H_lo, H_hi = H[:n], H[n:]
        f_lo, f_hi = h_factors[:n], h_factors[n:]

        c_L = _inner(a_lo, b_hi)
        c_R = _inner(a_hi, b_lo)
        L_pt = multiscalar_mul(
            a_lo + [b_hi[i] * f_lo[i] % _L for i in range(n)] + [c_L],
            G_hi + H_lo + [Q],
        )
        R_pt = multiscalar_mul(
            a_hi + [b_lo[i] * f_hi[i] % _L for i in range(n)] + [c_R],
            G_lo + H_hi + [Q],
        )
        L_bytes, R_bytes = encode_point(L_pt), encode_point(R_pt)
        L_vec.append(L_bytes)
        R_vec.append(R_bytes)

        transcript.append_point(b"L", L_bytes)
        transcript.append_point(b"R", R_bytes)
        u = transcript.challenge_scalar(b"u")
        u_inv = _inverse(u)

        a = [(a_lo[i] * u + a_hi[i] * u_inv) % _L for i in range(n)]
        b = [(b_lo[i] * u_inv + b_hi[i] * u) % _L for i in range(n)]
        if n > 1:
            G = [multiscalar_mul([u_inv, u], [G_lo[i], G_hi[i]]) for i in range(n)]
            H = [
                multiscalar_mul([u * f_lo[i] % _L, u_inv * f_hi[i] % _L], [H_lo[i], H_hi[i]])
                for i in range(n)
            ]
            h_factors = [1] * n

    return L_vec, R_vec, a[0], b[0]


def prove_range(amount: int, blinding: int) -> tuple[RangeProof, bytes]:
    """
    Generate a range proof that amount ∈ [0, 2^64).

    Args:
        amount: The committed value v.
        blinding: The blinding factor γ of the commitment V = v·G + γ·H.

    Returns:
        (RangeProof, 32-byte commitment V).

    Raises:
        RangeError: amount outside [0, 2^64), including negative remainders.
        InvalidRandomnessError: blinding is zero.
    """
    validate_amount(amount)
    gamma = require_scalar(blinding, "blinding")
    n = BIT_LENGTH
    gs, hs = bulletproof_generators(n)

    V = encode_point(PedersenCommitment.commit_point(amount, gamma))
    transcript = _range_transcript(V)

    # Bit decomposition
    a_L = [(amount >> i) & 1 for i in range(n)]
    a_R = [(bit - 1) % _L for bit in a_L]

    alpha = random_scalar()
    A = scalar_mul(alpha, H_POINT)
    for bit, g, h in zip(a_L, gs, hs):
        A = point_add(A, g) if bit else point_sub(A, h)

    s_L = [random_scalar() for _ in range(n)]
    s_R = [random_scalar() for _ in range(n)]
    rho = random_scalar()
    S = multiscalar_mul([rho, *s_L, *s_R], [H_POINT, *gs, *hs])

    A_bytes, S_bytes = encode_point(A), encode_point(S)
    transcript.append_point(b"A", A_bytes)
    transcript.append_point(b"S", S_bytes)
    y = transcript.challenge_scalar(b"y")
    z = transcript.challenge_scalar(b"z")

    y_n = _powers(y, n)
    two_n = _powers(2, n)
    z2 = z * z % _L

    l0 = [(bit - z) % _L for bit in a_L]
    l1 = s_L
    r0 = [(y_n[i] * (a_R[i] + z) + z2 * two_n[i]) % _L for i in range(n)]
    r1 = [y_n[i] * s_R[i] % _L for i in range(n)]

    t1 = (_inner(l0, r1) + _inner(l1, r0)) % _L
    t2 = _inner(l1, r1)

    tau1, tau2 = random_scalar(), random_scalar()
    T1_bytes = encode_point(multiscalar_mul([t1, tau1], [BASE_POINT, H_POINT]))
    T2_bytes = encode_point(multiscalar_mul([t2, tau2], [BASE_POINT, H_POINT]))
    transcript.append_point(b"T1", T1_bytes)
    transcript.append_point(b"T2", T2_bytes)
    x = transcript.challenge_scalar(b"x")

    l_vec = [(l0[i] + l1[i] * x) % _L for i in range(n)]
    r_vec = [(r0[i] + r1[i] * x) % _L for i in range(n)]
    t_x = _inner(l_vec, r_vec)
    t_x_blinding = (tau2 * x * x + tau1 * x + z2 * gamma) % _L
    e_blinding = (alpha + rho * x) % _L

    transcript.append_scalar(b"t_x", t_x)
    transcript.append_scalar(b"t_x_blinding", t_x_blinding)
    transcript.append_scalar(b"e_blinding", e_blinding)
    w = transcript.challenge_scalar(b"w")
    Q = scalar_mul(w, BASE_POINT)

    L_vec, R_vec, a, b = _prove_inner_product(
        transcript, Q, list(gs), list(hs), _powers(_inverse(y), n), l_vec, r_vec
    )

    proof = RangeProof(
        A=A_bytes, S=S_bytes, T1=T1_bytes, T2=T2_bytes,
        t_x=t_x, t_x_blinding=t_x_blinding, e_blinding=e_blinding,
        L_vec=tuple(L_vec), R_vec=tuple(R_vec), a=a, b=b,
    )
    return proof, V


def check_range(proof: RangeProof, commitment: bytes) -> None:
    """
    Verify a range proof against a commitment.

    Raises:
        ProofCheckError: with a description of the failing check.
    """
    n = BIT_LENGTH
    if len(proof.L_vec) != IPA_ROUNDS or len(proof.R_vec) != IPA_ROUNDS:
        raise ProofCheckError("Range proof has the wrong number of inner-product rounds")
    try:
        V = decode_point(commitment)
        A, S, T1, T2 = (decode_point(p) for p in (proof.A, proof.S, proof.T1, proof.T2))
        Ls = [decode_point(p) for p in proof.L_vec]
        Rs = [decode_point(p) for p in proof.R_vec]
    except InvalidPointError as e:
        raise ProofCheckError(f"Malformed range proof point: {e}") from None

    transcript = _range_transcript(commitment)
    transcript.append_point(b"A", proof.A)
    transcript.append_point(b"S", proof.S)
    y = transcript.challenge_scalar(b"y")
    z = transcript.challenge_scalar(b"z")
    transcript.append_point(b"T1", proof.T1)
    transcript.append_point(b"T2", proof.T2)
    x = transcript.challenge_scalar(b"x")
    transcript.append_scalar(b"t_x", proof.t_x)
    transcript.append_scalar(b"t_x_blinding", proof.t_x_blinding)
    transcript.append_scalar(b"e_blinding", proof.e_blinding)
    w = transcript.challenge_scalar(b"w")
    us = []
    for left, right in zip(proof.L_vec, proof.R_vec):
        transcript.append_point(b"L", left)
        transcript.append_point(b"R", right)
        us.append(transcript.challenge_scalar(b"u"))

    if 0 in (y, z, x, *us):
        raise ProofCheckError("Degenerate Fiat-Shamir challenge")

    z2 = z * z % _L
    z3 = z2 * z % _L
    y_n = _powers(y, n)
    two_n = _powers(2, n)
    delta = ((z - z2) * sum(y_n) - z3 * (2**n - 1)) % _L

    # t̂·G + τx·H == z²·V + δ(y,z)·G + x·T1 + x²·T2
    poly_check = multiscalar_mul(
        [(proof.t_x - delta) % _L, proof.t_x_blinding, -z2, -x, -x * x],
        [BASE_POINT, H_POINT, V, T1, T2],
    )
    if not is_identity(poly_check):
        raise ProofCheckError("Range proof polynomial commitment check failed")

    # s_i = Π_j u_j^{±1}; flipping every bit of i inverts s_i
    k = len(us)
    u_inv = [_inverse(u) for u in us]
    s = []
    for i in range(n):
        acc = 1
        for j in range(k):
            acc = acc * (us[j] if (i >> (k - 1 - j)) & 1 else u_inv[j]) % _L
        s.append(acc)

    y_inv_n = _powers(_inverse(y), n)
    a, b = proof.a, proof.b
    gs, hs = bulletproof_generators(n)

    g_scalars = [(a * s[i] + z) % _L for i in range(n)]
    h_scalars = [
        (b * s[n - 1 - i] * y_inv_n[i] - z - z2 * two_n[i] * y_inv_n[i]) % _L
        for i in range(n)
    ]
    scalars = (
        g_scalars
        + h_scalars
        + [w * (a * b - proof.t_x) % _L, proof.e_blinding, -1, -x]
        + [-(u * u) % _L for u in us]
        + [-(ui * ui) % _L for ui in u_inv]
    )
    points = list(gs) + list(hs) + [BASE_POINT, H_POINT, A, S] + Ls + Rs

    if not is_identity(multiscalar_mul(scalars, points)):
        raise ProofCheckError("Range proof inner-product check failed")


def verify_range(proof: RangeProof, commitment: bytes) -> bool:
    """
    Verify a range proof.

    Returns:
        True if the proof is valid for `commitment`, False otherwise.
    """
    try:
        check_range(proof, commitment)
    except ProofCheckError:
        return False
    return True
