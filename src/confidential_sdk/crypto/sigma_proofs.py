"""
Sigma-protocol proofs about twisted ElGamal ciphertexts.

All three proofs follow the same shape: the prover commits to random nonces,
a Fiat-Shamir challenge c is derived from a transcript of the statement and
the nonce commitments, and the responses are z = y + c·witness. A fresh nonce
is drawn on every call, so proving the same statement twice gives two
different (equally valid) proofs.

Validity (96 bytes: Y ∥ z_x ∥ z_r)
    Statement: commitment C and decrypt handles D_k = r·P_k under keys P_k.
    Witness:   amount x and randomness r with C = x·G + r·H.
    Weights w_k are drawn from the transcript before the nonce, which lets a
    single nonce commitment cover every handle:
        C + Σ w_k·D_k = x·G + r·(H + Σ w_k·P_k)
    Check:     z_x·G + z_r·(H + Σ w_k·P_k) == Y + c·(C + Σ w_k·D_k)

Ciphertext-commitment equality (192 bytes: Y0 ∥ Y1 ∥ Y2 ∥ z_s ∥ z_x ∥ z_r)
    Statement: public key P = s⁻¹·H, ciphertext (C_e, D_e), commitment C_p.
    Witness:   secret key s, amount x, commitment blinding r.
    Relations: s·P = H,  C_e = x·G + s·D_e,  C_p = x·G + r·H
    Checks:    z_s·P       == c·H   + Y0
               z_x·G + z_s·D_e == c·C_e + Y1
               z_x·G + z_r·H   == c·C_p + Y2

Public-key validity (64 bytes: Y ∥ z)
    Statement: P.  Witness: s with s·P = H.  Check: z·P == c·H + Y.

References:
    [Sch91]  C.P. Schnorr, "Efficient signature generation by smart cards",
             J. Cryptology 4(3), 1991.
    [FS86]   Fiat & Shamir, "How to prove yourself", CRYPTO '86.
"""

from __future__ import annotations

from collections.abc import Sequence

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
    random_scalar,
    require_scalar,
    scalar_from_bytes,
    scalar_mul,
    scalar_to_bytes,
    validate_amount,
)
from confidential_sdk.crypto.elgamal import Ciphertext, ElGamalKeypair, ciphertext_encrypts
from confidential_sdk.crypto.pedersen import H_POINT, PedersenCommitment
from confidential_sdk.crypto.transcript import Transcript
from confidential_sdk.errors import (
    InputValidationError,
    InvalidPointError,
    InvalidProofSizeError,
    ProofCheckError,
)

VALIDITY_PROOF_SIZE = POINT_SIZE + 2 * SCALAR_SIZE
EQUALITY_PROOF_SIZE = 3 * POINT_SIZE + 3 * SCALAR_SIZE
PUBKEY_VALIDITY_PROOF_SIZE = POINT_SIZE + SCALAR_SIZE

_L = GROUP_ORDER

# (public key, decrypt handle) pairs sharing one commitment
DecryptHandles = Sequence[tuple[bytes, bytes]]


def _split(proof: bytes, n_points: int, n_scalars: int) -> tuple[list[bytes], list[int]]:
    points = [proof[i * POINT_SIZE:(i + 1) * POINT_SIZE] for i in range(n_points)]
    base = n_points * POINT_SIZE
    try:
        scalars = [
            scalar_from_bytes(proof[base + i * SCALAR_SIZE:base + (i + 1) * SCALAR_SIZE])
            for i in range(n_scalars)
        ]
    except InputValidationError as e:
        raise ProofCheckError(f"Malformed proof scalar: {e}") from None
    return [bytes(p) for p in points], scalars


def _decode_all(*encodings: bytes) -> list[ec.AbstractPoint]:
    try:
        return [decode_point(p) for p in encodings]
    except InvalidPointError as e:
        raise ProofCheckError(f"Malformed proof point: {e}") from None


# ==============================================================================
# Ciphertext validity
# ==============================================================================


def _validity_transcript(commitment: bytes, handles: DecryptHandles) -> Transcript:
    transcript = Transcript(b"validity-proof")
    transcript.append_point(b"C", commitment)
    transcript.append_u64(b"handles", len(handles))
    for pubkey, handle in handles:
        transcript.append_point(b"P", pubkey)
        transcript.append_point(b"D", handle)
    return transcript


def _validity_weights(transcript: Transcript, count: int) -> list[int]:
    return [transcript.challenge_scalar(b"w") for _ in range(count)]


def prove_validity(commitment: bytes, handles: DecryptHandles, amount: int, randomness: int) -> bytes:
    """
    Prove that `commitment` and every decrypt handle were formed with the
    same (amount, randomness).

    Args:
        commitment: 32-byte C = amount·G + r·H.
        handles: (public key, handle) pairs with handle = r·P.
        amount: the encrypted amount.
        randomness: the encryption randomness r.

    Returns:
        96-byte proof.

    Raises:
        InputValidationError: the inputs are not a consistent encryption.
    """
    validate_amount(amount)
    r = require_scalar(randomness)
    if not handles:
        raise InputValidationError("At least one decrypt handle is required")
    if commitment != PedersenCommitment.commit(amount, r):
        raise InputValidationError("Commitment does not open to the given amount and randomness")
    pubs = []
    for pubkey, handle in handles:
        pub = decode_point(pubkey)
        if encode_point(scalar_mul(r, pub)) != handle:
            raise InputValidationError("Decrypt handle does not match the given randomness")
        pubs.append(pub)

    transcript = _validity_transcript(commitment, handles)
    weights = _validity_weights(transcript, len(handles))
    base = multiscalar_mul([1, *weights], [H_POINT, *pubs])

    y_x, y_r = random_scalar(), random_scalar()
    Y = encode_point(multiscalar_mul([y_x, y_r], [BASE_POINT, base]))
    transcript.append_point(b"Y", Y)
    c = transcript.challenge_scalar(b"c")

    z_x = (y_x + c * amount) % _L
    z_r = (y_r + c * r) % _L
    return Y + scalar_to_bytes(z_x) + scalar_to_bytes(z_r)


def check_validity(proof: bytes, commitment: bytes, handles: DecryptHandles) -> None:
    """
    Verify a validity proof.

    Raises:
        InvalidProofSizeError: proof is not 96 bytes.
        ProofCheckError: the proof does not verify.
    """
    if len(proof) != VALIDITY_PROOF_SIZE:
        raise InvalidProofSizeError("validity proof", VALIDITY_PROOF_SIZE, len(proof))
    if not handles:
        raise ProofCheckError("Validity proof statement has no decrypt handles")

    (Y_bytes,), (z_x, z_r) = _split(proof, 1, 2)
    C, Y = _decode_all(commitment, Y_bytes)
    pubs = _decode_all(*(pubkey for pubkey, _ in handles))
    ds = _decode_all(*(handle for _, handle in handles))

    transcript = _validity_transcript(commitment, handles)
    weights = _validity_weights(transcript, len(handles))
    base = multiscalar_mul([1, *weights], [H_POINT, *pubs])
    transcript.append_point(b"Y", Y_bytes)
    c = transcript.challenge_scalar(b"c")

    check = multiscalar_mul(
        [z_x, z_r, -1, -c, *(-c * w for w in weights)],
        [BASE_POINT, base, Y, C, *ds],
    )
    if not is_identity(check):
        raise ProofCheckError("Validity proof check failed")


def prove_ciphertext_validity(
    ciphertext: Ciphertext, pubkey: bytes, amount: int, randomness: int
) -> bytes:
    """Validity proof for a single-recipient ciphertext."""
    return prove_validity(ciphertext.commitment, [(pubkey, ciphertext.handle)], amount, randomness)


def verify_ciphertext_validity(proof: bytes, ciphertext: Ciphertext, pubkey: bytes) -> bool:
    try:
        check_validity(proof, ciphertext.commitment, [(pubkey, ciphertext.handle)])
    except (ProofCheckError, InvalidProofSizeError):
        return False
    return True


# ==============================================================================
# Ciphertext-commitment equality
# ==============================================================================


def _equality_transcript(
    pubkey: bytes, ciphertext: Ciphertext, commitment: bytes
) -> Transcript:
    transcript = Transcript(b"equality-proof")
    transcript.append_point(b"P", pubkey)
    transcript.append_point(b"C_e", ciphertext.commitment)
    transcript.append_point(b"D_e", ciphertext.handle)
    transcript.append_point(b"C_p", commitment)
    return transcript


def prove_equality(
    keypair: ElGamalKeypair,
    ciphertext: Ciphertext,
    commitment: bytes,
    amount: int,
    blinding: int,
) -> bytes:
    """
    Prove that a ciphertext under `keypair` and a Pedersen commitment hide
    the same amount.

    The ciphertext's own randomness is not needed (it is usually unknown
    after homomorphic updates); the secret key stands in for it.

    Returns:
        192-byte proof.

    Raises:
        InputValidationError: ciphertext or commitment do not hide `amount`.
    """
    validate_amount(amount)
    r = require_scalar(blinding, "blinding")
    s = keypair.secret_key
    if not ciphertext_encrypts(ciphertext, s, amount):
        raise InputValidationError("Ciphertext does not decrypt to the given amount")
    if commitment != PedersenCommitment.commit(amount, r):
        raise InputValidationError("Commitment does not open to the given amount and blinding")

    P = decode_point(keypair.public_key)
    _, D_e = ciphertext.points()

    transcript = _equality_transcript(keypair.public_key, ciphertext, commitment)
    y_s, y_x, y_r = random_scalar(), random_scalar(), random_scalar()
    Y0 = encode_point(scalar_mul(y_s, P))
    Y1 = encode_point(multiscalar_mul([y_x, y_s], [BASE_POINT, D_e]))
    Y2 = encode_point(multiscalar_mul([y_x, y_r], [BASE_POINT, H_POINT]))
    transcript.append_point(b"Y0", Y0)
    transcript.append_point(b"Y1", Y1)
    transcript.append_point(b"Y2", Y2)
    c = transcript.challenge_scalar(b"c")

    z_s = (y_s + c * s) % _L
    z_x = (y_x + c * amount) % _L
    z_r = (y_r + c * r) % _L
    return Y0 + Y1 + Y2 + scalar_to_bytes(z_s) + scalar_to_bytes(z_x) + scalar_to_bytes(z_r)


def check_equality(
    proof: bytes, pubkey: bytes, ciphertext: Ciphertext, commitment: bytes
) -> None:
    """
    Verify a ciphertext-commitment equality proof.

    Raises:
        InvalidProofSizeError: proof is not 192 bytes.
        ProofCheckError: the proof does not verify.
    """
    if len(proof) != EQUALITY_PROOF_SIZE:
        raise InvalidProofSizeError("equality proof", EQUALITY_PROOF_SIZE, len(proof))

    (Y0_b, Y1_b, Y2_b), (z_s, z_x, z_r) = _split(proof, 3, 3)
    P, C_e, D_e, C_p, Y0, Y1, Y2 = _decode_all(
        pubkey, ciphertext.commitment, ciphertext.handle, commitment, Y0_b, Y1_b, Y2_b
    )

    transcript = _equality_transcript(pubkey, ciphertext, commitment)
    transcript.append_point(b"Y0", Y0_b)
    transcript.append_point(b"Y1", Y1_b)
    transcript.append_point(b"Y2", Y2_b)
    c = transcript.challenge_scalar(b"c")

    if not is_identity(multiscalar_mul([z_s, -c, -1], [P, H_POINT, Y0])):
        raise ProofCheckError("Equality proof key check failed")
    if not is_identity(multiscalar_mul([z_x, z_s, -c, -1], [BASE_POINT, D_e, C_e, Y1])):
        raise ProofCheckError("Equality proof ciphertext check failed")
    if not is_identity(multiscalar_mul([z_x, z_r, -c, -1], [BASE_POINT, H_POINT, C_p, Y2])):
        raise ProofCheckError("Equality proof commitment check failed")


def verify_equality(
    proof: bytes, pubkey: bytes, ciphertext: Ciphertext, commitment: bytes
) -> bool:
    try:
        check_equality(proof, pubkey, ciphertext, commitment)
    except (ProofCheckError, InvalidProofSizeError):
        return False
    return True


# ==============================================================================
# Public-key validity
# ==============================================================================


def prove_pubkey_validity(keypair: ElGamalKeypair) -> bytes:
    """Prove knowledge of the secret key behind `keypair.public_key` (64 bytes)."""
    P = decode_point(keypair.public_key)
    transcript = Transcript(b"pubkey-validity-proof")
    transcript.append_point(b"P", keypair.public_key)
    y = random_scalar()
    Y = encode_point(scalar_mul(y, P))
    transcript.append_point(b"Y", Y)
    c = transcript.challenge_scalar(b"c")
    z = (y + c * keypair.secret_key) % _L
    return Y + scalar_to_bytes(z)


def check_pubkey_validity(proof: bytes, pubkey: bytes) -> None:
    """
    Raises:
        InvalidProofSizeError: proof is not 64 bytes.
        ProofCheckError: the proof does not verify.
    """
    if len(proof) != PUBKEY_VALIDITY_PROOF_SIZE:
        raise InvalidProofSizeError(
            "pubkey validity proof", PUBKEY_VALIDITY_PROOF_SIZE, len(proof)
        )
    (Y_b,), (z,) = _split(proof, 1, 1)
    P, Y = _decode_all(pubkey, Y_b)
    if is_identity(P):
        raise ProofCheckError("Public key is the identity")

    transcript = Transcript(b"pubkey-validity-proof")
    transcript.append_point(b"P", pubkey)
    transcript.append_point(b"Y", Y_b)
    c = transcript.challenge_scalar(b"c")
    if not is_identity(multiscalar_mul([z, -c, -1], [P, H_POINT, Y])):
        raise ProofCheckError("Public key validity check failed")
