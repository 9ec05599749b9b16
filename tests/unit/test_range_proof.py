"""
Unit tests for confidential_sdk.crypto.range_proof — 64-bit Bulletproofs.

Proof generation is the slow path, so proofs are built once per module and
shared between tests.
"""

from dataclasses import replace

import pytest

from confidential_sdk.crypto.curve import BASE_POINT, GROUP_ORDER, encode_point, random_scalar
from confidential_sdk.crypto.pedersen import commit
from confidential_sdk.crypto.range_proof import (
    BIT_LENGTH,
    IPA_ROUNDS,
    RANGE_PROOF_SIZE,
    RANGE_PROOF_VERSION,
    RangeProof,
    bulletproof_generators,
    check_range,
    prove_range,
    verify_range,
)
from confidential_sdk.errors import (
    InvalidProofSizeError,
    InvalidRandomnessError,
    ProofCheckError,
    RangeError,
)


@pytest.fixture(scope="module")
def proven():
    """(amount, blinding, proof, commitment) for a mid-range value."""
    r = random_scalar()
    proof, commitment = prove_range(42, r)
    return 42, r, proof, commitment


# ==============================================================================
# Generators
# ==============================================================================


class TestGenerators:
    """Tests for the NUMS vector generators."""

    def test_count(self):
        gs, hs = bulletproof_generators(BIT_LENGTH)
        assert len(gs) == len(hs) == BIT_LENGTH

    def test_all_distinct(self):
        gs, hs = bulletproof_generators(BIT_LENGTH)
        encodings = {encode_point(p) for p in gs + hs}
        assert len(encodings) == 2 * BIT_LENGTH
        assert encode_point(BASE_POINT) not in encodings


# ==============================================================================
# Prove / verify
# ==============================================================================


class TestRangeProof:
    """Tests for Bulletproof construction and verification."""

    def test_size_constant(self):
        assert RANGE_PROOF_SIZE == 674

    def test_valid_proof(self, proven):
        _, _, proof, commitment = proven
        assert verify_range(proof, commitment)

    def test_commitment_matches_pedersen(self, proven):
        amount, r, _, commitment = proven
        assert commitment == commit(amount, r)

    @pytest.mark.parametrize("amount", [0, 2**64 - 1])
    def test_boundaries(self, amount):
        proof, commitment = prove_range(amount, random_scalar())
        assert verify_range(proof, commitment)

    def test_wrong_commitment(self, proven):
        _, _, proof, _ = proven
        other = commit(43, random_scalar())
        assert not verify_range(proof, other)

    def test_check_range_raises_descriptive_error(self, proven):
        _, _, proof, _ = proven
        with pytest.raises(ProofCheckError, match="Range proof"):
            check_range(proof, commit(43, random_scalar()))

    def test_tampered_t_x(self, proven):
        _, _, proof, commitment = proven
        forged = replace(proof, t_x=(proof.t_x + 1) % GROUP_ORDER)
        assert not verify_range(forged, commitment)

    def test_tampered_final_scalar(self, proven):
        _, _, proof, commitment = proven
        forged = replace(proof, a=(proof.a + 1) % GROUP_ORDER)
        assert not verify_range(forged, commitment)

    def test_swapped_cross_terms(self, proven):
        _, _, proof, commitment = proven
        forged = replace(proof, L_vec=proof.R_vec, R_vec=proof.L_vec)
        assert not verify_range(forged, commitment)

    @pytest.mark.parametrize("amount", [-1, 2**64])
    def test_out_of_range_rejected(self, amount):
        with pytest.raises(RangeError, match=r"\[0, 2\^64\)"):
            prove_range(amount, random_scalar())

    def test_zero_blinding_rejected(self):
        with pytest.raises(InvalidRandomnessError):
            prove_range(5, 0)


# ==============================================================================
# Wire format
# ==============================================================================


class TestRangeProofCodec:
    """Tests for the 674-byte serialization."""

    def test_length_and_header(self, proven):
        data = proven[2].to_bytes()
        assert len(data) == RANGE_PROOF_SIZE
        assert data[0] == RANGE_PROOF_VERSION
        assert data[1] == BIT_LENGTH

    def test_roundtrip(self, proven):
        proof = proven[2]
        parsed = RangeProof.from_bytes(proof.to_bytes())
        assert parsed == proof
        assert len(parsed.L_vec) == IPA_ROUNDS

    def test_short_buffer(self):
        with pytest.raises(InvalidProofSizeError, match="Invalid proof size"):
            RangeProof.from_bytes(b"\x00" * 100)

    def test_bad_header(self, proven):
        data = bytearray(proven[2].to_bytes())
        data[0] = 2
        with pytest.raises(ProofCheckError, match="header"):
            RangeProof.from_bytes(bytes(data))

    def test_non_canonical_scalar(self, proven):
        data = bytearray(proven[2].to_bytes())
        data[-32:] = b"\xff" * 32
        with pytest.raises(ProofCheckError, match="Malformed"):
            RangeProof.from_bytes(bytes(data))

    def test_corrupted_point_fails_verification(self, proven):
        _, _, proof, commitment = proven
        data = bytearray(proof.to_bytes())
        data[2] ^= 0x01
        parsed = RangeProof.from_bytes(bytes(data))
        assert not verify_range(parsed, commitment)
