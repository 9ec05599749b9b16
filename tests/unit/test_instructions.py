"""
Unit tests for confidential_sdk.core.instructions — verifier-program and
token-program encoders, transaction size estimates and step packing.

Proof payloads are dummy bytes of the right length; the encoders never
inspect them.
"""

import struct

import pytest

from confidential_sdk.config import (
    MAX_TRANSACTION_SIZE,
    TOKEN_2022_PROGRAM_ADDRESS,
    ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
)
from confidential_sdk.core.address import decode_address, encode_address
from confidential_sdk.core.instructions import (
    CONFIDENTIAL_TRANSFER_EXTENSION,
    INSTRUCTIONS_SYSVAR_ADDRESS,
    ConfidentialInstruction,
    InstructionBuilderError,
    ProofInstruction,
    close_context_state_instruction,
    configure_account_instruction,
    deposit_instruction,
    estimate_transaction_size,
    initialize_mint_instruction,
    pack_transactions,
    plan_transaction_steps,
    transfer_instruction,
    verify_equality_instruction,
    verify_pubkey_validity_instruction,
    verify_range_proof_instruction,
    verify_validity_instruction,
    withdraw_instruction,
)
from confidential_sdk.core.models import AccountMeta, AccountRole, Instruction
from confidential_sdk.crypto.elgamal import zero_ciphertext
from confidential_sdk.errors import InputValidationError


def _addr(i: int) -> str:
    return encode_address(bytes([i]) * 32)


ACCOUNT, MINT, OWNER, DEST, CONTEXT = (_addr(i) for i in range(1, 6))
POINT = b"\x01" + b"\x00" * 31
RANGE_PROOF = b"\xaa" * 674
VALIDITY_PROOF = b"\xbb" * 96
EQUALITY_PROOF = b"\xcc" * 192


# ==============================================================================
# Verifier program
# ==============================================================================


class TestVerifierInstructions:
    """Wire layout of proof-verification instructions."""

    def test_range_proof(self):
        ins = verify_range_proof_instruction(POINT, RANGE_PROOF)
        assert ins.program_address == ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS
        assert ins.data[0] == ProofInstruction.VERIFY_RANGE_PROOF_U64 == 6
        assert ins.data[1:33] == POINT
        assert ins.data[33:] == RANGE_PROOF
        assert ins.accounts == []

    def test_validity_two_handles(self):
        handles = [(b"\x02" * 32, b"\x03" * 32), (b"\x04" * 32, b"\x05" * 32)]
        ins = verify_validity_instruction(POINT, handles, VALIDITY_PROOF)
        assert ins.data[0] == ProofInstruction.VERIFY_CIPHERTEXT_VALIDITY == 9
        assert ins.data[1] == 2
        assert ins.data[2:34] == POINT
        assert ins.data[34:98] == b"\x02" * 32 + b"\x03" * 32
        assert ins.data[-96:] == VALIDITY_PROOF
        assert len(ins.data) == 2 + 32 + 2 * 64 + 96

    def test_validity_needs_handles(self):
        with pytest.raises(InputValidationError):
            verify_validity_instruction(POINT, [], VALIDITY_PROOF)

    def test_equality(self):
        ct = zero_ciphertext()
        ins = verify_equality_instruction(b"\x07" * 32, ct, POINT, EQUALITY_PROOF)
        assert ins.data[0] == ProofInstruction.VERIFY_CIPHERTEXT_COMMITMENT_EQUALITY == 3
        assert ins.data[1:33] == b"\x07" * 32
        assert ins.data[33:97] == ct.to_bytes()
        assert ins.data[97:129] == POINT
        assert ins.data[129:] == EQUALITY_PROOF

    def test_pubkey_validity(self):
        ins = verify_pubkey_validity_instruction(b"\x07" * 32, b"\xdd" * 64)
        assert ins.data[0] == ProofInstruction.VERIFY_PUBKEY_VALIDITY == 4
        assert len(ins.data) == 1 + 32 + 64

    def test_context_account_is_writable(self):
        ins = verify_range_proof_instruction(POINT, RANGE_PROOF, context_account=CONTEXT)
        assert ins.accounts[0].address == CONTEXT
        assert ins.accounts[0].role == AccountRole.WRITABLE

    def test_close_context(self):
        ins = close_context_state_instruction(CONTEXT, DEST, OWNER)
        assert ins.data == bytes([ProofInstruction.CLOSE_CONTEXT_STATE])
        assert [m.address for m in ins.accounts] == [CONTEXT, DEST, OWNER]
        assert ins.signers == [OWNER]


# ==============================================================================
# Token program
# ==============================================================================


class TestTokenInstructions:
    """Wire layout of confidential-extension instructions."""

    def test_initialize_mint(self):
        ins = initialize_mint_instruction(MINT, OWNER, True)
        assert ins.program_address == TOKEN_2022_PROGRAM_ADDRESS
        assert ins.data[:2] == bytes([CONFIDENTIAL_TRANSFER_EXTENSION, ConfidentialInstruction.INITIALIZE_MINT])
        assert ins.data[2:34] == decode_address(OWNER)
        assert ins.data[34] == 1
        assert ins.data[35:] == bytes(32)

    def test_initialize_mint_bad_auditor(self):
        with pytest.raises(InputValidationError):
            initialize_mint_instruction(MINT, OWNER, False, auditor_pubkey=b"\x01" * 31)

    def test_configure_account_inline_proof(self):
        zero = zero_ciphertext()
        ins = configure_account_instruction(ACCOUNT, MINT, OWNER, b"\x09" * 32, zero, 65536, -1)
        assert ins.data[:2] == bytes([27, ConfidentialInstruction.CONFIGURE_ACCOUNT])
        assert ins.data[2:34] == b"\x09" * 32
        assert ins.data[34:98] == zero.to_bytes()
        assert struct.unpack("<Q", ins.data[98:106])[0] == 65536
        assert struct.unpack("<b", ins.data[106:107])[0] == -1
        addresses = [m.address for m in ins.accounts]
        assert addresses == [ACCOUNT, MINT, INSTRUCTIONS_SYSVAR_ADDRESS, OWNER]
        assert ins.signers == [OWNER]

    def test_configure_account_context_proof(self):
        ins = configure_account_instruction(
            ACCOUNT, MINT, OWNER, b"\x09" * 32, zero_ciphertext(), 10, 0, [CONTEXT]
        )
        assert [m.address for m in ins.accounts] == [ACCOUNT, MINT, CONTEXT, OWNER]

    def test_deposit(self):
        ins = deposit_instruction(ACCOUNT, MINT, OWNER, 1_000_000, 6)
        assert ins.data == bytes([27, 5]) + struct.pack("<QB", 1_000_000, 6)
        assert ins.accounts[0].role == AccountRole.WRITABLE

    def test_deposit_rejects_large_amount(self):
        with pytest.raises(InputValidationError):
            deposit_instruction(ACCOUNT, MINT, OWNER, 2**64, 6)

    def test_deposit_rejects_bad_decimals(self):
        with pytest.raises(InputValidationError):
            deposit_instruction(ACCOUNT, MINT, OWNER, 1, 256)

    def test_withdraw(self):
        zero = zero_ciphertext()
        ins = withdraw_instruction(ACCOUNT, MINT, OWNER, 500, 2, zero, -2)
        assert ins.data[:2] == bytes([27, ConfidentialInstruction.WITHDRAW])
        assert struct.unpack("<QB", ins.data[2:11]) == (500, 2)
        assert ins.data[11:75] == zero.to_bytes()
        assert struct.unpack("<b", ins.data[75:76])[0] == -2

    def test_transfer(self):
        zero = zero_ciphertext()
        ins = transfer_instruction(ACCOUNT, DEST, MINT, OWNER, zero, 0, [CONTEXT])
        assert ins.data == bytes([27, ConfidentialInstruction.TRANSFER]) + zero.to_bytes() + b"\x00"
        assert [m.address for m in ins.accounts] == [ACCOUNT, MINT, DEST, CONTEXT, OWNER]

    def test_offset_out_of_range(self):
        with pytest.raises(InputValidationError):
            transfer_instruction(ACCOUNT, DEST, MINT, OWNER, zero_ciphertext(), -200)


# ==============================================================================
# Sizing and packing
# ==============================================================================


def _blob(size: int, program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS) -> Instruction:
    return Instruction(program_address=program, data=b"\x00" * size)


class TestTransactionLayout:
    """Size estimate, greedy packing and proof/main instruction planning."""

    def test_estimate_grows_with_data(self):
        assert estimate_transaction_size([_blob(100)]) - estimate_transaction_size([_blob(10)]) == 90

    def test_estimate_counts_fee_payer(self):
        # 1 signature + header + 2 keys (payer, program) + blockhash + 1 instruction
        expected = 1 + 64 + 3 + 1 + 2 * 32 + 32 + 1 + (1 + 1 + 0 + 1 + 10)
        assert estimate_transaction_size([_blob(10)]) == expected

    def test_pack_splits_large_instructions(self):
        steps = pack_transactions([_blob(700), _blob(700), _blob(50)])
        assert len(steps) == 2
        assert len(steps[0]) == 1
        assert len(steps[1]) == 2

    def test_pack_rejects_oversized(self):
        with pytest.raises(InstructionBuilderError, match="exceeds"):
            pack_transactions([_blob(MAX_TRANSACTION_SIZE)])

    def test_transfer_reads_every_context(self):
        contexts = [CONTEXT, _addr(6), _addr(7)]
        ins = transfer_instruction(ACCOUNT, DEST, MINT, OWNER, zero_ciphertext(), 0, contexts)
        assert [m.address for m in ins.accounts[3:6]] == contexts
        assert all(m.role == AccountRole.READONLY for m in ins.accounts[3:6])

    def test_inline_offset_ignores_contexts(self):
        ins = withdraw_instruction(ACCOUNT, MINT, OWNER, 1, 0, zero_ciphertext(), -1, [CONTEXT])
        assert [m.address for m in ins.accounts] == [ACCOUNT, MINT, INSTRUCTIONS_SYSVAR_ADDRESS, OWNER]

    def test_plan_inline_when_it_fits(self):
        proofs = [_blob(100)]
        main, placed, steps = plan_transaction_steps(
            proofs, lambda offset, contexts: deposit_instruction(ACCOUNT, MINT, OWNER, offset + 10, 0)
        )
        assert len(steps) == 1
        assert placed == proofs
        assert steps[0] == proofs + [main]
        # offset -1 → amount 9
        assert struct.unpack("<Q", main.data[2:10])[0] == 9

    def test_plan_splits_into_one_context_per_proof(self):
        proofs = [_blob(700), _blob(700)]
        contexts = [CONTEXT, _addr(6)]
        offsets = []

        def build(offset, ctx):
            offsets.append(offset)
            return transfer_instruction(ACCOUNT, DEST, MINT, OWNER, zero_ciphertext(), offset, ctx)

        def rebuild(ctx):
            return [
                Instruction(
                    program_address=ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
                    accounts=[AccountMeta(address=c, role=AccountRole.WRITABLE)],
                    data=p.data,
                )
                for c, p in zip(ctx, proofs)
            ]

        main, placed, steps = plan_transaction_steps(
            proofs, build, context_accounts=contexts, build_context_proofs=rebuild
        )
        assert offsets[-1] == 0
        assert steps[-1] == [main]
        assert [ins for step in steps[:-1] for ins in step] == placed
        assert [ins.accounts[0].address for ins in placed] == contexts
        assert [m.address for m in main.accounts[3:5]] == contexts
        assert INSTRUCTIONS_SYSVAR_ADDRESS not in [m.address for m in main.accounts]

    def test_plan_split_without_contexts_raises(self):
        proofs = [_blob(700), _blob(700)]
        with pytest.raises(InstructionBuilderError, match="one proof context account per proof"):
            plan_transaction_steps(
                proofs,
                lambda offset, ctx: transfer_instruction(
                    ACCOUNT, DEST, MINT, OWNER, zero_ciphertext(), offset, ctx
                ),
            )

    @pytest.mark.parametrize("contexts", [[CONTEXT], [CONTEXT, CONTEXT]])
    def test_plan_split_rejects_bad_contexts(self, contexts):
        proofs = [_blob(700), _blob(700)]
        with pytest.raises(InputValidationError, match="2 distinct proof context accounts"):
            plan_transaction_steps(
                proofs,
                lambda offset, ctx: transfer_instruction(
                    ACCOUNT, DEST, MINT, OWNER, zero_ciphertext(), offset, ctx
                ),
                context_accounts=contexts,
                build_context_proofs=lambda ctx: proofs,
            )

    def test_plan_without_proofs(self):
        main, placed, steps = plan_transaction_steps(
            [], lambda offset, contexts: deposit_instruction(ACCOUNT, MINT, OWNER, 1, 0)
        )
        assert placed == []
        assert steps == [[main]]
