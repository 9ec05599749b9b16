"""
Unit tests for confidential_sdk.transfer.manager.ConfidentialTransferManager.

Covers proof-mode resolution against the verifier feature gate, the
instructions each operation produces, and transaction layout.
"""

import asyncio
import struct

import pytest

from confidential_sdk.config import ConfidentialConfig, ZK_ELGAMAL_PROOF_FEATURE_ID
from confidential_sdk.core.address import encode_address
from confidential_sdk.core.instructions import InstructionBuilderError
from confidential_sdk.core.models import AccountRole, FeatureStatus
from confidential_sdk.crypto.curve import random_scalar
from confidential_sdk.crypto.elgamal import ciphertext_encrypts, encrypt, generate_keypair
from confidential_sdk.errors import (
    CapabilityQueryError,
    InputValidationError,
    ModeInconsistencyError,
    RangeError,
)
from confidential_sdk.transfer.manager import ConfidentialTransferManager
from confidential_sdk.transfer.proof_builder import (
    ProofMode,
    verify_range_proof_local,
    verify_transfer_proof_local,
)

SOURCE, DEST, MINT, OWNER, CONTEXT = (encode_address(bytes([i]) * 32) for i in range(10, 15))
CONTEXTS = [encode_address(bytes([i]) * 32) for i in range(20, 24)]


class FakeDetector:
    """Reports a fixed feature status and records the ids it was asked about."""

    def __init__(self, activated=True, error=None):
        self.status = FeatureStatus(activated=activated, last_checked=0.0, error=error)
        self.queried = []

    async def check_feature_gate(self, feature_id):
        self.queried.append(feature_id)
        return self.status


class FakeLedger:
    def __init__(self, data):
        self.data = data

    async def fetch_account(self, address):
        return self.data


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture(scope="module")
def alice():
    return generate_keypair()


@pytest.fixture(scope="module")
def bob():
    return generate_keypair()


# ==============================================================================
# Mode resolution
# ==============================================================================


class TestModeResolution:
    """How the requested proof mode meets the feature gate."""

    def test_local_only_skips_query(self):
        detector = FakeDetector(activated=True)
        manager = ConfidentialTransferManager(detector)
        result = _run(manager.deposit(SOURCE, MINT, 10, 2, ProofMode.LOCAL_ONLY, authority=OWNER))
        assert detector.queried == []
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert result.requires_external_verifier is False
        assert result.proof_instructions == []
        assert result.warnings == []
        assert result.transaction_steps == [result.instructions]

    def test_fallback_when_inactive(self):
        detector = FakeDetector(activated=False)
        manager = ConfidentialTransferManager(detector)
        result = _run(manager.deposit(SOURCE, MINT, 10, 2, authority=OWNER))
        assert detector.queried == [ZK_ELGAMAL_PROOF_FEATURE_ID]
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert result.requires_external_verifier is False
        assert any("not active" in w for w in result.warnings)
        assert result.proof_instructions == []

    def test_fallback_on_query_error(self):
        manager = ConfidentialTransferManager(FakeDetector(activated=False, error="timeout"))
        result = _run(manager.deposit(SOURCE, MINT, 10, 2, "zk_program_with_fallback"))
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert any("timeout" in w for w in result.warnings)

    def test_fallback_without_detector(self):
        manager = ConfidentialTransferManager()
        result = _run(manager.deposit(SOURCE, MINT, 10, 2, ProofMode.ZK_PROGRAM_WITH_FALLBACK))
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert any("No capability detector" in w for w in result.warnings)

    def test_zk_only_inactive(self):
        manager = ConfidentialTransferManager(FakeDetector(activated=False))
        with pytest.raises(ModeInconsistencyError):
            _run(manager.deposit(SOURCE, MINT, 10, 2, ProofMode.ZK_PROGRAM_ONLY))

    def test_zk_only_query_error(self):
        manager = ConfidentialTransferManager(FakeDetector(activated=False, error="boom"))
        with pytest.raises(CapabilityQueryError, match="boom"):
            _run(manager.deposit(SOURCE, MINT, 10, 2, ProofMode.ZK_PROGRAM_ONLY))

    def test_zk_only_without_detector(self):
        manager = ConfidentialTransferManager()
        with pytest.raises(CapabilityQueryError):
            _run(manager.deposit(SOURCE, MINT, 10, 2, ProofMode.ZK_PROGRAM_ONLY))

    def test_active_keeps_requested_mode(self, alice):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.deposit(
            SOURCE, MINT, 10, 2, ProofMode.ZK_PROGRAM_WITH_FALLBACK, elgamal_pubkey=alice.public_key
        ))
        assert result.proof_mode is ProofMode.ZK_PROGRAM_WITH_FALLBACK
        assert result.requires_external_verifier is True
        assert result.warnings == []

    def test_default_mode_from_config(self):
        detector = FakeDetector(activated=True)
        config = ConfidentialConfig(default_proof_mode="local_only")
        manager = ConfidentialTransferManager(detector, config)
        result = _run(manager.deposit(SOURCE, MINT, 10, 2))
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert detector.queried == []

    def test_unknown_mode(self):
        manager = ConfidentialTransferManager()
        with pytest.raises(ValueError):
            _run(manager.deposit(SOURCE, MINT, 10, 2, "on_chain_maybe"))


# ==============================================================================
# Capability
# ==============================================================================


class TestCapability:

    def test_status_without_detector(self):
        manager = ConfidentialTransferManager()
        with pytest.raises(CapabilityQueryError):
            _run(manager.get_zk_program_status())
        assert _run(manager.is_zk_program_available()) is False

    def test_from_ledger(self):
        data = b"\x01" + (77).to_bytes(8, "little")
        manager = ConfidentialTransferManager.from_ledger(FakeLedger(data))

        async def go():
            return await manager.get_zk_program_status(), await manager.is_zk_program_available()

        status, available = _run(go())
        assert status.activated is True
        assert status.activation_slot == 77
        assert available is True

    def test_from_ledger_inactive(self):
        manager = ConfidentialTransferManager.from_ledger(FakeLedger(None))
        assert _run(manager.is_zk_program_available()) is False


# ==============================================================================
# Mint and account setup
# ==============================================================================


class TestSetup:

    def test_configure_mint(self):
        manager = ConfidentialTransferManager()
        ins = manager.configure_mint(MINT, OWNER, auto_approve_new_accounts=False)
        assert ins.data[:2] == bytes([27, 0])
        assert ins.data[34] == 0

    def test_configure_mint_bad_auditor(self):
        manager = ConfidentialTransferManager()
        with pytest.raises(InputValidationError):
            manager.configure_mint(MINT, OWNER, auditor_pubkey=b"\x00" * 31)

    def test_close_proof_context(self):
        manager = ConfidentialTransferManager()
        ins = manager.close_proof_context(CONTEXT, OWNER, OWNER)
        assert ins.data == b"\x00"
        assert ins.accounts[0].address == CONTEXT

    def test_configure_account_local(self, alice):
        manager = ConfidentialTransferManager()
        result = _run(manager.configure_account(SOURCE, MINT, alice, mode="local_only"))
        assert result.elgamal_pubkey == alice.public_key
        assert ciphertext_encrypts(result.decryptable_zero_balance, alice.secret_key, 0)
        assert len(result.pubkey_validity_proof.proof) == 64
        assert len(result.instructions) == 1
        assert result.instructions[0].data[2:34] == alice.public_key

    def test_configure_account_zk(self, alice):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.configure_account(
            SOURCE, MINT, alice, mode=ProofMode.ZK_PROGRAM_ONLY, authority=OWNER
        ))
        assert [ins.data[0] for ins in result.proof_instructions] == [4]
        main = result.instructions[-1]
        assert struct.unpack("<b", main.data[106:107])[0] == -1
        assert len(result.transaction_steps) == 1

    def test_configure_account_nonzero_balance(self, alice):
        manager = ConfidentialTransferManager()
        with pytest.raises(InputValidationError):
            _run(manager.configure_account(SOURCE, MINT, alice, decryptable_zero_balance=5))


# ==============================================================================
# Deposit / withdraw
# ==============================================================================


class TestDepositWithdraw:

    def test_deposit_encrypted_for_holder(self, alice):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.deposit(
            SOURCE, MINT, 1_000, 6, ProofMode.ZK_PROGRAM_ONLY, elgamal_pubkey=alice.public_key
        ))
        assert ciphertext_encrypts(result.encrypted_amount, alice.secret_key, 1_000)
        assert [ins.data[0] for ins in result.proof_instructions] == [9, 6]
        assert result.instructions[-1].data == bytes([27, 5]) + struct.pack("<QB", 1_000, 6)

    def test_deposit_range_proof_covers_encrypted_amount(self, alice):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.deposit(
            SOURCE, MINT, 1_000, 6, ProofMode.ZK_PROGRAM_ONLY, elgamal_pubkey=alice.public_key
        ))
        assert result.range_proof.commitment == result.encrypted_amount.commitment
        assert verify_range_proof_local(
            result.range_proof.proof, result.encrypted_amount.commitment
        ).valid
        range_ins = result.proof_instructions[1]
        assert range_ins.data[1:33] == result.encrypted_amount.commitment

    def test_zk_deposit_needs_holder_pubkey(self):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        with pytest.raises(InputValidationError, match="elgamal_pubkey"):
            _run(manager.deposit(SOURCE, MINT, 1_000, 6, ProofMode.ZK_PROGRAM_ONLY))

    def test_local_deposit_without_pubkey_has_no_proofs(self):
        manager = ConfidentialTransferManager()
        result = _run(manager.deposit(SOURCE, MINT, 1_000, 6, "local_only"))
        assert result.range_proof is None
        assert result.validity_proof is None
        assert result.proof_instructions == []
        assert result.requires_external_verifier is False
        assert result.encrypted_amount.handle == b"\x01" + b"\x00" * 31

    def test_deposit_out_of_range(self):
        manager = ConfidentialTransferManager()
        with pytest.raises(RangeError):
            _run(manager.deposit(SOURCE, MINT, 2**64, 6))

    def test_withdraw_with_balance(self, alice):
        available = encrypt(500, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager()
        result = _run(manager.withdraw(
            SOURCE, MINT, 200, 2, 300, "local_only",
            elgamal_keypair=alice, available_balance=available,
        ))
        assert result.withdraw_proof is not None
        assert ciphertext_encrypts(result.new_decryptable_balance, alice.secret_key, 300)
        assert len(result.range_proof) == 674
        assert result.warnings == []

    def test_zk_withdraw_splits_into_contexts(self, alice):
        available = encrypt(500, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.withdraw(
            SOURCE, MINT, 200, 2, 300, ProofMode.ZK_PROGRAM_ONLY,
            elgamal_keypair=alice, available_balance=available, proof_contexts=CONTEXTS[:2],
        ))
        assert [ins.data[0] for ins in result.proof_instructions] == [3, 6]
        assert [ins.accounts[0].address for ins in result.proof_instructions] == CONTEXTS[:2]
        main = result.transaction_steps[-1][0]
        assert main.data[-1] == 0
        assert [m.address for m in main.accounts[2:4]] == CONTEXTS[:2]

    def test_zk_withdraw_without_contexts_raises(self, alice):
        available = encrypt(500, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        with pytest.raises(InstructionBuilderError):
            _run(manager.withdraw(
                SOURCE, MINT, 200, 2, 300, ProofMode.ZK_PROGRAM_ONLY,
                elgamal_keypair=alice, available_balance=available,
            ))

    def test_withdraw_mismatch(self, alice):
        available = encrypt(500, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager()
        with pytest.raises(InputValidationError):
            _run(manager.withdraw(
                SOURCE, MINT, 200, 2, 250, "local_only",
                elgamal_keypair=alice, available_balance=available,
            ))

    def test_withdraw_without_balance_warns(self):
        manager = ConfidentialTransferManager()
        result = _run(manager.withdraw(SOURCE, MINT, 200, 2, 300, "local_only"))
        assert result.withdraw_proof is None
        assert any("Available balance not supplied" in w for w in result.warnings)


# ==============================================================================
# Transfer
# ==============================================================================


class TestTransfer:

    def test_fallback_transfer_is_locally_verifiable(self, alice, bob):
        balance = encrypt(1000, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=False))
        result = _run(manager.transfer(
            SOURCE, DEST, MINT, 250, alice, bob.public_key, 750, OWNER,
            source_balance=balance,
        ))
        assert result.requires_external_verifier is False
        assert result.proof_mode is ProofMode.LOCAL_ONLY
        assert result.warnings
        assert result.proof_instructions == []
        assert verify_transfer_proof_local(
            result.proof_bundle, alice.public_key, bob.public_key, balance
        ).valid
        assert ciphertext_encrypts(result.new_source_balance, alice.secret_key, 750)
        assert ciphertext_encrypts(result.dest_ciphertext, bob.secret_key, 250)
        assert ciphertext_encrypts(result.new_source_decryptable_balance, alice.secret_key, 750)

    def test_zk_transfer_writes_one_context_per_proof(self, alice, bob):
        balance = encrypt(15, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        result = _run(manager.transfer(
            SOURCE, DEST, MINT, 5, alice, bob.public_key, 10, OWNER,
            ProofMode.ZK_PROGRAM_ONLY, source_balance=balance, proof_contexts=CONTEXTS,
        ))
        assert [ins.data[0] for ins in result.proof_instructions] == [3, 9, 6, 6]
        for ins, ctx in zip(result.proof_instructions, CONTEXTS):
            assert ins.accounts[0].address == ctx
            assert ins.accounts[0].role == AccountRole.WRITABLE

        split = [ins for step in result.transaction_steps[:-1] for ins in step]
        assert split == result.proof_instructions
        main = result.transaction_steps[-1]
        assert len(main) == 1
        assert main[0].data[-1] == 0
        reads = [m for m in main[0].accounts if m.address in CONTEXTS]
        assert [m.address for m in reads] == CONTEXTS
        assert all(m.role == AccountRole.READONLY for m in reads)
        assert result.warnings == []

    def test_zk_transfer_without_contexts_raises(self, alice, bob):
        balance = encrypt(10, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        with pytest.raises(InstructionBuilderError, match="context account"):
            _run(manager.transfer(
                SOURCE, DEST, MINT, 5, alice, bob.public_key, 5, OWNER,
                ProofMode.ZK_PROGRAM_ONLY, source_balance=balance,
            ))

    def test_zk_transfer_rejects_shared_context(self, alice, bob):
        balance = encrypt(10, alice.public_key, random_scalar())
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        with pytest.raises(InputValidationError, match="4 distinct"):
            _run(manager.transfer(
                SOURCE, DEST, MINT, 5, alice, bob.public_key, 5, OWNER,
                ProofMode.ZK_PROGRAM_ONLY, source_balance=balance, proof_contexts=[CONTEXT] * 4,
            ))

    def test_zk_transfer_needs_source_balance(self, alice, bob):
        manager = ConfidentialTransferManager(FakeDetector(activated=True))
        with pytest.raises(InputValidationError, match="source_balance"):
            _run(manager.transfer(
                SOURCE, DEST, MINT, 5, alice, bob.public_key, 10, OWNER,
                ProofMode.ZK_PROGRAM_ONLY, proof_contexts=CONTEXTS,
            ))

    def test_local_transfer_without_source_balance_warns(self, alice, bob):
        manager = ConfidentialTransferManager()
        result = _run(manager.transfer(
            SOURCE, DEST, MINT, 5, alice, bob.public_key, 10, OWNER, "local_only"
        ))
        assert any("not supplied" in w for w in result.warnings)
        assert ciphertext_encrypts(result.new_source_balance, alice.secret_key, 10)

    def test_over_balance(self, alice, bob):
        manager = ConfidentialTransferManager()
        with pytest.raises(RangeError):
            _run(manager.transfer(
                SOURCE, DEST, MINT, 2**63, alice, bob.public_key, 2**63, OWNER, "local_only"
            ))
