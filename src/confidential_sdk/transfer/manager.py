"""
ConfidentialTransferManager: end-to-end construction of confidential token
operations (configure, deposit, withdraw, transfer).

The manager resolves the requested proof mode against the on-chain verifier's
feature gate, builds the proofs, lays out the verifier and token-program
instructions within the transaction size limit, and (when proofs stay local)
verifies every proof it produced before returning.

Usage:
    async with LedgerClient(rpc_url) as ledger:
        manager = ConfidentialTransferManager.from_ledger(ledger)
        result = await manager.transfer(
            source, destination, mint, 250, alice_keys, bob_keys.public_key,
            new_source_decryptable_balance=750, authority=owner,
            source_balance=available, proof_contexts=contexts,
        )
        for step in result.transaction_steps:
            submit(step)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from confidential_sdk.config import ConfidentialConfig
from confidential_sdk.core.features import FeatureGateDetector
from confidential_sdk.core.instructions import (
    close_context_state_instruction,
    configure_account_instruction,
    deposit_instruction,
    initialize_mint_instruction,
    pack_transactions,
    plan_transaction_steps,
    transfer_instruction,
    verify_range_proof_instruction,
    withdraw_instruction,
)
from confidential_sdk.core.ledger import LedgerQuery
from confidential_sdk.core.models import FeatureStatus, Instruction
from confidential_sdk.crypto.curve import decode_point, random_scalar, validate_amount
from confidential_sdk.crypto.elgamal import (
    Ciphertext,
    ElGamalKeypair,
    add_amount,
    encrypt_with_fresh_randomness,
    zero_ciphertext,
)
from confidential_sdk.errors import (
    CapabilityQueryError,
    InputValidationError,
    ModeInconsistencyError,
    ProofVerificationError,
)
from confidential_sdk.transfer.proof_builder import (
    ProofMode,
    ProofVerificationResult,
    RangeProofResult,
    TransferProofBundle,
    ValidityProofResult,
    WithdrawProofBundle,
    build_pubkey_validity_proof,
    build_range_proof,
    build_transfer_proof,
    build_validity_proof,
    build_withdraw_proof,
    transfer_verifier_instructions,
    verify_pubkey_validity_proof_local,
    verify_range_proof_local,
    verify_transfer_proof_local,
    verify_validity_proof_local,
    verify_withdraw_proof_local,
    withdraw_verifier_instructions,
)

logger = logging.getLogger("confidential_sdk.manager")

ModeLike = ProofMode | str


# ==============================================================================
# Results
# ==============================================================================


@dataclass
class OperationResult:
    """
    Instructions for one confidential operation.

    Attributes:
        instructions:               every instruction, in submission order
        proof_instructions:         the verifier-program instructions among them
        warnings:                   fallbacks and deferred checks, human readable
        requires_external_verifier: the on-chain verifier must accept the proofs
        proof_mode:                 the mode the proofs were built in
        transaction_steps:          instructions grouped into transactions, in order
    """
    instructions: list[Instruction]
    proof_instructions: list[Instruction]
    warnings: list[str]
    requires_external_verifier: bool
    proof_mode: ProofMode
    transaction_steps: list[list[Instruction]]


@dataclass
class ConfigureAccountResult(OperationResult):
    elgamal_pubkey: bytes
    decryptable_zero_balance: Ciphertext
    pubkey_validity_proof: ValidityProofResult


@dataclass
class DepositResult(OperationResult):
    encrypted_amount: Ciphertext
    range_proof: RangeProofResult | None
    validity_proof: ValidityProofResult | None


@dataclass
class WithdrawResult(OperationResult):
    new_decryptable_balance: Ciphertext
    range_proof: bytes
    withdraw_proof: WithdrawProofBundle | None


@dataclass
class TransferResult(OperationResult):
    proof_bundle: TransferProofBundle
    new_source_balance: Ciphertext
    dest_ciphertext: Ciphertext
    new_source_decryptable_balance: Ciphertext


# ==============================================================================
# Manager
# ==============================================================================


class ConfidentialTransferManager:
    """
    Builds confidential-transfer operations ready for an external submitter.

    Args:
        detector: capability detector for the verifier feature gate. Without one,
                  ZK_PROGRAM_WITH_FALLBACK always falls back and ZK_PROGRAM_ONLY
                  fails.
        config:   program addresses, feature id, size limit and default mode
    """

    def __init__(
        self,
        detector: FeatureGateDetector | None = None,
        config: ConfidentialConfig | None = None,
    ) -> None:
        self.detector = detector
        self.config = config or ConfidentialConfig()

    @classmethod
    def from_ledger(
        cls, ledger: LedgerQuery, config: ConfidentialConfig | None = None
    ) -> ConfidentialTransferManager:
        config = config or ConfidentialConfig()
        return cls(FeatureGateDetector.from_config(ledger, config), config)

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    async def get_zk_program_status(self) -> FeatureStatus:
        """
        Raises:
            CapabilityQueryError: no detector is configured.
        """
        if self.detector is None:
            raise CapabilityQueryError("No capability detector configured")
        return await self.detector.check_feature_gate(self.config.zk_feature_id)

    async def is_zk_program_available(self) -> bool:
        if self.detector is None:
            return False
        status = await self.detector.check_feature_gate(self.config.zk_feature_id)
        return status.activated

    # ------------------------------------------------------------------
    # Mint and context management
    # ------------------------------------------------------------------

    def configure_mint(
        self,
        mint: str,
        authority: str,
        auto_approve_new_accounts: bool = True,
        auditor_pubkey: bytes | None = None,
    ) -> Instruction:
        """Enable confidential transfers on `mint`."""
        if auditor_pubkey is not None:
            decode_point(auditor_pubkey)
        return initialize_mint_instruction(
            mint, authority, auto_approve_new_accounts, auditor_pubkey, self.config.token_program
        )

    def close_proof_context(self, context_account: str, destination: str, authority: str) -> Instruction:
        """Close a proof context account once its operation has executed."""
        return close_context_state_instruction(
            context_account, destination, authority, self.config.zk_program
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def configure_account(
        self,
        account: str,
        mint: str,
        elgamal_keypair: ElGamalKeypair,
        decryptable_zero_balance: int = 0,
        max_pending_balance_credits: int = 65536,
        mode: ModeLike | None = None,
        *,
        authority: str | None = None,
    ) -> ConfigureAccountResult:
        """
        Register `elgamal_keypair`'s public key on a token account.

        Raises:
            InputValidationError: the decryptable zero balance is not zero.
            CapabilityQueryError, ModeInconsistencyError: ZK_PROGRAM_ONLY unavailable.
        """
        if decryptable_zero_balance != 0:
            raise InputValidationError("Decryptable zero balance must encrypt 0")
        effective, warnings = await self._resolve_mode(mode)
        authority = authority or account

        zero_balance, _ = encrypt_with_fresh_randomness(0, elgamal_keypair.public_key)
        proof = build_pubkey_validity_proof(
            elgamal_keypair, effective, zk_program=self.config.zk_program
        )
        if effective is ProofMode.LOCAL_ONLY:
            self._require_valid(
                verify_pubkey_validity_proof_local(proof.proof, elgamal_keypair.public_key),
                "public key validity proof",
            )

        proofs = [proof.verifier_instruction] if proof.verifier_instruction else []
        layout = self._layout(
            proofs,
            lambda offset, contexts: configure_account_instruction(
                account, mint, authority, elgamal_keypair.public_key, zero_balance,
                max_pending_balance_credits, offset, contexts, self.config.token_program,
            ),
        )
        logger.info(f"Built configure-account for {account} ({effective.value})")
        return ConfigureAccountResult(
            **layout,
            warnings=warnings,
            requires_external_verifier=proof.requires_external_verifier,
            proof_mode=effective,
            elgamal_pubkey=elgamal_keypair.public_key,
            decryptable_zero_balance=zero_balance,
            pubkey_validity_proof=proof,
        )

    async def deposit(
        self,
        account: str,
        mint: str,
        amount: int,
        decimals: int,
        mode: ModeLike | None = None,
        *,
        elgamal_pubkey: bytes | None = None,
        authority: str | None = None,
    ) -> DepositResult:
        """
        Move `amount` from the public balance into the pending confidential balance.

        With `elgamal_pubkey` the amount is encrypted for the account holder,
        proven well formed, and range-proven under the same randomness, so the
        range proof's commitment is the encrypted amount's commitment. Without
        it the deposit is a public-amount ciphertext with no proofs, which is
        only allowed when proofs stay local.

        Raises:
            RangeError: amount out of range.
            InputValidationError: no `elgamal_pubkey` while proofs are verified
                on-chain.
        """
        validate_amount(amount)
        effective, warnings = await self._resolve_mode(mode)
        authority = authority or account

        validity: ValidityProofResult | None = None
        range_proof: RangeProofResult | None = None
        if elgamal_pubkey is not None:
            encrypted, randomness = encrypt_with_fresh_randomness(amount, elgamal_pubkey)
            validity = build_validity_proof(
                encrypted, elgamal_pubkey, amount, randomness, effective,
                zk_program=self.config.zk_program,
            )
            range_proof = build_range_proof(
                amount, randomness, effective, zk_program=self.config.zk_program
            )
            if effective is ProofMode.LOCAL_ONLY:
                self._require_valid(
                    verify_range_proof_local(range_proof.proof, encrypted.commitment), "range proof"
                )
                self._require_valid(
                    verify_validity_proof_local(validity.proof, encrypted, elgamal_pubkey),
                    "validity proof",
                )
        elif effective is not ProofMode.LOCAL_ONLY:
            raise InputValidationError(
                "elgamal_pubkey is required when deposit proofs are verified on-chain"
            )
        else:
            encrypted = add_amount(zero_ciphertext(), amount)

        proofs = [
            result.verifier_instruction
            for result in (validity, range_proof)
            if result is not None and result.verifier_instruction is not None
        ]
        main = deposit_instruction(account, mint, authority, amount, decimals, self.config.token_program)
        steps = pack_transactions(proofs + [main], self.config.max_transaction_size)
        logger.info(f"Built deposit of {amount} into {account} ({effective.value})")
        return DepositResult(
            instructions=proofs + [main],
            proof_instructions=proofs,
            warnings=warnings,
            requires_external_verifier=effective.requires_external_verifier,
            proof_mode=effective,
            transaction_steps=steps,
            encrypted_amount=encrypted,
            range_proof=range_proof,
            validity_proof=validity,
        )

    async def withdraw(
        self,
        account: str,
        mint: str,
        amount: int,
        decimals: int,
        new_decryptable_balance: int,
        mode: ModeLike | None = None,
        *,
        elgamal_keypair: ElGamalKeypair | None = None,
        available_balance: Ciphertext | None = None,
        authority: str | None = None,
        proof_contexts: Sequence[str] | None = None,
    ) -> WithdrawResult:
        """
        Move `amount` from the available confidential balance to the public balance.

        With `elgamal_keypair` and `available_balance`, the remaining balance is
        checked exactly (available − amount must encrypt
        `new_decryptable_balance`) and proven with an equality and a range
        proof. Without them only the remainder's range is proven and balance
        consistency is left to the on-chain program.

        Equality and range verifier instructions together exceed the
        transaction limit, so on-chain withdrawals with a balance need
        `proof_contexts` (one account per proof).

        Raises:
            RangeError: amount or remaining balance out of range.
            InputValidationError: the remaining balance does not match, or
                proof_contexts is malformed.
            InstructionBuilderError: the proofs need context accounts and none
                were supplied.
        """
        validate_amount(amount)
        validate_amount(new_decryptable_balance)
        effective, warnings = await self._resolve_mode(mode)
        authority = authority or account

        bundle: WithdrawProofBundle | None = None
        if elgamal_keypair is not None and available_balance is not None:
            bundle = build_withdraw_proof(
                elgamal_keypair, available_balance, amount, new_decryptable_balance, effective,
                zk_program=self.config.zk_program,
            )
            if effective is ProofMode.LOCAL_ONLY:
                self._require_valid(
                    verify_withdraw_proof_local(
                        bundle, elgamal_keypair.public_key, available_balance, amount
                    ),
                    "withdraw proof",
                )
            proofs = list(bundle.verifier_instructions)
            range_bytes = bundle.range_proof
            pubkey = elgamal_keypair.public_key

            def build_context_proofs(contexts: Sequence[str]) -> Sequence[Instruction]:
                return withdraw_verifier_instructions(bundle, pubkey, contexts, self.config.zk_program)

            new_balance, _ = encrypt_with_fresh_randomness(
                new_decryptable_balance, elgamal_keypair.public_key
            )
        else:
            message = (
                "Available balance not supplied; only the remaining balance's range "
                "is proven and balance consistency is left to on-chain verification"
            )
            logger.warning(message)
            warnings.append(message)
            range_proof = build_range_proof(
                new_decryptable_balance, random_scalar(), effective,
                zk_program=self.config.zk_program,
            )
            if effective is ProofMode.LOCAL_ONLY:
                self._require_valid(
                    verify_range_proof_local(range_proof.proof, range_proof.commitment),
                    "range proof",
                )
            proofs = [range_proof.verifier_instruction] if range_proof.verifier_instruction else []
            range_bytes = range_proof.proof

            def build_context_proofs(contexts: Sequence[str]) -> Sequence[Instruction]:
                return [
                    verify_range_proof_instruction(
                        range_proof.commitment, range_proof.proof, contexts[0], self.config.zk_program
                    )
                ]

            if elgamal_keypair is not None:
                new_balance, _ = encrypt_with_fresh_randomness(
                    new_decryptable_balance, elgamal_keypair.public_key
                )
            else:
                new_balance = add_amount(zero_ciphertext(), new_decryptable_balance)

        layout = self._layout(
            proofs,
            lambda offset, contexts: withdraw_instruction(
                account, mint, authority, amount, decimals, new_balance, offset, contexts,
                self.config.token_program,
            ),
            proof_contexts,
            build_context_proofs,
        )
        logger.info(f"Built withdraw of {amount} from {account} ({effective.value})")
        return WithdrawResult(
            **layout,
            warnings=warnings,
            requires_external_verifier=effective.requires_external_verifier,
            proof_mode=effective,
            new_decryptable_balance=new_balance,
            range_proof=range_bytes,
            withdraw_proof=bundle,
        )

    async def transfer(
        self,
        source: str,
        destination: str,
        mint: str,
        amount: int,
        source_keypair: ElGamalKeypair,
        dest_pubkey: bytes,
        new_source_decryptable_balance: int,
        authority: str,
        mode: ModeLike | None = None,
        *,
        source_balance: Ciphertext | None = None,
        proof_contexts: Sequence[str] | None = None,
    ) -> TransferResult:
        """
        Transfer `amount` confidentially from `source` to `destination`.

        Args:
            new_source_decryptable_balance: the source's balance after the transfer.
                The pre-transfer balance is taken to be this plus `amount`.
            source_balance: the source's current available balance ciphertext.
                Required when proofs are verified on-chain. With local proofs it
                may be omitted; a fresh encryption of the pre-transfer balance
                is used and a warning is added.
            proof_contexts: four distinct context accounts, one per proof. The
                transfer's proofs never fit in one transaction with it, so they
                are verified into these accounts in earlier steps.

        Raises:
            RangeError: amount or balance out of range.
            InputValidationError: `source_balance` is missing in an on-chain
                mode or does not encrypt the implied pre-transfer balance, or
                proof_contexts is malformed.
            InstructionBuilderError: on-chain proofs without proof_contexts.
        """
        validate_amount(amount)
        validate_amount(new_source_decryptable_balance)
        decode_point(dest_pubkey)
        balance_before = validate_amount(new_source_decryptable_balance + amount)
        effective, warnings = await self._resolve_mode(mode)

        if source_balance is None:
            if effective is not ProofMode.LOCAL_ONLY:
                raise InputValidationError(
                    "source_balance is required when proofs are verified on-chain"
                )
            message = (
                "Source balance ciphertext not supplied; proofs are built against a "
                "fresh encryption of the declared balance"
            )
            logger.warning(message)
            warnings.append(message)
            source_balance, _ = encrypt_with_fresh_randomness(
                balance_before, source_keypair.public_key
            )

        bundle = build_transfer_proof(
            source_balance, amount, source_keypair, dest_pubkey, random_scalar(), effective,
            source_balance_amount=balance_before, zk_program=self.config.zk_program,
        )
        if effective is ProofMode.LOCAL_ONLY:
            self._require_valid(
                verify_transfer_proof_local(
                    bundle, source_keypair.public_key, dest_pubkey, source_balance
                ),
                "transfer proof",
            )

        new_decryptable, _ = encrypt_with_fresh_randomness(
            new_source_decryptable_balance, source_keypair.public_key
        )
        layout = self._layout(
            list(bundle.verifier_instructions),
            lambda offset, contexts: transfer_instruction(
                source, destination, mint, authority, new_decryptable, offset, contexts,
                self.config.token_program,
            ),
            proof_contexts,
            lambda contexts: transfer_verifier_instructions(
                bundle, source_keypair.public_key, dest_pubkey, contexts, self.config.zk_program
            ),
        )
        logger.info(f"Built transfer of {amount} from {source} to {destination} ({effective.value})")
        return TransferResult(
            **layout,
            warnings=warnings,
            requires_external_verifier=bundle.requires_external_verifier,
            proof_mode=effective,
            proof_bundle=bundle,
            new_source_balance=bundle.new_source_balance,
            dest_ciphertext=bundle.dest_ciphertext,
            new_source_decryptable_balance=new_decryptable,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _resolve_mode(self, mode: ModeLike | None) -> tuple[ProofMode, list[str]]:
        """Return the mode proofs are built in, plus any fallback warnings."""
        requested = ProofMode(mode if mode is not None else self.config.default_proof_mode)
        if requested is ProofMode.LOCAL_ONLY:
            return requested, []

        if self.detector is None:
            if requested is ProofMode.ZK_PROGRAM_ONLY:
                raise CapabilityQueryError("ZK_PROGRAM_ONLY requires a capability detector")
            return self._fallback("No capability detector configured")

        status = await self.detector.check_feature_gate(self.config.zk_feature_id)
        if status.error is not None:
            if requested is ProofMode.ZK_PROGRAM_ONLY:
                raise CapabilityQueryError(
                    f"Could not determine ZK proof program status: {status.error}"
                )
            return self._fallback(f"ZK proof program status unknown ({status.error})")
        if not status.activated:
            if requested is ProofMode.ZK_PROGRAM_ONLY:
                raise ModeInconsistencyError(
                    "ZK_PROGRAM_ONLY requested but the ZK proof program is not active"
                )
            return self._fallback("ZK proof program is not active")
        return requested, []

    @staticmethod
    def _fallback(reason: str) -> tuple[ProofMode, list[str]]:
        message = f"{reason}; proofs are built and verified locally"
        logger.warning(message)
        return ProofMode.LOCAL_ONLY, [message]

    @staticmethod
    def _require_valid(result: ProofVerificationResult, what: str) -> None:
        if not result.valid:
            raise ProofVerificationError(f"Locally built {what} failed verification: {result.error}")

    def _layout(
        self,
        proofs: Sequence[Instruction],
        build_main: Callable[[int, Sequence[str]], Instruction],
        proof_contexts: Sequence[str] | None = None,
        build_context_proofs: Callable[[Sequence[str]], Sequence[Instruction]] | None = None,
    ) -> dict:
        """
        Place proof instructions and the main instruction into transaction steps.

        Proofs that do not fit alongside the main instruction are rebuilt by
        `build_context_proofs` to write one context account each, verified in
        earlier steps, and read by the main instruction in the last step.

        Raises:
            InstructionBuilderError: the proofs need context accounts and none
                were supplied.
            InputValidationError: proof_contexts has the wrong length or repeats.
        """
        main, proof_instructions, steps = plan_transaction_steps(
            proofs,
            build_main,
            self.config.max_transaction_size,
            context_accounts=proof_contexts,
            build_context_proofs=build_context_proofs,
        )
        if len(steps) > 1:
            logger.debug(f"Proofs split across {len(steps)} transactions via context accounts")
        return {
            "instructions": [ins for step in steps for ins in step],
            "proof_instructions": proof_instructions,
            "transaction_steps": steps,
        }
