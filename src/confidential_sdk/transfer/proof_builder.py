"""
Proof engine: builds range, validity, equality and transfer proofs, attaches
verifier-program instructions when on-chain verification is requested, and
verifies proofs locally.

Local verification never raises; it reports failures as
ProofVerificationResult(valid=False, error=...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from collections.abc import Sequence
from enum import Enum

from confidential_sdk.config import ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS
from confidential_sdk.core.instructions import (
    verify_equality_instruction,
    verify_pubkey_validity_instruction,
    verify_range_proof_instruction,
    verify_validity_instruction,
)
from confidential_sdk.core.models import Instruction
from confidential_sdk.crypto.curve import (
    decode_point,
    encode_point,
    random_scalar,
    require_scalar,
    scalar_mul,
    validate_amount,
)
from confidential_sdk.crypto.elgamal import (
    CIPHERTEXT_SIZE,
    DEFAULT_DECRYPT_BOUND,
    Ciphertext,
    ElGamalKeypair,
    ciphertext_encrypts,
    decrypt,
    encrypt,
    subtract_amount,
    subtract_ciphertexts,
)
from confidential_sdk.crypto.pedersen import commit
from confidential_sdk.crypto.range_proof import RangeProof, check_range, prove_range
from confidential_sdk.crypto.sigma_proofs import (
    check_equality,
    check_pubkey_validity,
    check_validity,
    prove_ciphertext_validity,
    prove_equality,
    prove_pubkey_validity,
    prove_validity,
)
from confidential_sdk.errors import (
    InputValidationError,
    InvalidProofSizeError,
    ProofCheckError,
    ProofSizeError,
)

logger = logging.getLogger("confidential_sdk.proof_builder")

# Errors that local verification turns into a failed result
_VERIFY_ERRORS = (ProofSizeError, ProofCheckError, InputValidationError)

# Verifier instructions per bundle
TRANSFER_PROOF_COUNT = 4
WITHDRAW_PROOF_COUNT = 2


def _per_proof_contexts(count: int, context_accounts: Sequence[str] | None) -> list[str | None]:
    if context_accounts is None:
        return [None] * count
    if len(context_accounts) != count or len(set(context_accounts)) != count:
        raise InputValidationError(
            f"Expected {count} distinct proof context accounts, got {len(context_accounts)}"
        )
    return list(context_accounts)


class ProofMode(str, Enum):
    """Where proofs get verified."""
    LOCAL_ONLY = "local_only"
    ZK_PROGRAM_ONLY = "zk_program_only"
    ZK_PROGRAM_WITH_FALLBACK = "zk_program_with_fallback"

    @property
    def emits_verifier_instructions(self) -> bool:
        """True if proofs come with verifier-program instructions."""
        return self is not ProofMode.LOCAL_ONLY

    @property
    def requires_external_verifier(self) -> bool:
        """True if the ledger's verifier program must accept the proofs."""
        return self is not ProofMode.LOCAL_ONLY


# ==============================================================================
# Results
# ==============================================================================


@dataclass(frozen=True)
class ProofVerificationResult:
    """Outcome of a local verification."""
    valid: bool
    used_fallback: bool = True
    error: str | None = None


@dataclass(frozen=True)
class RangeProofResult:
    """
    A built range proof.

    Attributes:
        proof: 674-byte serialized proof
        commitment: Pedersen commitment to the amount
        requires_external_verifier: the verifier program must accept it
        verifier_instruction: the instruction that verifies it on-chain, if any
    """
    proof: bytes
    commitment: bytes
    requires_external_verifier: bool
    verifier_instruction: Instruction | None = None


@dataclass(frozen=True)
class ValidityProofResult:
    """A built ciphertext-validity (96 B) or public-key validity (64 B) proof."""
    proof: bytes
    requires_external_verifier: bool
    verifier_instruction: Instruction | None = None


@dataclass(frozen=True)
class EqualityProofResult:
    """A built equality proof and the commitment it links the ciphertext to."""
    proof: bytes
    commitment: bytes
    requires_external_verifier: bool
    verifier_instruction: Instruction | None = None


@dataclass(frozen=True)
class TransferProofBundle:
    """
    Everything needed to verify a confidential transfer.

    Attributes:
        encrypted_transfer_amount: 64 bytes, the amount under the destination key
        equality_proof: 192 bytes, new source balance ↔ new_source_commitment
        validity_proof: 96 bytes, amount ciphertext well formed for both keys.
            It is a grouped proof over (dest_pubkey, dest handle) and
            (source_pubkey, source_handle); check it with
            verify_grouped_validity_proof_local or verify_transfer_proof_local,
            not the single-handle verify_validity_proof_local.
        range_proof: 674 bytes, transfer amount ∈ [0, 2^64)
        source_handle: 32 bytes, decrypt handle of the amount under the source key
        new_source_commitment: 32 bytes, commitment to the remaining balance
        new_source_range_proof: 674 bytes, remaining balance ∈ [0, 2^64)
        new_source_balance: source balance minus the amount (source key)
        dest_ciphertext: the amount under the destination key
    """
    encrypted_transfer_amount: bytes
    equality_proof: bytes
    validity_proof: bytes
    range_proof: bytes
    source_handle: bytes
    new_source_commitment: bytes
    new_source_range_proof: bytes
    new_source_balance: Ciphertext
    dest_ciphertext: Ciphertext
    requires_external_verifier: bool
    verifier_instructions: tuple[Instruction, ...] = ()

    def to_bytes(self) -> bytes:
        """Encrypted amount ∥ equality proof ∥ validity proof ∥ range proof."""
        return (
            self.encrypted_transfer_amount
            + self.equality_proof
            + self.validity_proof
            + self.range_proof
        )


@dataclass(frozen=True)
class WithdrawProofBundle:
    """Proofs that a withdrawal leaves a non-negative, correctly encrypted balance."""
    new_balance: Ciphertext
    new_balance_commitment: bytes
    equality_proof: bytes
    range_proof: bytes
    requires_external_verifier: bool
    verifier_instructions: tuple[Instruction, ...] = ()


# ==============================================================================
# Range proofs
# ==============================================================================


def build_range_proof(
    amount: int,
    blinding: int,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    context_account: str | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> RangeProofResult:
    """
    Build a 674-byte range proof that amount ∈ [0, 2^64).

    Raises:
        RangeError: amount out of range.
        InvalidRandomnessError: blinding is zero.
    """
    proof, commitment = prove_range(amount, blinding)
    data = proof.to_bytes()
    instruction = None
    if mode.emits_verifier_instructions:
        instruction = verify_range_proof_instruction(commitment, data, context_account, zk_program)
    return RangeProofResult(
        proof=data,
        requires_external_verifier=mode.requires_external_verifier,
        verifier_instruction=instruction,
        commitment=commitment,
    )


def verify_range_proof_local(proof: bytes, commitment: bytes) -> ProofVerificationResult:
    """Verify a serialized range proof against a commitment. Never raises."""
    if not isinstance(proof, (bytes, bytearray)):
        return ProofVerificationResult(valid=False, error="Range proof must be bytes")
    try:
        check_range(RangeProof.from_bytes(proof), commitment)
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


# ==============================================================================
# Validity proofs
# ==============================================================================


def build_validity_proof(
    ciphertext: Ciphertext,
    pubkey: bytes,
    amount: int,
    randomness: int,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    context_account: str | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> ValidityProofResult:
    """
    Build a 96-byte proof that `ciphertext` encrypts `amount` for `pubkey`.

    A fresh nonce is used every call.
    """
    proof = prove_ciphertext_validity(ciphertext, pubkey, amount, randomness)
    instruction = None
    if mode.emits_verifier_instructions:
        instruction = verify_validity_instruction(
            ciphertext.commitment, [(pubkey, ciphertext.handle)], proof, context_account, zk_program
        )
    return ValidityProofResult(
        proof=proof,
        requires_external_verifier=mode.requires_external_verifier,
        verifier_instruction=instruction,
    )


def verify_validity_proof_local(
    proof: bytes, ciphertext: Ciphertext, pubkey: bytes
) -> ProofVerificationResult:
    try:
        check_validity(proof, ciphertext.commitment, [(pubkey, ciphertext.handle)])
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


def verify_grouped_validity_proof_local(
    proof: bytes, commitment: bytes, handles: Sequence[tuple[bytes, bytes]]
) -> ProofVerificationResult:
    """Verify a validity proof over several (pubkey, decrypt handle) pairs, in order."""
    try:
        check_validity(proof, commitment, list(handles))
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


# ==============================================================================
# Equality and public-key proofs
# ==============================================================================


def build_equality_proof(
    keypair: ElGamalKeypair,
    ciphertext: Ciphertext,
    amount: int,
    blinding: int,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    context_account: str | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> EqualityProofResult:
    """Commit to `amount` with `blinding` and prove `ciphertext` hides the same amount."""
    commitment = commit(amount, blinding)
    proof = prove_equality(keypair, ciphertext, commitment, amount, blinding)
    instruction = None
    if mode.emits_verifier_instructions:
        instruction = verify_equality_instruction(
            keypair.public_key, ciphertext, commitment, proof, context_account, zk_program
        )
    return EqualityProofResult(
        proof=proof,
        requires_external_verifier=mode.requires_external_verifier,
        verifier_instruction=instruction,
        commitment=commitment,
    )


def verify_equality_proof_local(
    proof: bytes, pubkey: bytes, ciphertext: Ciphertext, commitment: bytes
) -> ProofVerificationResult:
    try:
        check_equality(proof, pubkey, ciphertext, commitment)
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


def build_pubkey_validity_proof(
    keypair: ElGamalKeypair,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    context_account: str | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> ValidityProofResult:
    """Build a 64-byte proof of knowledge of the secret key."""
    proof = prove_pubkey_validity(keypair)
    instruction = None
    if mode.emits_verifier_instructions:
        instruction = verify_pubkey_validity_instruction(
            keypair.public_key, proof, context_account, zk_program
        )
    return ValidityProofResult(
        proof=proof,
        requires_external_verifier=mode.requires_external_verifier,
        verifier_instruction=instruction,
    )


def verify_pubkey_validity_proof_local(proof: bytes, pubkey: bytes) -> ProofVerificationResult:
    try:
        check_pubkey_validity(proof, pubkey)
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


# ==============================================================================
# Transfers
# ==============================================================================


def _source_plaintext(
    source_balance: Ciphertext,
    keypair: ElGamalKeypair,
    declared: int | None,
    max_decrypt_value: int,
) -> int:
    if declared is None:
        return decrypt(source_balance, keypair.secret_key, max_decrypt_value)
    validate_amount(declared)
    if not ciphertext_encrypts(source_balance, keypair.secret_key, declared):
        raise InputValidationError("Source balance ciphertext does not encrypt the declared balance")
    return declared


def build_transfer_proof(
    source_balance: Ciphertext,
    transfer_amount: int,
    source_keypair: ElGamalKeypair,
    dest_pubkey: bytes,
    source_randomness: int,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    source_balance_amount: int | None = None,
    max_decrypt_value: int = DEFAULT_DECRYPT_BOUND,
    context_accounts: Sequence[str] | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> TransferProofBundle:
    """
    Build the proof bundle for a confidential transfer.

    Steps:
        1. Encrypt the amount for the destination with fresh randomness r.
        2. Subtract the amount, encrypted for the source with the same r,
           from the source balance.
        3. Commit to the remaining balance with `source_randomness` and prove
           the new balance ciphertext hides the same value.
        4. Prove the amount ciphertext is well formed for both keys.
        5. Range-prove the remaining balance and the amount.

    Args:
        source_balance: current available balance under the source key.
        transfer_amount: amount T to move.
        source_keypair: the sender's keypair (its secret key drives the
            equality proof; its public key receives the source handle).
        dest_pubkey: recipient's 32-byte public key.
        source_randomness: blinding for the new balance commitment.
        mode: proof mode; ZK modes attach verifier instructions.
        source_balance_amount: plaintext balance, if known. Checked against
            the ciphertext; otherwise the balance is decrypted (bounded by
            max_decrypt_value).
        context_accounts: one proof context account per verifier
            instruction (four), for proofs verified ahead of the transfer.

    Raises:
        RangeError: T is out of range, or T exceeds the balance.
        InvalidRandomnessError: source_randomness is zero.
        InputValidationError: the declared balance does not match, or the
            wrong number of context accounts is given.
        DecryptionError: balance not recoverable within max_decrypt_value.
    """
    validate_amount(transfer_amount)
    r_new = require_scalar(source_randomness, "source_randomness")
    decode_point(dest_pubkey)
    source_pub = decode_point(source_keypair.public_key)

    balance = _source_plaintext(source_balance, source_keypair, source_balance_amount, max_decrypt_value)
    new_balance = balance - transfer_amount
    logger.debug(f"Building transfer proof: amount={transfer_amount}, remaining={new_balance}")

    # A transfer above the balance leaves a negative remainder, rejected here
    new_range, new_commitment = prove_range(new_balance, r_new)

    r = random_scalar()
    dest_ciphertext = encrypt(transfer_amount, dest_pubkey, r)
    source_handle = encode_point(scalar_mul(r, source_pub))
    new_source_balance = subtract_ciphertexts(
        source_balance, Ciphertext(commitment=dest_ciphertext.commitment, handle=source_handle)
    )

    equality = prove_equality(source_keypair, new_source_balance, new_commitment, new_balance, r_new)
    handles = [(dest_pubkey, dest_ciphertext.handle), (source_keypair.public_key, source_handle)]
    validity = prove_validity(dest_ciphertext.commitment, handles, transfer_amount, r)
    amount_range, _ = prove_range(transfer_amount, r)

    bundle = TransferProofBundle(
        encrypted_transfer_amount=dest_ciphertext.to_bytes(),
        equality_proof=equality,
        validity_proof=validity,
        range_proof=amount_range.to_bytes(),
        source_handle=source_handle,
        new_source_commitment=new_commitment,
        new_source_range_proof=new_range.to_bytes(),
        new_source_balance=new_source_balance,
        dest_ciphertext=dest_ciphertext,
        requires_external_verifier=mode.requires_external_verifier,
    )
    if not mode.emits_verifier_instructions:
        return bundle
    instructions = transfer_verifier_instructions(
        bundle, source_keypair.public_key, dest_pubkey, context_accounts, zk_program
    )
    return replace(bundle, verifier_instructions=instructions)


def transfer_verifier_instructions(
    bundle: TransferProofBundle,
    source_pubkey: bytes,
    dest_pubkey: bytes,
    context_accounts: Sequence[str] | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> tuple[Instruction, ...]:
    """
    Verifier instructions for a transfer bundle, in order: equality,
    grouped validity, amount range, remaining-balance range.

    With `context_accounts` (one per instruction), the i-th instruction
    writes its verified proof into context_accounts[i].
    """
    ctx = _per_proof_contexts(TRANSFER_PROOF_COUNT, context_accounts)
    commitment = bundle.dest_ciphertext.commitment
    handles = [(dest_pubkey, bundle.dest_ciphertext.handle), (source_pubkey, bundle.source_handle)]
    return (
        verify_equality_instruction(
            source_pubkey, bundle.new_source_balance, bundle.new_source_commitment,
            bundle.equality_proof, ctx[0], zk_program,
        ),
        verify_validity_instruction(commitment, handles, bundle.validity_proof, ctx[1], zk_program),
        verify_range_proof_instruction(commitment, bundle.range_proof, ctx[2], zk_program),
        verify_range_proof_instruction(
            bundle.new_source_commitment, bundle.new_source_range_proof, ctx[3], zk_program
        ),
    )


def verify_transfer_proof_local(
    bundle: TransferProofBundle,
    source_pubkey: bytes,
    dest_pubkey: bytes,
    source_balance: Ciphertext | None = None,
) -> ProofVerificationResult:
    """
    Verify every proof in a transfer bundle. When `source_balance` is given,
    also check that the new source balance is exactly the old balance minus
    the transferred amount. Never raises.
    """
    try:
        if len(bundle.encrypted_transfer_amount) != CIPHERTEXT_SIZE:
            raise InvalidProofSizeError(
                "encrypted transfer amount", CIPHERTEXT_SIZE, len(bundle.encrypted_transfer_amount)
            )
        dest_ciphertext = Ciphertext.from_bytes(bundle.encrypted_transfer_amount)
        if dest_ciphertext != bundle.dest_ciphertext:
            raise ProofCheckError("Destination ciphertext does not match the encrypted amount")

        handles = [(dest_pubkey, dest_ciphertext.handle), (source_pubkey, bundle.source_handle)]
        check_validity(bundle.validity_proof, dest_ciphertext.commitment, handles)
        check_range(RangeProof.from_bytes(bundle.range_proof), dest_ciphertext.commitment)
        check_equality(
            bundle.equality_proof, source_pubkey, bundle.new_source_balance, bundle.new_source_commitment
        )
        check_range(RangeProof.from_bytes(bundle.new_source_range_proof), bundle.new_source_commitment)

        if source_balance is not None:
            expected = subtract_ciphertexts(
                source_balance,
                Ciphertext(commitment=dest_ciphertext.commitment, handle=bundle.source_handle),
            )
            if expected != bundle.new_source_balance:
                raise ProofCheckError(
                    "New source balance is not the source balance minus the transfer amount"
                )
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)


# ==============================================================================
# Withdrawals
# ==============================================================================


def build_withdraw_proof(
    keypair: ElGamalKeypair,
    available_balance: Ciphertext,
    amount: int,
    new_balance_amount: int,
    mode: ProofMode = ProofMode.LOCAL_ONLY,
    *,
    context_accounts: Sequence[str] | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> WithdrawProofBundle:
    """
    Prove that withdrawing `amount` leaves `new_balance_amount` (≥ 0).

    The remaining balance is checked exactly against
    available_balance − amount without decrypting.

    Raises:
        RangeError: amount or remaining balance out of range.
        InputValidationError: new_balance_amount is inconsistent with the
            balance, or context_accounts does not hold two accounts.
    """
    validate_amount(amount)
    validate_amount(new_balance_amount)
    new_balance = subtract_amount(available_balance, amount)
    if not ciphertext_encrypts(new_balance, keypair.secret_key, new_balance_amount):
        raise InputValidationError(
            "New decryptable balance does not equal the available balance minus the withdrawal"
        )

    blinding = random_scalar()
    range_proof, commitment = prove_range(new_balance_amount, blinding)
    equality = prove_equality(keypair, new_balance, commitment, new_balance_amount, blinding)

    bundle = WithdrawProofBundle(
        new_balance=new_balance,
        new_balance_commitment=commitment,
        equality_proof=equality,
        range_proof=range_proof.to_bytes(),
        requires_external_verifier=mode.requires_external_verifier,
    )
    if not mode.emits_verifier_instructions:
        return bundle
    instructions = withdraw_verifier_instructions(bundle, keypair.public_key, context_accounts, zk_program)
    return replace(bundle, verifier_instructions=instructions)


def withdraw_verifier_instructions(
    bundle: WithdrawProofBundle,
    pubkey: bytes,
    context_accounts: Sequence[str] | None = None,
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> tuple[Instruction, ...]:
    """Equality then range verifier instructions for a withdraw bundle."""
    ctx = _per_proof_contexts(WITHDRAW_PROOF_COUNT, context_accounts)
    return (
        verify_equality_instruction(
            pubkey, bundle.new_balance, bundle.new_balance_commitment, bundle.equality_proof,
            ctx[0], zk_program,
        ),
        verify_range_proof_instruction(
            bundle.new_balance_commitment, bundle.range_proof, ctx[1], zk_program
        ),
    )


def verify_withdraw_proof_local(
    bundle: WithdrawProofBundle,
    pubkey: bytes,
    available_balance: Ciphertext | None = None,
    amount: int | None = None,
) -> ProofVerificationResult:
    """Verify a withdraw bundle; optionally recheck the homomorphic update. Never raises."""
    try:
        check_equality(bundle.equality_proof, pubkey, bundle.new_balance, bundle.new_balance_commitment)
        check_range(RangeProof.from_bytes(bundle.range_proof), bundle.new_balance_commitment)
        if available_balance is not None and amount is not None:
            if subtract_amount(available_balance, amount) != bundle.new_balance:
                raise ProofCheckError("New balance is not the available balance minus the withdrawal")
    except _VERIFY_ERRORS as e:
        return ProofVerificationResult(valid=False, error=str(e))
    return ProofVerificationResult(valid=True)
