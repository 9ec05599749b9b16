"""
Instruction encoders for the proof-verification program and the token
program's confidential-transfer extension, plus transaction packing.

The resulting Instruction objects are handed to an external submitter; this
module never signs or sends anything.

Wire formats (all integers little-endian):

    Verifier program
        VerifyCiphertextCommitmentEquality  3 ∥ pubkey ∥ ciphertext(64) ∥ commitment ∥ proof(192)
        VerifyPubkeyValidity                4 ∥ pubkey ∥ proof(64)
        VerifyRangeProofU64                 6 ∥ commitment ∥ proof(674)
        VerifyCiphertextValidity            9 ∥ n ∥ commitment ∥ (pubkey ∥ handle)×n ∥ proof(96)
        CloseContextState                   0

    Token program, confidential extension (27 ∥ sub-instruction ∥ ...)
        InitializeMint     authority(32) ∥ auto_approve u8 ∥ auditor pubkey(32, zero = none)
        ConfigureAccount   pubkey(32) ∥ decryptable zero balance(64) ∥ max credits u64 ∥ offset i8
        Deposit            amount u64 ∥ decimals u8
        Withdraw           amount u64 ∥ decimals u8 ∥ new decryptable balance(64) ∥ offset i8
        Transfer           new source decryptable balance(64) ∥ offset i8

A proof instruction offset is the position of the first proof instruction
relative to the consuming instruction in the same transaction (negative), or
0 when the proofs are read from proof context accounts, one per proof.
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from enum import IntEnum

from confidential_sdk.config import (
    MAX_TRANSACTION_SIZE,
    TOKEN_2022_PROGRAM_ADDRESS,
    ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
)
from confidential_sdk.core.address import decode_address
from confidential_sdk.core.models import AccountMeta, AccountRole, Instruction
from confidential_sdk.crypto.elgamal import Ciphertext
from confidential_sdk.errors import ConfidentialSDKError, InputValidationError

CONFIDENTIAL_TRANSFER_EXTENSION = 27

INSTRUCTIONS_SYSVAR_ADDRESS = "Sysvar1nstructions1111111111111111111111111"

SIGNATURE_SIZE = 64
_MESSAGE_HEADER_SIZE = 3
_BLOCKHASH_SIZE = 32


class InstructionBuilderError(ConfidentialSDKError):
    """Raised when instructions cannot be laid out within transaction limits."""
    pass


class ConfidentialInstruction(IntEnum):
    """Sub-instructions of the confidential-transfer extension."""
    INITIALIZE_MINT = 0
    UPDATE_MINT = 1
    CONFIGURE_ACCOUNT = 2
    APPROVE_ACCOUNT = 3
    EMPTY_ACCOUNT = 4
    DEPOSIT = 5
    WITHDRAW = 6
    TRANSFER = 7
    APPLY_PENDING_BALANCE = 8


class ProofInstruction(IntEnum):
    """Instruction tags of the proof-verification program."""
    CLOSE_CONTEXT_STATE = 0
    VERIFY_CIPHERTEXT_COMMITMENT_EQUALITY = 3
    VERIFY_PUBKEY_VALIDITY = 4
    VERIFY_RANGE_PROOF_U64 = 6
    VERIFY_CIPHERTEXT_VALIDITY = 9


# ------------------------------------------------------------------
# Proof-verification program
# ------------------------------------------------------------------


def _context_accounts(context_account: str | None) -> list[AccountMeta]:
    if context_account is None:
        return []
    return [AccountMeta(address=context_account, role=AccountRole.WRITABLE)]


def verify_range_proof_instruction(
    commitment: bytes,
    proof: bytes,
    context_account: str | None = None,
    program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> Instruction:
    data = bytes([ProofInstruction.VERIFY_RANGE_PROOF_U64]) + commitment + proof
    return Instruction(program_address=program, accounts=_context_accounts(context_account), data=data)


def verify_validity_instruction(
    commitment: bytes,
    handles: Sequence[tuple[bytes, bytes]],
    proof: bytes,
    context_account: str | None = None,
    program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> Instruction:
    if not 1 <= len(handles) <= 255:
        raise InputValidationError(f"Expected 1-255 decrypt handles, got {len(handles)}")
    data = bytes([ProofInstruction.VERIFY_CIPHERTEXT_VALIDITY, len(handles)]) + commitment
    data += b"".join(pubkey + handle for pubkey, handle in handles) + proof
    return Instruction(program_address=program, accounts=_context_accounts(context_account), data=data)


def verify_equality_instruction(
    pubkey: bytes,
    ciphertext: Ciphertext,
    commitment: bytes,
    proof: bytes,
    context_account: str | None = None,
    program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> Instruction:
    data = (
        bytes([ProofInstruction.VERIFY_CIPHERTEXT_COMMITMENT_EQUALITY])
        + pubkey
        + ciphertext.to_bytes()
        + commitment
        + proof
    )
    return Instruction(program_address=program, accounts=_context_accounts(context_account), data=data)


def verify_pubkey_validity_instruction(
    pubkey: bytes,
    proof: bytes,
    context_account: str | None = None,
    program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> Instruction:
    data = bytes([ProofInstruction.VERIFY_PUBKEY_VALIDITY]) + pubkey + proof
    return Instruction(program_address=program, accounts=_context_accounts(context_account), data=data)


def close_context_state_instruction(
    context_account: str,
    destination: str,
    authority: str,
    program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS,
) -> Instruction:
    """Close a proof context account and reclaim its rent to `destination`."""
    return Instruction(
        program_address=program,
        accounts=[
            AccountMeta(address=context_account, role=AccountRole.WRITABLE),
            AccountMeta(address=destination, role=AccountRole.WRITABLE),
            AccountMeta(address=authority, role=AccountRole.READONLY_SIGNER),
        ],
        data=bytes([ProofInstruction.CLOSE_CONTEXT_STATE]),
    )


# ------------------------------------------------------------------
# Token program, confidential-transfer extension
# ------------------------------------------------------------------


def _extension_data(sub: ConfidentialInstruction, payload: bytes) -> bytes:
    return bytes([CONFIDENTIAL_TRANSFER_EXTENSION, sub]) + payload


def _proof_source(offset: int, context_accounts: Sequence[str]) -> list[AccountMeta]:
    if offset != 0:
        return [AccountMeta(address=INSTRUCTIONS_SYSVAR_ADDRESS, role=AccountRole.READONLY)]
    return [AccountMeta(address=ctx, role=AccountRole.READONLY) for ctx in context_accounts]


def _u64(value: int, name: str) -> bytes:
    if not 0 <= value < 2**64:
        raise InputValidationError(f"{name} must fit in an unsigned 64-bit integer")
    return struct.pack("<Q", value)


def _u8(value: int, name: str) -> bytes:
    if not 0 <= value <= 255:
        raise InputValidationError(f"{name} must be in [0, 255], got {value}")
    return struct.pack("<B", value)


def _i8(value: int, name: str) -> bytes:
    if not -128 <= value <= 127:
        raise InputValidationError(f"{name} must be in [-128, 127], got {value}")
    return struct.pack("<b", value)


def initialize_mint_instruction(
    mint: str,
    authority: str,
    auto_approve_new_accounts: bool,
    auditor_pubkey: bytes | None = None,
    program: str = TOKEN_2022_PROGRAM_ADDRESS,
) -> Instruction:
    auditor = auditor_pubkey if auditor_pubkey is not None else bytes(32)
    if len(auditor) != 32:
        raise InputValidationError("Auditor public key must be 32 bytes")
    payload = decode_address(authority) + _u8(int(auto_approve_new_accounts), "auto_approve") + auditor
    return Instruction(
        program_address=program,
        accounts=[AccountMeta(address=mint, role=AccountRole.WRITABLE)],
        data=_extension_data(ConfidentialInstruction.INITIALIZE_MINT, payload),
    )


def configure_account_instruction(
    account: str,
    mint: str,
    authority: str,
    elgamal_pubkey: bytes,
    decryptable_zero_balance: Ciphertext,
    max_pending_balance_credits: int,
    proof_instruction_offset: int,
    context_accounts: Sequence[str] = (),
    program: str = TOKEN_2022_PROGRAM_ADDRESS,
) -> Instruction:
    payload = (
        elgamal_pubkey
        + decryptable_zero_balance.to_bytes()
        + _u64(max_pending_balance_credits, "max_pending_balance_credits")
        + _i8(proof_instruction_offset, "proof_instruction_offset")
    )
    return Instruction(
        program_address=program,
        accounts=[
            AccountMeta(address=account, role=AccountRole.WRITABLE),
            AccountMeta(address=mint, role=AccountRole.READONLY),
            *_proof_source(proof_instruction_offset, context_accounts),
            AccountMeta(address=authority, role=AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialInstruction.CONFIGURE_ACCOUNT, payload),
    )


def deposit_instruction(
    account: str,
    mint: str,
    authority: str,
    amount: int,
    decimals: int,
    program: str = TOKEN_2022_PROGRAM_ADDRESS,
) -> Instruction:
    payload = _u64(amount, "amount") + _u8(decimals, "decimals")
    return Instruction(
        program_address=program,
        accounts=[
            AccountMeta(address=account, role=AccountRole.WRITABLE),
            AccountMeta(address=mint, role=AccountRole.READONLY),
            AccountMeta(address=authority, role=AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialInstruction.DEPOSIT, payload),
    )


def withdraw_instruction(
    account: str,
    mint: str,
    authority: str,
    amount: int,
    decimals: int,
    new_decryptable_balance: Ciphertext,
    proof_instruction_offset: int,
    context_accounts: Sequence[str] = (),
    program: str = TOKEN_2022_PROGRAM_ADDRESS,
) -> Instruction:
    payload = (
        _u64(amount, "amount")
        + _u8(decimals, "decimals")
        + new_decryptable_balance.to_bytes()
        + _i8(proof_instruction_offset, "proof_instruction_offset")
    )
    return Instruction(
        program_address=program,
        accounts=[
            AccountMeta(address=account, role=AccountRole.WRITABLE),
            AccountMeta(address=mint, role=AccountRole.READONLY),
            *_proof_source(proof_instruction_offset, context_accounts),
            AccountMeta(address=authority, role=AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialInstruction.WITHDRAW, payload),
    )


def transfer_instruction(
    source: str,
    destination: str,
    mint: str,
    authority: str,
    new_source_decryptable_balance: Ciphertext,
    proof_instruction_offset: int,
    context_accounts: Sequence[str] = (),
    program: str = TOKEN_2022_PROGRAM_ADDRESS,
) -> Instruction:
    payload = new_source_decryptable_balance.to_bytes() + _i8(
        proof_instruction_offset, "proof_instruction_offset"
    )
    return Instruction(
        program_address=program,
        accounts=[
            AccountMeta(address=source, role=AccountRole.WRITABLE),
            AccountMeta(address=mint, role=AccountRole.READONLY),
            AccountMeta(address=destination, role=AccountRole.WRITABLE),
            *_proof_source(proof_instruction_offset, context_accounts),
            AccountMeta(address=authority, role=AccountRole.READONLY_SIGNER),
        ],
        data=_extension_data(ConfidentialInstruction.TRANSFER, payload),
    )


# ------------------------------------------------------------------
# Transaction size and packing
# ------------------------------------------------------------------


def _compact_len(n: int) -> int:
    """Size of a compact-u16 length prefix."""
    if n < 0x80:
        return 1
    if n < 0x4000:
        return 2
    return 3


def estimate_transaction_size(instructions: Sequence[Instruction]) -> int:
    """
    Estimate the serialized size of a single-payer transaction holding
    `instructions` (signatures, header, account keys, blockhash, instructions).
    """
    keys: dict[str, None] = {}
    signers: set[str] = set()
    for ins in instructions:
        for meta in ins.accounts:
            keys.setdefault(meta.address)
            if meta.role.is_signer:
                signers.add(meta.address)
        keys.setdefault(ins.program_address)

    n_keys = len(keys)
    if not signers:
        n_keys += 1  # fee payer
    n_sigs = max(1, len(signers))

    size = _compact_len(n_sigs) + n_sigs * SIGNATURE_SIZE
    size += _MESSAGE_HEADER_SIZE + _compact_len(n_keys) + 32 * n_keys + _BLOCKHASH_SIZE
    size += _compact_len(len(instructions))
    for ins in instructions:
        size += 1  # program id index
        size += _compact_len(len(ins.accounts)) + len(ins.accounts)
        size += _compact_len(len(ins.data)) + len(ins.data)
    return size


def pack_transactions(
    instructions: Sequence[Instruction], max_size: int = MAX_TRANSACTION_SIZE
) -> list[list[Instruction]]:
    """
    Greedily pack instructions, in order, into transactions under `max_size`.

    Raises:
        InstructionBuilderError: a single instruction does not fit on its own.
    """
    steps: list[list[Instruction]] = []
    current: list[Instruction] = []
    for ins in instructions:
        if estimate_transaction_size([ins]) > max_size:
            raise InstructionBuilderError(
                f"Instruction with {len(ins.data)} data bytes exceeds the "
                f"{max_size}-byte transaction limit"
            )
        if current and estimate_transaction_size(current + [ins]) > max_size:
            steps.append(current)
            current = [ins]
        else:
            current.append(ins)
    if current:
        steps.append(current)
    return steps


def plan_transaction_steps(
    proof_instructions: Sequence[Instruction],
    build_main: Callable[[int, Sequence[str]], Instruction],
    max_size: int = MAX_TRANSACTION_SIZE,
    *,
    context_accounts: Sequence[str] | None = None,
    build_context_proofs: Callable[[Sequence[str]], Sequence[Instruction]] | None = None,
) -> tuple[Instruction, list[Instruction], list[list[Instruction]]]:
    """
    Lay out proof instructions and the consuming instruction.

    If everything fits in one transaction, the proofs immediately precede the
    main instruction, which references them by relative offset. Otherwise
    every proof is verified in an earlier step into its own context account,
    and the main instruction (offset 0) reads all of them in a final step.

    Args:
        proof_instructions: verifier-program instructions, in order.
        build_main: builds the main instruction for a proof offset and the
            context accounts it reads.
        max_size: transaction byte limit.
        context_accounts: one distinct context account per proof instruction,
            used only when the proofs do not fit inline.
        build_context_proofs: rebuilds the proof instructions so that the
            i-th one writes to context_accounts[i].

    Returns:
        (main instruction, proof instructions as laid out, transaction steps)

    Raises:
        InstructionBuilderError: the proofs do not fit inline and no context
            accounts were supplied.
        InputValidationError: the context accounts do not match the proofs.
    """
    if not proof_instructions:
        main = build_main(0, ())
        return main, [], [[main]]

    n = len(proof_instructions)
    inline = build_main(-n, ())
    together = list(proof_instructions) + [inline]
    if estimate_transaction_size(together) <= max_size:
        return inline, list(proof_instructions), [together]

    if not context_accounts or build_context_proofs is None:
        raise InstructionBuilderError(
            f"{n} proof instructions do not fit in one {max_size}-byte transaction "
            "with the instruction that consumes them; supply one proof context "
            "account per proof"
        )
    if len(context_accounts) != n or len(set(context_accounts)) != n:
        raise InputValidationError(
            f"Expected {n} distinct proof context accounts, got {len(context_accounts)}"
        )

    proofs = list(build_context_proofs(context_accounts))
    main = build_main(0, context_accounts)
    return main, proofs, pack_transactions(proofs, max_size) + [[main]]
