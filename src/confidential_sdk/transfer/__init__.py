"""
confidential_sdk.transfer — Proof construction and operation orchestration.

Provides:
- ProofMode and the range / validity / equality / transfer proof engines
- Local verification returning ProofVerificationResult
- ConfidentialTransferManager for configure, deposit, withdraw and transfer
"""

from confidential_sdk.transfer.manager import (
    ConfidentialTransferManager,
    ConfigureAccountResult,
    DepositResult,
    OperationResult,
    TransferResult,
    WithdrawResult,
)
from confidential_sdk.transfer.proof_builder import (
    EqualityProofResult,
    ProofMode,
    ProofVerificationResult,
    RangeProofResult,
    TransferProofBundle,
    ValidityProofResult,
    WithdrawProofBundle,
    build_equality_proof,
    build_pubkey_validity_proof,
    build_range_proof,
    build_transfer_proof,
    build_validity_proof,
    build_withdraw_proof,
    transfer_verifier_instructions,
    verify_equality_proof_local,
    verify_grouped_validity_proof_local,
    verify_pubkey_validity_proof_local,
    verify_range_proof_local,
    verify_transfer_proof_local,
    verify_validity_proof_local,
    verify_withdraw_proof_local,
    withdraw_verifier_instructions,
)

__all__ = [
    # Modes and results
    "ProofMode",
    "ProofVerificationResult",
    "RangeProofResult",
    "ValidityProofResult",
    "EqualityProofResult",
    "TransferProofBundle",
    "WithdrawProofBundle",
    # Engines
    "build_range_proof",
    "build_validity_proof",
    "build_equality_proof",
    "build_pubkey_validity_proof",
    "build_transfer_proof",
    "build_withdraw_proof",
    "transfer_verifier_instructions",
    "withdraw_verifier_instructions",
    "verify_range_proof_local",
    "verify_validity_proof_local",
    "verify_grouped_validity_proof_local",
    "verify_equality_proof_local",
    "verify_pubkey_validity_proof_local",
    "verify_transfer_proof_local",
    "verify_withdraw_proof_local",
    # Orchestration
    "ConfidentialTransferManager",
    "OperationResult",
    "ConfigureAccountResult",
    "DepositResult",
    "WithdrawResult",
    "TransferResult",
]
