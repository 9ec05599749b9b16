"""core module init"""
from confidential_sdk.core.address import decode_address, encode_address, is_valid_address, validate_address
from confidential_sdk.core.features import (
    FeatureGateDetector,
    FeatureMonitor,
    FeatureStatusCache,
    parse_activation_slot,
)
from confidential_sdk.core.instructions import (
    ConfidentialInstruction,
    InstructionBuilderError,
    ProofInstruction,
    estimate_transaction_size,
    pack_transactions,
    plan_transaction_steps,
)
from confidential_sdk.core.ledger import LedgerClient, LedgerQuery
from confidential_sdk.core.models import AccountInfo, AccountMeta, AccountRole, FeatureStatus, Instruction

__all__ = [
    "AccountInfo",
    "AccountMeta",
    "AccountRole",
    "ConfidentialInstruction",
    "FeatureGateDetector",
    "FeatureMonitor",
    "FeatureStatus",
    "FeatureStatusCache",
    "Instruction",
    "InstructionBuilderError",
    "LedgerClient",
    "LedgerQuery",
    "ProofInstruction",
    "decode_address",
    "encode_address",
    "estimate_transaction_size",
    "is_valid_address",
    "pack_transactions",
    "parse_activation_slot",
    "plan_transaction_steps",
    "validate_address",
]
