"""
confidential-sdk: Python SDK for confidential token balances.

Usage:
    from confidential_sdk import ConfidentialTransferManager, LedgerClient, generate_keypair
    from confidential_sdk.transfer import ProofMode, build_transfer_proof
"""

from confidential_sdk.config import ConfidentialConfig
from confidential_sdk.core.features import FeatureGateDetector
from confidential_sdk.core.ledger import LedgerClient
from confidential_sdk.crypto.elgamal import Ciphertext, ElGamalKeypair, decrypt, encrypt, generate_keypair
from confidential_sdk.crypto.pedersen import commit
from confidential_sdk.transfer.manager import ConfidentialTransferManager
from confidential_sdk.transfer.proof_builder import ProofMode

__version__ = "0.1.0"
__all__ = [
    "Ciphertext",
    "ConfidentialConfig",
    "ConfidentialTransferManager",
    "ElGamalKeypair",
    "FeatureGateDetector",
    "LedgerClient",
    "ProofMode",
    "commit",
    "decrypt",
    "encrypt",
    "generate_keypair",
]
