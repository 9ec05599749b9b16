"""
Runtime configuration for confidential_sdk.

All network-specific values (RPC endpoint, program addresses, the feature gate
that enables the on-chain verifier) live here so the same code targets any
cluster. Values can be loaded from CONFIDENTIAL_* environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# Program addresses on mainnet-beta / devnet
TOKEN_2022_PROGRAM_ADDRESS = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS = "ZkE1Gama1Proof11111111111111111111111111111"

# Feature gate that re-enables the ZK ElGamal proof program
ZK_ELGAMAL_PROOF_FEATURE_ID = "zkhiy5oLowR7HY4zogXjCjeMXyruLqBwSWH21qcFtnv"

DEFAULT_RPC_URL = "https://api.devnet.solana.com"

# Packet size limit for a single serialized transaction
MAX_TRANSACTION_SIZE = 1232

_ENV_PREFIX = "CONFIDENTIAL_"


@dataclass
class ConfidentialConfig:
    """
    Configuration for the ledger client, capability detector and orchestrator.

    Args:
        rpc_url:              JSON-RPC endpoint of the ledger
        commitment:           commitment level used for account queries
        request_timeout:      HTTP timeout in seconds
        token_program:        address of the token program with the confidential extension
        zk_program:           address of the proof-verification program
        zk_feature_id:        feature gate account that signals the verifier is active
        feature_cache_ttl:    seconds a feature status stays cached
        feature_cache_size:   maximum number of cached feature statuses
        monitor_interval:     polling interval for feature monitors, in seconds
        max_transaction_size: byte limit used when packing instructions into transactions
        default_proof_mode:   proof mode used when an operation does not name one
    """
    rpc_url: str = DEFAULT_RPC_URL
    commitment: str = "confirmed"
    request_timeout: float = 15.0
    token_program: str = TOKEN_2022_PROGRAM_ADDRESS
    zk_program: str = ZK_ELGAMAL_PROOF_PROGRAM_ADDRESS
    zk_feature_id: str = ZK_ELGAMAL_PROOF_FEATURE_ID
    feature_cache_ttl: float = 300.0
    feature_cache_size: int = 100
    monitor_interval: float = 30.0
    max_transaction_size: int = MAX_TRANSACTION_SIZE
    default_proof_mode: str = "zk_program_with_fallback"

    def __post_init__(self) -> None:
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ValueError(f"Unknown commitment level: {self.commitment!r}")
        if self.feature_cache_ttl < 0:
            raise ValueError("feature_cache_ttl must be non-negative")
        if self.feature_cache_size < 1:
            raise ValueError("feature_cache_size must be at least 1")
        if self.monitor_interval <= 0:
            raise ValueError("monitor_interval must be positive")

    @classmethod
    def from_env(cls) -> ConfidentialConfig:
        """
        Build a config from CONFIDENTIAL_* environment variables.

        Unset variables keep their defaults, e.g. CONFIDENTIAL_RPC_URL,
        CONFIDENTIAL_COMMITMENT, CONFIDENTIAL_ZK_FEATURE_ID.
        """
        defaults = cls()
        return cls(
            rpc_url=os.getenv(f"{_ENV_PREFIX}RPC_URL", defaults.rpc_url),
            commitment=os.getenv(f"{_ENV_PREFIX}COMMITMENT", defaults.commitment),
            request_timeout=float(
                os.getenv(f"{_ENV_PREFIX}REQUEST_TIMEOUT", defaults.request_timeout)
            ),
            token_program=os.getenv(f"{_ENV_PREFIX}TOKEN_PROGRAM", defaults.token_program),
            zk_program=os.getenv(f"{_ENV_PREFIX}ZK_PROGRAM", defaults.zk_program),
            zk_feature_id=os.getenv(f"{_ENV_PREFIX}ZK_FEATURE_ID", defaults.zk_feature_id),
            feature_cache_ttl=float(
                os.getenv(f"{_ENV_PREFIX}FEATURE_CACHE_TTL", defaults.feature_cache_ttl)
            ),
            feature_cache_size=int(
                os.getenv(f"{_ENV_PREFIX}FEATURE_CACHE_SIZE", defaults.feature_cache_size)
            ),
            monitor_interval=float(
                os.getenv(f"{_ENV_PREFIX}MONITOR_INTERVAL", defaults.monitor_interval)
            ),
            max_transaction_size=int(
                os.getenv(f"{_ENV_PREFIX}MAX_TRANSACTION_SIZE", defaults.max_transaction_size)
            ),
            default_proof_mode=os.getenv(
                f"{_ENV_PREFIX}DEFAULT_PROOF_MODE", defaults.default_proof_mode
            ),
        )
