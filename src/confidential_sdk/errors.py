"""
Error taxonomy for confidential balances.

Input problems are raised before any proof work starts and derive from
ValueError, so callers that already guard numeric input keep working.
Verification failures of a well-formed proof are reported as results by the
proof engine rather than raised.
"""

from __future__ import annotations

AMOUNT_RANGE_MESSAGE = "Amount must be in range [0, 2^64)"


class ConfidentialSDKError(Exception):
    """Base class for every error raised by confidential_sdk."""
    pass


# ------------------------------------------------------------------
# Input validation
# ------------------------------------------------------------------


class InputValidationError(ConfidentialSDKError, ValueError):
    """Raised when caller-supplied input is malformed or out of bounds."""
    pass


class RangeError(InputValidationError):
    """Raised when an amount falls outside [0, 2^64)."""

    def __init__(self, message: str = AMOUNT_RANGE_MESSAGE) -> None:
        super().__init__(message)


class InvalidRandomnessError(InputValidationError):
    """Raised for a zero (or otherwise unusable) blinding factor or randomness."""
    pass


class InvalidPointError(InputValidationError):
    """Raised when bytes do not decode to a valid curve point."""
    pass


class AddressError(InputValidationError):
    """Raised for invalid ledger addresses."""
    pass


# ------------------------------------------------------------------
# Proofs
# ------------------------------------------------------------------


class ProofSizeError(ConfidentialSDKError, ValueError):
    """Raised when a serialized proof has the wrong length."""
    pass


class InvalidProofSizeError(ProofSizeError):
    """Raised when a proof buffer does not have its fixed wire size."""

    def __init__(self, kind: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Invalid proof size for {kind}: expected {expected} bytes, got {actual}"
        )
        self.kind = kind
        self.expected = expected
        self.actual = actual


class ProofCheckError(ConfidentialSDKError):
    """Raised when a structurally valid proof fails a verification equation."""
    pass


class ProofVerificationError(ConfidentialSDKError):
    """Raised when a freshly built proof does not verify locally."""
    pass


class DecryptionError(ConfidentialSDKError):
    """Raised when a ciphertext's plaintext cannot be recovered within the search bound."""
    pass


# ------------------------------------------------------------------
# Ledger and capability detection
# ------------------------------------------------------------------


class LedgerError(ConfidentialSDKError):
    """Raised when the ledger RPC endpoint returns an error."""
    pass


class CapabilityQueryError(ConfidentialSDKError):
    """Raised when the verifier-program status could not be determined."""
    pass


class ModeInconsistencyError(ConfidentialSDKError):
    """Raised when on-chain verification is required but the program is inactive."""
    pass
