"""
Core data models for ledger-facing structures.
Amounts are in base units of the token (no decimal scaling) internally.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, Field, field_validator

from confidential_sdk.core.address import validate_address


class AccountRole(IntEnum):
    """How an instruction uses an account (signer bit | writable bit << 1)."""
    READONLY = 0
    READONLY_SIGNER = 1
    WRITABLE = 2
    WRITABLE_SIGNER = 3

    @property
    def is_signer(self) -> bool:
        return bool(self & 1)

    @property
    def is_writable(self) -> bool:
        return bool(self & 2)


class AccountMeta(BaseModel):
    """An account referenced by an instruction."""
    address: str
    role: AccountRole

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        validate_address(value)
        return value


class Instruction(BaseModel):
    """A program invocation ready to be placed in a transaction."""
    program_address: str
    accounts: list[AccountMeta] = Field(default_factory=list)
    data: bytes

    @field_validator("program_address")
    @classmethod
    def _check_program(cls, value: str) -> str:
        validate_address(value)
        return value

    @property
    def signers(self) -> list[str]:
        return [meta.address for meta in self.accounts if meta.role.is_signer]


class FeatureStatus(BaseModel):
    """Cached activation status of a ledger feature gate."""
    activated: bool
    last_checked: float  # clock timestamp, seconds
    activation_slot: int | None = None
    error: str | None = None


class AccountInfo(BaseModel):
    """A ledger account as returned by getAccountInfo."""
    address: str
    lamports: int = 0
    owner: str | None = None
    data: bytes = b""
    executable: bool = False
