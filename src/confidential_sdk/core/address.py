"""
Ledger address utilities: validation and Base58 encoding.

Addresses are 32-byte public keys (or program-derived keys) encoded with the
Bitcoin Base58 alphabet and no checksum.
"""

from __future__ import annotations

from confidential_sdk.errors import AddressError

ADDRESS_SIZE = 32

# Bitcoin Base58 alphabet; a leading "1" stands for a zero byte
_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_ALPHABET_MAP = {char: i for i, char in enumerate(_ALPHABET)}


def decode_address(address: str) -> bytes:
    """
    Decode a Base58 address to its 32 raw bytes.

    Args:
        address: Base58 string

    Returns:
        32-byte public key

    Raises:
        AddressError: if the encoding is invalid or the length is not 32 bytes
    """
    if not isinstance(address, str) or not address:
        raise AddressError(f"Address must be a non-empty string, got {address!r}")
    try:
        raw = _base58_decode(address)
    except (KeyError, UnicodeEncodeError) as e:
        raise AddressError(f"Invalid Base58 encoding: {e}") from None

    if len(raw) != ADDRESS_SIZE:
        raise AddressError(
            f"Address {address} decodes to {len(raw)} bytes, expected {ADDRESS_SIZE}"
        )
    return raw


def encode_address(raw: bytes) -> str:
    """Encode 32 raw bytes as a Base58 address."""
    if len(raw) != ADDRESS_SIZE:
        raise AddressError(f"Expected {ADDRESS_SIZE} bytes, got {len(raw)}")
    return _base58_encode(raw)


def validate_address(address: str) -> bool:
    """
    Validate an address.

    Returns:
        True if valid

    Raises:
        AddressError: if the address is malformed
    """
    decode_address(address)
    return True


def is_valid_address(address: str) -> bool:
    """Non-raising form of validate_address."""
    try:
        return validate_address(address)
    except AddressError:
        return False


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _base58_decode(s: str) -> bytes:
    data = s.encode("ascii")
    n = 0
    for char in data:
        n = n * 58 + _ALPHABET_MAP[char]
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    zeros = len(data) - len(data.lstrip(_ALPHABET[:1]))
    return b"\x00" * zeros + body


def _base58_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    digits = bytearray()
    while n:
        n, rem = divmod(n, 58)
        digits.append(_ALPHABET[rem])
    zeros = len(data) - len(data.lstrip(b"\x00"))
    return (_ALPHABET[:1] * zeros + bytes(reversed(digits))).decode("ascii")
