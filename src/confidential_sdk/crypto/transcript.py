"""
Fiat-Shamir transcript.

Every prover message is absorbed with a length-prefixed label into a running
SHA-256 state; challenges are derived from a 64-byte SHA-512 expansion of that
state and reduced modulo L, so they are statistically uniform.
"""

from __future__ import annotations

import hashlib

from confidential_sdk.crypto.curve import GROUP_ORDER, scalar_to_bytes

_TRANSCRIPT_DOMAIN = b"confidential-sdk/transcript/v1"


class Transcript:
    """Append-only proof transcript producing deterministic challenges."""

    def __init__(self, label: bytes) -> None:
        self._state = hashlib.sha256(_TRANSCRIPT_DOMAIN).digest()
        self.append_message(b"dom-sep", label)

    def append_message(self, label: bytes, message: bytes) -> None:
        h = hashlib.sha256(self._state)
        h.update(len(label).to_bytes(4, "little"))
        h.update(label)
        h.update(len(message).to_bytes(4, "little"))
        h.update(message)
        self._state = h.digest()

    def append_point(self, label: bytes, point: bytes) -> None:
        self.append_message(label, point)

    def append_scalar(self, label: bytes, k: int) -> None:
        self.append_message(label, scalar_to_bytes(k))

    def append_u64(self, label: bytes, value: int) -> None:
        self.append_message(label, value.to_bytes(8, "little"))

    def challenge_scalar(self, label: bytes) -> int:
        """Derive a challenge scalar and bind it into the transcript."""
        self.append_message(b"challenge", label)
        wide = hashlib.sha512(self._state + label).digest()
        return int.from_bytes(wide, "little") % GROUP_ORDER
