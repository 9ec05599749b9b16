"""
LedgerClient: async JSON-RPC client for the ledger's account queries.

Only the narrow surface needed by capability detection is implemented:
fetching an account's raw data (getAccountInfo) and the current slot.
"""

from __future__ import annotations

import base64
import itertools
from typing import Any, Protocol

import httpx

from confidential_sdk.config import DEFAULT_RPC_URL
from confidential_sdk.core.models import AccountInfo
from confidential_sdk.errors import LedgerError


class LedgerQuery(Protocol):
    """The I/O seam used by the capability detector."""

    async def fetch_account(self, address: str) -> bytes | None:
        """Return the account's data, or None if the account does not exist."""
        ...


class LedgerClient:
    """
    Async client for a ledger JSON-RPC endpoint.

    Usage:
        async with LedgerClient("https://api.devnet.solana.com") as ledger:
            data = await ledger.fetch_account(feature_id)
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        commitment: str = "confirmed",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account_info(self, address: str) -> AccountInfo | None:
        """
        Return the account at `address`, or None if it does not exist.

        Raises:
            LedgerError: on transport or RPC errors.
        """
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            return None

        raw = value.get("data") or ["", "base64"]
        try:
            data = base64.b64decode(raw[0]) if raw[0] else b""
        except (ValueError, TypeError) as e:
            raise LedgerError(f"Undecodable account data for {address}: {e}") from None

        return AccountInfo(
            address=address,
            lamports=int(value.get("lamports", 0)),
            owner=value.get("owner"),
            data=data,
            executable=bool(value.get("executable", False)),
        )

    async def fetch_account(self, address: str) -> bytes | None:
        """Return the account's raw data, or None if the account does not exist."""
        info = await self.get_account_info(address)
        return None if info is None else info.data

    # ------------------------------------------------------------------
    # Chain info
    # ------------------------------------------------------------------

    async def get_slot(self) -> int:
        """Return the current slot at the configured commitment."""
        result = await self._rpc("getSlot", [{"commitment": self.commitment}])
        return int(result)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise LedgerError(f"RPC request {method} to {self.rpc_url} failed: {e}") from e

        if response.status_code != 200:
            raise LedgerError(
                f"RPC error {response.status_code} for {method}: {response.text}"
            )
        body = response.json()
        if "error" in body:
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise LedgerError(f"RPC {method} failed: {message}")
        return body.get("result")

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()
