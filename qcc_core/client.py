"""
Async HTTP client for the QCC chain backend, built on ``aiohttp``.

Endpoints
---------
GET  /api/ts         Server timestamp (microseconds, JSON integer)
POST /broadcast/     Submit a signed envelope
POST /rawrequest/    Read-only chain queries (``GetBalance``)

Staking backend (relative to ``staking.api_url``)
-------------------------------------------------
GET  /api/config             Staking wallet address (on the server root)
GET  /staking/rates          Interest rates per period
POST /staking                Register a stake after its Send is broadcast
GET  /staking/wallet/<addr>  Stakes held by a wallet
GET  /staking/<id>           One stake
PUT  /staking/<id>/cancel    Early cancellation
GET  /staking/stats          Totals across all stakes

The client owns nothing but a session.  Signing happens locally in
:mod:`qcc_core.transaction`; only the finished JSON body leaves the
process.

Usage:
    async with QCCClient("https://qcc-backend.com") as client:
        result = await client.send(private_key, to_address, "1.5")
        print(result.tx_hash)
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiohttp

from qcc_core.errors import BroadcastError, ChainAPIError, InvalidKeyError
from qcc_core.precision import AmountLike, from_base_units, to_base_units
from qcc_core.transaction import (
    build_send_request_data,
    build_transfer_token_request_data,
)
from qcc_core.wallet import validate_private_key

if TYPE_CHECKING:
    from qcc_core.config import QCCConfig

logger = logging.getLogger("qcc_client")

# Field names the broadcast endpoint has used for the transaction hash,
# in lookup order.  "data" means data.txid.
_TX_HASH_FIELDS = ("txhash", "txHash", "txid", "data", "hash")


@dataclass
class BroadcastResult:
    """Outcome of a successful broadcast."""
    tx_hash: str | None
    output: str = ""
    data: dict = field(default_factory=dict)


def extract_tx_hash(body: Any) -> str | None:
    """Pick the transaction hash out of a broadcast response body."""
    if not isinstance(body, dict):
        return None
    for name in _TX_HASH_FIELDS:
        value = body.get(name)
        if name == "data":
            value = value.get("txid") if isinstance(value, dict) else None
        if value:
            return str(value)
    return None


class _HTTPClient:
    """Shared session handling and JSON decoding."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 session: aiohttp.ClientSession | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, url: str | None = None,
                       **kwargs: Any) -> tuple[int, Any]:
        url = url or f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method, url, timeout=self.timeout, **kwargs
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise ChainAPIError(f"{method} {path or url} failed: {exc}") from exc

        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = text
        return status, body


class QCCClient(_HTTPClient):
    """Client for the chain backend: timestamps, broadcasts, balances."""

    def __init__(self, base_url: str = "https://qcc-backend.com", timeout: float = 10.0,
                 session: aiohttp.ClientSession | None = None,
                 legacy_sentinel: bool = False):
        super().__init__(base_url, timeout, session)
        self.legacy_sentinel = legacy_sentinel

    @classmethod
    def from_config(cls, cfg: QCCConfig,
                    session: aiohttp.ClientSession | None = None) -> QCCClient:
        return cls(
            cfg.chain.base_url,
            cfg.chain.timeout_seconds,
            session=session,
            legacy_sentinel=cfg.signing.legacy_sentinel,
        )

    # ---- reads ----

    async def fetch_timestamp(self) -> int:
        """Server-authoritative timestamp used for new transactions."""
        status, body = await self._request("GET", "/api/ts")
        if status >= 400:
            raise ChainAPIError(f"Timestamp request failed with HTTP {status}", status)
        try:
            return int(body)
        except (TypeError, ValueError):
            raise ChainAPIError(f"Unexpected timestamp response: {body!r}", status) from None

    async def get_balance_raw(self, address: str) -> str:
        """Balance of *address* in base units."""
        status, body = await self._request(
            "POST", "/rawrequest/", json={"type": "GetBalance", "address": address},
        )
        if status >= 400:
            raise ChainAPIError(f"Balance request failed with HTTP {status}", status)
        if body is None:
            return "0"
        return str(body)

    async def get_balance(self, address: str) -> str:
        """Balance of *address* in display units (6 decimals)."""
        return from_base_units(await self.get_balance_raw(address))

    # ---- writes ----

    @staticmethod
    def _require_key(private_key: str) -> None:
        # the legacy sentinel envelope must never reach /broadcast/
        if not validate_private_key(private_key):
            raise InvalidKeyError("Invalid private key: expected 64 hex characters")

    async def broadcast(self, data: str) -> BroadcastResult:
        """POST a signed envelope (JSON text) and interpret the response."""
        status, body = await self._request(
            "POST", "/broadcast/",
            data=data.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        output = ""
        if isinstance(body, dict):
            output = body.get("output") or ""
        elif isinstance(body, str):
            output = body

        if status >= 400:
            raise BroadcastError(f"Broadcast failed with HTTP {status}", str(output), status)
        if isinstance(output, str) and "error" in output:
            raise BroadcastError(f"Failed to send transaction: {output}", output, status)

        tx_hash = extract_tx_hash(body)
        logger.info("Broadcast accepted (tx %s)", tx_hash or "unknown")
        return BroadcastResult(
            tx_hash=tx_hash,
            output=output if isinstance(output, str) else json.dumps(output),
            data=body if isinstance(body, dict) else {},
        )

    async def send(self, private_key: str, to_address: str, amount: AmountLike,
                   timestamp: int | None = None) -> BroadcastResult:
        """Scale *amount*, sign a ``Send`` and broadcast it."""
        self._require_key(private_key)
        base_units = to_base_units(amount)
        if timestamp is None:
            timestamp = await self.fetch_timestamp()
        data = build_send_request_data(
            private_key, to_address, base_units, timestamp,
            legacy_sentinel=self.legacy_sentinel,
        )
        return await self.broadcast(data)

    async def transfer_token(self, private_key: str, to_address: str, amount: AmountLike,
                             token_address: str,
                             timestamp: int | None = None) -> BroadcastResult:
        """Scale *amount*, sign a token ``Transfer`` and broadcast it."""
        self._require_key(private_key)
        base_units = to_base_units(amount)
        if timestamp is None:
            timestamp = await self.fetch_timestamp()
        data = build_transfer_token_request_data(
            private_key, to_address, base_units, token_address, timestamp,
            legacy_sentinel=self.legacy_sentinel,
        )
        return await self.broadcast(data)


class StakingClient(_HTTPClient):
    """Client for the staking REST backend."""

    def __init__(self, api_url: str = "http://localhost:3001/api", timeout: float = 10.0,
                 session: aiohttp.ClientSession | None = None):
        super().__init__(api_url, timeout, session)
        # /api/config hangs off the server root, not the staking API prefix
        root = self.base_url.replace("/api", "", 1).rstrip("/")
        self.config_url = f"{root}/api/config"

    @classmethod
    def from_config(cls, cfg: QCCConfig,
                    session: aiohttp.ClientSession | None = None) -> StakingClient:
        return cls(cfg.staking.api_url, cfg.chain.timeout_seconds, session=session)

    async def _call(self, method: str, path: str, what: str, **kwargs: Any) -> dict:
        """Request a ``{success, data, message}`` endpoint and return its body."""
        status, body = await self._request(method, path, **kwargs)
        message = body.get("message", "") if isinstance(body, dict) else ""
        if status >= 400:
            raise ChainAPIError(
                f"{what} failed: {message or f'HTTP error! status: {status}'}", status,
            )
        if not isinstance(body, dict) or not body.get("success"):
            raise ChainAPIError(f"{what} rejected: {message}", status)
        return body

    async def fetch_staking_wallet_address(self) -> str:
        """Address stakes are sent to, from the backend's ``/api/config``."""
        status, body = await self._request("GET", "", url=self.config_url)
        if status >= 400:
            raise ChainAPIError(f"Config request failed with HTTP {status}", status)
        data = body.get("data") if isinstance(body, dict) else None
        addr = data.get("stakingWalletAddress") if isinstance(data, dict) else None
        if not isinstance(addr, str) or not addr:
            raise ChainAPIError("Config response has no stakingWalletAddress", status)
        return addr

    async def fetch_interest_rates(self) -> list[dict]:
        """Raw ``{period, rate, name}`` records from ``/staking/rates``."""
        body = await self._call("GET", "/staking/rates", "Interest rate request")
        data = body.get("data")
        if not isinstance(data, list):
            raise ChainAPIError("Interest rate response has no data list")
        return data

    async def create_staking(self, wallet_address: str, staked_amount: int | float,
                             staking_period: int,
                             transaction_hash: str | None = None) -> dict:
        """Register a stake whose coins were sent in *transaction_hash*."""
        payload: dict[str, Any] = {
            "walletAddress": wallet_address,
            "stakedAmount": staked_amount,
            "stakingPeriod": staking_period,
        }
        if transaction_hash is not None:
            payload["transactionHash"] = transaction_hash
        body = await self._call("POST", "/staking", "Staking request", json=payload)
        logger.info("Registered stake of %s for %d days from %s",
                    staked_amount, staking_period, wallet_address)
        return body.get("data") or {}

    async def get_stakings_by_wallet(self, wallet_address: str) -> list[dict]:
        path = f"/staking/wallet/{quote(wallet_address, safe='')}"
        body = await self._call("GET", path, "Staking list request")
        data = body.get("data")
        return data if isinstance(data, list) else []

    async def get_staking(self, staking_id: int) -> dict:
        body = await self._call("GET", f"/staking/{int(staking_id)}", "Staking request")
        return body.get("data") or {}

    async def cancel_staking(self, staking_id: int) -> str:
        """Cancel a stake early; returns the backend's message."""
        body = await self._call("PUT", f"/staking/{int(staking_id)}/cancel", "Cancel request")
        return str(body.get("message") or "")

    async def get_staking_stats(self) -> dict:
        body = await self._call("GET", "/staking/stats", "Staking stats request")
        return body.get("data") or {}
