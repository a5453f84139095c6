"""
JSON-RPC client for a single EVM endpoint.

Supports:
- Bounded per-request timeout
- Retry with backoff for idempotent reads
- Single-shot raw transaction submission
"""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog

from .errors import RateLimitError, RPCError

logger = structlog.get_logger()

# Error messages meaning the node already holds this exact transaction
_ALREADY_KNOWN = ("already known", "known transaction", "already imported")
_RATE_LIMITED = ("rate limit", "too many requests", "request limit")


class RPCClient:
    """
    Async JSON-RPC client bound to one endpoint.

    Reads (nonce, gas price, chain ID) are retried with exponential
    backoff. Transaction submission is never retried here: deciding whether
    to resend a signed transaction belongs to the worker.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 15,
        max_retries: int = 3,
        backoff: float = 1.0,
    ):
        self.endpoint = endpoint
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.backoff = backoff

        self._request_id = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    @property
    def closed(self) -> bool:
        return self._session is None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _request(self, method: str, params: list[Any]) -> Any:
        """Make exactly one RPC request."""
        if self._session is None:
            raise RPCError(f"Client for {self.endpoint} is closed")

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._next_request_id(),
        }

        async with self._session.post(self.endpoint, json=payload) as resp:
            if resp.status == 429:
                raise RateLimitError(f"HTTP 429: {await resp.text(errors='replace')}", status=429)
            if resp.status != 200:
                raise RPCError(f"HTTP {resp.status}: {await resp.text(errors='replace')}", status=resp.status)

            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise RPCError(f"Invalid JSON response: {e}") from e
            if not isinstance(data, dict):
                raise RPCError(f"Unexpected response: {data!r}")

            if "error" in data:
                error = data["error"]
                message = str(error.get("message") or error) if isinstance(error, dict) else str(error)
                if any(marker in message.lower() for marker in _RATE_LIMITED):
                    raise RateLimitError(f"RPC error: {message}")
                raise RPCError(f"RPC error: {message}")

            return data.get("result")

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Make an idempotent RPC call with retries."""

        last_error = None

        for attempt in range(self.max_retries):
            try:
                return await self._request(method, params)
            except (aiohttp.ClientError, asyncio.TimeoutError, RPCError) as e:
                last_error = e
                if attempt + 1 == self.max_retries:
                    break
                wait_time = self.backoff * 2 ** attempt
                logger.warning(
                    "RPC call failed, retrying",
                    method=method,
                    endpoint=self.endpoint,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

        raise RPCError(f"RPC call {method} failed after {self.max_retries} attempts: {last_error}")

    async def get_chain_id(self) -> int:
        """Network identity used for EIP-155 signing."""
        result = await self._call("eth_chainId", [])
        return int(result, 16)

    async def get_gas_price(self) -> int:
        result = await self._call("eth_gasPrice", [])
        return int(result, 16)

    async def get_pending_nonce(self, address: str) -> int:
        """Transaction count including the sender's pending transactions."""
        result = await self._call("eth_getTransactionCount", [address, "pending"])
        return int(result, 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        """
        Submit a signed transaction once.

        Returns the transaction hash reported by the node.
        Raises RPCError (or RateLimitError) on rejection and
        aiohttp/timeout errors on transport failure.
        """
        result = await self._request("eth_sendRawTransaction", [raw_tx])
        if not isinstance(result, str):
            raise RPCError(f"Unexpected eth_sendRawTransaction result: {result!r}")
        return result


def is_already_known(error: Exception) -> bool:
    """True if the node rejected a transaction because it already has it."""
    message = str(error).lower()
    return any(marker in message for marker in _ALREADY_KNOWN)
