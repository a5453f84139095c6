"""
Connection Factory: opens verified connections to RPC endpoints.

A dial opens an HTTP session and asks the endpoint for its chain ID. The
connection only counts as open once that probe succeeds.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from .endpoint_pool import EndpointPool
from ..errors import DialError, RPCError, SetupError
from ..rpc import RPCClient

logger = structlog.get_logger()


@dataclass
class Connection:
    """An open client plus the chain ID its endpoint reported at dial time."""
    url: str
    client: RPCClient
    chain_id: int

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.client.send_raw_transaction(raw_tx)

    async def close(self) -> None:
        await self.client.close()


@dataclass
class DialEvent:
    url: str
    error: str


class ConnectionFactory:
    """
    Dials endpoints and keeps a record of recent failed dials.

    Features:
    - Chain ID probe on every dial
    - Bounded setup loop over the endpoint pool
    """

    def __init__(self, timeout: float = 15, max_retries: int = 1, max_dial_errors: int = 100):
        self.timeout = timeout
        self.max_retries = max_retries
        self.dial_failures = 0
        # Most recent failures only
        self.dial_errors: deque[DialEvent] = deque(maxlen=max_dial_errors)

    def record_dial_error(self, url: str, error: str) -> None:
        self.dial_failures += 1
        self.dial_errors.append(DialEvent(url=url, error=error))

    async def dial(self, url: str) -> Connection:
        client = RPCClient(url, timeout=self.timeout, max_retries=self.max_retries)
        await client.open()
        try:
            chain_id = await client.get_chain_id()
        except (aiohttp.ClientError, asyncio.TimeoutError, RPCError, ValueError, TypeError) as e:
            await client.close()
            self.record_dial_error(url, str(e))
            raise DialError(url, str(e)) from e
        except BaseException:
            await client.close()
            raise
        return Connection(url=url, client=client, chain_id=chain_id)

    async def connect(self, pool: EndpointPool, max_attempts: Optional[int] = None) -> Connection:
        """
        Dial the pool's current endpoint, rotating on failure.

        Gives up after max_attempts dials (default: two passes over the pool)
        and raises SetupError.
        """
        if max_attempts is None:
            max_attempts = 2 * len(pool)

        url = pool.current()
        for attempt in range(1, max_attempts + 1):
            try:
                connection = await self.dial(url)
                logger.info("Connected to RPC", rpc_url=url[:50], chain_id=connection.chain_id)
                return connection
            except DialError as e:
                await pool.record_dial_failure(url)
                logger.warning(
                    "Error connecting to RPC",
                    rpc_url=url[:50],
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=e.reason,
                )
                if attempt < max_attempts:
                    url = await pool.advance(seen=url)

        raise SetupError(f"No reachable RPC endpoint after {max_attempts} attempts")
