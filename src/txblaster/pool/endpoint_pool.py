"""
Endpoint Pool: ordered RPC endpoints with a shared rotation cursor.

All workers read the same cursor. Rotation is compare-and-advance under a
lock, so several workers failing on the same endpoint rotate it once.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
import structlog

logger = structlog.get_logger()

# Public Avalanche C-Chain endpoints used when none are configured
DEFAULT_RPC_URLS = [
    "https://ava-mainnet.public.blastapi.io/ext/bc/C/rpc",
    "https://avalanche.blockpi.network/v1/rpc/public",
    "https://avax.meowrpc.com",
    "https://rpc.ankr.com/avalanche",
    "https://avalanche.public-rpc.com",
    "https://avalanche.drpc.org",
    "https://rpc.tornadoeth.cash/avax",
    "https://api.zan.top/node/v1/avax/mainnet/public/ext/bc/C/rpc",
    "https://1rpc.io/avax/c",
    "https://endpoints.omniatech.io/v1/avax/mainnet/public",
    "https://blastapi.io/public-api/avalanche",
    "https://avalancheapi.terminet.io/ext/bc/C/rpc",
    "https://avax-pokt.nodies.app/ext/bc/C/rpc",
    "https://avalanche.api.onfinality.io/public/ext/bc/C/rpc",
    "https://avalanche-c-chain-rpc.publicnode.com",
]


@dataclass
class RPCEndpoint:
    url: str

    # Runtime state
    total_requests: int = 0
    failed_requests: int = 0
    dial_failures: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class EndpointPool:
    """
    Fixed, ordered list of endpoints plus one rotation cursor.

    Features:
    - current() / advance() rotation, always within [0, size)
    - Compare-and-advance to avoid lost or doubled rotations
    - Tracks submission and dial failures per endpoint
    """

    def __init__(self, urls: list[str]):
        if not urls:
            raise ValueError("EndpointPool needs at least one endpoint")
        self.endpoints = [RPCEndpoint(url=u) for u in urls]
        self._index = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: list) -> "EndpointPool":
        """Create pool from URL strings or {"url": ...} dicts."""
        urls = [c["url"] if isinstance(c, dict) else c for c in config]
        return cls(urls)

    def __len__(self) -> int:
        return len(self.endpoints)

    @property
    def index(self) -> int:
        return self._index

    @property
    def urls(self) -> list[str]:
        return [e.url for e in self.endpoints]

    def current(self) -> str:
        """Endpoint at the rotation cursor."""
        return self.endpoints[self._index].url

    async def advance(self, seen: Optional[str] = None) -> str:
        """
        Move the cursor to the next endpoint and return it.

        If `seen` is given, only advance when the cursor still points at it.
        Another worker may already have rotated away from a failing endpoint;
        in that case the current endpoint is returned unchanged.
        """
        async with self._lock:
            if seen is not None and self.endpoints[self._index].url != seen:
                return self.endpoints[self._index].url
            previous = self.endpoints[self._index].url
            self._index = (self._index + 1) % len(self.endpoints)
            url = self.endpoints[self._index].url
            logger.info("Changing RPC", previous=previous[:50], current=url[:50], index=self._index)
            return url

    def _find(self, url: str) -> Optional[RPCEndpoint]:
        for endpoint in self.endpoints:
            if endpoint.url == url:
                return endpoint
        return None

    async def record(self, url: str, success: bool = True) -> None:
        """Record the result of one submission against an endpoint."""
        async with self._lock:
            endpoint = self._find(url)
            if endpoint is None:
                return
            endpoint.total_requests += 1
            if not success:
                endpoint.failed_requests += 1

    async def record_dial_failure(self, url: str) -> None:
        async with self._lock:
            endpoint = self._find(url)
            if endpoint is not None:
                endpoint.dial_failures += 1

    async def get_stats(self) -> list[dict]:
        """Get stats for all endpoints."""
        async with self._lock:
            return [
                {
                    "url": e.url[:50] + "..." if len(e.url) > 50 else e.url,
                    "current": i == self._index,
                    "total_requests": e.total_requests,
                    "dial_failures": e.dial_failures,
                    "failure_rate": f"{e.failure_rate:.1%}",
                }
                for i, e in enumerate(self.endpoints)
            ]
