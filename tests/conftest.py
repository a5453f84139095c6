"""
Pytest fixtures for txblaster tests
"""
import pytest
from eth_utils import keccak

from txblaster.builder import TransactionBuilder
from txblaster.errors import DialError, RPCError
from txblaster.pool.connection import ConnectionFactory

TEST_KEY = "0x" + "11" * 32
CHAIN_ID = 43114
GAS_PRICE = 25_000_000_000


class FakeConnection:
    """In-memory stand-in for an RPC connection."""

    def __init__(self, factory: "FakeFactory", url: str, chain_id: int):
        self.factory = factory
        self.url = url
        self.chain_id = chain_id
        self.closed = False
        # bootstrap reads through connection.client
        self.client = self

    async def get_gas_price(self) -> int:
        return self.factory.gas_price

    async def get_pending_nonce(self, address: str) -> int:
        return self.factory.base_nonce

    async def send_raw_transaction(self, raw_tx: str) -> str:
        self.factory.submissions.append((self.url, raw_tx))
        failures = self.factory.send_failures.get(self.url)
        if failures:
            raise failures.pop(0)
        return "0x" + keccak(hexstr=raw_tx).hex()

    async def close(self) -> None:
        self.closed = True


class FakeFactory(ConnectionFactory):
    """
    ConnectionFactory with scripted endpoints.

    - unreachable: URLs whose dial always fails
    - send_failures: per-URL list of exceptions raised by successive sends
    - chain_ids: per-URL chain ID override
    """

    def __init__(self, unreachable=(), send_failures=None, chain_ids=None, base_nonce=7):
        super().__init__()
        self.unreachable = set(unreachable)
        self.send_failures = {k: list(v) for k, v in (send_failures or {}).items()}
        self.chain_ids = dict(chain_ids or {})
        self.gas_price = GAS_PRICE
        self.base_nonce = base_nonce
        self.dials: list[str] = []
        self.submissions: list[tuple[str, str]] = []

    async def dial(self, url: str) -> FakeConnection:
        self.dials.append(url)
        if url in self.unreachable:
            self.record_dial_error(url, "connection refused")
            raise DialError(url, "connection refused")
        return FakeConnection(self, url, self.chain_ids.get(url, CHAIN_ID))


def rpc_failure(message: str = "RPC error: internal error") -> RPCError:
    return RPCError(message)


@pytest.fixture
def builder():
    return TransactionBuilder.from_key(TEST_KEY)


@pytest.fixture
def urls():
    return [
        "https://rpc-a.example.com",
        "https://rpc-b.example.com",
        "https://rpc-c.example.com",
    ]
