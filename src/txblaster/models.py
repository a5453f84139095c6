"""
Value types shared across the submission pipeline.

Design principles:
- Everything a worker reads from another component is immutable
- One outcome per task token, whatever happened to it
- Outcomes serialize to compact JSON for line-oriented output
"""

from enum import Enum
from typing import Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field


class ChainContext(BaseModel):
    """Network parameters fetched once at startup and shared read-only."""
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(description="EIP-155 chain ID used for signing")
    gas_price: int = Field(description="Legacy gas price in wei")


class NonceRange(BaseModel):
    """
    Exclusive nonce range [start, start + count) owned by one worker.
    """
    model_config = ConfigDict(frozen=True)

    worker_index: int = Field(ge=0)
    start: int = Field(ge=0)
    count: int = Field(ge=0)

    @property
    def stop(self) -> int:
        return self.start + self.count

    def __contains__(self, nonce: int) -> bool:
        return self.start <= nonce < self.stop


class UnsignedTx(BaseModel):
    """Legacy transaction fields before signing."""
    model_config = ConfigDict(frozen=True)

    nonce: int
    to: str = Field(description="Checksummed destination address")
    value: int = 0
    gas: int = Field(description="Gas limit")
    gas_price: int
    data: bytes = b""

    def to_dict(self, chain_id: int) -> dict:
        """Field dict in the shape eth-account expects."""
        return {
            "nonce": self.nonce,
            "to": self.to,
            "value": self.value,
            "gas": self.gas,
            "gasPrice": self.gas_price,
            "data": self.data,
            "chainId": chain_id,
        }


class SignedTx(BaseModel):
    """A signed transaction, ready for eth_sendRawTransaction."""
    model_config = ConfigDict(frozen=True)

    nonce: int
    sender: str
    raw: str = Field(description="0x-prefixed RLP-encoded signed transaction")
    tx_hash: str = Field(description="0x-prefixed transaction hash")


class OutcomeStatus(Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class TxOutcome(BaseModel):
    """
    What happened to a single task token.

    SENT means accepted by the endpoint for mempool admission, nothing more.
    No receipt is ever polled.
    """
    token: int
    worker_id: str
    status: OutcomeStatus
    nonce: Optional[int] = Field(default=None, description="Nonce used, None if none was consumed")
    tx_hash: Optional[str] = None
    endpoint: Optional[str] = Field(default=None, description="Endpoint that accepted or last rejected the tx")
    reason: Optional[str] = None
    attempts: int = Field(default=0, description="Submission attempts made")

    @classmethod
    def sent(cls, token: int, worker_id: str, signed: SignedTx, endpoint: str, attempts: int) -> "TxOutcome":
        return cls(
            token=token,
            worker_id=worker_id,
            status=OutcomeStatus.SENT,
            nonce=signed.nonce,
            tx_hash=signed.tx_hash,
            endpoint=endpoint,
            attempts=attempts,
        )

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"))


class RunSummary(BaseModel):
    """Aggregate result of a Dispatcher run."""
    requested: int
    outcomes: list[TxOutcome] = Field(default_factory=list)
    elapsed_seconds: float = 0.0
    cancelled: bool = False

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def sent(self) -> int:
        return self._count(OutcomeStatus.SENT)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def aborted(self) -> int:
        return self._count(OutcomeStatus.ABORTED)

    @property
    def tx_hashes(self) -> list[str]:
        return [o.tx_hash for o in self.outcomes if o.status == OutcomeStatus.SENT]

    def to_json(self) -> bytes:
        data = self.model_dump(mode="json", exclude={"outcomes"})
        data.update(sent=self.sent, skipped=self.skipped, aborted=self.aborted)
        return orjson.dumps(data)
