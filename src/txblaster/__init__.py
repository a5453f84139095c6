"""
txblaster: concurrent legacy transaction broadcaster for EVM chains.
"""

from .builder import TransactionBuilder, recover_sender
from .errors import (
    BroadcastError,
    ChainMismatchError,
    DialError,
    RateLimitError,
    RPCError,
    SetupError,
    SigningError,
    SubmissionError,
)
from .models import ChainContext, NonceRange, OutcomeStatus, RunSummary, SignedTx, TxOutcome, UnsignedTx
from .nonces import allocate
from .rpc import RPCClient

__version__ = "0.1.0"

__all__ = [
    "TransactionBuilder",
    "recover_sender",
    "BroadcastError",
    "ChainMismatchError",
    "DialError",
    "RateLimitError",
    "RPCError",
    "SetupError",
    "SigningError",
    "SubmissionError",
    "ChainContext",
    "NonceRange",
    "OutcomeStatus",
    "RunSummary",
    "SignedTx",
    "TxOutcome",
    "UnsignedTx",
    "allocate",
    "RPCClient",
]
