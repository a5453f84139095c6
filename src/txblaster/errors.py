"""
Error taxonomy for the broadcaster.

Setup errors are fatal before any work starts. Dial and submission errors are
recovered by endpoint rotation. A chain mismatch aborts the whole run.
"""

from typing import Optional


class BroadcastError(Exception):
    """Base class for all broadcaster errors."""
    pass


class SetupError(BroadcastError):
    """Configuration, key material or bootstrap connection failed."""
    pass


class DialError(BroadcastError):
    """A specific endpoint could not be reached."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Cannot dial {url}: {reason}")
        self.url = url
        self.reason = reason


class RPCError(BroadcastError):
    """RPC call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(RPCError):
    """Endpoint answered with HTTP 429 or a rate-limit error body."""
    pass


class SubmissionError(BroadcastError):
    """Building, signing or broadcasting a transaction failed."""
    pass


class SigningError(SubmissionError):
    pass


class ChainMismatchError(BroadcastError):
    """An endpoint reports a different chain ID than the one captured at startup."""

    def __init__(self, url: str, expected: int, actual: int):
        super().__init__(
            f"Endpoint {url} reports chain ID {actual}, expected {expected}"
        )
        self.url = url
        self.expected = expected
        self.actual = actual
