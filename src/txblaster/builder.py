"""
Transaction builder: turns (nonce, gas price, payload) into signed
legacy transactions.

Signing is EIP-155 bound to a chain ID, so a transaction signed for one
network cannot be replayed on another.
"""

from typing import Optional, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from .errors import SetupError, SigningError
from .models import SignedTx, UnsignedTx

DEFAULT_GAS_LIMIT = 22_000


def _to_hex(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        return data if data.startswith("0x") else "0x" + data
    return "0x" + bytes(data).hex()


class TransactionBuilder:
    """
    Builds and signs transactions for one sender.

    The key never leaves the wrapped account object; callers only see the
    sender address and signed results.
    """

    def __init__(
        self,
        account: LocalAccount,
        to_address: Optional[str] = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ):
        self._account = account
        self.gas_limit = gas_limit
        # Default is a self-send
        self.to_address = to_checksum_address(to_address or account.address)

    @classmethod
    def from_key(
        cls,
        private_key_hex: str,
        to_address: Optional[str] = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
    ) -> "TransactionBuilder":
        """Create a builder from a hex-encoded private key."""
        try:
            account = Account.from_key(private_key_hex.strip())
        except Exception as e:
            raise SetupError(f"Cannot parse private key: {e}") from e
        try:
            return cls(account, to_address=to_address, gas_limit=gas_limit)
        except ValueError as e:
            raise SetupError(f"Invalid destination address {to_address!r}: {e}") from e

    @property
    def sender(self) -> str:
        return self._account.address

    def build(self, nonce: int, gas_price: int, payload: bytes = b"") -> UnsignedTx:
        """Legacy transaction with zero value and the fixed gas limit."""
        return UnsignedTx(
            nonce=nonce,
            to=self.to_address,
            value=0,
            gas=self.gas_limit,
            gas_price=gas_price,
            data=payload,
        )

    def sign(self, tx: UnsignedTx, chain_id: int) -> SignedTx:
        try:
            signed = self._account.sign_transaction(tx.to_dict(chain_id))
        except Exception as e:
            raise SigningError(f"Failed to sign nonce {tx.nonce}: {e}") from e

        return SignedTx(
            nonce=tx.nonce,
            sender=self.sender,
            raw=_to_hex(signed.raw_transaction),
            tx_hash=_to_hex(signed.hash),
        )

    def build_and_sign(self, nonce: int, gas_price: int, payload: bytes, chain_id: int) -> SignedTx:
        return self.sign(self.build(nonce, gas_price, payload), chain_id)


def recover_sender(raw_tx: Union[str, bytes]) -> str:
    """Re-derive the sender address from a signed raw transaction."""
    return Account.recover_transaction(raw_tx)
