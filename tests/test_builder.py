"""Transaction building and EIP-155 signing"""
import pytest
from eth_account import Account

from txblaster.builder import DEFAULT_GAS_LIMIT, TransactionBuilder, recover_sender
from txblaster.errors import SetupError

from conftest import CHAIN_ID, GAS_PRICE, TEST_KEY

OTHER_ADDRESS = "0x000000000000000000000000000000000000dEaD"


def test_build_uses_fixed_fields(builder):
    tx = builder.build(nonce=5, gas_price=GAS_PRICE, payload=b'{"p":"x"}')

    assert tx.nonce == 5
    assert tx.value == 0
    assert tx.gas == DEFAULT_GAS_LIMIT == 22_000
    assert tx.gas_price == GAS_PRICE
    assert tx.data == b'{"p":"x"}'


def test_default_destination_is_sender(builder):
    assert builder.sender == Account.from_key(TEST_KEY).address
    assert builder.to_address == builder.sender


def test_explicit_destination_is_checksummed():
    builder = TransactionBuilder.from_key(TEST_KEY, to_address=OTHER_ADDRESS.lower())

    assert builder.to_address == OTHER_ADDRESS


def test_sign_then_recover_sender(builder):
    signed = builder.build_and_sign(nonce=3, gas_price=GAS_PRICE, payload=b"hello", chain_id=CHAIN_ID)

    assert signed.nonce == 3
    assert signed.raw.startswith("0x")
    assert signed.tx_hash.startswith("0x") and len(signed.tx_hash) == 66
    assert recover_sender(signed.raw) == Account.from_key(TEST_KEY).address


def test_signature_is_bound_to_chain_id(builder):
    unsigned = builder.build(nonce=0, gas_price=GAS_PRICE)

    a = builder.sign(unsigned, chain_id=1)
    b = builder.sign(unsigned, chain_id=CHAIN_ID)

    assert a.raw != b.raw
    assert a.tx_hash != b.tx_hash
    assert recover_sender(a.raw) == recover_sender(b.raw) == builder.sender


def test_signing_is_deterministic(builder):
    first = builder.build_and_sign(1, GAS_PRICE, b"", CHAIN_ID)
    second = builder.build_and_sign(1, GAS_PRICE, b"", CHAIN_ID)

    assert first == second


def test_key_without_prefix_accepted():
    builder = TransactionBuilder.from_key("11" * 32)

    assert builder.sender == Account.from_key(TEST_KEY).address


@pytest.mark.parametrize("bad_key", ["", "0x1234", "not-a-key"])
def test_unparsable_key_is_setup_error(bad_key):
    with pytest.raises(SetupError):
        TransactionBuilder.from_key(bad_key)


def test_bad_destination_is_setup_error():
    with pytest.raises(SetupError):
        TransactionBuilder.from_key(TEST_KEY, to_address="0x1234")
