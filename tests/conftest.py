from types import SimpleNamespace

import bech32
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from stakegenesis import crypto, protocol
from stakegenesis.errors import CollaboratorFailure
from stakegenesis.registry import StaticValidatorRegistry
from stakegenesis.tx import ChainKind, LedgerMemo, LedgerTransaction, UtxoOutput, UtxoTransaction
from stakegenesis.validator import ChainContext

DESCRIPTION_HEX = b"Description".hex().upper()


def _btc(n: int) -> str:
    return bech32.encode("bc", 0, bytes([n]) * 20)


def _xrp(n: int) -> str:
    return crypto.encode_xrp_address(bytes([n]) * 20)


def _validator(n: int) -> str:
    return crypto.encode_validator_address(bytes([n]) * 20)


def _dest(n: int) -> str:
    return "0x" + bytes([n]).hex() * 20


def _consensus_key(n: int) -> str:
    key = Ed25519PrivateKey.from_private_bytes(bytes([n]) * 32).public_key()
    raw = key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)
    return "0x" + raw.hex()


def _txid(n: int) -> str:
    return f"{n:064x}"


class FakeReader:
    def __init__(self, kind, height, transactions, fail=False):
        self.kind = kind
        self.height = height
        self.transactions = list(transactions)
        self.fail = fail

    def current_height(self):
        return self.height

    def list_confirmed_transactions(self):
        if self.fail:
            raise CollaboratorFailure("indexer unreachable")
        return list(self.transactions)


class CountingRegistry:
    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def lookup(self, validator):
        self.calls.append(validator)
        return self.inner.lookup(validator)


@pytest.fixture
def addrs():
    return SimpleNamespace(
        btc=_btc,
        xrp=_xrp,
        validator=_validator,
        dest=_dest,
        consensus_key=_consensus_key,
        txid=_txid,
        btc_vault=_btc(0xAA),
        xrp_vault=_xrp(0xAA),
    )


@pytest.fixture
def btc_context(addrs):
    return ChainContext(
        kind=ChainKind.UTXO,
        vault_address=addrs.btc_vault,
        min_confirmations=6,
        min_amount=546,
        network="mainnet",
    )


@pytest.fixture
def xrp_context(addrs):
    return ChainContext(
        kind=ChainKind.LEDGER,
        vault_address=addrs.xrp_vault,
        min_confirmations=6,
        min_amount=50_000_000,
        destination_tag=9999,
    )


@pytest.fixture
def make_utxo_tx(addrs):
    def _make(
        n,
        sender,
        destination,
        validator,
        amount=1_000_000,
        height=100,
        index=None,
        confirmed=True,
        script=None,
        extra_outputs=(),
        inputs=None,
    ):
        if script is None:
            script = protocol.encode_utxo_script(destination, validator).hex()
        outputs = [
            UtxoOutput(script_hex="0014" + "aa" * 20, script_type="v0_p2wpkh", address=addrs.btc_vault, value=amount),
            UtxoOutput(script_hex=script, script_type="op_return", address=None, value=0),
        ]
        outputs.extend(extra_outputs)
        return UtxoTransaction(
            txid=_txid(n),
            input_addresses=list(inputs) if inputs is not None else [sender],
            outputs=outputs,
            confirmed=confirmed,
            height=height,
            index=n if index is None else index,
            timestamp=1_700_000_000 + n,
        )

    return _make


@pytest.fixture
def make_ledger_tx(addrs):
    def _make(
        n,
        sender,
        destination,
        validator,
        amount="60000000",
        height=100,
        index=None,
        validated=True,
        tag=9999,
        result="tesSUCCESS",
        tx_type="Payment",
        memos=None,
        delivered_amount=None,
        to=None,
    ):
        if memos is None:
            data = protocol.encode_ledger_payload(destination, validator).hex().upper()
            memos = [LedgerMemo(memo_type=DESCRIPTION_HEX, memo_data=data)]
        return LedgerTransaction(
            hash=_txid(n).upper(),
            height=height,
            index=n if index is None else index,
            validated=validated,
            transaction_type=tx_type,
            account=sender,
            destination=to or addrs.xrp_vault,
            amount=amount,
            delivered_amount=delivered_amount,
            destination_tag=tag,
            result=result,
            memos=memos,
            timestamp=780_000_000 + n,
        )

    return _make


@pytest.fixture
def static_registry():
    def _make(validators, keys=None):
        keys = keys or {}
        entries = {
            v: {"name": f"validator-{i}", "consensus_public_key": keys.get(v)}
            for i, v in enumerate(validators)
        }
        return StaticValidatorRegistry(entries)

    return _make


@pytest.fixture
def fake_reader():
    return FakeReader


@pytest.fixture
def counting_registry():
    return CountingRegistry
