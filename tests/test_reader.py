import io
import json
from urllib.error import HTTPError, URLError

import pytest

from stakegenesis import reader as reader_mod
from stakegenesis.errors import CollaboratorFailure
from stakegenesis.reader import EsploraReader, HttpJsonClient, RecordedReader, XrplReader, record
from stakegenesis.tx import ChainKind, LedgerTransaction, UtxoTransaction

BASE = "https://esplora.test/api"
RPC = "https://xrpl.test/"


class FakeUrlopen:
    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, req, timeout=None):
        body = json.loads(req.data.decode()) if req.data else None
        self.requests.append((req.full_url, body))
        handler = self.routes(req.full_url, body)
        if isinstance(handler, Exception):
            raise handler
        if isinstance(handler, bytes):
            return io.BytesIO(handler)
        return io.BytesIO(json.dumps(handler).encode())


def _client():
    return HttpJsonClient(timeout=1, retries=3, backoff=0.5, sleep=lambda s: None)


def _esplora_tx(txid, block_hash, height, confirmed=True):
    return {
        "txid": txid,
        "vin": [{"prevout": {"scriptpubkey_address": "bc1qsender"}}],
        "vout": [{"scriptpubkey": "00", "scriptpubkey_type": "v0_p2wpkh", "scriptpubkey_address": "bc1qvault", "value": 1000}],
        "status": {"confirmed": confirmed, "block_height": height, "block_hash": block_hash, "block_time": 1},
    }


def test_esplora_pages_until_empty(monkeypatch):
    page1 = [_esplora_tx("t3", "b2", 11), _esplora_tx("t2", "b1", 10)]
    page2 = [_esplora_tx("t2", "b1", 10), _esplora_tx("t1", "b1", 10)]
    blocks = {"b1": ["coinbase", "t1", "t2"], "b2": ["coinbase", "x", "t3"]}

    def routes(url, body):
        path = url[len(BASE):]
        if path == "/address/bc1qvault/txs/chain":
            return page1
        if path == "/address/bc1qvault/txs/chain/t2":
            return page2
        if path == "/address/bc1qvault/txs/chain/t1":
            return []
        if path.startswith("/block/"):
            return blocks[path.split("/")[2]]
        if path == "/blocks/tip/height":
            return 12
        raise AssertionError(url)

    fake = FakeUrlopen(routes)
    monkeypatch.setattr(reader_mod, "urlopen", fake)
    reader = EsploraReader(BASE + "/", "bc1qvault", _client())
    txs = reader.list_confirmed_transactions()
    assert sorted((t.txid, t.height, t.index) for t in txs) == [("t1", 10, 1), ("t2", 10, 2), ("t3", 11, 2)]
    assert reader.current_height() == 12
    block_requests = [u for u, _ in fake.requests if "/block/" in u]
    assert len(block_requests) == 2


def test_esplora_skips_unconfirmed_and_resolves_missing_block_hash(monkeypatch):
    entry = _esplora_tx("t1", None, 10)
    pending = _esplora_tx("t9", None, 0, confirmed=False)

    def routes(url, body):
        path = url[len(BASE):]
        if path == "/address/v/txs/chain":
            return [pending, entry]
        if path == "/address/v/txs/chain/t1":
            return []
        if path == "/tx/t1/status":
            return {"confirmed": True, "block_hash": "b1"}
        if path == "/block/b1/txids":
            return ["t0", "t1"]
        raise AssertionError(url)

    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(routes))
    txs = EsploraReader(BASE, "v", _client()).list_confirmed_transactions()
    assert [(t.txid, t.index) for t in txs] == [("t1", 1)]


def test_retries_transient_errors(monkeypatch):
    attempts = []
    sleeps = []

    def routes(url, body):
        attempts.append(url)
        if len(attempts) == 1:
            return HTTPError(url, 503, "unavailable", None, None)
        if len(attempts) == 2:
            return URLError("timed out")
        return 42

    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(routes))
    client = HttpJsonClient(timeout=1, retries=3, backoff=0.5, sleep=sleeps.append)
    assert client.request(BASE + "/blocks/tip/height") == 42
    assert sleeps == [0.5, 1.0]


def test_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(lambda url, body: HTTPError(url, 502, "bad", None, None)))
    with pytest.raises(CollaboratorFailure):
        _client().request(BASE + "/x")


def test_client_errors_are_not_retried(monkeypatch):
    fake = FakeUrlopen(lambda url, body: HTTPError(url, 404, "missing", None, None))
    monkeypatch.setattr(reader_mod, "urlopen", fake)
    with pytest.raises(CollaboratorFailure):
        _client().request(BASE + "/x")
    assert len(fake.requests) == 1


def test_invalid_json_is_collaborator_failure(monkeypatch):
    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(lambda url, body: b"<html>"))
    with pytest.raises(CollaboratorFailure):
        _client().request(BASE + "/x")


def _account_tx(n, validated=True, shape="tx_json"):
    return {
        "hash": f"{n:064X}",
        "ledger_index": 100 + n,
        "validated": validated,
        "meta": {"TransactionIndex": n, "TransactionResult": "tesSUCCESS", "delivered_amount": "60000000"},
        shape: {
            "TransactionType": "Payment",
            "Account": "rSender",
            "Destination": "rVault",
            "DeliverMax": "60000000",
            "DestinationTag": 9999,
            "Memos": [{"Memo": {"MemoType": "4465736372697074696F6E", "MemoData": "00"}}],
            "date": 1,
        },
    }


def test_xrpl_follows_markers(monkeypatch):
    pages = {
        None: {"transactions": [_account_tx(1), _account_tx(2, validated=False)], "marker": {"ledger": 1, "seq": 2}},
        "1": {"transactions": [_account_tx(3, shape="tx"), _account_tx(1)], "marker": {"ledger": 2, "seq": 0}},
        "2": {"transactions": []},
    }

    def routes(url, body):
        assert url == RPC
        method = body["method"]
        params = body["params"][0]
        if method == "ledger":
            return {"result": {"status": "success", "ledger_index": 500, "validated": True}}
        marker = params.get("marker")
        assert params["forward"] is True
        assert params["account"] == "rVault"
        return {"result": dict(pages[None if marker is None else str(marker["ledger"])], status="success")}

    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(routes))
    reader = XrplReader(RPC, "rVault", _client())
    txs = reader.list_confirmed_transactions()
    assert [t.index for t in txs] == [1, 3]
    assert txs[1].destination_tag == 9999
    assert txs[1].amount == "60000000"
    assert reader.current_height() == 500


def test_xrpl_error_result(monkeypatch):
    def routes(url, body):
        return {"result": {"status": "error", "error": "actNotFound", "error_message": "Account not found."}}

    monkeypatch.setattr(reader_mod, "urlopen", FakeUrlopen(routes))
    with pytest.raises(CollaboratorFailure):
        XrplReader(RPC, "rVault", _client()).list_confirmed_transactions()


def test_recording_round_trip(tmp_path, addrs, make_utxo_tx, make_ledger_tx, fake_reader):
    utxo = [make_utxo_tx(n, addrs.btc(n), addrs.dest(n), addrs.validator(1), height=100 + n) for n in (2, 1)]
    data = record(fake_reader(ChainKind.UTXO, 120, utxo))
    assert [t["txid"] for t in data["transactions"]] == [utxo[1].txid, utxo[0].txid]
    path = tmp_path / "btc.json"
    path.write_text(json.dumps(data))
    replay = RecordedReader.load(str(path))
    assert replay.kind is ChainKind.UTXO
    assert replay.current_height() == 120
    loaded = replay.list_confirmed_transactions()
    assert all(isinstance(t, UtxoTransaction) for t in loaded)
    assert loaded == sorted(utxo, key=lambda t: t.sort_key)

    ledger = [make_ledger_tx(1, addrs.xrp(1), addrs.dest(1), addrs.validator(1))]
    path = tmp_path / "xrp.json"
    path.write_text(json.dumps(record(fake_reader(ChainKind.LEDGER, 120, ledger))))
    loaded = RecordedReader.load(str(path)).list_confirmed_transactions()
    assert isinstance(loaded[0], LedgerTransaction)
    assert loaded == ledger


def test_bad_recording(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{}")
    with pytest.raises(CollaboratorFailure):
        RecordedReader.load(str(path))
