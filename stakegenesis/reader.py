import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .errors import CollaboratorFailure
from .tx import ChainKind, LedgerTransaction, SourceTransaction, UtxoTransaction
from .utils import json_dumps

LOGGER = logging.getLogger("stakegenesis.reader")

DEFAULT_TIMEOUT = 10
DEFAULT_RETRIES = 3
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
MAX_BACKOFF = 20.0


class HttpJsonClient:
    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self.sleep = sleep

    def request(self, url: str, payload: Optional[dict] = None) -> Any:
        data = json.dumps(payload).encode() if payload is not None else None
        headers = {"Accept": "application/json", "User-Agent": "stakegenesis"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        for attempt in range(1, self.retries + 1):
            req = Request(url, data=data, headers=headers, method="POST" if data is not None else "GET")
            try:
                with urlopen(req, timeout=self.timeout) as resp:
                    raw = resp.read()
            except HTTPError as exc:
                if exc.code not in RETRYABLE_STATUS or attempt == self.retries:
                    raise CollaboratorFailure(f"HTTP {exc.code} from {url}") from exc
                reason = f"HTTP {exc.code}"
            except (URLError, OSError) as exc:
                if attempt == self.retries:
                    raise CollaboratorFailure(f"request to {url} failed: {exc}") from exc
                reason = str(exc)
            else:
                try:
                    return json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, ValueError) as exc:
                    raise CollaboratorFailure(f"invalid JSON from {url}: {raw[:200]!r}") from exc
            delay = min(self.backoff * 2 ** (attempt - 1), MAX_BACKOFF)
            LOGGER.warning("request to %s failed (%s), retry %d/%d in %.1fs", url, reason, attempt, self.retries - 1, delay)
            self.sleep(delay)
        raise CollaboratorFailure(f"request to {url} failed")


class EsploraReader:
    """Confirmed history of one address from an Esplora HTTP API."""

    kind = ChainKind.UTXO

    def __init__(self, base_url: str, address: str, http: Optional[HttpJsonClient] = None):
        self.base_url = base_url.rstrip("/")
        self.address = address
        self.http = http or HttpJsonClient()
        self._block_txids: Dict[str, List[str]] = {}

    def _get(self, path: str) -> Any:
        return self.http.request(self.base_url + path)

    def current_height(self) -> int:
        height = self._get("/blocks/tip/height")
        try:
            return int(height)
        except (TypeError, ValueError) as exc:
            raise CollaboratorFailure(f"invalid tip height {height!r}") from exc

    def _tx_index(self, txid: str, block_hash: Optional[str]) -> int:
        if not block_hash:
            status = self._get(f"/tx/{quote(txid)}/status")
            block_hash = status.get("block_hash") if isinstance(status, dict) else None
            if not block_hash:
                raise CollaboratorFailure(f"no block hash for confirmed tx {txid}")
        txids = self._block_txids.get(block_hash)
        if txids is None:
            txids = self._get(f"/block/{quote(block_hash)}/txids")
            if not isinstance(txids, list):
                raise CollaboratorFailure(f"invalid txid list for block {block_hash}")
            self._block_txids[block_hash] = txids
        try:
            return txids.index(txid)
        except ValueError as exc:
            raise CollaboratorFailure(f"transaction {txid} not found in block {block_hash}") from exc

    def list_confirmed_transactions(self) -> List[UtxoTransaction]:
        out: List[UtxoTransaction] = []
        seen: Set[str] = set()
        cursor: Optional[str] = None
        base = f"/address/{quote(self.address)}/txs/chain"
        while True:
            page = self._get(base if cursor is None else f"{base}/{quote(cursor)}")
            if not isinstance(page, list):
                raise CollaboratorFailure("address history page is not a list")
            if not page:
                break
            for entry in page:
                if not isinstance(entry, dict) or not entry.get("txid"):
                    raise CollaboratorFailure("malformed transaction in address history")
                txid = str(entry["txid"])
                status = entry.get("status") or {}
                if txid in seen or not status.get("confirmed"):
                    continue
                seen.add(txid)
                index = self._tx_index(txid, status.get("block_hash"))
                try:
                    out.append(UtxoTransaction.from_esplora(entry, index))
                except (AttributeError, KeyError, TypeError, ValueError) as exc:
                    raise CollaboratorFailure(f"malformed transaction {txid}") from exc
            next_cursor = str(page[-1]["txid"])
            if next_cursor == cursor:
                break
            cursor = next_cursor
        LOGGER.info("esplora: %d confirmed transactions for %s", len(out), self.address)
        return out


class XrplReader:
    """Validated history of one account from an XRP Ledger JSON-RPC server."""

    kind = ChainKind.LEDGER

    def __init__(self, rpc_url: str, address: str, http: Optional[HttpJsonClient] = None, page_limit: int = 200):
        self.rpc_url = rpc_url
        self.address = address
        self.http = http or HttpJsonClient()
        self.page_limit = page_limit

    def _call(self, method: str, params: dict) -> dict:
        resp = self.http.request(self.rpc_url, {"method": method, "params": [params]})
        result = resp.get("result") if isinstance(resp, dict) else None
        if not isinstance(result, dict):
            raise CollaboratorFailure(f"{method}: response without result")
        if result.get("status") == "error" or result.get("error"):
            raise CollaboratorFailure(
                f"{method} failed: {result.get('error_message') or result.get('error')}"
            )
        return result

    def current_height(self) -> int:
        result = self._call("ledger", {"ledger_index": "validated", "api_version": 2})
        ledger = result.get("ledger") or {}
        value = result.get("ledger_index", ledger.get("ledger_index"))
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise CollaboratorFailure(f"invalid validated ledger index {value!r}") from exc

    def list_confirmed_transactions(self) -> List[LedgerTransaction]:
        out: List[LedgerTransaction] = []
        seen: Set[str] = set()
        marker: Any = None
        while True:
            params = {
                "account": self.address,
                "ledger_index_min": -1,
                "ledger_index_max": -1,
                "binary": False,
                "forward": True,
                "limit": self.page_limit,
                "api_version": 2,
            }
            if marker is not None:
                params["marker"] = marker
            result = self._call("account_tx", params)
            entries = result.get("transactions")
            if not isinstance(entries, list):
                raise CollaboratorFailure("account_tx: transactions is not a list")
            if not entries:
                break
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("validated"):
                    continue
                try:
                    tx = LedgerTransaction.from_account_tx(entry)
                except (AttributeError, TypeError, ValueError) as exc:
                    raise CollaboratorFailure("malformed account_tx entry") from exc
                if not tx.hash or tx.hash in seen:
                    continue
                seen.add(tx.hash)
                out.append(tx)
            next_marker = result.get("marker")
            if next_marker is None or json_dumps(next_marker) == json_dumps(marker):
                break
            marker = next_marker
        LOGGER.info("xrpl: %d validated transactions for %s", len(out), self.address)
        return out


class RecordedReader:
    """Replays a transaction recording produced by :func:`record`."""

    def __init__(self, kind: ChainKind, height: int, transactions: List[SourceTransaction]):
        self.kind = ChainKind(kind)
        self._height = height
        self._transactions = list(transactions)

    @staticmethod
    def load(path: str) -> "RecordedReader":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            kind = ChainKind(data["kind"])
            height = int(data["height"])
            if kind is ChainKind.UTXO:
                txs = [UtxoTransaction.from_esplora(t, int(t["tx_index"])) for t in data["transactions"]]
            else:
                txs = [LedgerTransaction.from_account_tx(t) for t in data["transactions"]]
        except (OSError, AttributeError, KeyError, TypeError, ValueError) as exc:
            raise CollaboratorFailure(f"cannot load recording {path}: {exc}") from exc
        return RecordedReader(kind, height, txs)

    def current_height(self) -> int:
        return self._height

    def list_confirmed_transactions(self) -> List[SourceTransaction]:
        return list(self._transactions)


def record(reader: Any) -> dict:
    transactions = reader.list_confirmed_transactions()
    height = reader.current_height()
    return {
        "kind": ChainKind(reader.kind).value,
        "height": height,
        "transactions": [tx.to_dict() for tx in sorted(transactions, key=lambda t: t.sort_key)],
    }
