from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class ChainKind(str, Enum):
    UTXO = "utxo"
    LEDGER = "ledger"


@dataclass
class UtxoOutput:
    script_hex: str
    script_type: str
    address: Optional[str]
    value: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "scriptpubkey": self.script_hex,
            "scriptpubkey_type": self.script_type,
            "scriptpubkey_address": self.address,
            "value": self.value,
        }

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "UtxoOutput":
        address = data.get("scriptpubkey_address")
        return UtxoOutput(
            script_hex=str(data.get("scriptpubkey", "")),
            script_type=str(data.get("scriptpubkey_type", "")),
            address=str(address) if address else None,
            value=int(data.get("value", 0)),
        )


@dataclass
class UtxoTransaction:
    """A Bitcoin-style transaction as reported by an Esplora indexer."""

    txid: str
    input_addresses: List[Optional[str]]
    outputs: List[UtxoOutput]
    confirmed: bool
    height: int
    index: int
    timestamp: int = 0

    kind = ChainKind.UTXO

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        return (self.height, self.index, self.txid)

    @property
    def sender(self) -> Optional[str]:
        if not self.input_addresses:
            return None
        return self.input_addresses[0]

    def to_dict(self) -> Dict[str, object]:
        return {
            "txid": self.txid,
            "vin": [{"prevout": {"scriptpubkey_address": a}} for a in self.input_addresses],
            "vout": [o.to_dict() for o in self.outputs],
            "status": {
                "confirmed": self.confirmed,
                "block_height": self.height,
                "block_time": self.timestamp,
            },
            "tx_index": self.index,
        }

    @staticmethod
    def from_esplora(data: Dict[str, object], index: int) -> "UtxoTransaction":
        status = data.get("status") or {}
        inputs: List[Optional[str]] = []
        for vin in data.get("vin", []):
            prevout = vin.get("prevout") or {}
            address = prevout.get("scriptpubkey_address")
            inputs.append(str(address) if address else None)
        return UtxoTransaction(
            txid=str(data["txid"]),
            input_addresses=inputs,
            outputs=[UtxoOutput.from_dict(o) for o in data.get("vout", [])],
            confirmed=bool(status.get("confirmed", False)),
            height=int(status.get("block_height") or 0),
            index=index,
            timestamp=int(status.get("block_time") or 0),
        )


@dataclass
class LedgerMemo:
    memo_type: Optional[str]
    memo_data: Optional[str]
    memo_format: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {"MemoType": self.memo_type, "MemoData": self.memo_data}
        if self.memo_format is not None:
            data["MemoFormat"] = self.memo_format
        return data

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "LedgerMemo":
        memo = data.get("Memo", data) if isinstance(data, dict) else {}
        if not isinstance(memo, dict):
            memo = {}
        return LedgerMemo(
            memo_type=memo.get("MemoType"),
            memo_data=memo.get("MemoData"),
            memo_format=memo.get("MemoFormat"),
        )


@dataclass
class LedgerTransaction:
    """An XRP Ledger transaction as returned by ``account_tx``."""

    hash: str
    height: int
    index: int
    validated: bool
    transaction_type: str
    account: str
    destination: Optional[str]
    amount: Union[str, Dict[str, object], None]
    delivered_amount: Union[str, Dict[str, object], None] = None
    destination_tag: Optional[int] = None
    result: str = ""
    memos: List[LedgerMemo] = field(default_factory=list)
    timestamp: int = 0

    kind = ChainKind.LEDGER

    @property
    def txid(self) -> str:
        return self.hash

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        return (self.height, self.index, self.hash)

    @property
    def sender(self) -> Optional[str]:
        return self.account or None

    def to_dict(self) -> Dict[str, object]:
        tx_json: Dict[str, object] = {
            "TransactionType": self.transaction_type,
            "Account": self.account,
            "Destination": self.destination,
            "Amount": self.amount,
            "Memos": [{"Memo": m.to_dict()} for m in self.memos],
            "date": self.timestamp,
        }
        if self.destination_tag is not None:
            tx_json["DestinationTag"] = self.destination_tag
        meta: Dict[str, object] = {
            "TransactionIndex": self.index,
            "TransactionResult": self.result,
        }
        if self.delivered_amount is not None:
            meta["delivered_amount"] = self.delivered_amount
        return {
            "hash": self.hash,
            "ledger_index": self.height,
            "validated": self.validated,
            "meta": meta,
            "tx_json": tx_json,
        }

    @staticmethod
    def from_account_tx(entry: Dict[str, object]) -> "LedgerTransaction":
        tx_json = entry.get("tx_json") or entry.get("tx") or {}
        meta = entry.get("meta") or {}
        if not isinstance(meta, dict):
            meta = {}
        tag = tx_json.get("DestinationTag")
        return LedgerTransaction(
            hash=str(entry.get("hash") or tx_json.get("hash", "")),
            height=int(entry.get("ledger_index") or tx_json.get("ledger_index") or 0),
            index=int(meta.get("TransactionIndex") or 0),
            validated=bool(entry.get("validated", False)),
            transaction_type=str(tx_json.get("TransactionType", "")),
            account=str(tx_json.get("Account", "")),
            destination=tx_json.get("Destination"),
            amount=tx_json.get("DeliverMax", tx_json.get("Amount")),
            delivered_amount=meta.get("delivered_amount"),
            destination_tag=int(tag) if tag is not None else None,
            result=str(meta.get("TransactionResult", "")),
            memos=[LedgerMemo.from_dict(m) for m in tx_json.get("Memos") or []],
            timestamp=int(tx_json.get("date") or entry.get("date") or 0),
        )


SourceTransaction = Union[UtxoTransaction, LedgerTransaction]
