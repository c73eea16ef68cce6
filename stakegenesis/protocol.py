"""Bootstrap stake payload decoding.

A bootstrap stake names the destination-chain address that will own the stake
and the validator it is delegated to. The pair travels in transaction metadata:

* UTXO chains: an OP_RETURN output ``6a 3d <20 bytes destination> <41 bytes validator>``.
* Ledger chains: a memo whose type is ``Description`` and whose data is
  ``<40 ascii hex destination> <41 bytes validator>``.

Both layouts end with the validator's bech32 text address. Decoders only
inspect metadata; amount, confirmation and sender rules live in
:mod:`stakegenesis.validator`.
"""

from dataclasses import dataclass
from typing import Dict, List

from . import crypto
from .errors import PayloadError, RejectReason
from .tx import ChainKind, LedgerMemo, LedgerTransaction, SourceTransaction, UtxoTransaction
from .utils import hex_prefixed

OP_RETURN = 0x6A
UTXO_PAYLOAD_LENGTH = crypto.ADDRESS_BYTES + crypto.VALIDATOR_ADDRESS_LENGTH
UTXO_PREFIX = bytes([OP_RETURN, UTXO_PAYLOAD_LENGTH])
OP_RETURN_TYPE = "op_return"

LEDGER_MEMO_TYPE = b"Description"
LEDGER_DESTINATION_LENGTH = crypto.ADDRESS_BYTES * 2
LEDGER_MIN_PAYLOAD_LENGTH = UTXO_PAYLOAD_LENGTH


@dataclass(frozen=True)
class StakePayload:
    destination: str
    validator: str


def _malformed(detail: str) -> PayloadError:
    return PayloadError(RejectReason.MALFORMED_PAYLOAD, detail)


def _invalid(detail: str) -> PayloadError:
    return PayloadError(RejectReason.INVALID_ADDRESS, detail)


def _decode_validator(raw: bytes) -> str:
    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError as exc:
        raise _invalid("validator address is not ascii") from exc
    try:
        crypto.decode_validator_address(text)
    except ValueError as exc:
        raise _invalid(f"invalid validator address: {exc}") from exc
    return text


def _decode_hex(value: object, what: str) -> bytes:
    if not isinstance(value, str):
        raise _malformed(f"{what} is not a hex string")
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise _malformed(f"{what} is not valid hex") from exc


def decode_utxo_script(script: bytes) -> StakePayload:
    if script[:2] != UTXO_PREFIX:
        raise _malformed(f"unexpected script prefix {script[:2].hex()!r}")
    data = script[2:]
    if len(data) != UTXO_PAYLOAD_LENGTH:
        raise _malformed(f"payload is {len(data)} bytes, expected {UTXO_PAYLOAD_LENGTH}")
    destination = hex_prefixed(data[: crypto.ADDRESS_BYTES])
    validator = _decode_validator(data[crypto.ADDRESS_BYTES :])
    return StakePayload(destination=destination, validator=validator)


def decode_ledger_payload(data: bytes) -> StakePayload:
    if len(data) < LEDGER_MIN_PAYLOAD_LENGTH:
        raise _malformed(f"memo data is {len(data)} bytes, expected at least {LEDGER_MIN_PAYLOAD_LENGTH}")
    validator_raw = data[-crypto.VALIDATOR_ADDRESS_LENGTH :]
    destination_raw = data[: -crypto.VALIDATOR_ADDRESS_LENGTH]
    if len(destination_raw) != LEDGER_DESTINATION_LENGTH:
        raise _malformed(
            f"destination is {len(destination_raw)} bytes, expected {LEDGER_DESTINATION_LENGTH}"
        )
    try:
        destination_text = destination_raw.decode("ascii")
        destination = crypto.normalize_destination(destination_text)
    except (UnicodeDecodeError, ValueError) as exc:
        raise _invalid("destination is not a 20-byte hex address") from exc
    validator = _decode_validator(validator_raw)
    return StakePayload(destination=destination, validator=validator)


class PayloadDecoder:
    kind: ChainKind

    def extract(self, tx: SourceTransaction) -> StakePayload:
        raise NotImplementedError


class UtxoPayloadDecoder(PayloadDecoder):
    kind = ChainKind.UTXO

    def extract(self, tx: UtxoTransaction) -> StakePayload:
        carriers = [o for o in tx.outputs if o.script_type == OP_RETURN_TYPE]
        if len(carriers) != 1:
            raise _malformed(f"expected exactly one op_return output, found {len(carriers)}")
        return decode_utxo_script(_decode_hex(carriers[0].script_hex, "op_return script"))


class LedgerPayloadDecoder(PayloadDecoder):
    kind = ChainKind.LEDGER

    def extract(self, tx: LedgerTransaction) -> StakePayload:
        return decode_ledger_memos(tx.memos)


def decode_ledger_memos(memos: List[LedgerMemo]) -> StakePayload:
    if not memos:
        raise _malformed("no memos")
    for memo in memos:
        if not isinstance(memo.memo_type, str) or not isinstance(memo.memo_data, str):
            raise _malformed("memo without string MemoType and MemoData")
    carriers = [m for m in memos if _decode_hex(m.memo_type, "MemoType") == LEDGER_MEMO_TYPE]
    if len(carriers) != 1:
        raise _malformed(f"expected exactly one Description memo, found {len(carriers)}")
    return decode_ledger_payload(_decode_hex(carriers[0].memo_data, "MemoData"))


DECODERS: Dict[ChainKind, PayloadDecoder] = {
    ChainKind.UTXO: UtxoPayloadDecoder(),
    ChainKind.LEDGER: LedgerPayloadDecoder(),
}


def decoder_for(kind: ChainKind) -> PayloadDecoder:
    return DECODERS[ChainKind(kind)]


def decode_payload(kind: ChainKind, payload_hex: str) -> StakePayload:
    """Decode one raw payload: an OP_RETURN script or a memo's data field."""
    raw = _decode_hex(payload_hex.strip(), "payload")
    if ChainKind(kind) is ChainKind.UTXO:
        return decode_utxo_script(raw)
    return decode_ledger_payload(raw)


def encode_utxo_script(destination: str, validator: str) -> bytes:
    dest = bytes.fromhex(crypto.normalize_destination(destination)[2:])
    return UTXO_PREFIX + dest + validator.encode("ascii")


def encode_ledger_payload(destination: str, validator: str) -> bytes:
    return crypto.normalize_destination(destination)[2:].encode("ascii") + validator.encode("ascii")
