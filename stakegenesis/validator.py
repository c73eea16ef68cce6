import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from . import crypto
from .binding import AddressBindingRegistry
from .errors import PayloadError, RejectReason, Rejection
from .protocol import StakePayload, decoder_for
from .tx import ChainKind, LedgerTransaction, SourceTransaction, UtxoTransaction
from .utils import hex_prefixed

LOGGER = logging.getLogger("stakegenesis.validator")

PAYMENT = "Payment"
TES_SUCCESS = "tesSUCCESS"


@dataclass(frozen=True)
class ChainContext:
    kind: ChainKind
    vault_address: str
    min_confirmations: int
    min_amount: int
    network: str = "mainnet"
    destination_tag: Optional[int] = None

    def source_hex(self, address: str) -> str:
        if self.kind is ChainKind.UTXO:
            return hex_prefixed(crypto.bitcoin_address_hash(address, self.network))
        return hex_prefixed(crypto.xrp_account_id(address))


@dataclass(frozen=True)
class BootstrapStake:
    txid: str
    height: int
    index: int
    source_address: str
    source_hex: str
    destination: str
    validator: str
    amount: int
    timestamp: int = 0

    @property
    def sort_key(self) -> Tuple[int, int, str]:
        return (self.height, self.index, self.txid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "height": self.height,
            "index": self.index,
            "source_address": self.source_address,
            "source_hex": self.source_hex,
            "destination": self.destination,
            "validator": self.validator,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
        }


class _Reject(Exception):
    def __init__(self, reason: RejectReason, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class TransactionValidator:
    """Applies the bootstrap stake rules to one transaction at a time.

    Rules run in a fixed order and the first failing rule names the
    rejection. The validator owns no caches: the registry and the binding
    table are handed in by the caller and live for a single run.
    """

    def __init__(
        self,
        context: ChainContext,
        current_height: int,
        registry: Any,
        bindings: Optional[AddressBindingRegistry] = None,
    ):
        self.context = context
        self.current_height = current_height
        self.registry = registry
        self.bindings = bindings if bindings is not None else AddressBindingRegistry()
        self.decoder = decoder_for(context.kind)

    # -----------------------------
    # Rules
    # -----------------------------

    def _check_finality(self, tx: SourceTransaction) -> None:
        finalized = tx.confirmed if isinstance(tx, UtxoTransaction) else tx.validated
        if not finalized:
            raise _Reject(RejectReason.NOT_FINALIZED, "transaction is not confirmed")
        if tx.height <= 0:
            raise _Reject(RejectReason.NOT_FINALIZED, "confirmed transaction without block height")
        if tx.height > self.current_height:
            raise _Reject(
                RejectReason.INSUFFICIENT_CONFIRMATIONS,
                f"height {tx.height} is above current height {self.current_height}",
            )
        confirmations = self.current_height - tx.height + 1
        if confirmations < self.context.min_confirmations:
            raise _Reject(
                RejectReason.INSUFFICIENT_CONFIRMATIONS,
                f"{confirmations} confirmations, need {self.context.min_confirmations}",
            )

    def _check_ledger_transfer(self, tx: LedgerTransaction) -> None:
        if tx.transaction_type != PAYMENT:
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, f"transaction type {tx.transaction_type}")
        if tx.result != TES_SUCCESS:
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, f"result {tx.result or 'missing'}")
        if not isinstance(tx.amount, str) or (
            tx.delivered_amount is not None and not isinstance(tx.delivered_amount, str)
        ):
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, "non-native amount")
        if tx.destination != self.context.vault_address:
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, "payment is not to the vault")
        tag = self.context.destination_tag
        if tag is not None and tx.destination_tag != tag:
            raise _Reject(
                RejectReason.UNSUPPORTED_TRANSFER,
                f"destination tag {tx.destination_tag}, expected {tag}",
            )

    def _utxo_amount(self, tx: UtxoTransaction) -> int:
        vault = self.context.vault_address
        to_vault = [o for o in tx.outputs if o.address == vault]
        qualifying = [o for o in to_vault if o.value >= self.context.min_amount]
        if not qualifying:
            total = sum(o.value for o in to_vault)
            raise _Reject(
                RejectReason.INSUFFICIENT_AMOUNT,
                f"{total} to vault, minimum {self.context.min_amount}",
            )
        if len(qualifying) > 1:
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, f"{len(qualifying)} outputs to vault")
        return qualifying[0].value

    def _ledger_amount(self, tx: LedgerTransaction) -> int:
        raw = tx.delivered_amount if tx.delivered_amount is not None else tx.amount
        if not isinstance(raw, str) or not raw.isdigit():
            raise _Reject(RejectReason.UNSUPPORTED_TRANSFER, f"invalid amount {raw!r}")
        amount = int(raw)
        if amount < self.context.min_amount:
            raise _Reject(
                RejectReason.INSUFFICIENT_AMOUNT,
                f"{amount} to vault, minimum {self.context.min_amount}",
            )
        return amount

    def _check_sender(self, tx: SourceTransaction) -> str:
        vault = self.context.vault_address
        if isinstance(tx, UtxoTransaction):
            senders = tx.input_addresses
        else:
            senders = [tx.account]
        if vault in senders:
            raise _Reject(RejectReason.SELF_TRANSFER, "vault spends to itself")
        sender = tx.sender
        if not sender:
            raise _Reject(RejectReason.INVALID_ADDRESS, "sender address unknown")
        return sender

    def _decode(self, tx: SourceTransaction) -> StakePayload:
        try:
            return self.decoder.extract(tx)
        except PayloadError as exc:
            raise _Reject(exc.reason, exc.detail) from exc

    def _source_hex(self, sender: str) -> str:
        try:
            return self.context.source_hex(sender)
        except ValueError as exc:
            raise _Reject(RejectReason.INVALID_ADDRESS, f"sender {sender}: {exc}") from exc

    def _check_registered(self, validator: str) -> None:
        info = self.registry.lookup(validator)
        if not info.registered:
            raise _Reject(RejectReason.UNREGISTERED_VALIDATOR, f"{validator} is not registered")

    def _check_binding(self, sender: str, destination: str) -> None:
        if self.bindings.try_bind(sender, destination):
            return
        bound = self.bindings.destination_for(sender)
        if bound is not None and bound != destination:
            detail = f"{sender} is bound to {bound}"
        else:
            detail = f"{destination} is bound to {self.bindings.source_for(destination)}"
        raise _Reject(RejectReason.BINDING_CONFLICT, detail)

    # -----------------------------
    # Public API
    # -----------------------------

    def validate(self, tx: SourceTransaction) -> Union[BootstrapStake, Rejection]:
        """Return the accepted stake, or the first rule it breaks.

        Registry transport errors are not rejections and propagate.
        """
        try:
            self._check_finality(tx)
            if isinstance(tx, LedgerTransaction):
                self._check_ledger_transfer(tx)
                amount = self._ledger_amount(tx)
            else:
                amount = self._utxo_amount(tx)
            sender = self._check_sender(tx)
            payload = self._decode(tx)
            source_hex = self._source_hex(sender)
            self._check_registered(payload.validator)
            self._check_binding(sender, payload.destination)
        except _Reject as exc:
            rejection = Rejection(tx.txid, tx.height, tx.index, exc.reason, exc.detail)
            LOGGER.info("rejected %s: %s (%s)", tx.txid, exc.reason.value, exc.detail)
            return rejection
        return BootstrapStake(
            txid=tx.txid,
            height=tx.height,
            index=tx.index,
            source_address=sender,
            source_hex=source_hex,
            destination=payload.destination,
            validator=payload.validator,
            amount=amount,
            timestamp=tx.timestamp,
        )

    def validate_all(
        self, transactions: Sequence[SourceTransaction]
    ) -> Tuple[List[BootstrapStake], List[Rejection]]:
        stakes: List[BootstrapStake] = []
        rejections: List[Rejection] = []
        for tx in sorted(transactions, key=lambda t: t.sort_key):
            result = self.validate(tx)
            if isinstance(result, Rejection):
                rejections.append(result)
            else:
                stakes.append(result)
        return stakes, rejections
