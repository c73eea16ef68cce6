from dataclasses import dataclass
from enum import Enum


class RejectReason(str, Enum):
    NOT_FINALIZED = "not_finalized"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    UNSUPPORTED_TRANSFER = "unsupported_transfer"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    SELF_TRANSFER = "self_transfer"
    MALFORMED_PAYLOAD = "malformed_payload"
    INVALID_ADDRESS = "invalid_address"
    UNREGISTERED_VALIDATOR = "unregistered_validator"
    BINDING_CONFLICT = "binding_conflict"


class PayloadError(RuntimeError):
    """A single transaction failed a protocol rule. Never fatal to a run."""

    def __init__(self, reason: RejectReason, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class CollaboratorFailure(RuntimeError):
    """The indexer or the validator registry could not answer."""


class OutputWriteFailure(RuntimeError):
    pass


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Rejection:
    txid: str
    height: int
    index: int
    reason: RejectReason
    detail: str

    def to_dict(self) -> dict:
        return {
            "txid": self.txid,
            "height": self.height,
            "index": self.index,
            "reason": self.reason.value,
            "detail": self.detail,
        }
