import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3

from .crypto import is_validator_address, normalize_consensus_key
from .errors import CollaboratorFailure

LOGGER = logging.getLogger("stakegenesis.registry")

BOOTSTRAP_ABI = [
    {
        "inputs": [{"internalType": "string", "name": "", "type": "string"}],
        "name": "validators",
        "outputs": [
            {"internalType": "string", "name": "name", "type": "string"},
            {
                "components": [
                    {"internalType": "uint256", "name": "rate", "type": "uint256"},
                    {"internalType": "uint256", "name": "maxRate", "type": "uint256"},
                    {"internalType": "uint256", "name": "maxChangeRate", "type": "uint256"}
                ],
                "internalType": "struct Commission",
                "name": "commission",
                "type": "tuple"
            },
            {"internalType": "bytes32", "name": "consensusPublicKey", "type": "bytes32"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]


@dataclass(frozen=True)
class ValidatorInfo:
    address: str
    registered: bool
    consensus_key: Optional[str] = None
    name: str = ""


class BootstrapRegistryClient:
    """Reads validator registrations from the Bootstrap contract."""

    def __init__(self, rpc_url: str, contract_address: str, timeout: int = 10) -> None:
        if not Web3.is_address(contract_address):
            raise CollaboratorFailure(f"invalid bootstrap contract address {contract_address!r}")
        self.web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=BOOTSTRAP_ABI
        )

    def lookup(self, validator: str) -> ValidatorInfo:
        try:
            result = self.contract.functions.validators(validator).call()
        except Exception as exc:
            raise CollaboratorFailure(f"validator registry lookup failed for {validator}: {exc}") from exc
        try:
            name = str(result[0] or "")
            key = normalize_consensus_key(bytes(result[-1])) if name else None
        except (IndexError, TypeError, ValueError) as exc:
            raise CollaboratorFailure(f"malformed registry response for {validator}") from exc
        return ValidatorInfo(address=validator, registered=bool(name), consensus_key=key, name=name)


class StaticValidatorRegistry:
    """Registrations from a JSON file, for offline and reproducible runs.

    Accepted shapes::

        {"validators": [{"address": "im1...", "name": "...", "consensus_public_key": "0x..."}]}
        {"validators": {"im1...": {"name": "...", "consensus_public_key": "0x..."}}}
    """

    def __init__(self, entries: Dict[str, Dict[str, Any]]) -> None:
        self._entries: Dict[str, ValidatorInfo] = {}
        for address, entry in entries.items():
            if not is_validator_address(address):
                raise CollaboratorFailure(f"invalid validator address in registry: {address!r}")
            try:
                key = normalize_consensus_key(entry.get("consensus_public_key"))
            except ValueError as exc:
                raise CollaboratorFailure(f"invalid consensus key for {address}") from exc
            name = str(entry.get("name") or address)
            self._entries[address] = ValidatorInfo(address=address, registered=True, consensus_key=key, name=name)

    @classmethod
    def from_file(cls, path: str) -> "StaticValidatorRegistry":
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CollaboratorFailure(f"cannot read validator registry file {path}: {exc}") from exc
        raw = payload.get("validators") if isinstance(payload, dict) else None
        if isinstance(raw, list):
            entries = {}
            for item in raw:
                if not isinstance(item, dict) or not item.get("address"):
                    raise CollaboratorFailure("validator entry without address")
                entries[str(item["address"])] = item
            return cls(entries)
        if isinstance(raw, dict):
            return cls({str(k): v if isinstance(v, dict) else {} for k, v in raw.items()})
        raise CollaboratorFailure(f"{path} has no validators list")

    def lookup(self, validator: str) -> ValidatorInfo:
        return self._entries.get(validator, ValidatorInfo(address=validator, registered=False))


class CachedValidatorRegistry:
    """Per-run memo: every validator is looked up at most once."""

    def __init__(self, client: Any) -> None:
        self.client = client
        self._cache: Dict[str, ValidatorInfo] = {}

    def lookup(self, validator: str) -> ValidatorInfo:
        info = self._cache.get(validator)
        if info is None:
            info = self.client.lookup(validator)
            self._cache[validator] = info
            LOGGER.debug("validator %s registered=%s", validator, info.registered)
        return info

    def consensus_keys(self) -> Dict[str, str]:
        return {
            address: info.consensus_key
            for address, info in self._cache.items()
            if info.registered and info.consensus_key
        }

    @property
    def lookups(self) -> int:
        return len(self._cache)
