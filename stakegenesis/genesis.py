"""Genesis fragment construction.

The fragment is a genesis document shaped like the destination chain's
``genesis.json``: consensus parameters plus the ``assets``, ``delegation``,
``dogfood`` and ``oracle`` module states seeded from bootstrap stakes.
Every list in it is sorted so the same stakes always produce the same bytes.
"""

import copy
import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from .aggregate import StakeAggregator, asset_id
from .tx import ChainKind
from .utils import json_dumps, now_iso, sha256

LOGGER = logging.getLogger("stakegenesis.genesis")

PRICE_DECIMALS = 8
INITIAL_HEIGHT = "1"
VIRTUAL_ADDRESS = "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"

CONSENSUS_PARAMS = {
    "block": {"max_bytes": "22020096", "max_gas": "-1"},
    "evidence": {
        "max_age_num_blocks": "100000",
        "max_age_duration": "172800000000000",
        "max_bytes": "1048576",
    },
    "validator": {"pub_key_types": ["ed25519"]},
    "version": {"app": "0"},
}


@dataclass(frozen=True)
class AssetProfile:
    """Static description of a source chain and its virtual token."""

    kind: ChainKind
    chain_name: str
    chain_meta: str
    finalization_blocks: int
    lz_chain_id: int
    address_length: int
    gateway: str
    token_name: str
    token_symbol: str
    token_meta: str
    decimals: int
    token_chain_id: int
    oracle_token_id: str
    virtual_address: str = VIRTUAL_ADDRESS

    @property
    def asset_id(self) -> str:
        return asset_id(self.virtual_address, self.lz_chain_id)


BTC_PROFILE = AssetProfile(
    kind=ChainKind.UTXO,
    chain_name="Bitcoin",
    chain_meta="Bitcoin mainnet",
    finalization_blocks=6,
    lz_chain_id=1,
    address_length=20,
    gateway="0x0000000000000000000000000000000000000901",
    token_name="Bitcoin",
    token_symbol="BTC",
    token_meta="Bitcoin virtual token",
    decimals=8,
    token_chain_id=1,
    oracle_token_id="1",
)

XRP_PROFILE = AssetProfile(
    kind=ChainKind.LEDGER,
    chain_name="XRP Ledger",
    chain_meta="XRP Ledger mainnet",
    finalization_blocks=1,
    lz_chain_id=2,
    address_length=20,
    gateway="0x0000000000000000000000000000000000000902",
    token_name="XRP",
    token_symbol="XRP",
    token_meta="XRP virtual token",
    decimals=6,
    token_chain_id=2,
    oracle_token_id="5",
)

PROFILES: Dict[str, AssetProfile] = {"btc": BTC_PROFILE, "xrp": XRP_PROFILE}


def price_to_e8(price: Any) -> int:
    """Turn a decimal USD price into an integer with 8 decimals, floored."""
    try:
        dec = Decimal(str(price))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid price {price!r}") from exc
    if not dec.is_finite() or dec <= 0:
        raise ValueError(f"price must be positive, got {price!r}")
    return int(dec.scaleb(PRICE_DECIMALS).to_integral_value(rounding=ROUND_FLOOR))


def voting_power(amount: int, price_e8: int, decimals: int) -> int:
    return amount * price_e8 // (10**decimals * 10**PRICE_DECIMALS)


def fragment_digest(fragment: Dict[str, Any]) -> str:
    body = {k: v for k, v in fragment.items() if k != "genesis_time"}
    return sha256(json_dumps(body).encode())


class GenesisBuilder:
    def __init__(
        self,
        profile: AssetProfile,
        price_e8: int,
        max_validators: int,
        chain_id: str = "imua-1",
        consensus_keys: Optional[Dict[str, str]] = None,
    ):
        if max_validators < 1:
            raise ValueError("max_validators must be at least 1")
        self.profile = profile
        self.price_e8 = price_e8
        self.max_validators = max_validators
        self.chain_id = chain_id
        self.consensus_keys = consensus_keys or {}

    def _assets(self, agg: StakeAggregator) -> Dict[str, Any]:
        p = self.profile
        deposits: Dict[str, List[Dict[str, Any]]] = {}
        for (staker, asset), deposit in agg.deposits.items():
            deposits.setdefault(staker, []).append(
                {
                    "asset_id": asset,
                    "info": {
                        "total_deposit_amount": str(deposit.amount),
                        "withdrawable_amount": "0",
                        "pending_undelegation_amount": "0",
                    },
                }
            )
        operator_assets = []
        for validator in sorted(agg.validators):
            total = str(agg.validators[validator].total)
            operator_assets.append(
                {
                    "operator": validator,
                    "assets_state": [
                        {
                            "asset_id": p.asset_id,
                            "info": {
                                "total_amount": total,
                                "pending_undelegation_amount": "0",
                                "total_share": total,
                                "operator_share": "0",
                            },
                        }
                    ],
                }
            )
        return {
            "params": {"gateways": [p.gateway]},
            "client_chains": [
                {
                    "name": p.chain_name,
                    "meta_info": p.chain_meta,
                    "finalization_blocks": p.finalization_blocks,
                    "layer_zero_chain_id": p.lz_chain_id,
                    "address_length": p.address_length,
                }
            ],
            "tokens": [
                {
                    "asset_basic_info": {
                        "name": p.token_name,
                        "symbol": p.token_symbol,
                        "address": p.virtual_address.lower(),
                        "decimals": str(p.decimals),
                        "layer_zero_chain_id": p.lz_chain_id,
                        "imua_chain_index": "0",
                        "meta_info": p.token_meta,
                    },
                    "staking_total_amount": str(agg.total_staked),
                }
            ],
            "deposits": [
                {"staker": staker, "deposits": sorted(items, key=lambda d: d["asset_id"])}
                for staker, items in sorted(deposits.items())
            ],
            "operator_assets": operator_assets,
        }

    def _delegation(self, agg: StakeAggregator) -> Dict[str, Any]:
        states = [
            {
                "key": f"{staker}/{asset}/{validator}",
                "states": {"undelegatable_share": str(amount), "wait_undelegation_amount": "0"},
            }
            for (staker, asset, validator), amount in agg.delegations.items()
        ]
        stakers_by_operator = [
            {"key": f"{validator}/{agg.asset_id}", "stakers": sorted(v.stakers)}
            for validator, v in agg.validators.items()
        ]
        return {
            "associations": [],
            "delegation_states": sorted(states, key=lambda s: s["key"]),
            "stakers_by_operator": sorted(stakers_by_operator, key=lambda s: s["key"]),
        }

    def validator_set(self, agg: StakeAggregator) -> List[Dict[str, str]]:
        entries = []
        for validator, v in agg.validators.items():
            power = voting_power(v.total, self.price_e8, self.profile.decimals)
            if power <= 0:
                LOGGER.warning("validator %s has zero voting power (stake %d), left out of val_set", validator, v.total)
                continue
            public_key = self.consensus_keys.get(validator)
            if not public_key:
                LOGGER.warning("no consensus key for validator %s, using its address", validator)
                public_key = validator
            entries.append((power, public_key))
        entries.sort(key=lambda e: (-e[0], e[1]))
        return [{"public_key": key, "power": str(power)} for power, key in entries[: self.max_validators]]

    def _dogfood(self, agg: StakeAggregator) -> Dict[str, Any]:
        val_set = self.validator_set(agg)
        return {
            "params": {"asset_ids": [self.profile.asset_id], "max_validators": self.max_validators},
            "val_set": val_set,
            "last_total_power": str(sum(int(v["power"]) for v in val_set)),
        }

    def _oracle(self) -> Dict[str, Any]:
        p = self.profile
        return {
            "params": {
                "tokens": [
                    {
                        "name": p.token_symbol,
                        "chain_id": p.token_chain_id,
                        "contract_address": p.virtual_address.lower(),
                        "active": True,
                        "asset_id": p.asset_id,
                        "decimal": p.decimals,
                    }
                ],
                "token_feeders": [
                    {
                        "token_id": p.oracle_token_id,
                        "start_round_id": "1",
                        "start_base_block": "20",
                        "interval": "30",
                        "end_block": "0",
                        "rule_id": "2",
                    }
                ],
            },
            "prices_list": [
                {
                    "next_round_id": "1",
                    "price_list": [
                        {"decimal": PRICE_DECIMALS, "price": str(self.price_e8), "round_id": "0"}
                    ],
                    "token_id": p.oracle_token_id,
                }
            ],
        }

    def build(self, agg: StakeAggregator, genesis_time: Optional[str] = None) -> Dict[str, Any]:
        if agg.asset_id != self.profile.asset_id:
            raise ValueError(f"aggregate asset {agg.asset_id} does not match {self.profile.asset_id}")
        agg.check_conservation()
        fragment = {
            "genesis_time": genesis_time or now_iso(),
            "chain_id": self.chain_id,
            "initial_height": INITIAL_HEIGHT,
            "consensus_params": copy.deepcopy(CONSENSUS_PARAMS),
            "app_hash": "",
            "app_state": {
                "assets": self._assets(agg),
                "delegation": self._delegation(agg),
                "dogfood": self._dogfood(agg),
                "oracle": self._oracle(),
            },
        }
        LOGGER.info(
            "fragment: %d stakes, %d validators, %d in val_set, total %d",
            len(agg.accepted),
            len(agg.validators),
            len(fragment["app_state"]["dogfood"]["val_set"]),
            agg.total_staked,
        )
        return fragment
