import json

import pytest

from stakegenesis.aggregate import StakeAggregator, staker_id
from stakegenesis.genesis import (
    BTC_PROFILE,
    XRP_PROFILE,
    GenesisBuilder,
    fragment_digest,
    price_to_e8,
    voting_power,
)
from stakegenesis.validator import BootstrapStake

BTC_PRICE = price_to_e8("50000")
GENESIS_TIME = "2025-01-01T00:00:00.000Z"


def _stake(n, destination, validator, amount):
    return BootstrapStake(
        txid=f"{n:064x}",
        height=100 + n,
        index=0,
        source_address=f"src-{n}",
        source_hex="0x" + "00" * 20,
        destination=destination,
        validator=validator,
        amount=amount,
    )


def _aggregate(stakes, profile=BTC_PROFILE):
    return StakeAggregator(profile.asset_id, profile.lz_chain_id).add_all(stakes)


def test_price_to_e8():
    assert price_to_e8("50000") == 5_000_000_000_000
    assert price_to_e8(0.5) == 50_000_000
    assert price_to_e8("0.123456789") == 12_345_678
    for bad in ("0", "-1", "abc", "nan", "inf"):
        with pytest.raises(ValueError):
            price_to_e8(bad)


def test_voting_power_is_usd_value():
    # 1 BTC at 50,000 USD
    assert voting_power(100_000_000, BTC_PRICE, 8) == 50_000
    # 0.01 BTC
    assert voting_power(1_000_000, BTC_PRICE, 8) == 500
    # 60 XRP at 0.5 USD
    assert voting_power(60_000_000, price_to_e8("0.5"), 6) == 30
    assert voting_power(1, price_to_e8("0.5"), 6) == 0


def test_single_stake_fragment(addrs):
    agg = _aggregate([_stake(1, addrs.dest(0x11), addrs.validator(1), 1_000_000)])
    fragment = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100).build(agg, genesis_time=GENESIS_TIME)
    assert fragment["chain_id"] == "imua-1"
    assert fragment["initial_height"] == "1"
    assert fragment["app_hash"] == ""
    assets = fragment["app_state"]["assets"]
    assert assets["params"]["gateways"] == ["0x0000000000000000000000000000000000000901"]
    assert assets["tokens"][0]["staking_total_amount"] == "1000000"
    assert assets["tokens"][0]["asset_basic_info"]["decimals"] == "8"
    staker = staker_id(addrs.dest(0x11), 1)
    assert assets["deposits"] == [
        {
            "staker": staker,
            "deposits": [
                {
                    "asset_id": BTC_PROFILE.asset_id,
                    "info": {
                        "total_deposit_amount": "1000000",
                        "withdrawable_amount": "0",
                        "pending_undelegation_amount": "0",
                    },
                }
            ],
        }
    ]
    assert assets["operator_assets"][0]["assets_state"][0]["info"]["total_share"] == "1000000"
    delegation = fragment["app_state"]["delegation"]
    assert delegation["associations"] == []
    assert delegation["delegation_states"][0]["key"] == f"{staker}/{BTC_PROFILE.asset_id}/{addrs.validator(1)}"
    assert delegation["stakers_by_operator"] == [
        {"key": f"{addrs.validator(1)}/{BTC_PROFILE.asset_id}", "stakers": [staker]}
    ]
    dogfood = fragment["app_state"]["dogfood"]
    assert dogfood["val_set"] == [{"public_key": addrs.validator(1), "power": "500"}]
    assert dogfood["last_total_power"] == "500"
    assert dogfood["params"] == {"asset_ids": [BTC_PROFILE.asset_id], "max_validators": 100}
    oracle = fragment["app_state"]["oracle"]
    assert oracle["prices_list"][0]["price_list"][0] == {
        "decimal": 8,
        "price": "5000000000000",
        "round_id": "0",
    }


def test_ranking_ties_by_public_key(addrs):
    stakes = [
        _stake(1, addrs.dest(1), addrs.validator(3), 1_000_000),
        _stake(2, addrs.dest(2), addrs.validator(1), 1_000_000),
        _stake(3, addrs.dest(3), addrs.validator(2), 2_000_000),
    ]
    val_set = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100).validator_set(_aggregate(stakes))
    tied = sorted([addrs.validator(1), addrs.validator(3)])
    assert [v["public_key"] for v in val_set] == [addrs.validator(2)] + tied
    assert [v["power"] for v in val_set] == ["1000", "500", "500"]


def test_cap_and_total_power(addrs):
    stakes = [_stake(n, addrs.dest(n), addrs.validator(n), n * 1_000_000) for n in range(1, 6)]
    fragment = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 3).build(_aggregate(stakes), genesis_time=GENESIS_TIME)
    dogfood = fragment["app_state"]["dogfood"]
    assert [v["power"] for v in dogfood["val_set"]] == ["2500", "2000", "1500"]
    assert dogfood["last_total_power"] == "6000"
    # capped validators still hold their delegated assets
    assert len(fragment["app_state"]["assets"]["operator_assets"]) == 5


def test_zero_power_left_out_of_val_set(addrs):
    stakes = [
        _stake(1, addrs.dest(1), addrs.validator(1), 1),
        _stake(2, addrs.dest(2), addrs.validator(2), 1_000_000),
    ]
    fragment = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100).build(_aggregate(stakes), genesis_time=GENESIS_TIME)
    assert [v["public_key"] for v in fragment["app_state"]["dogfood"]["val_set"]] == [addrs.validator(2)]
    operators = [o["operator"] for o in fragment["app_state"]["assets"]["operator_assets"]]
    assert operators == sorted([addrs.validator(1), addrs.validator(2)])


def test_consensus_key_replaces_address(addrs):
    key = addrs.consensus_key(1)
    agg = _aggregate([_stake(1, addrs.dest(1), addrs.validator(1), 60_000_000)], XRP_PROFILE)
    builder = GenesisBuilder(XRP_PROFILE, price_to_e8("0.5"), 100, consensus_keys={addrs.validator(1): key})
    assert builder.validator_set(agg) == [{"public_key": key, "power": "30"}]


def test_deterministic_output(addrs):
    stakes = [_stake(n, addrs.dest(n % 3 + 1), addrs.validator(n % 4 + 1), 1000 * n) for n in range(1, 20)]
    builder = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100)
    a = builder.build(_aggregate(stakes), genesis_time=GENESIS_TIME)
    b = builder.build(_aggregate(list(reversed(stakes))), genesis_time="2030-06-01T00:00:00.000Z")
    assert fragment_digest(a) == fragment_digest(b)
    a.pop("genesis_time")
    b.pop("genesis_time")
    assert json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)


def test_digest_ignores_only_genesis_time(addrs):
    agg = _aggregate([_stake(1, addrs.dest(1), addrs.validator(1), 1_000_000)])
    fragment = GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100).build(agg, genesis_time=GENESIS_TIME)
    digest = fragment_digest(fragment)
    fragment["genesis_time"] = "1999-01-01T00:00:00.000Z"
    assert fragment_digest(fragment) == digest
    fragment["chain_id"] = "imua-2"
    assert fragment_digest(fragment) != digest


def test_mismatched_asset_rejected(addrs):
    agg = _aggregate([], XRP_PROFILE)
    with pytest.raises(ValueError):
        GenesisBuilder(BTC_PROFILE, BTC_PRICE, 100).build(agg)
    with pytest.raises(ValueError):
        GenesisBuilder(BTC_PROFILE, BTC_PRICE, 0)
