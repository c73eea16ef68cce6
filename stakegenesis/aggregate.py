from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from .validator import BootstrapStake


def staker_id(destination: str, lz_chain_id: int) -> str:
    return f"{destination.lower()}_0x{lz_chain_id:x}"


def asset_id(virtual_address: str, lz_chain_id: int) -> str:
    return f"{virtual_address.lower()}_0x{lz_chain_id:x}"


@dataclass
class StakerDeposit:
    staker: str
    asset_id: str
    amount: int = 0


@dataclass
class ValidatorAggregate:
    validator: str
    total: int = 0
    stakers: Set[str] = field(default_factory=set)


class StakeAggregator:
    """Folds accepted stakes into deposits, validator totals and delegations."""

    def __init__(self, asset: str, lz_chain_id: int):
        self.asset_id = asset
        self.lz_chain_id = lz_chain_id
        self.deposits: Dict[Tuple[str, str], StakerDeposit] = {}
        self.validators: Dict[str, ValidatorAggregate] = {}
        self.delegations: Dict[Tuple[str, str, str], int] = {}
        self.accepted: List[BootstrapStake] = []

    def add(self, stake: BootstrapStake) -> None:
        staker = staker_id(stake.destination, self.lz_chain_id)
        key = (staker, self.asset_id)
        deposit = self.deposits.get(key)
        if deposit is None:
            deposit = StakerDeposit(staker=staker, asset_id=self.asset_id)
            self.deposits[key] = deposit
        deposit.amount += stake.amount

        aggregate = self.validators.get(stake.validator)
        if aggregate is None:
            aggregate = ValidatorAggregate(validator=stake.validator)
            self.validators[stake.validator] = aggregate
        aggregate.total += stake.amount
        aggregate.stakers.add(staker)

        triple = (staker, self.asset_id, stake.validator)
        self.delegations[triple] = self.delegations.get(triple, 0) + stake.amount
        self.accepted.append(stake)

    def add_all(self, stakes: Iterable[BootstrapStake]) -> "StakeAggregator":
        for stake in stakes:
            self.add(stake)
        return self

    @property
    def total_staked(self) -> int:
        return sum(s.amount for s in self.accepted)

    def check_conservation(self) -> None:
        total = self.total_staked
        by_validator = sum(v.total for v in self.validators.values())
        by_deposit = sum(d.amount for d in self.deposits.values())
        by_delegation = sum(self.delegations.values())
        if not total == by_validator == by_deposit == by_delegation:
            raise RuntimeError(
                f"stake totals diverge: accepted={total} validators={by_validator} "
                f"deposits={by_deposit} delegations={by_delegation}"
            )
