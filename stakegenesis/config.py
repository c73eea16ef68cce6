import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .crypto import BITCOIN_NETWORKS
from .errors import ConfigError
from .genesis import PROFILES, AssetProfile, price_to_e8
from .profiles import enforce_network_requirements, get_network
from .tx import ChainKind
from .validator import ChainContext

CHAINS = tuple(PROFILES)

_CHAIN_DEFAULTS = {
    "btc": {"min_amount": "546", "price": "50000"},
    "xrp": {"min_amount": "50000000", "price": "0.5"},
}


@dataclass(frozen=True)
class Settings:
    chain: str
    network: str
    vault_address: str
    source_url: str
    source_network: str
    min_amount: int
    price_e8: int
    destination_tag: Optional[int]
    min_confirmations: int
    max_validators: int
    chain_id: str
    client_chain_rpc: str
    bootstrap_contract: str
    validators_file: str
    output: str
    http_timeout: int
    http_retries: int

    @property
    def profile(self) -> AssetProfile:
        return PROFILES[self.chain]

    def context(self) -> ChainContext:
        return ChainContext(
            kind=self.profile.kind,
            vault_address=self.vault_address,
            min_confirmations=self.min_confirmations,
            min_amount=self.min_amount,
            network=self.source_network,
            destination_tag=self.destination_tag,
        )


def _get(env: Mapping[str, str], name: str, default: str = "") -> str:
    return env.get(f"STAKEGENESIS_{name}", default).strip()


def _int(env: Mapping[str, str], name: str, default: str, minimum: int) -> int:
    raw = _get(env, name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"STAKEGENESIS_{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"STAKEGENESIS_{name} must be >= {minimum}")
    return value


def _required(env: Mapping[str, str], name: str) -> str:
    value = _get(env, name)
    if not value:
        raise ConfigError(f"STAKEGENESIS_{name} not set")
    return value


def load_settings(chain: str, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings for one chain from the environment.

    Network profile defaults are applied at package import, so an explicit
    variable always wins over the profile.
    """
    env = os.environ if environ is None else environ
    chain = chain.lower()
    if chain not in PROFILES:
        raise ConfigError(f"unknown chain {chain!r}, expected one of {', '.join(CHAINS)}")
    enforce_network_requirements(chain, env)
    prefix = chain.upper()
    defaults = _CHAIN_DEFAULTS[chain]

    if PROFILES[chain].kind is ChainKind.UTXO:
        vault = _required(env, "BTC_VAULT_ADDRESS")
        source_url = _required(env, "ESPLORA_URL")
        source_network = _get(env, "BTC_NETWORK", "mainnet").lower()
        if source_network not in BITCOIN_NETWORKS:
            raise ConfigError(f"unknown bitcoin network {source_network!r}")
        destination_tag = None
    else:
        vault = _required(env, "XRP_VAULT_ADDRESS")
        source_url = _required(env, "XRP_RPC_URL")
        source_network = "mainnet"
        destination_tag = _int(env, "XRP_DESTINATION_TAG", "9999", 0)

    price_raw = _get(env, f"{prefix}_PRICE_USD", defaults["price"])
    try:
        price_e8 = price_to_e8(price_raw)
    except ValueError as exc:
        raise ConfigError(f"STAKEGENESIS_{prefix}_PRICE_USD: {exc}") from exc

    return Settings(
        chain=chain,
        network=get_network(env),
        vault_address=vault,
        source_url=source_url,
        source_network=source_network,
        min_amount=_int(env, f"{prefix}_MIN_AMOUNT", defaults["min_amount"], 1),
        price_e8=price_e8,
        destination_tag=destination_tag,
        min_confirmations=_int(env, "MIN_CONFIRMATIONS", "6", 1),
        max_validators=_int(env, "MAX_VALIDATORS", "100", 1),
        chain_id=_get(env, "CHAIN_ID", "imua-1") or "imua-1",
        client_chain_rpc=_get(env, "CLIENT_CHAIN_RPC", "http://localhost:8545"),
        bootstrap_contract=_get(env, "BOOTSTRAP_CONTRACT"),
        validators_file=_get(env, "VALIDATORS_FILE"),
        output=_get(env, "OUTPUT") or os.path.join("genesis", f"bootstrap_{chain}.json"),
        http_timeout=_int(env, "HTTP_TIMEOUT", "10", 1),
        http_retries=_int(env, "HTTP_RETRIES", "3", 1),
    )
