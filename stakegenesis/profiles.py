import os
from typing import Mapping, Optional

from .errors import ConfigError


_NETWORKS = {"mainnet", "testnet", "regtest"}

_DEFAULTS = {
    "testnet": {
        "STAKEGENESIS_BTC_NETWORK": "testnet",
        "STAKEGENESIS_MIN_CONFIRMATIONS": "3",
    },
    "regtest": {
        "STAKEGENESIS_BTC_NETWORK": "regtest",
        "STAKEGENESIS_MIN_CONFIRMATIONS": "1",
        "STAKEGENESIS_HTTP_RETRIES": "1",
    },
}

# mainnet prices have no default
_REQUIREMENTS = {
    "mainnet": {
        "btc": ["STAKEGENESIS_BTC_PRICE_USD"],
        "xrp": ["STAKEGENESIS_XRP_PRICE_USD"],
    },
}


def get_network(env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    network = env.get("STAKEGENESIS_NETWORK", "mainnet").strip().lower()
    if network not in _NETWORKS:
        return "mainnet"
    return network


def apply_network_defaults() -> str:
    network = get_network()
    defaults = _DEFAULTS.get(network, {})
    for key, value in defaults.items():
        os.environ.setdefault(key, str(value))
    return network


def enforce_network_requirements(chain: str, env: Optional[Mapping[str, str]] = None) -> None:
    env = os.environ if env is None else env
    network = get_network(env)
    required = _REQUIREMENTS.get(network, {}).get(chain, [])
    if not required:
        return
    missing = [key for key in required if not env.get(key)]
    if missing:
        raise ConfigError(
            f"Network '{network}' requires env vars: {', '.join(missing)}"
        )
