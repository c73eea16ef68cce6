from .profiles import apply_network_defaults

apply_network_defaults()

__all__ = [
    "crypto",
    "tx",
    "protocol",
    "binding",
    "registry",
    "reader",
    "validator",
    "aggregate",
    "genesis",
    "pipeline",
    "config",
    "cli",
]
