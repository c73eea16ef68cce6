import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .aggregate import StakeAggregator
from .binding import AddressBindingRegistry
from .config import Settings
from .errors import CollaboratorFailure, ConfigError, OutputWriteFailure, Rejection
from .genesis import AssetProfile, GenesisBuilder, fragment_digest
from .reader import EsploraReader, HttpJsonClient, XrplReader
from .registry import BootstrapRegistryClient, CachedValidatorRegistry, StaticValidatorRegistry
from .tx import ChainKind
from .utils import hex_prefixed
from .validator import BootstrapStake, ChainContext, TransactionValidator

LOGGER = logging.getLogger("stakegenesis.pipeline")


@dataclass
class RunReport:
    chain: str
    height: int
    scanned: int
    lz_chain_id: int
    stakes: List[BootstrapStake] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    digest: str = ""

    @property
    def total_staked(self) -> int:
        return sum(s.amount for s in self.stakes)

    def bootstrap_entries(self) -> List[Dict[str, str]]:
        """Entries for the gateway's historical-data import, in chain order."""
        return [
            {
                "client_tx_id": "0x" + s.txid.lower(),
                "client_address": hex_prefixed(s.source_address.encode("utf-8")),
                "imuachain_address": s.destination,
            }
            for s in self.stakes
        ]

    def rejection_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.rejections:
            counts[r.reason.value] = counts.get(r.reason.value, 0) + 1
        return dict(sorted(counts.items()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain,
            "client_chain_id": self.lz_chain_id,
            "height": self.height,
            "scanned": self.scanned,
            "total_staked": str(self.total_staked),
            "digest": self.digest,
            "stakes": [s.to_dict() for s in self.stakes],
            "rejections": [r.to_dict() for r in self.rejections],
            "rejection_counts": self.rejection_counts(),
            "bootstrap_entries": self.bootstrap_entries(),
        }


def run(
    reader: Any,
    registry: Any,
    context: ChainContext,
    profile: AssetProfile,
    price_e8: int,
    max_validators: int,
    chain_id: str = "imua-1",
    genesis_time: Optional[str] = None,
) -> Tuple[Dict[str, Any], RunReport]:
    """Scan the vault history once and build the fragment in memory.

    Collaborator failures propagate; nothing is written here.
    """
    if reader.kind != context.kind or profile.kind != context.kind:
        raise ConfigError(f"reader {reader.kind} and profile {profile.kind} disagree with context {context.kind}")
    height = reader.current_height()
    transactions = reader.list_confirmed_transactions()
    LOGGER.info("scanning %d transactions at height %d", len(transactions), height)

    cache = registry if isinstance(registry, CachedValidatorRegistry) else CachedValidatorRegistry(registry)
    validator = TransactionValidator(context, height, cache, AddressBindingRegistry())
    stakes, rejections = validator.validate_all(transactions)

    aggregator = StakeAggregator(profile.asset_id, profile.lz_chain_id).add_all(stakes)
    builder = GenesisBuilder(
        profile,
        price_e8=price_e8,
        max_validators=max_validators,
        chain_id=chain_id,
        consensus_keys=cache.consensus_keys(),
    )
    fragment = builder.build(aggregator, genesis_time=genesis_time)
    report = RunReport(
        chain=profile.token_symbol.lower(),
        height=height,
        scanned=len(transactions),
        lz_chain_id=profile.lz_chain_id,
        stakes=stakes,
        rejections=rejections,
        digest=fragment_digest(fragment),
    )
    LOGGER.info(
        "accepted %d stakes (%d total), rejected %d, %d registry lookups",
        len(stakes),
        report.total_staked,
        len(rejections),
        cache.lookups,
    )
    return fragment, report


def write_json_atomic(obj: Any, path: str) -> None:
    """Write ``obj`` as JSON to ``path`` or leave ``path`` untouched."""
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".stakegenesis-", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except (OSError, TypeError, ValueError) as exc:
        raise OutputWriteFailure(f"cannot write {path}: {exc}") from exc
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)


def write_fragment(fragment: Dict[str, Any], path: str) -> str:
    write_json_atomic(fragment, path)
    digest = fragment_digest(fragment)
    LOGGER.info("wrote %s (digest %s)", path, digest)
    return digest


def build_reader(settings: Settings, http: Optional[HttpJsonClient] = None) -> Any:
    http = http or HttpJsonClient(timeout=settings.http_timeout, retries=settings.http_retries)
    if settings.profile.kind is ChainKind.UTXO:
        return EsploraReader(settings.source_url, settings.vault_address, http)
    return XrplReader(settings.source_url, settings.vault_address, http)


def build_registry(settings: Settings) -> CachedValidatorRegistry:
    if settings.validators_file:
        return CachedValidatorRegistry(StaticValidatorRegistry.from_file(settings.validators_file))
    if not settings.bootstrap_contract:
        raise ConfigError("set STAKEGENESIS_BOOTSTRAP_CONTRACT or STAKEGENESIS_VALIDATORS_FILE")
    try:
        client = BootstrapRegistryClient(
            settings.client_chain_rpc, settings.bootstrap_contract, timeout=settings.http_timeout
        )
    except CollaboratorFailure as exc:
        raise ConfigError(str(exc)) from exc
    return CachedValidatorRegistry(client)


def generate(
    settings: Settings,
    reader: Any = None,
    registry: Any = None,
    output: Optional[str] = None,
    genesis_time: Optional[str] = None,
) -> RunReport:
    reader = reader if reader is not None else build_reader(settings)
    registry = registry if registry is not None else build_registry(settings)
    fragment, report = run(
        reader,
        registry,
        settings.context(),
        settings.profile,
        price_e8=settings.price_e8,
        max_validators=settings.max_validators,
        chain_id=settings.chain_id,
        genesis_time=genesis_time,
    )
    write_fragment(fragment, output or settings.output)
    return report
