"""
Configuration loading and validation for the multi-network scanner.

The YAML file is validated against the pydantic schema in
``chain_arbitrage.config_schema`` and then normalized into immutable
dataclasses: endpoint lists are resolved from the environment and
deduplicated, pool addresses are checksummed (invalid ones dropped with a
warning) and all amounts are converted to wei once.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pydantic
import yaml
from web3 import Web3

from chain_arbitrage.config_schema import (
    NetworkSchema,
    ScannerSchema,
    validate_scanner_config,
)
from chain_arbitrage.exceptions import ConfigurationError
from chain_arbitrage.utils import ether_to_wei, get_logger, gwei_to_wei

from .types import Hop, PathConfig, PoolTarget

logger = get_logger(__name__)


class ConfigError(ConfigurationError):
    """Raised when config is invalid or missing required fields."""

    pass


@dataclass(frozen=True)
class NetworkConfig:
    """
    Parsed and validated configuration for one network.

    Attributes:
        name: Network identifier used in logs and metrics (e.g. "BASE")
        chain_id: Numeric chain id, verified on every connect
        endpoints: Candidate RPC URLs, preferred first, deduplicated
        multicall: Checksummed Multicall3 aggregator address
        moat_wei: Balance never included in trade sizing
        priority_fee_wei: Priority fee hint overriding the node suggestion
        executor: Checksummed trade-executor contract address
        pools: Pool targets queried every tick
        paths: Cyclic paths evaluated every tick
    """

    name: str
    chain_id: int
    endpoints: Tuple[str, ...]
    multicall: str
    moat_wei: int = 0
    priority_fee_wei: Optional[int] = None
    executor: Optional[str] = None
    pools: Tuple[PoolTarget, ...] = ()
    paths: Tuple[PathConfig, ...] = ()


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Strike guard settings.

    Attributes:
        enabled: If False, profitable paths are only logged
        private_key: Signing credential (None in scan-only mode)
        gas_budget: Gas units assumed when sizing the trade
        gas_limit_ceiling: Fixed gas limit on submitted transactions
        gas_price_multiplier: Safety multiplier on the node gas price
        min_profit_wei: Profit a path must exceed to be struck
        simulation_timeout_sec: Timeout of the dry-run call
        submit_timeout_sec: Timeout of nonce fetch + submission
    """

    enabled: bool = False
    private_key: Optional[str] = field(default=None, repr=False)
    gas_budget: int = 350_000
    gas_limit_ceiling: int = 500_000
    gas_price_multiplier: Decimal = Decimal("1.2")
    min_profit_wei: int = 0
    simulation_timeout_sec: float = 5.0
    submit_timeout_sec: float = 10.0


@dataclass(frozen=True)
class ObservabilityConfig:
    """Metrics and liveness server settings."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    stale_after_sec: float = 120.0


@dataclass(frozen=True)
class ScannerConfig:
    """
    Immutable runtime configuration object.

    Attributes:
        networks: Network configs keyed by name, in file order
        concurrent: Scan networks concurrently instead of sequentially
        once: Run a single pass and exit
        pass_interval_sec: Sleep after each full pass
        network_delay_sec: Sleep between networks in sequential mode
        batch_timeout_sec: Timeout of the combined per-tick round trip
        connect_timeout_sec: Timeout of the chain-id probe on connect
        settle_delay_sec: Scans skipped for this long after a rotation
        rate_limit_backoff_sec: Sleep after an explicit rate-limit signal
        rate_limit_strikes: Consecutive rate limits that force a rotation
        probe_amount_wei: Amount evaluated when no wallet balance is known
        execution: Strike guard settings
        observability: Metrics server settings
    """

    networks: Dict[str, NetworkConfig]
    concurrent: bool = False
    once: bool = False
    pass_interval_sec: float = 5.0
    network_delay_sec: float = 1.0
    batch_timeout_sec: float = 4.0
    connect_timeout_sec: float = 5.0
    settle_delay_sec: float = 2.0
    rate_limit_backoff_sec: float = 2.0
    rate_limit_strikes: int = 3
    probe_amount_wei: int = 10**17
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def dedupe_endpoints(urls: Iterable[Optional[str]]) -> Tuple[str, ...]:
    """Strip, drop empty entries and collapse duplicates keeping first occurrence."""
    seen = []
    for url in urls:
        if not url or not isinstance(url, str):
            continue
        url = url.strip()
        if url and url not in seen:
            seen.append(url)
    return tuple(seen)


def validate_pool_targets(
    addresses: Iterable[str], network: str = ""
) -> Tuple[PoolTarget, ...]:
    """
    Checksum-normalize pool addresses.

    Malformed entries are dropped with a warning instead of failing the
    load; duplicates (in any letter case) are collapsed.

    Args:
        addresses: Raw pool addresses from config
        network: Network name for the log line

    Returns:
        Tuple of PoolTarget in config order
    """
    targets: List[PoolTarget] = []
    seen = set()
    for raw in addresses:
        if not isinstance(raw, str) or not Web3.is_address(raw):
            logger.warning(f"[{network}] Dropping invalid pool address: {raw!r}")
            continue
        checksummed = Web3.to_checksum_address(raw)
        if checksummed in seen:
            continue
        seen.add(checksummed)
        targets.append(PoolTarget(address=checksummed))
    return tuple(targets)


def _checksum(value: str, what: str, network: str) -> str:
    """Checksum a required address or raise ConfigError."""
    if not Web3.is_address(value):
        raise ConfigError(f"[{network}] Invalid {what} address: {value!r}")
    return Web3.to_checksum_address(value)


def _parse_network(
    name: str, schema: NetworkSchema, env: Mapping[str, str]
) -> NetworkConfig:
    """Build a NetworkConfig from its validated schema."""
    preferred = env.get(schema.rpc_env) if schema.rpc_env else None
    endpoints = dedupe_endpoints([preferred, *schema.rpcs])
    if not endpoints:
        raise ConfigError(
            f"[{name}] No RPC endpoints configured"
            + (f" (set {schema.rpc_env} or rpcs)" if schema.rpc_env else "")
        )

    paths = []
    path_pools = []
    for path in schema.paths:
        hops = tuple(
            Hop(pool=_checksum(h.pool, "hop pool", name), zero_for_one=h.zero_for_one)
            for h in path.hops
        )
        path_pools.extend(h.pool for h in hops)
        paths.append(
            PathConfig(
                name=path.name,
                router=_checksum(path.router, "router", name),
                token_in=_checksum(path.token_in, "token_in", name),
                token_out=_checksum(path.token_out, "token_out", name),
                hops=hops,
            )
        )

    # Hop pools are always queried even when not listed under pools
    pools = validate_pool_targets([*schema.pools, *path_pools], network=name)

    return NetworkConfig(
        name=name,
        chain_id=schema.chain_id,
        endpoints=endpoints,
        multicall=_checksum(schema.multicall, "multicall", name),
        moat_wei=ether_to_wei(schema.moat_eth),
        priority_fee_wei=(
            gwei_to_wei(schema.priority_fee_gwei)
            if schema.priority_fee_gwei is not None
            else None
        ),
        executor=(
            _checksum(schema.executor, "executor", name) if schema.executor else None
        ),
        pools=pools,
        paths=tuple(paths),
    )


def build_config(
    config_dict: Dict[str, Any], env: Optional[Mapping[str, str]] = None
) -> ScannerConfig:
    """
    Validate a config dictionary and build the runtime ScannerConfig.

    Args:
        config_dict: Loaded YAML config
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated ScannerConfig instance

    Raises:
        ConfigError: If the config is invalid, a network has no endpoints,
            or execution is enabled without a credential or executor
    """
    env = os.environ if env is None else env

    try:
        schema: ScannerSchema = validate_scanner_config(config_dict)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid scanner config: {e}") from e

    networks = {
        name: _parse_network(name, net_schema, env)
        for name, net_schema in schema.networks.items()
    }

    exec_schema = schema.execution
    private_key = env.get(exec_schema.private_key_env) or None
    if exec_schema.enabled:
        if not private_key:
            raise ConfigError(
                f"Execution enabled but {exec_schema.private_key_env} is not set"
            )
        missing = [n.name for n in networks.values() if n.paths and not n.executor]
        if missing:
            raise ConfigError(
                f"Execution enabled but no executor address for: {', '.join(missing)}"
            )

    execution = ExecutionConfig(
        enabled=exec_schema.enabled,
        private_key=private_key,
        gas_budget=exec_schema.gas_budget,
        gas_limit_ceiling=exec_schema.gas_limit_ceiling,
        gas_price_multiplier=Decimal(str(exec_schema.gas_price_multiplier)),
        min_profit_wei=ether_to_wei(exec_schema.min_profit_eth),
        simulation_timeout_sec=exec_schema.simulation_timeout_sec,
        submit_timeout_sec=exec_schema.submit_timeout_sec,
    )

    obs = schema.observability
    return ScannerConfig(
        networks=networks,
        concurrent=schema.concurrent,
        once=schema.once,
        pass_interval_sec=schema.pass_interval_sec,
        network_delay_sec=schema.network_delay_sec,
        batch_timeout_sec=schema.batch_timeout_sec,
        connect_timeout_sec=schema.connect_timeout_sec,
        settle_delay_sec=schema.settle_delay_sec,
        rate_limit_backoff_sec=schema.rate_limit_backoff_sec,
        rate_limit_strikes=schema.rate_limit_strikes,
        probe_amount_wei=ether_to_wei(schema.probe_amount_eth),
        execution=execution,
        observability=ObservabilityConfig(
            enabled=obs.enabled,
            host=obs.host,
            port=obs.port,
            stale_after_sec=obs.stale_after_sec,
        ),
    )


def merge_overrides(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge CLI overrides into a loaded config dictionary."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: str,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ScannerConfig:
    """
    Load and validate config from YAML file.

    Args:
        config_path: Path to config YAML file
        env: Environment mapping (defaults to os.environ)
        overrides: Nested values applied on top of the file (CLI switches)

    Returns:
        Validated ScannerConfig instance

    Raises:
        ConfigError: If config invalid or file not found
    """
    if not os.path.exists(config_path):
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigError("Config file must contain a YAML dictionary")

    if overrides:
        config_dict = merge_overrides(config_dict, overrides)

    return build_config(config_dict, env=env)
