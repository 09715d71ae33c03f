"""
Multi-network cyclic arbitrage scanner.

Polls several EVM networks for constant-product pool reserves through
batched multicall reads, evaluates configured cyclic paths, and gates every
state-changing transaction behind a dry-run simulation. Endpoint failover,
structured errors, metrics and the liveness endpoint live in this package;
the on-chain machinery lives in the ``dex`` package.
"""

from chain_arbitrage.exceptions import (
    ChainArbitrageError,
    ConfigurationError,
    DataError,
    ExecutionError,
    NetworkError,
    RateLimitError,
    SimulationRevertedError,
)
from chain_arbitrage.version import __version__

PROJECT_NAME = "chain-arbitrage-scanner"
VERSION = __version__

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "ChainArbitrageError",
    "ConfigurationError",
    "NetworkError",
    "RateLimitError",
    "DataError",
    "ExecutionError",
    "SimulationRevertedError",
]
