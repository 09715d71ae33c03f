"""
Exception hierarchy for the multi-network arbitrage scanner.

Provides specific exception types for the fault classes the scanner
distinguishes: configuration faults (fatal at startup), transport and
rate-limit faults (trigger endpoint rotation or backoff), data faults
(excluded from the tick) and execution faults (contained in one strike).
"""

from typing import Any, Dict, Optional


class ChainArbitrageError(Exception):
    """Base exception for all scanner related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(ChainArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class NetworkError(ChainArbitrageError):
    """Raised when an RPC endpoint times out, refuses or drops a request."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.network = network
        self.endpoint = endpoint


class RateLimitError(NetworkError):
    """Raised when an endpoint explicitly signals too many requests."""

    pass


class DataError(ChainArbitrageError):
    """Raised when on-chain data cannot be decoded or is inconsistent."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source


class ExecutionError(ChainArbitrageError):
    """Raised when a strike cannot be prepared or moves to an illegal state."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.network = network
        self.state = state


class SimulationRevertedError(ExecutionError):
    """Raised when the dry run of a state-changing call would revert."""

    pass
