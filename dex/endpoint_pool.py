"""
Per-network RPC endpoint pool with serialized rotation.

Each network owns an ordered list of endpoints, a cursor into that list, a
rotation lock and at most one live connection. Rotation advances the cursor,
builds a fresh client (and signer) against the next endpoint, verifies the
chain id and swaps it in. Overlapping rotation requests for the same network
collapse into the one already in flight.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    Web3Exception,
    Web3RPCError,
)

from chain_arbitrage.exceptions import (
    ConfigurationError,
    DataError,
    NetworkError,
    RateLimitError,
)
from chain_arbitrage.utils import get_logger, short_url

from .config import NetworkConfig

logger = get_logger(__name__)

# Substrings of node/HTTP error messages that mean "slow down" rather than "broken"
RATE_LIMIT_MARKERS = ("429", "too many requests", "-32005", "limit exceeded")

# JSON-RPC / HTTP codes with the same meaning
RATE_LIMIT_CODES = (429, -32005)

# Contract-level failures; matched by type before any message inspection
LOGIC_ERRORS = (ContractLogicError, BadFunctionCallOutput, DataError)

# Failures raised by the node or the HTTP layer, the only ones that can carry a throttling signal
RPC_ERRORS = (Web3RPCError, aiohttp.ClientError)

TRANSPORT_ERRORS = (
    NetworkError,
    asyncio.TimeoutError,
    aiohttp.ClientError,
    ConnectionError,
    OSError,
)

Connector = Callable[[NetworkConfig, str, float], Awaitable[Any]]


def _is_throttled(exc: BaseException) -> bool:
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status in RATE_LIMIT_CODES
    if isinstance(exc, Web3RPCError) and isinstance(exc.rpc_response, dict):
        error = exc.rpc_response.get("error")
        if isinstance(error, dict) and error.get("code") in RATE_LIMIT_CODES:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def classify_error(exc: BaseException) -> str:
    """
    Sort a failure into the fault class that decides the recovery action.

    Contract reverts, undecodable call output and data faults are always
    "logic", whatever their message contains. Throttling markers are only
    looked for in errors raised by the node or the HTTP client.

    Returns:
        "rate_limit" for explicit throttling signals, "transport" for
        timeouts and connection-level failures, "logic" for everything else
    """
    if isinstance(exc, RateLimitError):
        return "rate_limit"
    if isinstance(exc, LOGIC_ERRORS):
        return "logic"
    if isinstance(exc, RPC_ERRORS) and _is_throttled(exc):
        return "rate_limit"
    if isinstance(exc, TRANSPORT_ERRORS):
        return "transport"
    return "logic"


def as_transport_error(exc: BaseException, network: str, url: str) -> NetworkError:
    """Wrap a raw client failure in the scanner's transport exception types."""
    if isinstance(exc, NetworkError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return NetworkError("Request timed out", network=network, endpoint=url)
    if classify_error(exc) == "rate_limit":
        return RateLimitError(str(exc), network=network, endpoint=url)
    return NetworkError(f"{type(exc).__name__}: {exc}", network=network, endpoint=url)


async def web3_connector(network: NetworkConfig, url: str, timeout: float) -> AsyncWeb3:
    """
    Build an AsyncWeb3 client for ``url`` and verify it serves ``network``.

    Raises:
        NetworkError: If the chain id probe times out or does not match
    """
    w3 = AsyncWeb3(
        AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": timeout})
    )
    try:
        chain_id = await asyncio.wait_for(w3.eth.chain_id, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise NetworkError(
            f"Chain id probe timed out after {timeout}s",
            network=network.name,
            endpoint=url,
        ) from e

    if chain_id != network.chain_id:
        raise NetworkError(
            f"Chain id mismatch: expected {network.chain_id}, got {chain_id}",
            network=network.name,
            endpoint=url,
        )
    return w3


@dataclass(frozen=True)
class Connection:
    """
    One live client for one network, replaced wholesale on rotation.

    Attributes:
        network: Network name
        url: Endpoint URL the client talks to
        index: Cursor position of ``url`` in the endpoint list
        generation: Increments on every successful connect
        w3: AsyncWeb3 client
        account: Signer bound to this generation (None in scan-only mode)
    """

    network: str
    url: str
    index: int
    generation: int
    w3: Any = field(repr=False)
    account: Optional[LocalAccount] = field(default=None, repr=False)

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None


@dataclass
class _NetworkState:
    config: NetworkConfig
    cursor: int = 0
    generation: int = 0
    connection: Optional[Connection] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    settle_until: float = 0.0
    rate_limit_strikes: int = 0


class EndpointPool:
    """
    Owns every network's endpoint cursor, rotation lock and live connection.

    The pool never raises out of ``start`` or ``rotate``: a failed connect is
    logged, leaves the network without a connection and is retried by the
    next rotation.
    """

    def __init__(
        self,
        networks: Mapping[str, NetworkConfig],
        private_key: Optional[str] = None,
        connector: Optional[Connector] = None,
        connect_timeout: float = 5.0,
        settle_delay: float = 2.0,
        rate_limit_strikes: int = 3,
        metrics=None,
    ):
        if not networks:
            raise ConfigurationError("Endpoint pool needs at least one network")
        for cfg in networks.values():
            if not cfg.endpoints:
                raise ConfigurationError(f"[{cfg.name}] No RPC endpoints configured")

        if private_key:
            try:
                Account.from_key(private_key)
            except ValueError as e:
                raise ConfigurationError(f"Invalid signing key: {e}") from e

        self._private_key = private_key
        self._connector = connector or web3_connector
        self.connect_timeout = connect_timeout
        self.settle_delay = settle_delay
        self.rate_limit_threshold = rate_limit_strikes
        self.metrics = metrics
        self._states: Dict[str, _NetworkState] = {
            name: _NetworkState(config=cfg) for name, cfg in networks.items()
        }

    @property
    def networks(self):
        return list(self._states)

    def _state(self, network: str) -> _NetworkState:
        try:
            return self._states[network]
        except KeyError:
            raise ConfigurationError(f"Unknown network: {network}") from None

    def cursor(self, network: str) -> int:
        return self._state(network).cursor

    def current_connection(self, network: str) -> Optional[Connection]:
        """Live connection for ``network``, or None until a connect succeeds."""
        return self._state(network).connection

    def is_rotating(self, network: str) -> bool:
        return self._state(network).lock.locked()

    def is_settling(self, network: str) -> bool:
        return time.monotonic() < self._state(network).settle_until

    def is_available(self, network: str) -> bool:
        """False while a rotation is in flight or the new endpoint is settling."""
        return not self.is_rotating(network) and not self.is_settling(network)

    async def start(self) -> None:
        """Connect every network to its preferred endpoint."""
        await asyncio.gather(*(self._initial_connect(name) for name in self._states))

    async def _initial_connect(self, network: str) -> None:
        state = self._states[network]
        async with state.lock:
            await self._connect(state, settle=False)

    async def rotate(self, network: str) -> bool:
        """
        Move ``network`` to its next endpoint.

        Returns:
            True if a new connection was established; False if another
            rotation was already in flight or the connect failed
        """
        state = self._state(network)
        if state.lock.locked():
            logger.debug(f"[{network}] Rotation already in progress, skipping")
            if self.metrics:
                self.metrics.record_rotation(network, "skipped")
            return False

        async with state.lock:
            state.cursor = (state.cursor + 1) % len(state.config.endpoints)
            logger.warning(
                f"[{network}] 🔄 Rotating to endpoint "
                f"[{state.cursor + 1}/{len(state.config.endpoints)}]"
            )
            return await self._connect(state)

    async def _connect(self, state: _NetworkState, settle: bool = True) -> bool:
        """Build a connection at the current cursor; caller holds the lock."""
        network = state.config.name
        url = state.config.endpoints[state.cursor]
        stale = state.connection
        # Never keep using the old client, even if the new one fails
        state.connection = None

        try:
            w3 = await self._connector(state.config, url, self.connect_timeout)
            account = Account.from_key(self._private_key) if self._private_key else None
        except (Web3Exception, ValueError, *TRANSPORT_ERRORS) as e:
            logger.error(f"[{network}] ❌ Connect to {short_url(url)} failed: {e}")
            if self.metrics:
                self.metrics.record_rotation(network, "failed", state.cursor)
            await self._close(stale)
            return False

        state.generation += 1
        state.connection = Connection(
            network=network,
            url=url,
            index=state.cursor,
            generation=state.generation,
            w3=w3,
            account=account,
        )
        if settle:
            state.settle_until = time.monotonic() + self.settle_delay
        state.rate_limit_strikes = 0

        logger.info(
            f"[{network}] 🟢 Connected to {short_url(url)} "
            f"[{state.cursor + 1}/{len(state.config.endpoints)}] "
            f"(generation {state.generation})"
        )
        if self.metrics:
            self.metrics.record_rotation(network, "success", state.cursor)
        await self._close(stale)
        return True

    async def _close(self, connection: Optional[Connection]) -> None:
        """Release the HTTP session of an abandoned connection."""
        if connection is None:
            return
        provider = getattr(connection.w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is None:
            return
        try:
            result = disconnect()
            if inspect.isawaitable(result):
                await result
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            logger.debug(f"[{connection.network}] Closing stale session failed: {e}")

    def note_rate_limit(self, network: str) -> bool:
        """
        Count one rate-limit signal for ``network``.

        Returns:
            True when the consecutive count reached the threshold; the
            counter is reset and the caller should rotate
        """
        state = self._state(network)
        state.rate_limit_strikes += 1
        if self.metrics:
            self.metrics.record_rate_limit(network)
        if state.rate_limit_strikes >= self.rate_limit_threshold:
            state.rate_limit_strikes = 0
            return True
        return False

    def rate_limit_strikes(self, network: str) -> int:
        return self._state(network).rate_limit_strikes

    def clear_rate_limit(self, network: str) -> None:
        self._state(network).rate_limit_strikes = 0

    async def close(self) -> None:
        """Drop every connection."""
        for state in self._states.values():
            stale, state.connection = state.connection, None
            await self._close(stale)
