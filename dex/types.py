"""
Core data types for multi-network DEX arbitrage scanning.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from chain_arbitrage.exceptions import ExecutionError

from .adapters.v2 import orient_reserves


@dataclass(frozen=True)
class PoolTarget:
    """
    A liquidity pool queried on every tick.

    Attributes:
        address: Checksummed pair contract address
        label: Optional human-readable name for logs
    """

    address: str
    label: str = ""

    def __str__(self) -> str:
        return self.label or self.address


@dataclass(frozen=True)
class ReserveSnapshot:
    """
    Reserve state of one pool as returned by the batched read.

    Reserves are plain Python ints (up to 112 bits on-chain), so products of
    two reserves never overflow.

    Attributes:
        pool: Pair contract address
        success: True only when the call succeeded and the payload decoded
        reserve0: Reserve of token0 (raw units)
        reserve1: Reserve of token1 (raw units)
        timestamp: blockTimestampLast reported by the pair
    """

    pool: str
    success: bool
    reserve0: int = 0
    reserve1: int = 0
    timestamp: int = 0

    @classmethod
    def dead(cls, pool: str) -> "ReserveSnapshot":
        return cls(pool=pool, success=False)


@dataclass(frozen=True)
class FeeSnapshot:
    """
    Fee-market data fetched alongside the reserves (all in wei).

    Attributes:
        gas_price: Node gas price suggestion
        max_priority_fee: Node priority fee suggestion
        base_fee: Base fee of the latest block (None on legacy chains)
    """

    gas_price: int
    max_priority_fee: int
    base_fee: Optional[int] = None


@dataclass(frozen=True)
class Hop:
    """One swap of a cyclic path: which pool and which way."""

    pool: str
    zero_for_one: bool


@dataclass(frozen=True)
class PathConfig:
    """
    Cyclic path definition loaded from config.

    Attributes:
        name: Human-readable name
        router: Router address handed to the executor contract
        token_in: Token the cycle starts and ends in
        token_out: Intermediate token passed to the executor
        hops: Ordered swaps; the output of hop N feeds hop N+1
    """

    name: str
    router: str
    token_in: str
    token_out: str
    hops: Tuple[Hop, ...]

    @property
    def pools(self) -> List[str]:
        return [hop.pool for hop in self.hops]


@dataclass
class ArbitragePath:
    """
    A PathConfig bound to the snapshots of the current tick.

    Attributes:
        config: Static path definition
        legs: (snapshot, zero_for_one) per hop
    """

    config: PathConfig
    legs: List[Tuple[ReserveSnapshot, bool]]

    @classmethod
    def bind(
        cls, config: PathConfig, snapshots: Dict[str, ReserveSnapshot]
    ) -> Optional["ArbitragePath"]:
        """Bind a path to this tick's snapshots, or None if any hop is dead."""
        legs = []
        for hop in config.hops:
            snapshot = snapshots.get(hop.pool)
            if snapshot is None or not snapshot.success:
                return None
            legs.append((snapshot, hop.zero_for_one))
        return cls(config=config, legs=legs)

    @property
    def name(self) -> str:
        return self.config.name

    def reserve_pairs(self) -> List[Tuple[int, int]]:
        """(reserve_in, reserve_out) per hop, oriented by trade direction."""
        return [
            orient_reserves(snapshot.reserve0, snapshot.reserve1, zero_for_one)
            for snapshot, zero_for_one in self.legs
        ]


@dataclass
class ScanResult:
    """
    Outcome of one network's round trip for one tick.

    Attributes:
        network: Network name
        snapshots: One ReserveSnapshot per queried pool, in query order
        balance: Wallet balance in wei (None when no wallet is configured)
        fees: Fee-market snapshot
        success: Whether the round trip as a whole succeeded
        error: Error message when it did not
        duration_sec: Wall time of the round trip
    """

    network: str
    snapshots: List[ReserveSnapshot] = field(default_factory=list)
    balance: Optional[int] = None
    fees: Optional[FeeSnapshot] = None
    success: bool = True
    error: Optional[str] = None
    duration_sec: float = 0.0

    @property
    def alive_count(self) -> int:
        return sum(1 for s in self.snapshots if s.success)

    def by_pool(self) -> Dict[str, ReserveSnapshot]:
        return {s.pool: s for s in self.snapshots}


class StrikeState(Enum):
    """
    Progress of one strike attempt.

    Values:
        SIZED: Amount decided, nothing sent yet
        SIMULATING: Read-only dry run in flight
        SIMULATION_FAILED: Dry run reverted, capital protected (terminal)
        SUBMITTING: Signed transaction being sent
        SUBMITTED: Transaction accepted by the node (terminal)
        SUBMIT_FAILED: Node rejected or lost the transaction (terminal)
    """

    SIZED = "sized"
    SIMULATING = "simulating"
    SIMULATION_FAILED = "simulation_failed"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"


STRIKE_TRANSITIONS = {
    StrikeState.SIZED: {StrikeState.SIMULATING},
    StrikeState.SIMULATING: {StrikeState.SIMULATION_FAILED, StrikeState.SUBMITTING},
    StrikeState.SUBMITTING: {StrikeState.SUBMITTED, StrikeState.SUBMIT_FAILED},
    StrikeState.SIMULATION_FAILED: set(),
    StrikeState.SUBMITTED: set(),
    StrikeState.SUBMIT_FAILED: set(),
}


@dataclass
class StrikeAttempt:
    """
    Ephemeral record of one simulate-then-send attempt.

    Attributes:
        network: Network name
        path: Path name
        amount: Input amount in wei
        expected_profit: Profit computed from reserves, in wei
        state: Current StrikeState
        tx_hash: Transaction hash once submitted
        error: Failure reason for terminal failure states
        history: (state, unix time) for each state entered
    """

    network: str
    path: str
    amount: int
    expected_profit: int
    state: StrikeState = StrikeState.SIZED
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    history: List[Tuple[StrikeState, float]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, time.time()))

    def advance(self, new_state: StrikeState, error: Optional[str] = None) -> None:
        """Move to ``new_state``; raises ExecutionError on an illegal transition."""
        if new_state not in STRIKE_TRANSITIONS[self.state]:
            raise ExecutionError(
                f"Illegal strike transition {self.state.value} -> {new_state.value}",
                network=self.network,
                state=self.state.value,
            )
        self.state = new_state
        if error is not None:
            self.error = error
        self.history.append((new_state, time.time()))

    @property
    def is_terminal(self) -> bool:
        return not STRIKE_TRANSITIONS[self.state]

    @property
    def protected(self) -> bool:
        """True when the dry run stopped the attempt before any funds moved."""
        return self.state is StrikeState.SIMULATION_FAILED
