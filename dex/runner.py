"""
Multi-network scan scheduler.

Drives the per-network cycle: fetch balance, fees and reserves in one
round trip, evaluate every configured cyclic path, and hand profitable ones
to the strike guard. Failures are contained per network and mapped to a
recovery action (rotate, back off, or just log).
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from chain_arbitrage.utils import format_duration, format_wei, get_logger, short_url

from .adapters.v2 import cyclic_profit
from .batch_query import BatchQueryEngine
from .config import NetworkConfig, ScannerConfig
from .endpoint_pool import Connection, EndpointPool, classify_error
from .executor import StrikeGuard
from .live_costs import decide_trade_size, estimate_execution_overhead, price_impact_bps
from .types import ArbitragePath, PathConfig, ScanResult, StrikeAttempt


# ANSI color codes for pretty output
class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"


logger = get_logger(__name__)


@dataclass
class PathEvaluation:
    """
    Result of evaluating one cyclic path on one tick.

    Attributes:
        path: Path name
        amount: Trade size evaluated (wei); <= 0 means the wallet could not afford it
        profit: cyclic_profit at that size (wei, signed)
        attempt: StrikeAttempt if the strike guard was invoked
    """

    path: str
    amount: int
    profit: int = 0
    attempt: Optional[StrikeAttempt] = None

    @property
    def struck(self) -> bool:
        return self.attempt is not None


@dataclass
class NetworkCycle:
    """
    Outcome of one network's cycle.

    ``outcome`` is one of: ok, skipped, no_connection, transport,
    rate_limit, logic.
    """

    network: str
    outcome: str
    result: Optional[ScanResult] = None
    evaluations: List[PathEvaluation] = field(default_factory=list)

    @classmethod
    def failed(cls, network: str, outcome: str, error: Exception) -> "NetworkCycle":
        return cls(
            network=network,
            outcome=outcome,
            result=ScanResult(network=network, success=False, error=str(error)),
        )

    @property
    def error(self) -> Optional[str]:
        return self.result.error if self.result else None

    @property
    def best_profit(self) -> Optional[int]:
        profits = [e.profit for e in self.evaluations if e.amount > 0]
        return max(profits) if profits else None


class ScanScheduler:
    """
    Runs scan passes over every configured network.

    The endpoint pool, batch engine, strike guard and metrics are all
    injected; the scheduler owns only the loop and the failure policy.
    """

    def __init__(
        self,
        config: ScannerConfig,
        pool: EndpointPool,
        engine: BatchQueryEngine,
        guard: Optional[StrikeGuard] = None,
        metrics=None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize scheduler.

        Args:
            config: Validated ScannerConfig
            pool: Endpoint pool holding the live connections
            engine: Batch query engine for the per-tick round trip
            guard: Strike guard (required when execution is enabled)
            metrics: Optional ScannerMetrics
            sleep: Coroutine used for backoff and inter-network delays
        """
        self.config = config
        self.pool = pool
        self.engine = engine
        self.guard = guard
        self.metrics = metrics
        self._sleep = sleep or asyncio.sleep

        self.pass_count = 0
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def execution_enabled(self) -> bool:
        return self.config.execution.enabled and self.guard is not None

    # === PER-NETWORK CYCLE ===

    async def scan_network(self, name: str) -> NetworkCycle:
        """
        Run one cycle for one network. Never raises for network-level faults.
        """
        network = self.config.networks[name]

        if not self.pool.is_available(name):
            logger.debug(f"[{name}] Endpoint rotating or settling, skipping cycle")
            if self.metrics:
                self.metrics.record_scan(name, "skipped")
            return NetworkCycle(network=name, outcome="skipped")

        connection = self.pool.current_connection(name)
        if connection is None:
            logger.warning(f"[{name}] No live connection, rotating")
            if self.metrics:
                self.metrics.record_scan(name, "no_connection")
            await self.pool.rotate(name)
            return NetworkCycle(network=name, outcome="no_connection")

        try:
            return await self._scan_connected(network, connection)
        except Exception as e:
            return await self._handle_failure(network, connection, e)

    async def _scan_connected(
        self, network: NetworkConfig, connection: Connection
    ) -> NetworkCycle:
        result = await self.engine.fetch_tick(
            connection, network, network.pools, wallet=connection.address
        )
        self.pool.clear_rate_limit(network.name)

        total = len(result.snapshots)
        alive = result.alive_count
        status = "MATCH" if alive == total else "PARTIAL"
        logger.info(
            f"[{network.name}] Sync Status: {alive}/{total} pools active "
            f"({alive}/{total} {status}) in {result.duration_sec * 1000:.0f}ms"
        )

        cycle = NetworkCycle(network=network.name, outcome="ok", result=result)
        snapshots = result.by_pool()
        for path in network.paths:
            evaluation = await self.evaluate_path(connection, network, path, snapshots, result)
            if evaluation is not None:
                cycle.evaluations.append(evaluation)

        if self.metrics:
            self.metrics.record_scan(network.name, "ok", result.duration_sec, alive)
            if cycle.best_profit is not None:
                self.metrics.record_best_profit(network.name, cycle.best_profit)
        return cycle

    def trade_size(self, network: NetworkConfig, result: ScanResult) -> int:
        """
        Amount to evaluate this tick.

        Without a wallet balance (scan-only mode) the configured probe
        amount is used; otherwise the balance minus moat and overhead.
        """
        if result.balance is None or result.fees is None:
            return self.config.probe_amount_wei

        execution = self.config.execution
        overhead = estimate_execution_overhead(
            result.fees,
            network.priority_fee_wei,
            execution.gas_budget,
            execution.gas_price_multiplier,
        )
        return decide_trade_size(result.balance, network.moat_wei, overhead)

    async def evaluate_path(
        self,
        connection: Connection,
        network: NetworkConfig,
        path: PathConfig,
        snapshots: Dict,
        result: ScanResult,
    ) -> Optional[PathEvaluation]:
        """Size, price and (maybe) strike one path. None if a hop pool is dead."""
        bound = ArbitragePath.bind(path, snapshots)
        if bound is None:
            logger.debug(f"[{network.name}] {path.name}: dead hop, not evaluated")
            return None

        amount = self.trade_size(network, result)
        if amount <= 0:
            logger.info(
                f"[{network.name}] {path.name}: balance "
                f"{format_wei(result.balance)} ETH below moat + overhead, no strike"
            )
            return PathEvaluation(path=path.name, amount=amount)

        pairs = bound.reserve_pairs()
        profit = cyclic_profit(amount, pairs)
        evaluation = PathEvaluation(path=path.name, amount=amount, profit=profit)

        logger.debug(
            f"[{network.name}] {path.name}: size {format_wei(amount)} ETH, "
            f"impact {price_impact_bps(amount, pairs[0][0]):.1f} bps, "
            f"profit {format_wei(profit)} ETH"
        )

        if profit <= self.config.execution.min_profit_wei:
            return evaluation

        if not self.execution_enabled:
            logger.info(
                f"[{network.name}] 💰 {path.name}: {format_wei(profit)} ETH "
                f"at {format_wei(amount)} ETH (scan-only, not striking)"
            )
            return evaluation

        logger.info(
            f"[{network.name}] 💰 {path.name}: {format_wei(profit)} ETH "
            f"at {format_wei(amount)} ETH, engaging strike guard"
        )
        evaluation.attempt = await self.guard.attempt_strike(
            connection, network, path, amount, profit, result.fees
        )
        return evaluation

    async def _handle_failure(
        self, network: NetworkConfig, connection: Connection, error: Exception
    ) -> NetworkCycle:
        """Map a contained failure to its recovery action."""
        name = network.name
        kind = classify_error(error)
        if self.metrics:
            self.metrics.record_scan(name, kind)
            self.metrics.record_system_error(name, kind)

        if kind == "rate_limit":
            if self.pool.note_rate_limit(name):
                logger.warning(
                    f"[{name}] 🔄 {self.pool.rate_limit_threshold} rate-limit strikes "
                    f"on {short_url(connection.url)}, switching endpoint"
                )
                await self.pool.rotate(name)
            else:
                backoff = self.config.rate_limit_backoff_sec
                logger.warning(
                    f"[{name}] ⏳ Rate limited (strike {self.pool.rate_limit_strikes(name)}/"
                    f"{self.pool.rate_limit_threshold}), cooling down {backoff}s"
                )
                await self._sleep(backoff)
        elif kind == "transport":
            logger.error(
                f"[{name}] Transport failure on {short_url(connection.url)}: {error}"
            )
            await self.pool.rotate(name)
        else:
            logger.error(f"[{name}] Cycle failed: {error}", exc_info=True)

        return NetworkCycle.failed(name, kind, error)

    # === PASSES AND MAIN LOOP ===

    async def run_pass(self) -> List[NetworkCycle]:
        """Scan every network once, sequentially or concurrently."""
        names = list(self.config.networks)
        start = time.time()

        if self.config.concurrent:
            results = await asyncio.gather(
                *(self.scan_network(name) for name in names), return_exceptions=True
            )
            cycles = []
            for name, outcome in zip(names, results):
                if isinstance(outcome, Exception):
                    logger.error(f"[{name}] Cycle crashed: {outcome}", exc_info=outcome)
                    if self.metrics:
                        self.metrics.record_system_error(name, "crash")
                    outcome = NetworkCycle.failed(name, "logic", outcome)
                cycles.append(outcome)
        else:
            cycles = []
            for i, name in enumerate(names):
                cycles.append(await self.scan_network(name))
                if i < len(names) - 1 and self.config.network_delay_sec > 0:
                    await self._sleep(self.config.network_delay_sec)

        self.pass_count += 1
        if self.metrics:
            self.metrics.mark_pass_completed()
        elapsed = format_duration(time.time() - start)
        logger.debug(f"Pass {self.pass_count} finished in {elapsed}")
        return cycles

    async def run_forever(self) -> None:
        """
        Main loop: pass, sleep, repeat.

        Runs until stop() is called, or for a single pass when config.once=True.
        """
        self._running = True
        self._stop_event = asyncio.Event()

        while self._running:
            await self.run_pass()

            if self.config.once or not self._running:
                break

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.pass_interval_sec
                )
            except asyncio.TimeoutError:
                continue

        self._running = False
        logger.info(f"Scheduler stopped after {self.pass_count} pass(es)")

    def stop(self) -> None:
        """End the loop at the next pass boundary."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def print_banner(self) -> None:
        """Print startup configuration summary."""
        c = Colors
        mode = "concurrent" if self.config.concurrent else "sequential"
        strikes = (
            f"{c.GREEN}ENABLED{c.RESET}"
            if self.execution_enabled
            else f"{c.YELLOW}scan-only{c.RESET}"
        )

        print(f"\n{c.CYAN}{c.BOLD}{'═' * 72}{c.RESET}")
        print(f"  {c.BOLD}CHAIN ARBITRAGE SCANNER{c.RESET}  ({mode}, strikes {strikes})")
        print(f"{c.CYAN}{'═' * 72}{c.RESET}")
        for network in self.config.networks.values():
            print(
                f"  {c.BOLD}{network.name:<10}{c.RESET} chain {network.chain_id:<6} "
                f"{len(network.endpoints)} endpoint(s)  {len(network.pools)} pool(s)  "
                f"{len(network.paths)} path(s)"
            )
        print(
            f"  {c.DIM}pass every {self.config.pass_interval_sec}s, "
            f"batch timeout {self.config.batch_timeout_sec}s{c.RESET}"
        )
        print(f"{c.CYAN}{'═' * 72}{c.RESET}\n")
