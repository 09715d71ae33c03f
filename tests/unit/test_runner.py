"""
Unit tests for the scan scheduler in dex/runner.py

A real EndpointPool with a stub connector is combined with a fake batch
engine and a recording strike guard so the failure policy can be driven
deterministically.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from chain_arbitrage.exceptions import NetworkError, RateLimitError
from chain_arbitrage.metrics import ScannerMetrics
from dex.config import ExecutionConfig, NetworkConfig, ScannerConfig
from dex.endpoint_pool import EndpointPool
from dex.runner import ScanScheduler
from dex.types import (
    FeeSnapshot,
    Hop,
    PathConfig,
    PoolTarget,
    ReserveSnapshot,
    ScanResult,
    StrikeAttempt,
    StrikeState,
)

MULTICALL = "0xcA11bde05977b3631167028862bE2a173976CA11"
POOL_A = "0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc"
POOL_B = "0x397FF1542f962076d0BFE58eA045FfA2d347ACa0"
ETHER = 10**18

PATH = PathConfig(
    name="uni->sushi",
    router="0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
    token_in="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    token_out="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    hops=(Hop(pool=POOL_A, zero_for_one=False), Hop(pool=POOL_B, zero_for_one=True)),
)
FEES = FeeSnapshot(gas_price=10**9, max_priority_fee=0, base_fee=10**9)

# WETH buys twice as much USDC on pool A as it costs on pool B
PROFITABLE = [
    ReserveSnapshot(pool=POOL_A, success=True, reserve0=2000 * ETHER, reserve1=1000 * ETHER),
    ReserveSnapshot(pool=POOL_B, success=True, reserve0=1000 * ETHER, reserve1=1000 * ETHER),
]
BALANCED = [
    ReserveSnapshot(pool=POOL_A, success=True, reserve0=1000 * ETHER, reserve1=1000 * ETHER),
    ReserveSnapshot(pool=POOL_B, success=True, reserve0=1000 * ETHER, reserve1=1000 * ETHER),
]


def make_network(name, endpoints=("https://a", "https://b", "https://c"), paths=(PATH,)):
    return NetworkConfig(
        name=name,
        chain_id=1,
        endpoints=tuple(endpoints),
        multicall=MULTICALL,
        moat_wei=ETHER // 100,
        pools=(PoolTarget(address=POOL_A), PoolTarget(address=POOL_B)),
        paths=tuple(paths),
    )


def make_config(names=("ETHEREUM", "BASE"), execute=False, **kwargs):
    return ScannerConfig(
        networks={name: make_network(name) for name in names},
        execution=ExecutionConfig(enabled=execute),
        **kwargs,
    )


class StubConnector:
    def __init__(self, fail_urls=()):
        self.fail_urls = set(fail_urls)
        self.calls = []

    async def __call__(self, network, url, timeout):
        self.calls.append((network.name, url))
        if url in self.fail_urls:
            raise ConnectionRefusedError(url)
        return object()


class FakeEngine:
    """Returns a scripted result (or raises) per network."""

    def __init__(self):
        self.outcomes = {}
        self.calls = []

    def script(self, network, *outcomes):
        self.outcomes[network] = list(outcomes)

    async def fetch_tick(self, connection, network, pools, wallet=None):
        self.calls.append(network.name)
        queue = self.outcomes.get(network.name) or [self.result(network.name)]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @staticmethod
    def result(network, snapshots=BALANCED, balance=None, fees=FEES):
        return ScanResult(
            network=network, snapshots=list(snapshots), balance=balance, fees=fees
        )


class RecordingGuard:
    def __init__(self):
        self.strikes = []

    async def attempt_strike(self, connection, network, path, amount, expected_profit, fees):
        self.strikes.append((network.name, path.name, amount, expected_profit))
        attempt = StrikeAttempt(
            network=network.name, path=path.name, amount=amount, expected_profit=expected_profit
        )
        attempt.advance(StrikeState.SIMULATING)
        attempt.advance(StrikeState.SIMULATION_FAILED, error="reverted")
        return attempt


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


async def make_scheduler(config, engine=None, guard=None, connector=None, metrics=None):
    pool = EndpointPool(
        config.networks,
        connector=connector or StubConnector(),
        settle_delay=0.0,
        rate_limit_strikes=config.rate_limit_strikes,
    )
    await pool.start()
    sleep = SleepRecorder()
    scheduler = ScanScheduler(
        config,
        pool,
        engine or FakeEngine(),
        guard=guard,
        metrics=metrics,
        sleep=sleep,
    )
    return scheduler, pool, sleep


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_transport_failure_rotates_only_that_network(self):
        engine = FakeEngine()
        engine.script("ETHEREUM", NetworkError("connection reset"))
        scheduler, pool, _ = await make_scheduler(make_config(), engine)

        cycles = await scheduler.run_pass()

        assert [c.outcome for c in cycles] == ["transport", "ok"]
        assert cycles[0].result.success is False
        assert "connection reset" in cycles[0].error
        assert cycles[1].error is None
        assert pool.cursor("ETHEREUM") == 1
        assert pool.cursor("BASE") == 0
        assert engine.calls == ["ETHEREUM", "BASE"]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_transport(self):
        engine = FakeEngine()
        engine.script("BASE", asyncio.TimeoutError())
        scheduler, pool, _ = await make_scheduler(make_config(), engine)

        cycles = await scheduler.run_pass()

        assert cycles[1].outcome == "transport"
        assert pool.cursor("BASE") == 1

    @pytest.mark.asyncio
    async def test_logic_failure_does_not_rotate(self):
        engine = FakeEngine()
        engine.script("ETHEREUM", KeyError("baseFeePerGas"))
        scheduler, pool, _ = await make_scheduler(make_config(), engine)

        cycles = await scheduler.run_pass()

        assert cycles[0].outcome == "logic"
        assert "baseFeePerGas" in cycles[0].error
        assert cycles[1].outcome == "ok"
        assert pool.cursor("ETHEREUM") == 0

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_then_rotates(self):
        engine = FakeEngine()
        engine.script("ETHEREUM", RateLimitError("429 Too Many Requests"))
        config = make_config(names=("ETHEREUM",), rate_limit_backoff_sec=2.0)
        scheduler, pool, sleep = await make_scheduler(config, engine)

        outcomes = []
        for _ in range(3):
            cycles = await scheduler.run_pass()
            outcomes.append(cycles[0].outcome)

        assert outcomes == ["rate_limit"] * 3
        assert sleep.calls == [2.0, 2.0]
        assert pool.cursor("ETHEREUM") == 1

    @pytest.mark.asyncio
    async def test_successful_scan_resets_rate_limit_strikes(self):
        engine = FakeEngine()
        engine.script(
            "ETHEREUM",
            RateLimitError("429"),
            RateLimitError("429"),
            FakeEngine.result("ETHEREUM"),
            RateLimitError("429"),
            FakeEngine.result("ETHEREUM"),
        )
        scheduler, pool, _ = await make_scheduler(make_config(names=("ETHEREUM",)), engine)

        for _ in range(4):
            await scheduler.run_pass()

        assert pool.cursor("ETHEREUM") == 0
        assert pool.rate_limit_strikes("ETHEREUM") == 1

    @pytest.mark.asyncio
    async def test_missing_connection_rotates_and_skips(self):
        connector = StubConnector(fail_urls={"https://a"})
        engine = FakeEngine()
        scheduler, pool, _ = await make_scheduler(
            make_config(names=("ETHEREUM",)), engine, connector=connector
        )

        cycles = await scheduler.run_pass()

        assert cycles[0].outcome == "no_connection"
        assert engine.calls == []
        assert pool.current_connection("ETHEREUM").url == "https://b"

        cycles = await scheduler.run_pass()
        assert cycles[0].outcome == "ok"

    @pytest.mark.asyncio
    async def test_settling_network_is_skipped(self):
        engine = FakeEngine()
        scheduler, pool, _ = await make_scheduler(make_config(names=("ETHEREUM",)), engine)
        pool.settle_delay = 60.0
        await pool.rotate("ETHEREUM")

        cycles = await scheduler.run_pass()

        assert cycles[0].outcome == "skipped"
        assert engine.calls == []


class TestPathEvaluation:
    @pytest.mark.asyncio
    async def test_scan_only_uses_probe_amount(self):
        engine = FakeEngine()
        engine.script("ETHEREUM", FakeEngine.result("ETHEREUM", snapshots=PROFITABLE))
        guard = RecordingGuard()
        config = make_config(names=("ETHEREUM",), probe_amount_wei=ETHER // 10)
        scheduler, _, _ = await make_scheduler(config, engine, guard=guard)

        cycles = await scheduler.run_pass()

        evaluation = cycles[0].evaluations[0]
        assert evaluation.amount == ETHER // 10
        assert evaluation.profit > 0
        assert not evaluation.struck
        assert guard.strikes == []

    @pytest.mark.asyncio
    async def test_profitable_path_is_struck(self):
        engine = FakeEngine()
        engine.script(
            "ETHEREUM",
            FakeEngine.result("ETHEREUM", snapshots=PROFITABLE, balance=ETHER),
        )
        guard = RecordingGuard()
        scheduler, _, _ = await make_scheduler(
            make_config(names=("ETHEREUM",), execute=True), engine, guard=guard
        )

        cycles = await scheduler.run_pass()

        overhead = 12 * 10**8 * 350_000
        expected_size = ETHER - (ETHER // 100 + overhead)
        assert len(guard.strikes) == 1
        network, path, amount, profit = guard.strikes[0]
        assert (network, path, amount) == ("ETHEREUM", "uni->sushi", expected_size)
        assert profit > 0
        assert cycles[0].evaluations[0].attempt.protected

    @pytest.mark.asyncio
    async def test_balance_below_moat_never_strikes(self):
        engine = FakeEngine()
        engine.script(
            "ETHEREUM",
            FakeEngine.result("ETHEREUM", snapshots=PROFITABLE, balance=ETHER // 200),
        )
        guard = RecordingGuard()
        scheduler, _, _ = await make_scheduler(
            make_config(names=("ETHEREUM",), execute=True), engine, guard=guard
        )

        cycles = await scheduler.run_pass()

        assert cycles[0].evaluations[0].amount <= 0
        assert guard.strikes == []

    @pytest.mark.asyncio
    async def test_unprofitable_path_not_struck(self):
        engine = FakeEngine()
        engine.script(
            "ETHEREUM",
            FakeEngine.result("ETHEREUM", snapshots=BALANCED, balance=ETHER),
        )
        guard = RecordingGuard()
        scheduler, _, _ = await make_scheduler(
            make_config(names=("ETHEREUM",), execute=True), engine, guard=guard
        )

        cycles = await scheduler.run_pass()

        assert cycles[0].evaluations[0].profit < 0
        assert guard.strikes == []

    @pytest.mark.asyncio
    async def test_dead_hop_skips_path(self):
        dead = [PROFITABLE[0], ReserveSnapshot.dead(POOL_B)]
        engine = FakeEngine()
        engine.script("ETHEREUM", FakeEngine.result("ETHEREUM", snapshots=dead, balance=ETHER))
        guard = RecordingGuard()
        scheduler, _, _ = await make_scheduler(
            make_config(names=("ETHEREUM",), execute=True), engine, guard=guard
        )

        cycles = await scheduler.run_pass()

        assert cycles[0].outcome == "ok"
        assert cycles[0].evaluations == []
        assert cycles[0].result.alive_count == 1
        assert guard.strikes == []


class TestPasses:
    @pytest.mark.asyncio
    async def test_sequential_delay_between_networks(self):
        config = make_config(names=("ETHEREUM", "BASE", "ARBITRUM"), network_delay_sec=1.0)
        scheduler, _, sleep = await make_scheduler(config)

        await scheduler.run_pass()

        assert sleep.calls == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_concurrent_pass(self):
        engine = FakeEngine()
        engine.script("BASE", NetworkError("down"))
        config = make_config(concurrent=True)
        scheduler, pool, sleep = await make_scheduler(config, engine)

        cycles = await scheduler.run_pass()

        assert [c.network for c in cycles] == ["ETHEREUM", "BASE"]
        assert [c.outcome for c in cycles] == ["ok", "transport"]
        assert sleep.calls == []
        assert pool.cursor("BASE") == 1

    @pytest.mark.asyncio
    async def test_concurrent_crash_is_isolated(self, monkeypatch):
        metrics = ScannerMetrics(registry=CollectorRegistry())
        scheduler, pool, _ = await make_scheduler(make_config(concurrent=True), metrics=metrics)
        is_available = pool.is_available

        def broken_lookup(name):
            if name == "BASE":
                raise KeyError(name)
            return is_available(name)

        monkeypatch.setattr(pool, "is_available", broken_lookup)

        cycles = await scheduler.run_pass()

        assert [c.outcome for c in cycles] == ["ok", "logic"]
        assert cycles[1].result.success is False
        assert "BASE" in cycles[1].error
        assert pool.cursor("BASE") == 0
        assert scheduler.pass_count == 1
        output = generate_latest(metrics.registry).decode("utf-8")
        assert (
            'chain_arbitrage_system_errors_total{network="BASE",error_type="crash"} 1.0' in output
        )

    @pytest.mark.asyncio
    async def test_run_forever_once(self):
        config = make_config(once=True)
        scheduler, _, _ = await make_scheduler(config)

        await scheduler.run_forever()

        assert scheduler.pass_count == 1

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self):
        config = make_config(pass_interval_sec=60.0)
        scheduler, _, _ = await make_scheduler(config)

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert scheduler.pass_count == 1

    @pytest.mark.asyncio
    async def test_metrics_updated(self):
        metrics = ScannerMetrics(registry=CollectorRegistry())
        engine = FakeEngine()
        engine.script("BASE", NetworkError("down"))
        scheduler, _, _ = await make_scheduler(make_config(), engine, metrics=metrics)

        await scheduler.run_pass()

        output = generate_latest(metrics.registry).decode("utf-8")
        assert 'chain_arbitrage_scans_total{network="ETHEREUM",outcome="ok"} 1.0' in output
        assert 'chain_arbitrage_scans_total{network="BASE",outcome="transport"} 1.0' in output
        assert 'chain_arbitrage_pools_alive{network="ETHEREUM"} 2.0' in output
        assert metrics.health_status()["passes_seen"] is True
