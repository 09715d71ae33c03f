"""
Unit tests for dex/batch_query.py

The AsyncWeb3 client is replaced by a small fake exposing only the calls
the engine makes: eth.contract(...).functions.tryAggregate(...).call(),
eth.gas_price, eth.max_priority_fee, eth.get_block and eth.get_balance.
"""

import asyncio

import aiohttp
import pytest
from eth_abi import encode as abi_encode
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3RPCError

from chain_arbitrage.exceptions import DataError, NetworkError, RateLimitError
from dex.batch_query import BatchQueryEngine
from dex.config import NetworkConfig
from dex.endpoint_pool import Connection
from dex.types import PoolTarget

POOL_A = PoolTarget(address="0xB4e16d0168e52d35CaCD2c6185b44281Ec28C9Dc")
POOL_B = PoolTarget(address="0x397FF1542f962076d0BFE58eA045FfA2d347ACa0")
WALLET = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def reserves_payload(reserve0, reserve1, timestamp=1_700_000_000):
    return abi_encode(["uint112", "uint112", "uint32"], [reserve0, reserve1, timestamp])


async def _value(value):
    if isinstance(value, BaseException):
        raise value
    return value


class FakeAggregate:
    def __init__(self, eth, calls):
        self.eth = eth
        self.calls = calls

    async def call(self):
        self.eth.aggregate_calls.append(self.calls)
        if self.eth.aggregate_delay:
            await asyncio.sleep(self.eth.aggregate_delay)
        return await _value(self.eth.aggregate_result)


class FakeFunctions:
    def __init__(self, eth):
        self.eth = eth

    def tryAggregate(self, require_success, calls):
        assert require_success is False
        return FakeAggregate(self.eth, calls)


class FakeContract:
    def __init__(self, eth, address):
        self.address = address
        self.functions = FakeFunctions(eth)


class FakeEth:
    def __init__(self, aggregate_result=None, aggregate_delay=0.0, base_fee=10**9):
        self.aggregate_result = aggregate_result if aggregate_result is not None else []
        self.aggregate_delay = aggregate_delay
        self.aggregate_calls = []
        self.contract_addresses = []
        self.base_fee = base_fee
        self.balance = 2 * 10**18
        self.priority_fee_queried = False
        self.balance_delay = 0.0
        self.balance_cancelled = False

    def contract(self, address, abi):
        self.contract_addresses.append(address)
        return FakeContract(self, address)

    @property
    def gas_price(self):
        return _value(3 * 10**9)

    @property
    def max_priority_fee(self):
        self.priority_fee_queried = True
        return _value(10**8)

    def get_block(self, block_identifier):
        block = {"number": 1}
        if self.base_fee is not None:
            block["baseFeePerGas"] = self.base_fee
        return _value(block)

    async def get_balance(self, address):
        if self.balance_delay:
            try:
                await asyncio.sleep(self.balance_delay)
            except asyncio.CancelledError:
                self.balance_cancelled = True
                raise
        return await _value(self.balance)


class FakeWeb3:
    def __init__(self, eth):
        self.eth = eth


def make_network(priority_fee_wei=None):
    return NetworkConfig(
        name="ETHEREUM",
        chain_id=1,
        endpoints=("https://eth.llamarpc.com",),
        multicall="0xcA11bde05977b3631167028862bE2a173976CA11",
        priority_fee_wei=priority_fee_wei,
    )


def make_connection(eth, generation=1):
    return Connection(
        network="ETHEREUM",
        url="https://eth.llamarpc.com",
        index=0,
        generation=generation,
        w3=FakeWeb3(eth),
    )


@pytest.fixture
def engine():
    return BatchQueryEngine(timeout=0.5)


class TestEncoding:
    def test_selector_built_once(self, engine):
        assert engine.selector == bytes(Web3.keccak(text="getReserves()")[:4])
        assert engine.selector.hex() == "0902f1ac"

    def test_build_calls_preserves_order(self, engine):
        calls = engine.build_calls([POOL_B, POOL_A])
        assert calls == [
            (POOL_B.address, engine.selector),
            (POOL_A.address, engine.selector),
        ]


class TestDecodeResults:
    def test_empty_and_valid_payload(self, engine):
        """0x payload is dead, full 96-byte payload is alive."""
        snapshots = engine.decode_results(
            [POOL_A, POOL_B], [(True, b""), (True, reserves_payload(1000, 2000))]
        )

        assert [s.success for s in snapshots] == [False, True]
        assert snapshots[1].reserve0 == 1000
        assert snapshots[1].reserve1 == 2000
        assert snapshots[1].pool == POOL_B.address

    def test_failed_call_is_dead(self, engine):
        snapshots = engine.decode_results([POOL_A], [(False, reserves_payload(1, 1))])
        assert not snapshots[0].success

    def test_short_payload_is_dead(self, engine):
        snapshots = engine.decode_results([POOL_A], [(True, b"\x00" * 64)])
        assert not snapshots[0].success

    def test_length_mismatch_all_dead(self, engine):
        snapshots = engine.decode_results([POOL_A, POOL_B], [(True, reserves_payload(1, 1))])
        assert [s.success for s in snapshots] == [False, False]


class TestFetchReserves:
    @pytest.mark.asyncio
    async def test_one_alive_one_dead(self, engine):
        eth = FakeEth(aggregate_result=[(True, b""), (True, reserves_payload(5, 7))])

        snapshots = await engine.fetch_reserves(
            make_connection(eth), make_network(), [POOL_A, POOL_B]
        )

        assert sum(1 for s in snapshots if s.success) == 1
        assert [s.pool for s in snapshots] == [POOL_A.address, POOL_B.address]
        assert len(eth.aggregate_calls) == 1
        assert eth.contract_addresses == ["0xcA11bde05977b3631167028862bE2a173976CA11"]

    @pytest.mark.asyncio
    async def test_aggregator_bound_once_per_connection(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(5, 7))])
        connection = make_connection(eth)

        await engine.fetch_reserves(connection, make_network(), [POOL_A])
        await engine.fetch_reserves(connection, make_network(), [POOL_A])
        assert len(eth.contract_addresses) == 1

        await engine.fetch_reserves(make_connection(eth, generation=2), make_network(), [POOL_A])
        assert len(eth.contract_addresses) == 2
        assert len(eth.aggregate_calls) == 3

    @pytest.mark.asyncio
    async def test_empty_pool_list_skips_round_trip(self, engine):
        eth = FakeEth()
        assert await engine.fetch_reserves(make_connection(eth), make_network(), []) == []
        assert eth.aggregate_calls == []

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(self):
        engine = BatchQueryEngine(timeout=0.01)
        eth = FakeEth(aggregate_result=[(True, reserves_payload(1, 1))], aggregate_delay=0.5)

        with pytest.raises(NetworkError):
            await engine.fetch_reserves(make_connection(eth), make_network(), [POOL_A])

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, engine):
        eth = FakeEth(aggregate_result=aiohttp.ClientConnectionError("reset by peer"))

        with pytest.raises(NetworkError) as exc_info:
            await engine.fetch_reserves(make_connection(eth), make_network(), [POOL_A])
        assert not isinstance(exc_info.value, RateLimitError)

    @pytest.mark.asyncio
    async def test_rate_limit_raises(self, engine):
        eth = FakeEth(aggregate_result=Web3RPCError("429 Too Many Requests"))

        with pytest.raises(RateLimitError):
            await engine.fetch_reserves(make_connection(eth), make_network(), [POOL_A])

    @pytest.mark.asyncio
    async def test_revert_with_throttle_like_data_all_dead(self, engine):
        """A contract error never becomes a rate limit, whatever its hex data holds."""
        eth = FakeEth(
            aggregate_result=ContractLogicError("execution reverted: 0x08c379a0000429ff")
        )

        snapshots = await engine.fetch_reserves(
            make_connection(eth), make_network(), [POOL_A, POOL_B]
        )

        assert [s.success for s in snapshots] == [False, False]

    @pytest.mark.asyncio
    async def test_logic_error_all_dead(self, engine):
        eth = FakeEth(aggregate_result=ValueError("execution reverted"))

        snapshots = await engine.fetch_reserves(
            make_connection(eth), make_network(), [POOL_A, POOL_B]
        )

        assert len(snapshots) == 2
        assert not any(s.success for s in snapshots)


class TestFetchTick:
    @pytest.mark.asyncio
    async def test_combined_read(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(10, 20))])

        result = await engine.fetch_tick(
            make_connection(eth), make_network(), [POOL_A], wallet=WALLET
        )

        assert result.network == "ETHEREUM"
        assert result.success
        assert result.balance == 2 * 10**18
        assert result.fees.gas_price == 3 * 10**9
        assert result.fees.max_priority_fee == 10**8
        assert result.fees.base_fee == 10**9
        assert result.alive_count == 1
        assert result.duration_sec >= 0

    @pytest.mark.asyncio
    async def test_no_wallet_no_balance(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(10, 20))])
        result = await engine.fetch_tick(make_connection(eth), make_network(), [POOL_A])
        assert result.balance is None

    @pytest.mark.asyncio
    async def test_configured_priority_fee_skips_node_query(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(10, 20))])
        result = await engine.fetch_tick(
            make_connection(eth), make_network(priority_fee_wei=7), [POOL_A]
        )
        assert result.fees.max_priority_fee == 7
        assert not eth.priority_fee_queried

    @pytest.mark.asyncio
    async def test_legacy_chain_has_no_base_fee(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(10, 20))], base_fee=None)
        result = await engine.fetch_tick(make_connection(eth), make_network(), [POOL_A])
        assert result.fees.base_fee is None

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(self):
        engine = BatchQueryEngine(timeout=0.01)
        eth = FakeEth(aggregate_result=[(True, reserves_payload(1, 1))], aggregate_delay=0.5)

        with pytest.raises(NetworkError):
            await engine.fetch_tick(make_connection(eth), make_network(), [POOL_A])

    @pytest.mark.asyncio
    async def test_bad_balance_raises_data_error(self, engine):
        eth = FakeEth(aggregate_result=[(True, reserves_payload(1, 1))])
        eth.balance = ValueError("invalid address")

        with pytest.raises(DataError):
            await engine.fetch_tick(
                make_connection(eth), make_network(), [POOL_A], wallet=WALLET
            )

    @pytest.mark.asyncio
    async def test_failed_reserve_read_cancels_sibling_reads(self, engine):
        """A transport failure leaves nothing running against the old connection."""
        eth = FakeEth(aggregate_result=aiohttp.ClientConnectionError("reset by peer"))
        eth.balance_delay = 5.0

        with pytest.raises(NetworkError):
            await engine.fetch_tick(
                make_connection(eth), make_network(), [POOL_A], wallet=WALLET
            )

        assert eth.balance_cancelled
        pending = [
            task
            for task in asyncio.all_tasks()
            if task is not asyncio.current_task() and not task.done()
        ]
        assert pending == []
