"""
Batched reserve reads through a Multicall3 aggregator.

One ``tryAggregate(False, calls)`` round trip per network per tick returns
the reserves of every configured pool. Individual pool failures never fail
the batch; they come back as dead snapshots.
"""

import asyncio
import time
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

from web3 import Web3

from chain_arbitrage.exceptions import DataError, NetworkError
from chain_arbitrage.utils import get_logger, short_url

from .abi import MULTICALL3_ABI
from .adapters.v2 import decode_reserves
from .config import NetworkConfig
from .endpoint_pool import Connection, as_transport_error, classify_error
from .types import FeeSnapshot, PoolTarget, ReserveSnapshot, ScanResult

logger = get_logger(__name__)


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Await every read; on the first failure cancel the ones still running
    and collect their outcomes before re-raising, so no read outlives the tick.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class BatchQueryEngine:
    """
    Encodes, sends and decodes the per-tick batched read.

    The reserve-getter selector and aggregator ABI are prepared once here
    and reused for every tick of every network.
    The aggregator contract object is bound once per connection and
    rebuilt when the pool hands out a new one.
    """

    def __init__(self, timeout: float = 4.0):
        self.timeout = timeout
        self.selector = bytes(Web3.keccak(text="getReserves()")[:4])
        self._aggregator_abi = MULTICALL3_ABI
        self._aggregators: Dict[str, Tuple[Connection, Any]] = {}

    def _aggregator(self, connection: Connection, network: NetworkConfig):
        cached = self._aggregators.get(network.name)
        if cached is not None and cached[0] is connection:
            return cached[1]
        aggregator = connection.w3.eth.contract(
            address=network.multicall, abi=self._aggregator_abi
        )
        self._aggregators[network.name] = (connection, aggregator)
        return aggregator

    def build_calls(self, pools: Sequence[PoolTarget]) -> List[tuple]:
        """(target, callData) pairs in pool order."""
        return [(pool.address, self.selector) for pool in pools]

    def decode_results(
        self, pools: Sequence[PoolTarget], results: Sequence[Any], network: str = ""
    ) -> List[ReserveSnapshot]:
        """
        Turn raw ``(success, returnData)`` entries into snapshots.

        A pool is alive only when its call succeeded and the payload decodes
        as a full reserves tuple; everything else is dead.
        """
        if len(results) != len(pools):
            logger.warning(
                f"[{network}] Aggregator returned {len(results)} results "
                f"for {len(pools)} calls, marking all dead"
            )
            return [ReserveSnapshot.dead(pool.address) for pool in pools]

        snapshots = []
        for pool, (success, payload) in zip(pools, results):
            if not success:
                snapshots.append(ReserveSnapshot.dead(pool.address))
                continue
            try:
                reserve0, reserve1, timestamp = decode_reserves(bytes(payload))
            except DataError as e:
                logger.debug(f"[{network}] {pool} dead: {e}")
                snapshots.append(ReserveSnapshot.dead(pool.address))
                continue
            snapshots.append(
                ReserveSnapshot(
                    pool=pool.address,
                    success=True,
                    reserve0=reserve0,
                    reserve1=reserve1,
                    timestamp=timestamp,
                )
            )
        return snapshots

    async def fetch_reserves(
        self,
        connection: Connection,
        network: NetworkConfig,
        pools: Sequence[PoolTarget],
    ) -> List[ReserveSnapshot]:
        """
        Read the reserves of every pool in one round trip.

        Args:
            connection: Live connection for the network
            network: Network config (aggregator address)
            pools: Targets in the order results should come back

        Returns:
            One ReserveSnapshot per pool, in input order

        Raises:
            NetworkError: On timeout or transport failure
            RateLimitError: When the endpoint signals throttling
        """
        if not pools:
            return []

        aggregator = self._aggregator(connection, network)
        calls = self.build_calls(pools)

        try:
            results = await asyncio.wait_for(
                aggregator.functions.tryAggregate(False, calls).call(),
                timeout=self.timeout,
            )
        except Exception as e:
            if classify_error(e) == "logic":
                logger.warning(
                    f"[{network.name}] Batched read rejected, all pools dead: {e}"
                )
                return [ReserveSnapshot.dead(pool.address) for pool in pools]
            raise as_transport_error(e, network.name, connection.url) from e

        return self.decode_results(pools, results, network.name)

    async def _fetch_fees(self, connection: Connection, network: NetworkConfig) -> FeeSnapshot:
        eth = connection.w3.eth
        if network.priority_fee_wei is not None:
            gas_price, block = await gather_or_cancel(
                eth.gas_price, eth.get_block("latest")
            )
            priority_fee = network.priority_fee_wei
        else:
            gas_price, priority_fee, block = await gather_or_cancel(
                eth.gas_price, eth.max_priority_fee, eth.get_block("latest")
            )
        base_fee = block.get("baseFeePerGas") if block else None
        return FeeSnapshot(
            gas_price=int(gas_price),
            max_priority_fee=int(priority_fee),
            base_fee=int(base_fee) if base_fee is not None else None,
        )

    async def _fetch_balance(self, connection: Connection, wallet: Optional[str]) -> Optional[int]:
        if not wallet:
            return None
        return int(await connection.w3.eth.get_balance(wallet))

    async def fetch_tick(
        self,
        connection: Connection,
        network: NetworkConfig,
        pools: Sequence[PoolTarget],
        wallet: Optional[str] = None,
    ) -> ScanResult:
        """
        Fetch wallet balance, fee data and reserves concurrently.

        All three reads complete (or the whole tick fails) before any
        decision is made.

        Raises:
            NetworkError: On timeout or transport failure of any read
            RateLimitError: When the endpoint signals throttling
            DataError: When the node answers with unusable fee or balance data
        """
        start = time.time()
        try:
            balance, fees, snapshots = await asyncio.wait_for(
                gather_or_cancel(
                    self._fetch_balance(connection, wallet),
                    self._fetch_fees(connection, network),
                    self.fetch_reserves(connection, network, pools),
                ),
                timeout=self.timeout,
            )
        except (NetworkError, DataError):
            raise
        except Exception as e:
            if classify_error(e) == "logic":
                raise DataError(
                    f"Unusable node response from {short_url(connection.url)}: {e}",
                    source=network.name,
                ) from e
            raise as_transport_error(e, network.name, connection.url) from e

        return ScanResult(
            network=network.name,
            snapshots=snapshots,
            balance=balance,
            fees=fees,
            duration_sec=time.time() - start,
        )
