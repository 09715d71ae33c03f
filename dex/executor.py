"""
Strike guard: simulate-before-send execution of cyclic arbitrage paths.

Handles:
- Dry-run of the exact executor call against the current node state
- Transaction building, signing and submission when the dry run passes
- Per-guard statistics (attempted, protected, submitted, failed)

Nothing is ever sent when the simulation reverts.
"""

import asyncio
import time
from typing import Any, Dict, Tuple

from web3 import Web3

from chain_arbitrage.exceptions import ExecutionError, SimulationRevertedError
from chain_arbitrage.utils import format_wei, get_logger

from .abi import ARB_EXECUTOR_ABI
from .config import ExecutionConfig, NetworkConfig
from .endpoint_pool import Connection, as_transport_error, classify_error
from .live_costs import fee_caps
from .types import FeeSnapshot, PathConfig, StrikeAttempt, StrikeState

logger = get_logger(__name__)


class StrikeGuard:
    """
    Gates every value-moving transaction behind a read-only simulation.

    The executor contract ABI is bound once per guard; the contract object
    is bound once per connection and rebuilt when the pool hands out a new one.
    """

    def __init__(self, config: ExecutionConfig, metrics=None):
        """
        Initialize guard.

        Args:
            config: Execution configuration (gas ceiling, timeouts)
            metrics: Optional ScannerMetrics for strike outcomes
        """
        self.config = config
        self.metrics = metrics
        self._executor_abi = ARB_EXECUTOR_ABI
        self._executors: Dict[str, Tuple[Connection, Any]] = {}

        # Execution statistics
        self.strikes_attempted = 0
        self.strikes_protected = 0
        self.strikes_submitted = 0
        self.strikes_failed = 0

    def _executor_call(
        self, connection: Connection, network: NetworkConfig, path: PathConfig, amount: int
    ):
        cached = self._executors.get(network.name)
        if cached is not None and cached[0] is connection:
            executor = cached[1]
        else:
            executor = connection.w3.eth.contract(
                address=network.executor, abi=self._executor_abi
            )
            self._executors[network.name] = (connection, executor)
        return executor.functions.executeArbitrage(
            path.router, path.token_in, path.token_out, amount
        )

    async def attempt_strike(
        self,
        connection: Connection,
        network: NetworkConfig,
        path: PathConfig,
        amount: int,
        expected_profit: int,
        fees: FeeSnapshot,
    ) -> StrikeAttempt:
        """
        Simulate the strike and submit it only if the simulation succeeds.

        Args:
            connection: Live connection (must carry a signer)
            network: Network config (executor address, chain id)
            path: Path to execute
            amount: Input amount in wei, sent as transaction value
            expected_profit: Profit computed from reserves (for logs)
            fees: Fee snapshot of this tick

        Returns:
            StrikeAttempt in a terminal state

        Raises:
            ExecutionError: If no signer or executor address is configured
            NetworkError: If the simulation failed at the transport level
        """
        if connection.account is None:
            raise ExecutionError(
                "No signing account on connection", network=network.name
            )
        if not network.executor:
            raise ExecutionError(
                "No executor contract configured", network=network.name
            )

        attempt = StrikeAttempt(
            network=network.name,
            path=path.name,
            amount=amount,
            expected_profit=expected_profit,
        )
        self.strikes_attempted += 1
        call = self._executor_call(connection, network, path, amount)

        attempt.advance(StrikeState.SIMULATING)
        try:
            await self._simulate(connection, network, call, amount)
        except SimulationRevertedError as e:
            attempt.advance(StrikeState.SIMULATION_FAILED, error=str(e))
            self._finish(attempt)
            logger.warning(
                f"[{network.name}] 🛡️ Simulation reverted for {path.name}, "
                f"capital protected: {e}"
            )
            return attempt
        except Exception as e:
            attempt.advance(StrikeState.SIMULATION_FAILED, error=str(e))
            self._finish(attempt)
            logger.error(f"[{network.name}] Simulation of {path.name} failed: {e}")
            raise

        logger.info(
            f"[{network.name}] ✅ Simulation passed for {path.name} "
            f"(amount {format_wei(amount)} ETH, expected {format_wei(expected_profit)} ETH)"
        )

        attempt.advance(StrikeState.SUBMITTING)
        start = time.time()
        try:
            tx_hash = await asyncio.wait_for(
                self._submit(connection, network, call, amount, fees),
                timeout=self.config.submit_timeout_sec,
            )
        except Exception as e:
            attempt.advance(StrikeState.SUBMIT_FAILED, error=str(e) or type(e).__name__)
            self._finish(attempt)
            logger.error(
                f"[{network.name}] ❌ Submission of {path.name} failed after "
                f"{(time.time() - start) * 1000:.0f}ms: {attempt.error}"
            )
            return attempt

        attempt.tx_hash = tx_hash
        attempt.advance(StrikeState.SUBMITTED)
        self._finish(attempt)
        logger.info(f"[{network.name}] 🚀 Strike submitted for {path.name}: {tx_hash}")
        return attempt

    async def _simulate(self, connection: Connection, network: NetworkConfig, call, amount: int):
        """
        Dry-run the executor call from the signer's address.

        Raises:
            SimulationRevertedError: If the call reverts or is rejected
            NetworkError: On timeout or transport failure
        """
        try:
            await asyncio.wait_for(
                call.call({"from": connection.account.address, "value": amount}),
                timeout=self.config.simulation_timeout_sec,
            )
        except Exception as e:
            if classify_error(e) == "logic":
                raise SimulationRevertedError(
                    str(e) or type(e).__name__,
                    network=network.name,
                    state=StrikeState.SIMULATING.value,
                ) from e
            raise as_transport_error(e, network.name, connection.url) from e

    async def _submit(
        self,
        connection: Connection,
        network: NetworkConfig,
        call,
        amount: int,
        fees: FeeSnapshot,
    ) -> str:
        """Build, sign and send the transaction; returns the hex tx hash."""
        sender = connection.account.address
        nonce = await connection.w3.eth.get_transaction_count(sender, "pending")

        tx_params = {
            "from": sender,
            "value": amount,
            "gas": self.config.gas_limit_ceiling,
            "nonce": nonce,
            "chainId": network.chain_id,
        }
        tx_params.update(fee_caps(fees, network.priority_fee_wei))
        tx = await call.build_transaction(tx_params)

        signed_tx = connection.account.sign_transaction(tx)
        tx_hash = await connection.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        return Web3.to_hex(tx_hash)

    def _finish(self, attempt: StrikeAttempt) -> None:
        if attempt.state is StrikeState.SIMULATION_FAILED:
            self.strikes_protected += 1
        elif attempt.state is StrikeState.SUBMITTED:
            self.strikes_submitted += 1
        elif attempt.state is StrikeState.SUBMIT_FAILED:
            self.strikes_failed += 1
        if self.metrics:
            self.metrics.record_strike(attempt.network, attempt.state.value)

    def get_stats(self) -> Dict:
        """Get strike statistics."""
        protection_rate = (
            self.strikes_protected / self.strikes_attempted * 100
            if self.strikes_attempted > 0
            else 0.0
        )

        return {
            "strikes_attempted": self.strikes_attempted,
            "strikes_protected": self.strikes_protected,
            "strikes_submitted": self.strikes_submitted,
            "strikes_failed": self.strikes_failed,
            "protection_rate_pct": protection_rate,
        }
