"""
Live cost computation for cyclic arbitrage strikes.

Turns the fee-market snapshot fetched each tick into:
- The execution overhead reserved out of the wallet balance
- The trade size left after the moat and the overhead
- The fee fields of the transaction actually submitted
"""

from decimal import ROUND_FLOOR, Decimal
from typing import Dict, Optional, TypeVar, Union

from .types import FeeSnapshot

DEFAULT_GAS_PRICE_MULTIPLIER = Decimal("1.2")

Amount = TypeVar("Amount", int, Decimal)


def _priority_fee(fees: FeeSnapshot, priority_fee_wei: Optional[int]) -> int:
    """Configured hint wins over the node's suggestion."""
    if priority_fee_wei is not None:
        return int(priority_fee_wei)
    return int(fees.max_priority_fee)


def estimate_execution_overhead(
    fees: FeeSnapshot,
    priority_fee_wei: Optional[int],
    gas_budget: int,
    multiplier: Union[Decimal, float, str] = DEFAULT_GAS_PRICE_MULTIPLIER,
) -> int:
    """
    Worst-case cost of sending the strike transaction.

    overhead = (gas_price * multiplier + priority_fee) * gas_budget

    Args:
        fees: Fee snapshot of this tick
        priority_fee_wei: Configured priority fee hint (None uses the node's)
        gas_budget: Gas units assumed for the strike
        multiplier: Safety multiplier applied to the node gas price

    Returns:
        Overhead in wei, rounded down
    """
    multiplier = Decimal(str(multiplier))
    per_gas = Decimal(fees.gas_price) * multiplier + _priority_fee(fees, priority_fee_wei)
    overhead = per_gas * gas_budget
    return int(overhead.to_integral_value(rounding=ROUND_FLOOR))


def decide_trade_size(balance: Amount, moat: Amount, overhead: Amount) -> Amount:
    """
    Amount committed to a strike: the balance minus the untouchable moat
    and the execution overhead.

    Works on int wei or Decimal native units alike. A result <= 0 means
    the wallet cannot afford a strike this tick.

    Example:
        >>> decide_trade_size(Decimal("1.0"), Decimal("0.01"), Decimal("0.005"))
        Decimal('0.985')
    """
    return balance - (moat + overhead)


def fee_caps(fees: FeeSnapshot, priority_fee_wei: Optional[int] = None) -> Dict[str, int]:
    """
    Fee fields for the submitted transaction.

    EIP-1559 chains get maxFeePerGas = 2 * base_fee + priority so the
    transaction survives a couple of full blocks of base fee growth.
    Chains without a base fee get a legacy gasPrice.
    """
    if fees.base_fee is None:
        return {"gasPrice": int(fees.gas_price)}

    priority = _priority_fee(fees, priority_fee_wei)
    return {
        "maxFeePerGas": int(fees.base_fee) * 2 + priority,
        "maxPriorityFeePerGas": priority,
    }


def price_impact_bps(amount_in: int, reserve_in: int) -> float:
    """
    Calculate price impact for constant product AMM.

    Uses small trade approximation: impact ≈ amount_in / reserve_in

    Returns:
        Price impact in basis points (0.0 for an empty pool)
    """
    if reserve_in <= 0 or amount_in <= 0:
        return 0.0

    return float(Decimal(amount_in) / Decimal(reserve_in) * 10000)
