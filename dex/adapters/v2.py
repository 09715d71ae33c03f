"""
Uniswap V2 style adapter for constant-product AMM pools.

Implements the integer swap formula used by the pair contracts (0.3% fee,
floor division at every step), the cyclic fold over a path, and decoding of
raw getReserves() payloads returned by the batched read.
"""

from typing import Iterable, Tuple

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from chain_arbitrage.exceptions import DataError

from ..abi import RESERVES_OUTPUT_TYPES

FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000

# getReserves() returns three 32-byte words
RESERVES_PAYLOAD_BYTES = 96


def swap_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """
    Calculate output amount for a V2 swap using the constant-product formula.

    Formula (with the 0.3% fee embedded, all integer math):
        amountInWithFee = amountIn * 997
        amountOut = amountInWithFee * reserveOut // (reserveIn * 1000 + amountInWithFee)

    Matches UniswapV2Library.getAmountOut bit for bit. Never uses floating
    point and always rounds down.

    Args:
        amount_in: Input token amount (raw units)
        reserve_in: Reserve of input token
        reserve_out: Reserve of output token

    Returns:
        Output token amount (raw units); 0 for non-positive input or an
        empty pool
    """
    if amount_in <= 0:
        return 0
    if reserve_in <= 0 or reserve_out <= 0:
        return 0

    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee

    return numerator // denominator


def cyclic_profit(amount_in: int, path: Iterable[Tuple[int, int]]) -> int:
    """
    Fold swap_out across every hop of a cyclic path.

    Each hop's output is the next hop's input. Because the path starts and
    ends in the same asset, profit is a plain difference.

    Args:
        amount_in: Starting amount (raw units)
        path: (reserve_in, reserve_out) per hop, already oriented

    Returns:
        final_output - amount_in (signed; negative when fees eat the spread)
    """
    if amount_in <= 0:
        return 0

    amount = amount_in
    for reserve_in, reserve_out in path:
        amount = swap_out(amount, reserve_in, reserve_out)

    return amount - amount_in


def orient_reserves(reserve0: int, reserve1: int, zero_for_one: bool) -> Tuple[int, int]:
    """Return (reserve_in, reserve_out) for a swap direction."""
    if zero_for_one:
        return reserve0, reserve1
    return reserve1, reserve0


def decode_reserves(payload: bytes) -> Tuple[int, int, int]:
    """
    Decode a raw getReserves() return payload.

    Args:
        payload: ABI-encoded (uint112, uint112, uint32)

    Returns:
        Tuple of (reserve0, reserve1, blockTimestampLast)

    Raises:
        DataError: If the payload is too short or does not decode
    """
    if len(payload) < RESERVES_PAYLOAD_BYTES:
        raise DataError(
            f"Reserve payload too short: {len(payload)} < {RESERVES_PAYLOAD_BYTES} bytes"
        )
    try:
        reserve0, reserve1, timestamp = abi_decode(
            RESERVES_OUTPUT_TYPES, bytes(payload[:RESERVES_PAYLOAD_BYTES])
        )
    except DecodingError as e:
        raise DataError(f"Failed to decode reserve payload: {e}") from e

    return int(reserve0), int(reserve1), int(timestamp)
