"""
DEX adapter modules for different AMM types.
"""

from .v2 import cyclic_profit, decode_reserves, orient_reserves, swap_out

__all__ = ["swap_out", "cyclic_profit", "orient_reserves", "decode_reserves"]
