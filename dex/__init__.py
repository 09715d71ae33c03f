"""
On-chain machinery for the multi-network arbitrage scanner.

Endpoint pool, batched reserve reads, constant-product math, the
simulate-before-send strike guard and the scan scheduler.
"""
