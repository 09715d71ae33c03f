"""
Minimal ABIs for the contracts the scanner talks to.

Only the entry points that are actually called are listed: the Multicall3
non-reverting aggregate and the external trade-executor contract. The pair
reserve getter is only ever called through the aggregator, so only its
output types are kept.
"""

MULTICALL3_ABI = [
    {
        "inputs": [
            {"name": "requireSuccess", "type": "bool"},
            {
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "callData", "type": "bytes"},
                ],
                "name": "calls",
                "type": "tuple[]",
            },
        ],
        "name": "tryAggregate",
        "outputs": [
            {
                "components": [
                    {"name": "success", "type": "bool"},
                    {"name": "returnData", "type": "bytes"},
                ],
                "name": "returnData",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    }
]

# Output types of getReserves(), used to decode raw multicall payloads
RESERVES_OUTPUT_TYPES = ["uint112", "uint112", "uint32"]

ARB_EXECUTOR_ABI = [
    {
        "inputs": [
            {"name": "router", "type": "address"},
            {"name": "tokenIn", "type": "address"},
            {"name": "tokenOut", "type": "address"},
            {"name": "amountIn", "type": "uint256"},
        ],
        "name": "executeArbitrage",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    }
]
