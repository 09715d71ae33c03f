"""
Logging configuration for cleaner scanner output.

Usage:
    import logging_config
    logging_config.setup()
"""

import logging
import sys

# Third-party loggers that flood the console at INFO
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access", "asyncio")


def setup(level=logging.INFO):
    """
    Configure logging for cleaner, more readable output.

    - Suppresses request-level logs from web3, urllib3 and aiohttp
    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    """

    # Root logger - minimal format
    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers
    root.handlers.clear()

    # Create console handler with clean format
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    # Minimal format: time + level + message
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(message)s", datefmt="%H:%M:%S"
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    # Application loggers follow the requested level
    logging.getLogger("__main__").setLevel(level)
    logging.getLogger("dex").setLevel(level)
    logging.getLogger("chain_arbitrage").setLevel(level)


def setup_minimal():
    """
    Only warnings and errors.
    Good for production or when you only care about problems.
    """
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging for debugging.
    Shows everything including HTTP requests.
    """
    setup(level=logging.DEBUG)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)
