"""
Common utilities and helper functions for the arbitrage scanner.

This module provides centralized helpers for logging, duration formatting,
and the wei/ether/gwei unit conversions used by configuration and logs.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

WEI_PER_ETHER = 10**18
WEI_PER_GWEI = 10**9


# Duration utilities
def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Unit utilities
def ether_to_wei(amount: Union[int, float, str, Decimal]) -> int:
    """Convert a native-unit amount to wei, flooring any dust below 1 wei."""
    return int(Decimal(str(amount)) * WEI_PER_ETHER)


def gwei_to_wei(amount: Union[int, float, str, Decimal]) -> int:
    """Convert a gwei amount to wei."""
    return int(Decimal(str(amount)) * WEI_PER_GWEI)


def wei_to_ether(amount: int) -> Decimal:
    """Convert wei to native units as Decimal (exact)."""
    return Decimal(amount) / Decimal(WEI_PER_ETHER)


def format_wei(amount: Optional[int], precision: int = 6) -> str:
    """Format a wei amount as a signed native-unit string for logs."""
    if amount is None:
        return "n/a"
    return f"{wei_to_ether(amount):+.{precision}f}"


def short_url(url: str) -> str:
    """Return only the host part of an endpoint URL so API keys stay out of logs."""
    parts = url.split("/")
    if len(parts) > 2 and parts[2]:
        return parts[2]
    return url


# Logging utilities
def get_logger(
    name: str,
    level: Optional[Union[str, int]] = None,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a logger with consistent formatting.

    Library modules call this with just ``__name__`` and inherit the level and
    handlers that ``logging_config.setup()`` installs on the root logger. A
    standalone handler is only attached when nothing configured logging yet
    and an explicit level was requested (ad hoc scripts).

    Args:
        name: Logger name (typically __name__)
        level: Optional logging level for this logger
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if level is None:
        return logger

    logger.setLevel(level)

    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
