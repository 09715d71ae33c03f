#!/usr/bin/env python3
"""
Multi-network cyclic arbitrage scanner CLI.

Polls every configured network for pool reserves, evaluates the configured
cyclic paths, and (with --execute) simulates and submits profitable strikes.

Usage:
    python3 run_scanner.py
    python3 run_scanner.py --config configs/networks.yaml --once
    python3 run_scanner.py --concurrent --metrics-port 9100
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict

from dotenv import load_dotenv

import logging_config
from chain_arbitrage.exceptions import ConfigurationError
from chain_arbitrage.metrics import ScannerMetrics
from dex.batch_query import BatchQueryEngine
from dex.config import ConfigError, ScannerConfig, load_config
from dex.endpoint_pool import EndpointPool
from dex.executor import StrikeGuard
from dex.runner import ScanScheduler

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-network cyclic arbitrage scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (scan-only unless execution.enabled is set)
  python3 run_scanner.py

  # Single pass (for testing/CI)
  python3 run_scanner.py --config configs/networks.yaml --once

  # Scan networks concurrently and strike profitable paths
  python3 run_scanner.py --concurrent --execute
        """,
    )

    parser.add_argument(
        "--config",
        default="configs/networks.yaml",
        help="Path to config YAML file (default: configs/networks.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit (overrides config setting)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--concurrent",
        dest="concurrent",
        action="store_true",
        default=None,
        help="Scan all networks concurrently",
    )
    mode.add_argument(
        "--sequential",
        dest="concurrent",
        action="store_false",
        help="Scan networks one after another",
    )

    parser.add_argument(
        "--execute",
        action="store_true",
        help="Enable strikes (requires the signing key in the environment)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve /metrics and /health on this port (overrides config)",
    )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--debug", action="store_true", help="Verbose logging")
    verbosity.add_argument(
        "--quiet", action="store_true", help="Only warnings and errors"
    )

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI switches into nested config overrides."""
    overrides: Dict[str, Any] = {}
    if args.once:
        overrides["once"] = True
    if args.concurrent is not None:
        overrides["concurrent"] = args.concurrent
    if args.execute:
        overrides["execution"] = {"enabled": True}
    if args.metrics_port is not None:
        overrides["observability"] = {"enabled": True, "port": args.metrics_port}
    return overrides


async def run(config: ScannerConfig) -> int:
    """Wire the components together and run until stopped."""
    metrics = ScannerMetrics(stale_after_sec=config.observability.stale_after_sec)

    pool = EndpointPool(
        config.networks,
        private_key=config.execution.private_key,
        connect_timeout=config.connect_timeout_sec,
        settle_delay=config.settle_delay_sec,
        rate_limit_strikes=config.rate_limit_strikes,
        metrics=metrics,
    )
    engine = BatchQueryEngine(timeout=config.batch_timeout_sec)
    guard = StrikeGuard(config.execution, metrics=metrics) if config.execution.enabled else None
    scheduler = ScanScheduler(config, pool, engine, guard=guard, metrics=metrics)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            logger.debug(f"Signal handler for {sig.name} not supported")

    metrics_started = False
    if config.observability.enabled:
        metrics_started = await metrics.start_server(
            port=config.observability.port, host=config.observability.host
        )

    scheduler.print_banner()
    try:
        await pool.start()
        await scheduler.run_forever()
    finally:
        await pool.close()
        if metrics_started:
            await metrics.stop_server()
        if guard is not None:
            stats = guard.get_stats()
            logger.info(
                f"Strikes: {stats['strikes_attempted']} attempted, "
                f"{stats['strikes_protected']} protected, "
                f"{stats['strikes_submitted']} submitted, "
                f"{stats['strikes_failed']} failed"
            )

    return 0


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)
    load_dotenv()

    if args.debug:
        logging_config.setup_debug()
    elif args.quiet:
        logging_config.setup_minimal()
    else:
        logging_config.setup()

    # Load config
    try:
        config = load_config(args.config, overrides=build_overrides(args))
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1

    # Run scanner
    try:
        return asyncio.run(run(config))
    except ConfigurationError as e:
        print(f"❌ Initialization failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
