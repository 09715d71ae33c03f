"""
Prometheus Metrics Server for the multi-network arbitrage scanner

Exposes scan, rotation and strike metrics plus a liveness endpoint.
"""

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class ScannerMetrics:
    """
    Scanner metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Scan outcomes and round-trip latency per network
    - Live pool counts from the batched reserve reads
    - Endpoint rotations and rate limiting
    - Strike attempts by terminal state
    - Process liveness (last completed pass)
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        stale_after_sec: float = 120.0,
    ):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self.stale_after_sec = stale_after_sec
        self.started_at = time.time()
        self.last_pass_at: Optional[float] = None
        self._initialize_metrics()

        # Server components
        self._app = None
        self._runner = None
        self._site = None

        # Thread-safe access
        self._lock = threading.RLock()

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === SCAN METRICS ===
        self.scans_total = Counter(
            "chain_arbitrage_scans_total",
            "Total scan cycles by outcome",
            ["network", "outcome"],
            registry=self.registry,
        )

        self.scan_duration_seconds = Histogram(
            "chain_arbitrage_scan_duration_seconds",
            "Duration of the combined balance/fee/reserve round trip",
            ["network"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0],
            registry=self.registry,
        )

        self.pools_alive = Gauge(
            "chain_arbitrage_pools_alive",
            "Pools returning a decodable reserve payload on the last tick",
            ["network"],
            registry=self.registry,
        )

        self.best_profit_wei = Gauge(
            "chain_arbitrage_best_profit_wei",
            "Best cyclic profit seen on the last tick (may be negative)",
            ["network"],
            registry=self.registry,
        )

        # === ENDPOINT METRICS ===
        self.rotations_total = Counter(
            "chain_arbitrage_rotations_total",
            "Endpoint rotations by outcome",
            ["network", "outcome"],
            registry=self.registry,
        )

        self.rate_limited_total = Counter(
            "chain_arbitrage_rate_limited_total",
            "Rate-limit signals received from endpoints",
            ["network"],
            registry=self.registry,
        )

        self.endpoint_index = Gauge(
            "chain_arbitrage_endpoint_index",
            "Index of the endpoint currently in use",
            ["network"],
            registry=self.registry,
        )

        # === STRIKE METRICS ===
        self.strike_attempts_total = Counter(
            "chain_arbitrage_strike_attempts_total",
            "Strike attempts by terminal state",
            ["network", "state"],
            registry=self.registry,
        )

        # === SYSTEM HEALTH METRICS ===
        self.last_pass_timestamp = Gauge(
            "chain_arbitrage_last_pass_timestamp",
            "Unix timestamp of the last completed scheduler pass",
            registry=self.registry,
        )

        self.system_errors_total = Counter(
            "chain_arbitrage_system_errors_total",
            "Errors contained inside a network cycle",
            ["network", "error_type"],
            registry=self.registry,
        )

    # === METRIC RECORDING METHODS ===

    def record_scan(
        self,
        network: str,
        outcome: str,
        duration_seconds: float = 0.0,
        alive: Optional[int] = None,
    ):
        """Record one network scan cycle"""
        with self._lock:
            self.scans_total.labels(network=network, outcome=outcome).inc()
            if duration_seconds > 0:
                self.scan_duration_seconds.labels(network=network).observe(
                    duration_seconds
                )
            if alive is not None:
                self.pools_alive.labels(network=network).set(alive)

    def record_best_profit(self, network: str, profit_wei: int):
        """Record the best path profit of the tick"""
        with self._lock:
            self.best_profit_wei.labels(network=network).set(profit_wei)

    def record_rotation(self, network: str, outcome: str, index: Optional[int] = None):
        """Record an endpoint rotation"""
        with self._lock:
            self.rotations_total.labels(network=network, outcome=outcome).inc()
            if index is not None:
                self.endpoint_index.labels(network=network).set(index)

    def record_rate_limit(self, network: str):
        """Record a rate-limit signal"""
        with self._lock:
            self.rate_limited_total.labels(network=network).inc()

    def record_strike(self, network: str, state: str):
        """Record a strike attempt terminal state"""
        with self._lock:
            self.strike_attempts_total.labels(network=network, state=state).inc()

    def record_system_error(self, network: str, error_type: str):
        """Record an error contained in a network cycle"""
        with self._lock:
            self.system_errors_total.labels(
                network=network, error_type=error_type
            ).inc()

    def mark_pass_completed(self):
        """Heartbeat used by the liveness endpoint"""
        with self._lock:
            self.last_pass_at = time.time()
            self.last_pass_timestamp.set(self.last_pass_at)

    def health_status(self) -> Dict[str, Any]:
        """Liveness snapshot: healthy until the last pass is older than the threshold"""
        now = time.time()
        reference = self.last_pass_at or self.started_at
        age = now - reference
        status = "healthy" if age <= self.stale_after_sec else "stale"
        return {
            "status": status,
            "service": "chain_arbitrage_scanner",
            "uptime_sec": round(now - self.started_at, 1),
            "last_pass_age_sec": round(age, 1),
            "passes_seen": self.last_pass_at is not None,
        }

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ):
        """Start Prometheus metrics and liveness HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"📊 Metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        logger.info("📊 Metrics server stopped")

    async def _metrics_handler(self, request):
        """Handle metrics endpoint requests"""
        metrics_output = generate_latest(self.registry)
        # Strip charset from content type to avoid conflicts with aiohttp
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(
            text=metrics_output.decode("utf-8"), content_type=content_type
        )

    async def _health_handler(self, request):
        """Handle health check endpoint"""
        status = self.health_status()
        return web.Response(
            text=json.dumps(status),
            content_type="application/json",
            status=200 if status["status"] == "healthy" else 503,
        )
