"""Metrics collector — Prometheus counters, gauges, histograms.

- ``pool_wallet_discovery_pages_total`` counter
- ``pool_wallet_discovery_deposits_total`` counter-vec (checked, matched)
- ``pool_wallet_discovery_histogram`` run duration
- ``pool_wallet_discovery_last_run_gauge`` timestamp of the last finished run
- ``pool_wallet_key_derivation_histogram`` per method
- ``pool_wallet_withdrawal_stage_total`` counter-vec per stage entered

Metrics never carry account names, keys or amounts.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

_PREFIX = "pool_wallet"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`EngineMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        return Counter(name, doc, labels, registry=self._registry)


class EngineMetrics:
    """High-level wallet engine metrics."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._pages = self._collector.counter(
            f"{_PREFIX}_discovery_pages",
            "Event log pages merged by note discovery",
        )
        self._deposits = self._collector.counter(
            f"{_PREFIX}_discovery_deposits",
            "Deposit indices checked and matched by note discovery",
            ("result",),
        )
        self._discovery = self._collector.histogram(
            f"{_PREFIX}_discovery_histogram",
            "Duration of note discovery runs",
        )
        self._discovery_last = self._collector.gauge(
            f"{_PREFIX}_discovery_last_run_gauge",
            "Timestamp of the last finished discovery run",
        )
        self._kdf = self._collector.histogram(
            f"{_PREFIX}_key_derivation_histogram",
            "Duration of symmetric key derivation",
            ("method",),
        )
        self._stages = self._collector.counter(
            f"{_PREFIX}_withdrawal_stage",
            "Withdrawal pipeline stages entered",
            ("stage",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    # -- Counters --

    def record_page(self, *, deposits_checked: int, deposits_matched: int) -> None:
        """Count one merged discovery page."""
        self._pages.inc()
        self._deposits.labels(result="checked").inc(deposits_checked)
        self._deposits.labels(result="matched").inc(deposits_matched)

    def record_withdrawal_stage(self, stage: str) -> None:
        self._stages.labels(stage=stage).inc()

    # -- Operation trackers (context managers) --

    @contextmanager
    def track_discovery(self) -> Iterator[None]:
        """Track the duration of a discovery run and record when it ended."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._discovery.observe(time.monotonic() - start)
            self._discovery_last.set(time.time())

    @contextmanager
    def track_key_derivation(self, method: str) -> Iterator[None]:
        """Track the duration of a password or hardware key derivation."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._kdf.labels(method=method).observe(time.monotonic() - start)
