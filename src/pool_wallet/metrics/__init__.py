"""Metrics — Prometheus metrics for discovery, key derivation and withdrawals."""

from __future__ import annotations

from pool_wallet.metrics.collector import EngineMetrics, MetricsCollector

__all__ = ["EngineMetrics", "MetricsCollector"]
