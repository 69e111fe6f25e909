#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Prometheus metrics for the fetch loop.

A private CollectorRegistry per card keeps multiple cards (and tests) from
colliding on metric names in the process-wide default registry.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server

log = logging.getLogger(__name__)


class FetchMetrics:
    def __init__(self, prefix: str = "stackline_", registry: Optional[CollectorRegistry] = None) -> None:
        self.prefix = prefix
        self.registry = registry or CollectorRegistry()
        self.fetch_cycles = Counter(
            f"{prefix}fetch_cycles_total",
            "Completed fetch cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.throttled = Counter(
            f"{prefix}fetch_throttled_total",
            "Fetch calls served from the previous result within the throttle window",
            registry=self.registry,
        )
        self.upstream_failures = Counter(
            f"{prefix}upstream_failures_total",
            "Upstream query branches that raised",
            ["branch"],
            registry=self.registry,
        )
        self.series = Gauge(
            f"{prefix}series_returned",
            "Number of series returned by the last fetch cycle",
            registry=self.registry,
        )
        self.last_fetch = Gauge(
            f"{prefix}last_fetch_timestamp_seconds",
            "Completion time of the last fetch cycle (UTC epoch)",
            registry=self.registry,
        )

    def record_cycle(self, outcome: str, series_count: int) -> None:
        self.fetch_cycles.labels(outcome=outcome).inc()
        self.series.set(series_count)
        self.last_fetch.set(time.time())

    def record_throttled(self) -> None:
        self.throttled.inc()

    def record_failure(self, branch: str) -> None:
        self.upstream_failures.labels(branch=branch).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def start_http(self, address: str = "0.0.0.0", port: int = 9109) -> None:
        start_http_server(port, addr=address, registry=self.registry)
        log.info(f"Metrics server listening on {address}:{port}")
