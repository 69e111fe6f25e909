#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Fetch orchestration for the card.

Entities that declare a measurement class are read from the long-term
statistics backend, already bucketed. Everything else is read from raw state
history and bucketed locally. Both queries run concurrently and their results
are merged into one map of entity id -> buckets.

Re-fetches of an unchanged configuration are throttled to one per
FETCH_THROTTLE_MS, and every completed cycle schedules the next refresh.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import asdict
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from ..shared.config import EntityConfig, TimeFilter
from ..shared.constants import FETCH_THROTTLE_MS
from ..shared.models import Bucket, FetchCacheState, FetchResult, FetchStatus, Sample
from .bucketing import bucket_samples, period_ms
from .metrics import FetchMetrics
from .scheduler import Scheduler, TimerHandle

log = logging.getLogger(__name__)

STATISTICS_BRANCH = "statistics"
HISTORY_BRANCH = "history"


class HostDataSource(Protocol):
    """Host entity registry plus its two query capabilities."""

    def has_measurement_class(self, entity_id: str) -> bool: ...

    def resolve_display_name(self, entity_id: str) -> Optional[str]: ...

    def resolve_unit(self, entity_id: str) -> Optional[str]: ...

    async def query_aggregated_statistics(
        self,
        entity_ids: Sequence[str],
        start_ms: int,
        end_ms: int,
        period: str,
        types: Sequence[str],
    ) -> Dict[str, List[Bucket]]: ...

    async def query_raw_history(
        self,
        entity_ids: Sequence[str],
        start_ms: int,
        end_ms: int,
    ) -> Dict[str, List[Sample]]: ...


def config_fingerprint(
    series: Sequence[EntityConfig],
    hours_to_show: float,
    period: str,
    stacked: bool = False,
    chart_type: str = "line",
    normalize: bool = False,
    time_filter: Optional[TimeFilter] = None,
) -> str:
    """Content hash of every setting that changes what a fetch returns or how it is drawn."""
    payload = {
        "entities": [asdict(s) for s in series],
        "hours": hours_to_show,
        "period": period,
        "stacked": stacked,
        "chart_type": chart_type,
        "normalize": normalize,
        "time_filter": asdict(time_filter) if time_filter else None,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _unique(ids: Sequence[str]) -> List[str]:
    seen: Set[str] = set()
    out = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


class FetchOrchestrator:
    """
    Throttled, self-rescheduling fetch of statistics and history for one card

    Handles:
    - Classification of entities into statistics vs raw history sources
    - Concurrent upstream queries with per-branch failure isolation
    - Throttling keyed by a configuration fingerprint
    - Periodic refresh through the injected scheduler until close()
    """

    def __init__(
        self,
        source: HostDataSource,
        scheduler: Scheduler,
        on_refresh: Optional[Callable[[], None]] = None,
        throttle_ms: int = FETCH_THROTTLE_MS,
        metrics: Optional[FetchMetrics] = None,
    ) -> None:
        self.source = source
        self.scheduler = scheduler
        self.on_refresh = on_refresh
        self.throttle_ms = throttle_ms
        self.metrics = metrics
        self.cache = FetchCacheState()
        self.last_result: Optional[FetchResult] = None
        self._inflight: Optional[asyncio.Future] = None
        self._refresh_timer: Optional[TimerHandle] = None
        self._closed = False

    def classify(self, entity_ids: Sequence[str]) -> Tuple[List[str], List[str]]:
        """Split entity ids into (statistics-backed, raw-history) lists."""
        aggregated: List[str] = []
        raw: List[str] = []
        for entity_id in _unique(entity_ids):
            if self.source.has_measurement_class(entity_id):
                aggregated.append(entity_id)
            else:
                raw.append(entity_id)
        return aggregated, raw

    def is_throttled(self, fingerprint: str, now_ms: int) -> bool:
        return (
            fingerprint == self.cache.config_hash
            and now_ms - self.cache.last_fetch_ms < self.throttle_ms
        )

    async def fetch(
        self,
        series: Sequence[EntityConfig],
        hours_to_show: float,
        period: str,
        now_ms: Optional[int] = None,
        *,
        stacked: bool = False,
        chart_type: str = "line",
        normalize: bool = False,
        time_filter: Optional[TimeFilter] = None,
    ) -> FetchResult:
        """
        Run one fetch cycle, or return the previous result when throttled

        Args:
            series: Configured series, in card order
            hours_to_show: Window length ending at now_ms
            period: Period kind for statistics and local bucketing
            now_ms: Window end; defaults to the scheduler clock
            stacked, chart_type, normalize: Display flags folded into the fingerprint
            time_filter: Optional filter whose entity is fetched alongside the series

        Returns:
            FetchResult with status OK, NO_DATA or FAILED. Upstream errors never
            propagate out of this method.
        """
        if not series:
            log.debug("No series configured; skipping fetch")
            return FetchResult(status=FetchStatus.NO_DATA)

        now = self.scheduler.now_ms() if now_ms is None else int(now_ms)
        fingerprint = config_fingerprint(
            series, hours_to_show, period, stacked, chart_type, normalize, time_filter
        )

        if self.is_throttled(fingerprint, now):
            if self._inflight is not None and not self._inflight.done():
                log.debug("Fetch already in flight for this configuration; joining it")
                if self.metrics:
                    self.metrics.record_throttled()
                return await asyncio.shield(self._inflight)
            if self.last_result is not None:
                log.debug("Configuration unchanged within throttle window; reusing last result")
                if self.metrics:
                    self.metrics.record_throttled()
                return self.last_result

        self.cache.config_hash = fingerprint
        self.cache.last_fetch_ms = now
        previous = self._inflight
        inflight = asyncio.get_running_loop().create_future()
        self._inflight = inflight

        result = FetchResult(status=FetchStatus.FAILED, fetched_at_ms=now)
        try:
            # One cycle upstream at a time; a newer configuration queues behind the old one
            if previous is not None and not previous.done():
                log.debug("Waiting for the previous fetch cycle to finish")
                await asyncio.shield(previous)
            result = await self._run_cycle(series, hours_to_show, period, now, time_filter)
        except Exception as e:
            log.exception(f"Fetch cycle failed: {e}")
            result = FetchResult(status=FetchStatus.FAILED, warnings=[str(e)], fetched_at_ms=now)
        finally:
            if fingerprint == self.cache.config_hash:
                self.last_result = result
            else:
                log.debug("Configuration changed during the fetch cycle; result not cached")
            if not inflight.done():
                inflight.set_result(result)
            if self.metrics:
                self.metrics.record_cycle(result.status.value, len(result.data))
            self._reschedule()
        return result

    async def _run_cycle(
        self,
        series: Sequence[EntityConfig],
        hours_to_show: float,
        period: str,
        now: int,
        time_filter: Optional[TimeFilter],
    ) -> FetchResult:
        window_start = now - int(hours_to_show * 3600 * 1000)

        stats_by_entity: Dict[str, Set[str]] = {}
        for s in series:
            stats_by_entity.setdefault(s.entity, set()).add(s.stat)
        if time_filter is not None:
            stats_by_entity.setdefault(time_filter.entity, set()).add(time_filter.stat)

        aggregated, raw = self.classify(list(stats_by_entity))

        branches: List[Tuple[str, List[str], Awaitable[Dict[str, List[Bucket]]]]] = []
        if aggregated:
            types = sorted({
                "state" if stat == "change" else stat
                for entity_id in aggregated
                for stat in stats_by_entity[entity_id]
            })
            branches.append((
                STATISTICS_BRANCH,
                aggregated,
                self.source.query_aggregated_statistics(aggregated, window_start, now, period, types),
            ))
        if raw:
            branches.append((
                HISTORY_BRANCH,
                raw,
                self._fetch_history(raw, window_start, now, period),
            ))

        log.info(
            f"Fetching {len(aggregated)} statistics and {len(raw)} history entities "
            f"over {hours_to_show}h at period '{period}'"
        )
        outcomes = await asyncio.gather(*(b[2] for b in branches), return_exceptions=True)

        merged: Dict[str, List[Bucket]] = {}
        warnings: List[str] = []
        failures = 0
        for (name, requested, _), outcome in zip(branches, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failures += 1
                msg = f"{name} query failed: {outcome}"
                log.warning(msg)
                warnings.append(msg)
                if self.metrics:
                    self.metrics.record_failure(name)
                continue
            for entity_id in requested:
                buckets = (outcome or {}).get(entity_id)
                if buckets:
                    merged[entity_id] = list(buckets)

        if branches and failures == len(branches):
            status = FetchStatus.FAILED
        elif not merged:
            status = FetchStatus.NO_DATA
        else:
            status = FetchStatus.OK

        log.info(f"Fetch finished: status={status.value}, series={len(merged)}, warnings={len(warnings)}")
        return FetchResult(status=status, data=merged, warnings=warnings, fetched_at_ms=now)

    async def _fetch_history(
        self,
        entity_ids: List[str],
        window_start: int,
        window_end: int,
        period: str,
    ) -> Dict[str, List[Bucket]]:
        history = await self.source.query_raw_history(entity_ids, window_start, window_end)
        width = period_ms(period)
        result: Dict[str, List[Bucket]] = {}
        for entity_id in entity_ids:
            samples = (history or {}).get(entity_id) or []
            buckets = bucket_samples(samples, window_start, width)
            if buckets:
                result[entity_id] = buckets
        return result

    def _reschedule(self) -> None:
        if self._closed or self.on_refresh is None:
            return
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
        self._refresh_timer = self.scheduler.call_later(self.throttle_ms, self._refresh_due)

    def _refresh_due(self) -> None:
        self._refresh_timer = None
        if self._closed or self.on_refresh is None:
            return
        # timer and wall clock can disagree by a few ms; the window is over either way
        self.cache.last_fetch_ms = 0
        self.on_refresh()

    @property
    def refresh_pending(self) -> bool:
        return self._refresh_timer is not None

    def close(self) -> None:
        """Stop periodic refresh; no timer fires after this returns."""
        self._closed = True
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None
