#!/usr/bin/env python3
"""
Unit tests for the fetch orchestrator

Tests cover:
- Statistics vs history classification and result merging
- Throttling keyed by configuration fingerprint
- Partial and total upstream failure
- Self-rescheduling through an injected scheduler
- Prometheus counters
"""
import asyncio
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stackline.core.fetch import FetchOrchestrator, config_fingerprint
from stackline.core.metrics import FetchMetrics
from stackline.core.scheduler import ManualScheduler
from stackline.shared.config import EntityConfig, TimeFilter
from stackline.shared.models import Bucket, FetchStatus, Sample

HOUR = 3_600_000
NOW = 1_700_000_000_000


class FakeSource:
    """In-memory host: entities in `measurement` are served from statistics"""

    def __init__(self, measurement=(), stats=None, history=None, stats_error=None, history_error=None):
        self.measurement = set(measurement)
        self.stats = stats or {}
        self.history = history or {}
        self.stats_error = stats_error
        self.history_error = history_error
        self.stats_calls = []
        self.history_calls = []

    def has_measurement_class(self, entity_id):
        return entity_id in self.measurement

    def resolve_display_name(self, entity_id):
        return None

    def resolve_unit(self, entity_id):
        return None

    async def query_aggregated_statistics(self, entity_ids, start_ms, end_ms, period, types):
        self.stats_calls.append((list(entity_ids), start_ms, end_ms, period, list(types)))
        await asyncio.sleep(0)
        if self.stats_error:
            raise self.stats_error
        return {e: self.stats[e] for e in entity_ids if e in self.stats}

    async def query_raw_history(self, entity_ids, start_ms, end_ms):
        self.history_calls.append((list(entity_ids), start_ms, end_ms))
        await asyncio.sleep(0)
        if self.history_error:
            raise self.history_error
        return {e: self.history[e] for e in entity_ids if e in self.history}


class GatedSource(FakeSource):
    """History queries block until their first entity is released"""

    def __init__(self):
        super().__init__()
        self.gates = {}
        self.in_flight = 0
        self.max_in_flight = 0

    def _gate(self, entity_id):
        return self.gates.setdefault(entity_id, asyncio.Event())

    def release(self, entity_id):
        self._gate(entity_id).set()

    async def query_raw_history(self, entity_ids, start_ms, end_ms):
        self.history_calls.append((list(entity_ids), start_ms, end_ms))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self._gate(entity_ids[0]).wait()
        finally:
            self.in_flight -= 1
        return {e: [Sample(NOW - 1000, 1.0)] for e in entity_ids}


def _stat_buckets(values, start=NOW - 24 * HOUR):
    return [
        Bucket(start_ms=start + i * HOUR, end_ms=start + (i + 1) * HOUR, mean=v, last_value=v)
        for i, v in enumerate(values)
    ]


def _orchestrator(source, **kwargs):
    scheduler = kwargs.pop("scheduler", None) or ManualScheduler(start_ms=NOW)
    return FetchOrchestrator(source, scheduler, **kwargs)


SERIES = [EntityConfig(entity="sensor.a"), EntityConfig(entity="sensor.b")]


class TestFetchCycle:
    """Test one fetch cycle end to end"""

    def test_no_series_skips_queries(self):
        source = FakeSource()
        orch = _orchestrator(source)

        result = asyncio.run(orch.fetch([], 24, "hour", NOW))

        assert result.status == FetchStatus.NO_DATA
        assert source.stats_calls == []
        assert source.history_calls == []

    def test_classify(self):
        source = FakeSource(measurement=["sensor.a"])
        orch = _orchestrator(source)

        aggregated, raw = orch.classify(["sensor.a", "sensor.b", "sensor.a"])

        assert aggregated == ["sensor.a"]
        assert raw == ["sensor.b"]

    def test_merges_statistics_and_history(self):
        """Statistics pass through, raw history is bucketed locally"""
        window_start = NOW - 24 * HOUR
        source = FakeSource(
            measurement=["sensor.a"],
            stats={"sensor.a": _stat_buckets([1.0, 2.0])},
            history={"sensor.b": [
                Sample(window_start + 10, 4.0),
                Sample(window_start + 20, 6.0),
                Sample(window_start + HOUR + 1, None),
            ]},
        )
        orch = _orchestrator(source)

        result = asyncio.run(orch.fetch(SERIES, 24, "hour", NOW))

        assert result.status == FetchStatus.OK
        assert result.warnings == []
        assert len(result.data["sensor.a"]) == 2
        assert len(result.data["sensor.b"]) == 1
        assert result.data["sensor.b"][0].mean == 5.0
        assert result.data["sensor.b"][0].start_ms == window_start

    def test_query_window_and_types(self):
        """Window is [now - hours, now]; change is requested as state"""
        source = FakeSource(measurement=["sensor.a"], stats={"sensor.a": _stat_buckets([1.0])})
        orch = _orchestrator(source)
        series = [EntityConfig(entity="sensor.a", stat="change"), EntityConfig(entity="sensor.a", stat="max")]

        asyncio.run(orch.fetch(series, 6, "5minute", NOW))

        ids, start, end, period, types = source.stats_calls[0]
        assert ids == ["sensor.a"]
        assert start == NOW - 6 * HOUR
        assert end == NOW
        assert period == "5minute"
        assert types == ["max", "state"]

    def test_time_filter_entity_is_fetched(self):
        source = FakeSource()
        orch = _orchestrator(source)
        tf = TimeFilter(entity="binary_sensor.heater", operator="gt", value=0)

        asyncio.run(orch.fetch(SERIES[:1], 24, "hour", NOW, time_filter=tf))

        assert source.history_calls[0][0] == ["sensor.a", "binary_sensor.heater"]

    def test_partial_failure_keeps_other_branch(self):
        """A failing statistics query degrades to a warning"""
        window_start = NOW - 24 * HOUR
        source = FakeSource(
            measurement=["sensor.a"],
            stats_error=RuntimeError("websocket closed"),
            history={"sensor.b": [Sample(window_start + 1, 1.0)]},
        )
        orch = _orchestrator(source)

        result = asyncio.run(orch.fetch(SERIES, 24, "hour", NOW))

        assert result.status == FetchStatus.OK
        assert list(result.data) == ["sensor.b"]
        assert len(result.warnings) == 1
        assert "statistics" in result.warnings[0]

    def test_all_branches_failed(self):
        source = FakeSource(
            measurement=["sensor.a"],
            stats_error=RuntimeError("boom"),
            history_error=RuntimeError("boom"),
        )
        orch = _orchestrator(source)

        result = asyncio.run(orch.fetch(SERIES, 24, "hour", NOW))

        assert result.status == FetchStatus.FAILED
        assert result.data == {}
        assert len(result.warnings) == 2

    def test_empty_upstream_is_no_data(self):
        orch = _orchestrator(FakeSource())

        result = asyncio.run(orch.fetch(SERIES, 24, "hour", NOW))

        assert result.status == FetchStatus.NO_DATA
        assert not result.has_data


class TestThrottle:
    """Test throttling of unchanged configurations"""

    def test_unchanged_config_returns_previous_result(self):
        source = FakeSource(history={"sensor.a": [Sample(NOW - 1000, 1.0)]})
        orch = _orchestrator(source)

        async def run():
            first = await orch.fetch(SERIES, 24, "hour", NOW)
            second = await orch.fetch(SERIES, 24, "hour", NOW + 60_000)
            return first, second

        first, second = asyncio.run(run())

        assert second is first
        assert len(source.history_calls) == 1

    def test_refetch_after_throttle_window(self):
        source = FakeSource()
        orch = _orchestrator(source)

        async def run():
            await orch.fetch(SERIES, 24, "hour", NOW)
            await orch.fetch(SERIES, 24, "hour", NOW + 300_000)

        asyncio.run(run())

        assert len(source.history_calls) == 2

    def test_config_change_bypasses_throttle(self):
        source = FakeSource()
        orch = _orchestrator(source)

        async def run():
            await orch.fetch(SERIES, 24, "hour", NOW)
            await orch.fetch(SERIES, 48, "hour", NOW + 1_000)
            await orch.fetch(SERIES, 48, "hour", NOW + 2_000, normalize=True)

        asyncio.run(run())

        assert len(source.history_calls) == 3

    def test_concurrent_calls_share_one_cycle(self):
        """A call arriving while the cycle is in flight joins it"""
        source = FakeSource(history={"sensor.a": [Sample(NOW - 1000, 1.0)]})
        orch = _orchestrator(source)

        async def run():
            return await asyncio.gather(
                orch.fetch(SERIES, 24, "hour", NOW),
                orch.fetch(SERIES, 24, "hour", NOW + 1),
            )

        first, second = asyncio.run(run())

        assert second is first
        assert len(source.history_calls) == 1

    def test_config_change_waits_for_cycle_in_flight(self):
        """A newer configuration never runs beside, or is overwritten by, an older cycle"""
        source = GatedSource()
        orch = _orchestrator(source)
        series_a = [EntityConfig(entity="sensor.a")]
        series_b = [EntityConfig(entity="sensor.b")]

        async def run():
            old = asyncio.create_task(orch.fetch(series_a, 24, "hour", NOW))
            new = asyncio.create_task(orch.fetch(series_b, 24, "hour", NOW + 1))
            for _ in range(5):
                await asyncio.sleep(0)
            source.release("sensor.b")
            for _ in range(5):
                await asyncio.sleep(0)
            source.release("sensor.a")
            old_result, new_result = await old, await new
            again = await orch.fetch(series_b, 24, "hour", NOW + 2)
            return old_result, new_result, again

        old_result, new_result, again = asyncio.run(run())

        assert source.max_in_flight == 1
        assert list(old_result.data) == ["sensor.a"]
        assert list(new_result.data) == ["sensor.b"]
        assert again is new_result
        assert orch.last_result is new_result
        assert len(source.history_calls) == 2

    def test_fingerprint(self):
        assert config_fingerprint(SERIES, 24, "hour") == config_fingerprint(list(SERIES), 24, "hour")
        assert config_fingerprint(SERIES, 24, "hour") != config_fingerprint(SERIES, 24, "day")
        assert config_fingerprint(SERIES, 24, "hour") != config_fingerprint(SERIES[:1], 24, "hour")
        assert config_fingerprint(SERIES, 24, "hour", stacked=True) != config_fingerprint(SERIES, 24, "hour")


class TestRefreshSchedule:
    """Test self-rescheduling through the injected scheduler"""

    def test_cycle_schedules_next_refresh(self):
        scheduler = ManualScheduler(start_ms=NOW)
        calls = []
        orch = _orchestrator(FakeSource(), scheduler=scheduler, on_refresh=lambda: calls.append(scheduler.now_ms()))

        asyncio.run(orch.fetch(SERIES, 24, "hour"))

        assert orch.refresh_pending
        scheduler.advance(299_999)
        assert calls == []
        scheduler.advance(1)
        assert calls == [NOW + 300_000]
        assert not orch.refresh_pending

    def test_due_refresh_is_not_throttled(self):
        """Once the refresh timer fires the next fetch goes upstream"""
        scheduler = ManualScheduler(start_ms=NOW)
        source = FakeSource()
        orch = _orchestrator(source, scheduler=scheduler, on_refresh=lambda: None)

        asyncio.run(orch.fetch(SERIES, 24, "hour"))
        scheduler.advance(300_000)
        scheduler.set_time(NOW + 299_000)
        asyncio.run(orch.fetch(SERIES, 24, "hour"))

        assert len(source.history_calls) == 2

    def test_close_cancels_refresh(self):
        scheduler = ManualScheduler(start_ms=NOW)
        calls = []
        orch = _orchestrator(FakeSource(), scheduler=scheduler, on_refresh=lambda: calls.append(1))

        asyncio.run(orch.fetch(SERIES, 24, "hour"))
        orch.close()
        scheduler.advance(10 * 300_000)

        assert calls == []
        assert scheduler.pending == []

    def test_failed_cycle_still_reschedules(self):
        scheduler = ManualScheduler(start_ms=NOW)
        source = FakeSource(history_error=RuntimeError("down"))
        orch = _orchestrator(source, scheduler=scheduler, on_refresh=lambda: None)

        result = asyncio.run(orch.fetch(SERIES, 24, "hour"))

        assert result.status == FetchStatus.FAILED
        assert orch.refresh_pending


class TestFetchMetrics:
    """Test Prometheus counters recorded by the orchestrator"""

    def test_counters(self):
        metrics = FetchMetrics()
        source = FakeSource(
            measurement=["sensor.a"],
            stats_error=RuntimeError("boom"),
            history={"sensor.b": [Sample(NOW - 1000, 1.0)]},
        )
        orch = _orchestrator(source, metrics=metrics)

        async def run():
            await orch.fetch(SERIES, 24, "hour", NOW)
            await orch.fetch(SERIES, 24, "hour", NOW + 1)

        asyncio.run(run())

        registry = metrics.registry
        assert registry.get_sample_value("stackline_fetch_cycles_total", {"outcome": "ok"}) == 1.0
        assert registry.get_sample_value("stackline_fetch_throttled_total") == 1.0
        assert registry.get_sample_value("stackline_upstream_failures_total", {"branch": "statistics"}) == 1.0
        assert registry.get_sample_value("stackline_series_returned") == 1.0
        assert b"stackline_fetch_cycles_total" in metrics.render()
