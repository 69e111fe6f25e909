#!/usr/bin/env python3
"""
Unit tests for local bucketing of raw history

Tests cover:
- bucket_samples() aggregates (min/max/mean/sum/last/count)
- Anchoring at the window start
- Dropping of non-numeric samples
- period_ms() lookup and fallback
"""
import pytest
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stackline.core.bucketing import bucket_samples, period_ms
from stackline.shared.models import Sample

HOUR = 3_600_000


class TestBucketSamples:
    """Test bucket_samples function"""

    def test_empty_input(self):
        """No samples gives no buckets"""
        assert bucket_samples([], 0, HOUR) == []

    def test_single_bucket_aggregates(self):
        """All aggregates of one bucket are computed from its samples"""
        samples = [Sample(0, 10.0), Sample(1_000, 30.0), Sample(2_000, 20.0)]

        buckets = bucket_samples(samples, 0, HOUR)

        assert len(buckets) == 1
        b = buckets[0]
        assert b.start_ms == 0
        assert b.end_ms == HOUR
        assert b.min == 10.0
        assert b.max == 30.0
        assert b.sum == 60.0
        assert b.mean == pytest.approx(20.0)
        assert b.last_value == 20.0
        assert b.count == 3

    def test_samples_split_across_buckets(self):
        """Samples land in floor((t - start) / period) and empty buckets are omitted"""
        start = 1_700_000_000_000
        samples = [
            Sample(start + 10, 1.0),
            Sample(start + HOUR + 5, 2.0),
            Sample(start + 3 * HOUR, 4.0),
        ]

        buckets = bucket_samples(samples, start, HOUR)

        assert [b.start_ms for b in buckets] == [start, start + HOUR, start + 3 * HOUR]
        assert [b.count for b in buckets] == [1, 1, 1]

    def test_anchored_at_window_start(self):
        """Bucket boundaries follow the window start, not calendar hours"""
        start = 30 * 60 * 1000  # half past midnight
        samples = [Sample(start + 29 * 60 * 1000, 1.0), Sample(start + 31 * 60 * 1000, 2.0)]

        buckets = bucket_samples(samples, start, HOUR)

        assert len(buckets) == 1
        assert buckets[0].start_ms == start

    def test_unordered_input_uses_chronological_last(self):
        """last_value is the chronologically last sample regardless of input order"""
        samples = [Sample(3_000, 7.0), Sample(1_000, 1.0), Sample(2_000, 5.0)]

        buckets = bucket_samples(samples, 0, HOUR)

        assert buckets[0].last_value == 7.0

    def test_equal_timestamps_keep_input_order(self):
        """Ties on timestamp resolve last_value to the later input"""
        samples = [Sample(1_000, 1.0), Sample(1_000, 9.0)]

        buckets = bucket_samples(samples, 0, HOUR)

        assert buckets[0].last_value == 9.0

    def test_non_numeric_samples_dropped(self):
        """Missing and NaN values are skipped, not counted as zero"""
        samples = [Sample(0, None), Sample(1_000, float("nan")), Sample(2_000, 4.0)]

        buckets = bucket_samples(samples, 0, HOUR)

        assert len(buckets) == 1
        assert buckets[0].count == 1
        assert buckets[0].min == 4.0

    def test_only_non_numeric_gives_no_buckets(self):
        """A series of 'unavailable' states yields nothing"""
        assert bucket_samples([Sample(0, None), Sample(1, None)], 0, HOUR) == []

    def test_samples_before_window(self):
        """Samples before the window start go into negative-index buckets"""
        buckets = bucket_samples([Sample(-10, 3.0)], 0, HOUR)

        assert buckets[0].start_ms == -HOUR

    def test_invalid_period(self):
        """A non-positive period is rejected"""
        with pytest.raises(ValueError, match="positive"):
            bucket_samples([Sample(0, 1.0)], 0, 0)


class TestPeriodMs:
    """Test period_ms lookup"""

    def test_known_periods(self):
        assert period_ms("5minute") == 300_000
        assert period_ms("hour") == HOUR
        assert period_ms("day") == 24 * HOUR
        assert period_ms("week") == 7 * 24 * HOUR
        assert period_ms("month") == 30 * 24 * HOUR

    def test_unknown_period_falls_back_to_hour(self, caplog):
        """Unknown kinds log a warning and use one hour"""
        assert period_ms("fortnight") == HOUR
        assert "fortnight" in caplog.text
