#!/usr/bin/env python3
"""
Local bucketing of raw history samples into fixed-width statistics buckets.

Used only for entities without long-term statistics: their raw state history
is folded into the same bucket shape the statistics backend returns, so the
rest of the pipeline never needs to know where a series came from.

Bucket boundaries are anchored to the query window start, not to calendar
boundaries. Two windows starting at different instants bucket the same
readings differently.
"""
from __future__ import annotations

import math
import logging
from typing import Iterable, List

import numpy as np

from ..shared.constants import PERIOD_MS
from ..shared.models import Bucket, Sample

log = logging.getLogger(__name__)


def period_ms(period: str) -> int:
    """
    Width of one bucket for a period kind, in milliseconds.

    Unknown kinds fall back to one hour.
    """
    if period not in PERIOD_MS:
        log.warning(f"Invalid period '{period}', falling back to 'hour'")
        return PERIOD_MS["hour"]
    return PERIOD_MS[period]


def _numeric_samples(samples: Iterable[Sample]) -> List[Sample]:
    kept = []
    for s in samples:
        v = s.value
        if v is None or isinstance(v, bool):
            continue
        if not isinstance(v, (int, float)) or math.isnan(v):
            continue
        kept.append(s)
    return kept


def bucket_samples(samples: Iterable[Sample], window_start_ms: int, period: int) -> List[Bucket]:
    """
    Fold samples into buckets of width `period` anchored at window_start_ms.

    Args:
        samples: Raw readings, any order
        window_start_ms: Start of the query window (epoch ms)
        period: Bucket width in milliseconds

    Returns:
        Non-empty buckets sorted by start. Each carries min, max, mean, sum,
        count and the value of the chronologically last sample.

    Edge Cases:
        - Non-numeric or missing values are dropped, never counted as 0
        - Samples before window_start_ms land in negative-index buckets
        - Equal timestamps keep input order, so last_value is the later input
    """
    if period <= 0:
        raise ValueError(f"Bucket period must be positive, got {period}")

    numeric = _numeric_samples(samples)
    if not numeric:
        return []

    times = np.array([s.timestamp_ms for s in numeric], dtype=np.int64)
    values = np.array([s.value for s in numeric], dtype=float)

    order = np.argsort(times, kind="stable")
    times = times[order]
    values = values[order]

    indices = np.floor_divide(times - int(window_start_ms), int(period))
    unique_idx, first_pos, counts = np.unique(indices, return_index=True, return_counts=True)

    buckets: List[Bucket] = []
    for idx, start, n in zip(unique_idx, first_pos, counts):
        chunk = values[start:start + n]
        bucket_start = int(window_start_ms) + int(idx) * int(period)
        total = float(np.sum(chunk))
        buckets.append(Bucket(
            start_ms=bucket_start,
            end_ms=bucket_start + int(period),
            min=float(np.min(chunk)),
            max=float(np.max(chunk)),
            mean=total / int(n),
            sum=total,
            last_value=float(chunk[-1]),
            count=int(n),
        ))

    log.debug(f"Bucketed {len(numeric)} samples into {len(buckets)} buckets of {period} ms")
    return buckets
