#!/usr/bin/env python3
"""
Stat extraction and per-series normalization.

select_stat turns a bucket list into the point series for one configured
statistic; normalize_series rescales one series to [0, 1].
"""
from __future__ import annotations

import operator
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..shared.models import Bucket, Point, PointSeries

log = logging.getLogger(__name__)


def _ordered(buckets: Iterable[Bucket]) -> List[Bucket]:
    # Upstream statistics are normally sorted already; a repeated start is dropped
    seen: Set[int] = set()
    out: List[Bucket] = []
    for b in sorted(buckets, key=lambda b: b.start_ms):
        if b.start_ms in seen:
            continue
        seen.add(b.start_ms)
        out.append(b)
    return out


def select_stat(buckets: Iterable[Bucket], stat: str) -> PointSeries:
    """
    Extract the point series for one statistic kind.

    min/max/mean/sum/state project the bucket field at the bucket start and
    skip buckets where it is missing. change emits last[i] - last[i-1] at the
    start of bucket i for adjacent pairs that both have a last value, so the
    first bucket never yields a point.
    """
    ordered = _ordered(buckets)

    if stat == "change":
        points: PointSeries = []
        for prev, curr in zip(ordered, ordered[1:]):
            if prev.last_value is None or curr.last_value is None:
                continue
            points.append(Point(x=curr.start_ms, y=curr.last_value - prev.last_value))
        return points

    return [
        Point(x=b.start_ms, y=float(b.field_value(stat)))
        for b in ordered
        if b.field_value(stat) is not None
    ]


def normalize_series(points: PointSeries) -> PointSeries:
    """
    Min-max rescale one series to [0, 1].

    A constant (or single-point) series maps to 0.5 everywhere. The scale is
    local to the series, so two normalized series compare only in shape.
    """
    if not points:
        return []
    values = [p.y for p in points]
    lo = min(values)
    hi = max(values)
    span = hi - lo
    if span == 0:
        return [Point(x=p.x, y=0.5) for p in points]
    return [Point(x=p.x, y=(p.y - lo) / span) for p in points]


FILTER_OPS: Dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
    "eq": operator.eq,
    "neq": operator.ne,
}


def matching_times(points: PointSeries, op: str, threshold: float) -> Set[int]:
    """Bucket starts whose value satisfies `value <op> threshold`."""
    compare = FILTER_OPS[op]
    return {p.x for p in points if compare(p.y, threshold)}


def filter_by_times(points: PointSeries, allowed: Optional[Set[int]]) -> PointSeries:
    """Keep points whose x is in `allowed`; None means no filtering."""
    if allowed is None:
        return points
    return [p for p in points if p.x in allowed]
