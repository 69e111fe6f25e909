#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Domain Models for the Stack Line Card
Defines the data structures passed between fetching, bucketing, stat
extraction, dataset assembly and gesture handling.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union


@dataclass(frozen=True)
class Sample:
    """
    A single raw history reading

    value is None when the upstream state was not numeric; such samples are
    discarded before bucketing.
    """
    timestamp_ms: int
    value: Optional[float]


@dataclass
class Bucket:
    """
    Fixed-width aggregate of samples over [start_ms, end_ms)

    count is None for buckets that arrived pre-aggregated from upstream
    statistics, where the sample count is not reported.
    """
    start_ms: int
    end_ms: int
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    sum: Optional[float] = None
    last_value: Optional[float] = None
    count: Optional[int] = None

    def __post_init__(self):
        """Validate bucket bounds"""
        if self.end_ms <= self.start_ms:
            raise ValueError("Bucket end must be after its start")
        if self.count is not None and self.count < 1:
            raise ValueError("Bucket count must be >= 1")

    def field_value(self, stat: str) -> Optional[float]:
        """Return the aggregate backing a stat kind ('state' reads last_value)."""
        if stat == "state":
            return self.last_value
        if stat in ("min", "max", "mean", "sum"):
            return getattr(self, stat)
        raise ValueError(f"Stat '{stat}' is not a bucket field")


@dataclass(frozen=True)
class Point:
    """One chart point: x in epoch milliseconds, y the plotted value"""
    x: int
    y: float


PointSeries = List[Point]


FillMode = Union[bool, str]  # False | "origin" | "stack"


@dataclass
class RenderDataset:
    """Renderer-ready series record"""
    label: str
    source_id: str
    points: PointSeries
    border_color: str
    background_color: str
    fill: FillMode = False
    stack: Optional[str] = None
    opacity: float = 0.3
    tension: float = 0.4
    point_radius: int = 0
    point_hover_radius: int = 4
    border_width: float = 1.5


@dataclass
class DatasetBundle:
    """
    Output of dataset assembly

    raw_points maps dataset index to its pre-normalization series so hover
    layers can show true magnitudes while the plotted curve is normalized.
    """
    datasets: List[RenderDataset] = field(default_factory=list)
    raw_points: Dict[int, PointSeries] = field(default_factory=dict)
    normalized: bool = False

    @property
    def no_data(self) -> bool:
        return all(len(ds.points) == 0 for ds in self.datasets)


class FetchStatus(str, Enum):
    OK = "ok"
    NO_DATA = "no_data"
    FAILED = "failed"


@dataclass
class FetchResult:
    """
    Result of one fetch cycle

    data maps source id to its buckets; warnings carries branch failures that
    were tolerated.
    """
    status: FetchStatus
    data: Dict[str, List[Bucket]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    fetched_at_ms: int = 0

    @property
    def has_data(self) -> bool:
        return self.status == FetchStatus.OK and bool(self.data)


@dataclass
class FetchCacheState:
    """Fingerprint and time of the last fetch attempt for one card"""
    config_hash: str = ""
    last_fetch_ms: int = 0


class GesturePhase(str, Enum):
    IDLE = "idle"
    HOLD_ARMED = "hold_armed"
    AWAITING_SECOND_TAP = "awaiting_second_tap"


@dataclass
class GestureState:
    """Per-interaction gesture bookkeeping; pending_tap_at_ms is None when no tap is pending"""
    hold_armed: bool = False
    hold_fired: bool = False
    pending_tap_at_ms: Optional[int] = None
    phase: GesturePhase = GesturePhase.IDLE

    def reset(self) -> None:
        self.hold_armed = False
        self.hold_fired = False
        self.pending_tap_at_ms = None
        self.phase = GesturePhase.IDLE


@dataclass
class AxisOptions:
    """Axis and legend options handed to the renderer with the datasets"""
    stacked: bool = False
    begin_at_zero: bool = False
    y_min: Optional[float] = None
    y_max: Optional[float] = None
    percent_ticks: bool = False
    show_legend: bool = True
    title: Optional[str] = None
    x_max_ticks: int = 6
    y_max_ticks: int = 5
