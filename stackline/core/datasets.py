#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Dataset assembly: fetched buckets -> renderer-ready series.

For each configured series this extracts the requested statistic, applies the
optional time filter and normalization, and attaches the visual attributes
(color, fill, stacking). The pre-normalization series is kept per dataset
index for tooltips.
"""
from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional, Sequence, Set

from ..shared.config import CardConfig, EntityConfig, TimeFilter
from ..shared.constants import COLOR_PALETTE, DEFAULT_FILL_OPACITY
from ..shared.models import AxisOptions, Bucket, DatasetBundle, RenderDataset
from ..shared.utils import hex_to_rgba
from .stats import filter_by_times, matching_times, normalize_series, select_stat

log = logging.getLogger(__name__)

NameResolver = Callable[[str], Optional[str]]


def series_color(spec: EntityConfig, index: int) -> str:
    return spec.color or COLOR_PALETTE[index % len(COLOR_PALETTE)]


def effective_fill(spec: EntityConfig, chart_type: str) -> bool:
    """An explicit per-series fill flag wins; otherwise area charts fill."""
    if spec.fill is not None:
        return bool(spec.fill)
    return chart_type == "area"


def allowed_times(time_filter: Optional[TimeFilter], data: Mapping[str, Sequence[Bucket]]) -> Optional[Set[int]]:
    """
    Bucket starts that pass the time filter, or None when no filter is set.

    A filter entity without data lets nothing through.
    """
    if time_filter is None:
        return None
    buckets = data.get(time_filter.entity) or []
    if not buckets:
        log.warning(f"Time filter entity '{time_filter.entity}' returned no data; all points filtered out")
        return set()
    points = select_stat(buckets, time_filter.stat)
    return matching_times(points, time_filter.operator, time_filter.value)


def assemble(
    series: Sequence[EntityConfig],
    bucketed_data: Mapping[str, Sequence[Bucket]],
    normalize: bool,
    stacked: bool,
    chart_type: str,
    show_points: bool = False,
    name_resolver: Optional[NameResolver] = None,
    time_filter_points: Optional[Set[int]] = None,
) -> DatasetBundle:
    """
    Build one RenderDataset per configured series, in configuration order.

    Args:
        series: Configured series specs
        bucketed_data: entity id -> buckets, as returned by the fetch
        normalize: Rescale each series to [0, 1]
        stacked: Stack filled series on the previous series' cumulative value
        chart_type: 'line' or 'area'; area fills series without an explicit flag
        show_points: Draw point markers
        name_resolver: Host lookup for a display name when the series has none
        time_filter_points: Bucket starts allowed by the time filter (None = all)

    Returns:
        DatasetBundle; its no_data flag is set when every series is empty
    """
    bundle = DatasetBundle(normalized=normalize)

    for index, spec in enumerate(series):
        buckets = bucketed_data.get(spec.entity) or []
        raw = filter_by_times(select_stat(buckets, spec.stat), time_filter_points)
        bundle.raw_points[index] = raw
        plotted = normalize_series(raw) if normalize else raw

        color = series_color(spec, index)
        filled = effective_fill(spec, chart_type)
        opacity = spec.opacity if spec.opacity is not None else DEFAULT_FILL_OPACITY

        label = spec.name or (name_resolver(spec.entity) if name_resolver else None) or spec.entity

        bundle.datasets.append(RenderDataset(
            label=label,
            source_id=spec.entity,
            points=plotted,
            border_color=color,
            background_color=hex_to_rgba(color, opacity) if filled else "transparent",
            fill=("stack" if stacked else "origin") if filled else False,
            stack="stack" if stacked else None,
            opacity=opacity,
            point_radius=2 if show_points else 0,
        ))

    if bundle.no_data:
        log.info("All configured series are empty; nothing to render")
    return bundle


def assemble_for_card(
    config: CardConfig,
    bucketed_data: Mapping[str, Sequence[Bucket]],
    name_resolver: Optional[NameResolver] = None,
) -> DatasetBundle:
    """assemble() driven by a card configuration, time filter included."""
    return assemble(
        config.entities,
        bucketed_data,
        normalize=config.normalize,
        stacked=config.stacked,
        chart_type=config.chart_type,
        show_points=config.show_points,
        name_resolver=name_resolver,
        time_filter_points=allowed_times(config.time_filter, bucketed_data),
    )


def build_axis_options(config: CardConfig) -> AxisOptions:
    """Axis options matching the card flags: stacked and normalized charts start at zero."""
    return AxisOptions(
        stacked=config.stacked,
        begin_at_zero=config.stacked or config.normalize,
        y_min=0.0 if config.normalize else None,
        y_max=1.0 if config.normalize else None,
        percent_ticks=config.normalize,
        show_legend=config.show_legend,
        title=config.title,
    )


def format_tooltip_label(
    bundle: DatasetBundle,
    dataset_index: int,
    point_index: int,
    unit: Optional[str] = None,
) -> str:
    """
    Hover text for one point, e.g. ' Power: 12.50 W'.

    Normalized charts show the pre-normalization value.
    """
    dataset = bundle.datasets[dataset_index]
    source = bundle.raw_points.get(dataset_index, []) if bundle.normalized else dataset.points
    value: Optional[float] = None
    if 0 <= point_index < len(source):
        value = source[point_index].y
    display = f"{value:.2f}" if value is not None else "N/A"
    suffix = f" {unit}" if unit else ""
    return f" {dataset.label}: {display}{suffix}"


def percent_tick(value: float) -> str:
    return f"{round(float(value) * 100)}%"

