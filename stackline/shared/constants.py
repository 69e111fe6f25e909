#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Card-wide constants: defaults, palette, labels and timing thresholds.
"""
from __future__ import annotations

from typing import Dict, List

STAT_TYPES = ("min", "max", "mean", "sum", "state", "change")
PERIOD_TYPES = ("5minute", "hour", "day", "week", "month")
CHART_TYPES = ("line", "area")
ACTION_TYPES = ("more-info", "toggle", "navigate", "url", "perform-action", "assist", "none")
FILTER_OPERATORS = ("gt", "lt", "gte", "lte", "eq", "neq")

DEFAULT_GRID_OPTIONS: Dict[str, int] = {
    "columns": 6,
    "rows": 4,
    "min_columns": 3,
    "max_columns": 12,
    "min_rows": 2,
    "max_rows": 8,
}

DEFAULT_CONFIG: Dict[str, object] = {
    "hours_to_show": 24,
    "period": "hour",
    "stacked": False,
    "chart_type": "line",
    "show_legend": True,
    "show_points": False,
    "normalize": False,
    "tap_action": {"action": "none"},
    "hold_action": {"action": "none"},
    "double_tap_action": {"action": "none"},
    "grid_options": DEFAULT_GRID_OPTIONS,
}

COLOR_PALETTE: List[str] = [
    "#4fc3f7",  # light blue
    "#ff8a65",  # deep orange
    "#81c784",  # green
    "#ba68c8",  # purple
    "#fff176",  # yellow
    "#f06292",  # pink
    "#4dd0e1",  # cyan
    "#a1887f",  # brown
    "#90a4ae",  # blue grey
    "#aed581",  # light green
]

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS

# month is a fixed 30 days, not a calendar month
PERIOD_MS: Dict[str, int] = {
    "5minute": 5 * _MINUTE_MS,
    "hour": _HOUR_MS,
    "day": _DAY_MS,
    "week": 7 * _DAY_MS,
    "month": 30 * _DAY_MS,
}

FETCH_THROTTLE_MS = 5 * 60 * 1000

HOLD_THRESHOLD_MS = 500
DOUBLE_TAP_THRESHOLD_MS = 250

DEFAULT_FILL_OPACITY = 0.3
