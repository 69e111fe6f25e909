#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Matplotlib renderer for assembled datasets.

Implements the renderer contract the card drives:
render -> handle, update_in_place, resize, destroy (plus save for PNG output).
With stacking on, every dataset is drawn on top of the cumulative value of the
datasets before it, and 'stack' fills span from that baseline.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import matplotlib
matplotlib.use("Agg")  # non-interactive backend
import matplotlib.pyplot as plt
import matplotlib.dates as mdates
from matplotlib.ticker import FuncFormatter, MaxNLocator
import numpy as np

from ..shared.models import AxisOptions, RenderDataset
from ..shared.utils import timestamp_to_datetime
from .datasets import percent_tick

log = logging.getLogger(__name__)


@dataclass
class ChartHandle:
    fig: Optional[plt.Figure]
    ax: Optional[plt.Axes]
    width: float
    height: float

    @property
    def alive(self) -> bool:
        return self.fig is not None


class MatplotlibRenderer:
    def __init__(self, width: float = 8.0, height: float = 4.0, dpi: int = 150) -> None:
        self.width = width
        self.height = height
        self.dpi = dpi

    def render(self, datasets: Sequence[RenderDataset], options: AxisOptions) -> ChartHandle:
        fig, ax = plt.subplots(figsize=(self.width, self.height))
        handle = ChartHandle(fig=fig, ax=ax, width=self.width, height=self.height)
        self._draw(handle, datasets, options)
        return handle

    def update_in_place(self, handle: ChartHandle, datasets: Sequence[RenderDataset], options: AxisOptions) -> None:
        if not handle.alive:
            raise ValueError("Cannot update a destroyed chart")
        handle.ax.clear()
        self._draw(handle, datasets, options)
        handle.fig.canvas.draw_idle()

    def resize(self, handle: ChartHandle, width: Optional[float] = None, height: Optional[float] = None) -> None:
        if not handle.alive:
            return
        handle.width = width or handle.width
        handle.height = height or handle.height
        handle.fig.set_size_inches(handle.width, handle.height, forward=True)

    def destroy(self, handle: ChartHandle) -> None:
        if handle.fig is not None:
            plt.close(handle.fig)
        handle.fig = None
        handle.ax = None

    def save(self, handle: ChartHandle, path: str) -> Path:
        if not handle.alive:
            raise ValueError("Cannot save a destroyed chart")
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        handle.fig.savefig(str(out_path), dpi=self.dpi, bbox_inches="tight")
        log.info(f"Chart written to {out_path}")
        return out_path

    def _draw(self, handle: ChartHandle, datasets: Sequence[RenderDataset], options: AxisOptions) -> None:
        ax = handle.ax
        cumulative: Dict[int, float] = {}

        for ds in datasets:
            if not ds.points:
                continue
            xs = [p.x for p in ds.points]
            ys = np.array([p.y for p in ds.points], dtype=float)
            times = [timestamp_to_datetime(x) for x in xs]

            if options.stacked:
                base = np.array([cumulative.get(x, 0.0) for x in xs], dtype=float)
                top = base + ys
                for x, v in zip(xs, top):
                    cumulative[x] = float(v)
            else:
                base = np.zeros_like(ys)
                top = ys

            ax.plot(
                times, top,
                color=ds.border_color,
                linewidth=ds.border_width,
                marker="o" if ds.point_radius else None,
                markersize=ds.point_radius * 2,
                label=ds.label,
            )
            if ds.fill:
                lower = base if ds.fill == "stack" else np.zeros_like(top)
                ax.fill_between(times, lower, top, color=ds.border_color, alpha=ds.opacity, linewidth=0)

        self._style_axes(ax, options, datasets)

    def _style_axes(self, ax: plt.Axes, options: AxisOptions, datasets: Sequence[RenderDataset]) -> None:
        locator = mdates.AutoDateLocator(maxticks=options.x_max_ticks)
        ax.xaxis.set_major_locator(locator)
        ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(locator))
        ax.yaxis.set_major_locator(MaxNLocator(nbins=options.y_max_ticks))
        ax.grid(axis="y", alpha=0.4, linestyle="--")
        for side in ("top", "right", "left", "bottom"):
            ax.spines[side].set_visible(False)

        if options.percent_ticks:
            ax.yaxis.set_major_formatter(FuncFormatter(lambda v, _pos: percent_tick(v)))
        if options.y_min is not None or options.y_max is not None:
            ax.set_ylim(bottom=options.y_min, top=options.y_max)
        elif options.begin_at_zero:
            bottom, _top = ax.get_ylim()
            ax.set_ylim(bottom=min(0.0, bottom))

        if options.title:
            ax.set_title(options.title, loc="left")
        labelled: List[RenderDataset] = [ds for ds in datasets if ds.points]
        if options.show_legend and labelled:
            ax.legend(loc="upper center", bbox_to_anchor=(0.5, -0.12), ncol=min(4, len(labelled)), frameon=False, fontsize=8)
