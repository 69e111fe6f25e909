#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Stack Line Card facade.

Owns one card instance's state: configuration, fetch cache, chart handle,
gesture timers. The host calls set_config / update_hass whenever its
configuration or state changes and refresh() to re-evaluate; unchanged inputs
are absorbed by the fetch throttle. close() is the teardown hook.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..shared.config import CardConfig, GridOptions, card_config_from_dict
from ..shared.constants import DEFAULT_CONFIG
from ..shared.models import DatasetBundle, FetchResult
from .actions import ActionExecutor, ActionHost, ConfirmFn
from .datasets import assemble_for_card, build_axis_options, format_tooltip_label
from .fetch import FetchOrchestrator, HostDataSource
from .gestures import GestureDispatcher
from .metrics import FetchMetrics
from .renderer import ChartHandle, MatplotlibRenderer
from .scheduler import AsyncioScheduler, Scheduler

log = logging.getLogger(__name__)


class StackLineCard:
    def __init__(
        self,
        source: Optional[HostDataSource] = None,
        action_host: Optional[ActionHost] = None,
        renderer: Optional[MatplotlibRenderer] = None,
        scheduler: Optional[Scheduler] = None,
        confirm: Optional[ConfirmFn] = None,
        metrics: Optional[FetchMetrics] = None,
        on_render: Optional[Callable[[ChartHandle], None]] = None,
    ) -> None:
        self.source = source
        self.action_host = action_host
        self.renderer = renderer or MatplotlibRenderer()
        self.scheduler = scheduler or AsyncioScheduler()
        self.confirm = confirm
        self.metrics = metrics
        self.on_render = on_render

        self.config: Optional[CardConfig] = None
        self.loading = True
        self.no_data = False
        self.bundle: Optional[DatasetBundle] = None
        self.handle: Optional[ChartHandle] = None
        self.gestures: Optional[GestureDispatcher] = None

        self._orchestrator: Optional[FetchOrchestrator] = None
        self._rendered_result: Optional[FetchResult] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._closed = False

    # ── Card API ────────────────────────────────────────────────

    @staticmethod
    def get_stub_config() -> Dict[str, Any]:
        stub = copy.deepcopy(DEFAULT_CONFIG)
        stub["entities"] = []
        return stub

    def set_config(self, raw: Optional[Mapping[str, Any]]) -> CardConfig:
        """Validate and apply a raw card configuration (ConfigError on invalid input)."""
        return self.apply_config(card_config_from_dict(dict(raw) if raw else None))

    def apply_config(self, config: CardConfig) -> CardConfig:
        self.config = config
        if self.gestures is not None:
            self.gestures.close()
        executor = ActionExecutor(
            self.action_host,
            confirm=self.confirm,
            default_entity=config.entities[0].entity if config.entities else None,
        )
        self.gestures = GestureDispatcher(
            self.scheduler,
            executor.execute,
            tap_action=config.tap_action,
            hold_action=config.hold_action,
            double_tap_action=config.double_tap_action,
        )
        return config

    def update_hass(self, source: HostDataSource) -> None:
        self.source = source
        if self._orchestrator is not None:
            self._orchestrator.source = source

    def get_card_size(self) -> int:
        return self.config.grid_options.rows if self.config else 4

    def get_grid_options(self) -> GridOptions:
        return self.config.grid_options if self.config else GridOptions()

    def has_any_action(self) -> bool:
        return bool(self.config and self.config.has_any_action())

    # ── Data ────────────────────────────────────────────────────

    def _ensure_orchestrator(self) -> FetchOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = FetchOrchestrator(
                self.source,
                self.scheduler,
                on_refresh=self._on_refresh_due,
                metrics=self.metrics,
            )
        return self._orchestrator

    async def refresh(self, now_ms: Optional[int] = None) -> Optional[FetchResult]:
        """
        Re-evaluate the card: fetch (throttled), assemble, render.

        Returns the fetch result, or None when the card cannot fetch at all
        (closed, no host, or no series configured).
        """
        if self._closed:
            return None
        config = self.config
        if self.source is None or config is None or not config.entities:
            self.loading = False
            self.no_data = True
            return None

        orchestrator = self._ensure_orchestrator()
        self.loading = True
        try:
            result = await orchestrator.fetch(
                config.entities,
                config.hours_to_show,
                config.period,
                now_ms,
                stacked=config.stacked,
                chart_type=config.chart_type,
                normalize=config.normalize,
                time_filter=config.time_filter,
            )
        finally:
            self.loading = False

        if result is self._rendered_result or self._closed:
            return result
        if config != self.config:
            log.debug("Configuration replaced while fetching; dropping stale result")
            return result
        self._rendered_result = result

        if not result.has_data:
            self.no_data = True
            return result

        bundle = assemble_for_card(config, result.data, self.source.resolve_display_name)
        if bundle.no_data:
            self.no_data = True
            return result
        self.no_data = False
        self._render(bundle)
        return result

    def _render(self, bundle: DatasetBundle) -> None:
        options = build_axis_options(self.config)
        if self.handle is not None and self.handle.alive:
            self.renderer.update_in_place(self.handle, bundle.datasets, options)
        else:
            self.handle = self.renderer.render(bundle.datasets, options)
        self.bundle = bundle
        if self.on_render is not None:
            self.on_render(self.handle)

    def _on_refresh_due(self) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("No running event loop; periodic refresh skipped")
            return
        self._refresh_task = loop.create_task(self.refresh())
        self._refresh_task.add_done_callback(self._log_refresh_outcome)

    def _log_refresh_outcome(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"Periodic refresh failed: {exc}", exc_info=exc)

    def tooltip(self, dataset_index: int, point_index: int) -> str:
        if self.bundle is None:
            raise ValueError("Nothing rendered yet")
        source_id = self.bundle.datasets[dataset_index].source_id
        unit = self.source.resolve_unit(source_id) if self.source else None
        return format_tooltip_label(self.bundle, dataset_index, point_index, unit)

    # ── Pointer input ───────────────────────────────────────────

    def pointer_down(self) -> None:
        if self.gestures is not None and self.has_any_action():
            self.gestures.pointer_down()

    def pointer_up(self, now_ms: Optional[int] = None) -> None:
        if self.gestures is not None and self.has_any_action():
            self.gestures.pointer_up(now_ms)

    def pointer_cancel(self) -> None:
        if self.gestures is not None:
            self.gestures.pointer_cancel()

    def context_menu(self) -> bool:
        """True when the host should suppress its context menu."""
        return bool(self.gestures and self.gestures.should_prevent_context_menu())

    # ── Layout & teardown ───────────────────────────────────────

    def resize(self, width: Optional[float] = None, height: Optional[float] = None) -> None:
        if self.handle is not None:
            self.renderer.resize(self.handle, width, height)

    def save(self, path: str) -> None:
        if self.handle is None or not self.handle.alive:
            raise ValueError("No chart to save")
        self.renderer.save(self.handle, path)

    def close(self) -> None:
        """Cancel every timer and release the chart."""
        self._closed = True
        if self._orchestrator is not None:
            self._orchestrator.close()
        if self.gestures is not None:
            self.gestures.close()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if self.handle is not None:
            self.renderer.destroy(self.handle)
            self.handle = None
        log.debug("Card closed")
