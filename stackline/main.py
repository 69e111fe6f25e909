#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Stack Line Card runner.
- Loads settings
- Pulls statistics/history from Home Assistant and renders the card to PNG
- Optionally starts a Prometheus /metrics server (prometheus_client)
- In loop mode, re-renders on the fetch throttle period until interrupted

Usage examples:
  python -m stackline.main --help
  python -m stackline.main --config path/to/stack_line_card.yaml
  python -m stackline.main --once --output /tmp/card.png
  python -m stackline.main --print-config-normalized
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .core.card import StackLineCard
from .core.metrics import FetchMetrics
from .core.renderer import ChartHandle, MatplotlibRenderer
from .core.scheduler import AsyncioScheduler
from .shared.colored_logging import setup_colored_logging
from .shared.config import AppConfig, ConfigError, load_app_config, normalized_config_dict
from .shared.ha_client import HomeAssistantError, create_client

log = logging.getLogger(__name__)


async def _run(settings: AppConfig, output: str, once: bool, telemetry: bool) -> int:
    client = create_client(settings.homeassistant)
    if not await asyncio.to_thread(client.test_connection):
        client.close()
        return 1
    await asyncio.to_thread(client.refresh_states)

    metrics: Optional[FetchMetrics] = None
    if telemetry:
        metrics = FetchMetrics(prefix=settings.telemetry.metric_prefix)
        metrics.start_http(settings.telemetry.listen_address, settings.telemetry.listen_port)

    renderer = MatplotlibRenderer(
        width=settings.output.width,
        height=settings.output.height,
        dpi=settings.output.dpi,
    )

    def _save(handle: ChartHandle) -> None:
        renderer.save(handle, output)

    card = StackLineCard(
        source=client,
        action_host=client,
        renderer=renderer,
        scheduler=AsyncioScheduler(),
        metrics=metrics,
        on_render=_save,
    )
    card.apply_config(settings.card)

    try:
        result = await card.refresh()
        status = result.status.value if result is not None else "no_series"
        log.info(f"Fetch status: {status}")
        for warning in (result.warnings if result is not None else []):
            log.warning(warning)
        if card.no_data:
            log.warning("No data to display for the configured entities")

        if once:
            return 0 if not card.no_data else 1

        # Subsequent refreshes are driven by the card's own fetch timer
        await asyncio.Event().wait()
        return 0
    finally:
        card.close()
        client.close()


def main(
    config_path: Optional[str] = None,
    once: bool = False,
    output: Optional[str] = None,
    no_telemetry: bool = False,
    log_level: Optional[str] = None,
    print_config_normalized: bool = False,
) -> int:
    setup_colored_logging(
        level=log_level or logging.INFO,
        fmt='%(asctime)s - %(levelname)s - [%(name)s:%(module)s.%(funcName)s:%(lineno)d] - %(message)s'
    )
    base = Path(__file__).resolve().parents[1]
    default_cfg = base / 'config' / 'stack_line_card.yaml'

    try:
        settings = load_app_config(str(config_path or default_cfg))
    except ConfigError as e:
        print(f"Failed to load configuration: {e}")
        return 2

    if log_level is None:
        logging.getLogger().setLevel(settings.logging_level)

    # Optional: print normalized card config (config doctor) and exit
    if print_config_normalized:
        print(json.dumps(normalized_config_dict(settings.card), indent=2, sort_keys=True))
        return 0

    telemetry = settings.telemetry.enabled and not once and not no_telemetry
    try:
        return asyncio.run(_run(settings, output or settings.output.path, once, telemetry))
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
        return 0
    except HomeAssistantError as e:
        log.error(f"Home Assistant error: {e}")
        return 1


def cli() -> None:
    parser = argparse.ArgumentParser(description='Stack Line Card')
    parser.add_argument('--config', type=str, default=None, help='Path to stack_line_card.yaml')
    parser.add_argument('--once', action='store_true', help='Render once and exit (no metrics server)')
    parser.add_argument('--output', type=str, default=None, help='PNG output path (overrides output.path)')
    parser.add_argument('--no-telemetry', action='store_true', help='Disable metrics server even if enabled in config')
    parser.add_argument('--log-level', type=str, default=None, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], help='Logging level (defaults to logging.level from config)')
    parser.add_argument('--print-config-normalized', action='store_true', help='Print normalized card config as JSON and exit')
    args = parser.parse_args()
    sys.exit(main(
        config_path=args.config,
        once=args.once,
        output=args.output,
        no_telemetry=args.no_telemetry,
        log_level=args.log_level,
        print_config_normalized=args.print_config_normalized,
    ))


if __name__ == '__main__':
    cli()
