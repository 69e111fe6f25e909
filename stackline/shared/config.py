#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration System for the Stack Line Card
Handles YAML configuration loading, validation, defaults and type conversion.
"""

import copy
import os
import re
import yaml
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional, Dict, Any
import logging

from .constants import (
    ACTION_TYPES,
    CHART_TYPES,
    DEFAULT_CONFIG,
    DEFAULT_GRID_OPTIONS,
    FILTER_OPERATORS,
    PERIOD_TYPES,
    STAT_TYPES,
)

_HEX_COLOR_RE = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_TRUE_STRINGS = ("true", "yes", "on")
_FALSE_STRINGS = ("false", "no", "off")


class ConfigError(Exception):
    """Configuration-related errors"""
    pass


@dataclass
class EntityConfig:
    """One configured series: source entity plus the statistic to plot"""
    entity: str
    stat: str = "mean"
    name: Optional[str] = None
    color: Optional[str] = None
    fill: Optional[bool] = None
    opacity: Optional[float] = None

    def __post_init__(self):
        """Validate series definition"""
        if not self.entity or not str(self.entity).strip():
            raise ValueError("entity cannot be empty")
        self.entity = str(self.entity).strip()
        if self.stat not in STAT_TYPES:
            raise ValueError(f"stat must be one of {list(STAT_TYPES)}, got '{self.stat}'")
        if self.opacity is not None and not (0.0 <= float(self.opacity) <= 1.0):
            raise ValueError("opacity must be between 0 and 1")
        if self.color is not None and not _HEX_COLOR_RE.match(str(self.color)):
            raise ValueError(f"color must be a #rgb or #rrggbb hex string, got '{self.color}'")
        if self.fill is not None and not isinstance(self.fill, bool):
            raise ValueError(f"fill must be true or false, got {self.fill!r}")


@dataclass
class ConfirmationConfig:
    text: Optional[str] = None


@dataclass
class ActionConfig:
    """Action bound to a gesture"""
    action: str = "none"
    entity: Optional[str] = None
    navigation_path: Optional[str] = None
    url_path: Optional[str] = None
    perform_action: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    target: Dict[str, Any] = field(default_factory=dict)
    confirmation: Optional[ConfirmationConfig] = None

    def __post_init__(self):
        """Validate action type"""
        if self.action not in ACTION_TYPES:
            raise ValueError(f"action must be one of {list(ACTION_TYPES)}, got '{self.action}'")

    @property
    def is_active(self) -> bool:
        return self.action != "none"


@dataclass
class GridOptions:
    columns: int = DEFAULT_GRID_OPTIONS["columns"]
    rows: int = DEFAULT_GRID_OPTIONS["rows"]
    min_columns: Optional[int] = DEFAULT_GRID_OPTIONS["min_columns"]
    max_columns: Optional[int] = DEFAULT_GRID_OPTIONS["max_columns"]
    min_rows: Optional[int] = DEFAULT_GRID_OPTIONS["min_rows"]
    max_rows: Optional[int] = DEFAULT_GRID_OPTIONS["max_rows"]

    def __post_init__(self):
        """Validate grid dimensions"""
        if self.columns <= 0 or self.rows <= 0:
            raise ValueError("grid columns and rows must be positive")


@dataclass
class TimeFilter:
    """
    Keep only the time buckets where another entity's statistic satisfies a
    comparison, e.g. plot consumption only while a heater is running.
    """
    entity: str
    stat: str = "mean"
    operator: str = "gt"
    value: float = 0.0

    def __post_init__(self):
        """Validate filter definition"""
        if not self.entity or not str(self.entity).strip():
            raise ValueError("time_filter.entity cannot be empty")
        if self.stat not in STAT_TYPES:
            raise ValueError(f"time_filter.stat must be one of {list(STAT_TYPES)}")
        if self.operator not in FILTER_OPERATORS:
            raise ValueError(f"time_filter.operator must be one of {list(FILTER_OPERATORS)}")
        self.value = float(self.value)


@dataclass
class CardConfig:
    """Main card configuration"""
    entities: List[EntityConfig] = field(default_factory=list)
    title: Optional[str] = None
    hours_to_show: float = 24
    period: str = "hour"
    stacked: bool = False
    chart_type: str = "line"
    show_legend: bool = True
    show_points: bool = False
    normalize: bool = False
    tap_action: ActionConfig = field(default_factory=ActionConfig)
    hold_action: ActionConfig = field(default_factory=ActionConfig)
    double_tap_action: ActionConfig = field(default_factory=ActionConfig)
    grid_options: GridOptions = field(default_factory=GridOptions)
    time_filter: Optional[TimeFilter] = None
    type: str = "custom:stack-line-card"

    def __post_init__(self):
        """Validate main card configuration"""
        if self.hours_to_show <= 0:
            raise ValueError("hours_to_show must be positive")
        if self.period not in PERIOD_TYPES:
            raise ValueError(f"period must be one of {list(PERIOD_TYPES)}, got '{self.period}'")
        if self.chart_type not in CHART_TYPES:
            raise ValueError(f"chart_type must be one of {list(CHART_TYPES)}, got '{self.chart_type}'")

    def has_any_action(self) -> bool:
        return any(a.is_active for a in (self.tap_action, self.hold_action, self.double_tap_action))


@dataclass
class HomeAssistantConnConfig:
    """Home Assistant connection configuration"""
    host: str = "http://localhost"
    port: int = 8123
    token: Optional[str] = None
    timeout: int = 10
    verify_ssl: bool = True

    def __post_init__(self):
        """Validate connection parameters"""
        if not self.host:
            raise ValueError("Home Assistant host cannot be empty")
        if not (1 <= self.port <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        if self.timeout <= 0:
            raise ValueError("Timeout must be positive")
        if not self.token:
            self.token = os.environ.get("HASS_TOKEN")


@dataclass
class OutputConfig:
    """Chart image output"""
    path: str = "output/stack_line_card.png"
    dpi: int = 150
    width: float = 8.0
    height: float = 4.0

    def __post_init__(self):
        if self.dpi <= 0:
            raise ValueError("DPI must be positive")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Chart dimensions must be positive")


@dataclass
class TelemetryConfig:
    enabled: bool = False
    listen_address: str = "0.0.0.0"
    listen_port: int = 9109
    metric_prefix: str = "stackline_"


@dataclass
class AppConfig:
    """Runner configuration: card plus host connection and outputs"""
    card: CardConfig
    homeassistant: HomeAssistantConnConfig = field(default_factory=HomeAssistantConnConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    logging_level: str = "INFO"

    def __post_init__(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.logging_level.upper() not in valid_levels:
            raise ValueError(f"logging_level must be one of: {valid_levels}")
        self.logging_level = self.logging_level.upper()


def _as_mapping(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _as_bool(value: Any, name: str) -> bool:
    """Accept YAML booleans and their quoted spellings; anything else is an error"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"'{name}' must be true or false, got {value!r}")


def _build_action(raw: Any, name: str) -> ActionConfig:
    raw = _as_mapping(raw, name)
    confirmation = None
    conf_raw = raw.get("confirmation")
    if isinstance(conf_raw, dict):
        confirmation = ConfirmationConfig(text=conf_raw.get("text"))
    elif conf_raw is True:
        confirmation = ConfirmationConfig(text="Are you sure?")
    return ActionConfig(
        action=raw.get("action", "none"),
        entity=raw.get("entity"),
        navigation_path=raw.get("navigation_path"),
        url_path=raw.get("url_path"),
        perform_action=raw.get("perform_action"),
        data=dict(raw.get("data") or {}),
        target=dict(raw.get("target") or {}),
        confirmation=confirmation,
    )


def _build_entity(raw: Any) -> EntityConfig:
    # Shorthand: a bare entity id string plots its mean
    if isinstance(raw, str):
        return EntityConfig(entity=raw)
    raw = _as_mapping(raw, "entities[]")
    return EntityConfig(
        entity=raw.get("entity", ""),
        stat=raw.get("stat", "mean"),
        name=raw.get("name"),
        color=raw.get("color"),
        fill=_as_bool(raw["fill"], "fill") if raw.get("fill") is not None else None,
        opacity=raw.get("opacity"),
    )


def card_config_from_dict(config_dict: Optional[Dict[str, Any]]) -> CardConfig:
    """
    Build a CardConfig from a raw mapping, applying card defaults

    Args:
        config_dict: Raw card configuration (as written in the dashboard YAML)

    Returns:
        Validated CardConfig instance

    Raises:
        ConfigError: If configuration is missing or invalid
    """
    if not config_dict:
        raise ConfigError("Invalid configuration")
    if not isinstance(config_dict, dict):
        raise ConfigError(f"Card configuration must be a mapping, got {type(config_dict)}")

    merged = copy.deepcopy(DEFAULT_CONFIG)
    merged.update(config_dict)

    try:
        entities_raw = merged.get("entities") or []
        if not isinstance(entities_raw, list):
            raise ConfigError("'entities' must be a list")

        grid_raw = dict(DEFAULT_GRID_OPTIONS)
        grid_raw.update(_as_mapping(merged.get("grid_options"), "grid_options"))

        filter_raw = merged.get("time_filter")
        time_filter = None
        if filter_raw:
            filter_raw = _as_mapping(filter_raw, "time_filter")
            time_filter = TimeFilter(
                entity=filter_raw.get("entity", ""),
                stat=filter_raw.get("stat", "mean"),
                operator=filter_raw.get("operator", "gt"),
                value=filter_raw.get("value", 0.0),
            )

        return CardConfig(
            type=str(merged.get("type", "custom:stack-line-card")),
            title=merged.get("title"),
            hours_to_show=float(merged["hours_to_show"]),
            period=str(merged["period"]),
            stacked=_as_bool(merged["stacked"], "stacked"),
            chart_type=str(merged["chart_type"]),
            show_legend=_as_bool(merged["show_legend"], "show_legend"),
            show_points=_as_bool(merged["show_points"], "show_points"),
            normalize=_as_bool(merged["normalize"], "normalize"),
            entities=[_build_entity(e) for e in entities_raw],
            tap_action=_build_action(merged.get("tap_action"), "tap_action"),
            hold_action=_build_action(merged.get("hold_action"), "hold_action"),
            double_tap_action=_build_action(merged.get("double_tap_action"), "double_tap_action"),
            grid_options=GridOptions(**grid_raw),
            time_filter=time_filter,
        )
    except ConfigError:
        raise
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def _load_raw_config(config_path: str) -> Dict[str, Any]:
    """
    Load raw configuration from YAML file

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_path}: {e}")

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration must be a YAML mapping, got {type(raw_config)}")

    return raw_config


def app_config_from_dict(config_dict: Dict[str, Any]) -> AppConfig:
    """Build the runner configuration from its top-level mapping."""
    card = card_config_from_dict(_as_mapping(config_dict.get("card"), "card"))
    try:
        ha_raw = _as_mapping(config_dict.get("homeassistant"), "homeassistant")
        out_raw = _as_mapping(config_dict.get("output"), "output")
        tel_raw = _as_mapping(config_dict.get("telemetry"), "telemetry")
        return AppConfig(
            card=card,
            homeassistant=HomeAssistantConnConfig(
                host=ha_raw.get("host", "http://localhost"),
                port=int(ha_raw.get("port", 8123)),
                token=ha_raw.get("token"),
                timeout=int(ha_raw.get("timeout", 10)),
                verify_ssl=_as_bool(ha_raw.get("verify_ssl", True), "verify_ssl"),
            ),
            output=OutputConfig(
                path=out_raw.get("path", "output/stack_line_card.png"),
                dpi=int(out_raw.get("dpi", 150)),
                width=float(out_raw.get("width", 8.0)),
                height=float(out_raw.get("height", 4.0)),
            ),
            telemetry=TelemetryConfig(
                enabled=_as_bool(tel_raw.get("enabled", False), "enabled"),
                listen_address=str(tel_raw.get("listen_address", "0.0.0.0")),
                listen_port=int(tel_raw.get("listen_port", 9109)),
                metric_prefix=str(tel_raw.get("metric_prefix", "stackline_")),
            ),
            logging_level=_as_mapping(config_dict.get("logging"), "logging").get("level", "INFO"),
        )
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def load_app_config(config_path: str) -> AppConfig:
    """
    Load and validate runner configuration from YAML file

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration cannot be loaded or is invalid
    """
    raw_config = _load_raw_config(config_path)
    config = app_config_from_dict(raw_config)
    logging.getLogger(__name__).debug(
        f"Loaded card config with {len(config.card.entities)} entities from {config_path}"
    )
    return config


def normalized_config_dict(card: CardConfig) -> Dict[str, Any]:
    """
    Effective card configuration with every default filled in (config doctor)

    The host token never appears here since only the card section is rendered.
    """
    out = asdict(card)
    for key in ("tap_action", "hold_action", "double_tap_action"):
        action = out[key]
        out[key] = {k: v for k, v in action.items() if v not in (None, {}, [])}
    out["entities"] = [
        {k: v for k, v in e.items() if v is not None} for e in out["entities"]
    ]
    return out
