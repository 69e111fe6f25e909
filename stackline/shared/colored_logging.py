#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Colored console logging for the card runner.

Level names are wrapped in ANSI colors when stderr is a terminal:
DEBUG cyan, INFO green, WARNING yellow, ERROR red, CRITICAL bold red.
Setting NO_COLOR in the environment disables colors entirely.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(module)s.%(funcName)s:%(lineno)d] - %(message)s'


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name of each record."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = DEFAULT_FORMAT, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        tty = hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()
        self.use_colors = use_colors and tty and 'NO_COLOR' not in os.environ

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{self.COLORS[plain]}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def resolve_level(level: Union[int, str]) -> int:
    """Accept either a logging constant or a level name such as 'debug'."""
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).strip().upper(), logging.INFO)


def setup_colored_logging(level: Union[int, str] = logging.INFO, fmt: str = DEFAULT_FORMAT, datefmt: Optional[str] = None) -> None:
    """
    Install a single colored stderr handler on the root logger.

    Args:
        level: Logging level constant or name
        fmt: Format string for log messages
        datefmt: Format string for timestamps
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(fmt=fmt, datefmt=datefmt))

    root.setLevel(resolve_level(level))
    root.addHandler(console_handler)
