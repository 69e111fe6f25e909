#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Logger factory for modules that may run without the CLI (library use).

The first call installs colored console logging if nothing has configured the
root logger yet. STACKLINE_LOG_LEVEL picks the level in that case.
"""
import logging
import os

from .colored_logging import DEFAULT_FORMAT, setup_colored_logging


def get_logger(name: str) -> logging.Logger:
    if not logging.getLogger().handlers:
        setup_colored_logging(
            level=os.environ.get("STACKLINE_LOG_LEVEL", "INFO"),
            fmt=DEFAULT_FORMAT,
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    return logging.getLogger(name)
