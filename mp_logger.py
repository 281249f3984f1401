"""
Logging utilities for minipack.

This module provides logging functions that respect the BundleContext
settings (log level and rich format).
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

import sys
import time
from typing import Optional

from mp_context import BundleContext, LogLevel


def log(context: Optional[BundleContext], log_level: LogLevel, message: str) -> None:
    """
    Log a message to stderr if the context's level admits it.

    Args:
        context:    The bundle context holding the logging level.
        log_level:  The level of the message to log.
        message:    The message to log.
    """
    if context is None:
        print(f"{message}", file=sys.stderr)
        return
    prefix = ""
    if context.log_rich_format:
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        prefix = {
            LogLevel.ERROR: f"{timestamp} [ERROR] ",
            LogLevel.WARNING: f"{timestamp} [WARNING] ",
            LogLevel.INFO: f"{timestamp} [INFO] ",
            LogLevel.DEBUG: f"{timestamp} [DEBUG] ",
        }.get(log_level, "")
    if context.log_level >= log_level:
        print(f"{prefix}{message}", file=sys.stderr)


def log_error(context: Optional[BundleContext], message: str) -> None:
    log(context, LogLevel.ERROR, message)


def log_warning(context: Optional[BundleContext], message: str) -> None:
    log(context, LogLevel.WARNING, message)


def log_info(context: Optional[BundleContext], message: str) -> None:
    log(context, LogLevel.INFO, message)


def log_debug(context: Optional[BundleContext], message: str) -> None:
    log(context, LogLevel.DEBUG, message)


def log_stage(context: Optional[BundleContext], stage: str, module: Optional[str] = None) -> None:
    """
    Log the start of a bundling stage.

    Args:
        context: The bundle context.
        stage: The name of the stage (e.g., "Building module graph").
        module: Optional module id being processed.
    """
    if module:
        log(context, LogLevel.INFO, f"{stage} for '{module}'")
    else:
        log(context, LogLevel.INFO, f"{stage}...")
