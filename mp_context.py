"""
Bundling context for cross-cutting bundler options.

This module defines the BundleContext dataclass which holds options that
affect multiple stages of bundling (graph building, emission, diagnostics).
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2025-2026 gwz

from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """Hierarchical logging levels for minipack."""
    SILENT = 0      # No logging
    ERROR = 3       # Error messages only
    WARNING = 6     # Warning messages (default)
    INFO = 10       # General progress messages (-v)
    DEBUG = 30      # Per-module details (-vvv)


@dataclass
class BundleContext:
    """
    Holds cross-cutting options that affect multiple bundling stages.

    Attributes:
        jobs:               Number of worker threads used to read and parse modules.
                            1 means fully serial graph building.
        log_rich_format:    If True, emit logs in rich format: timestamp and level prefix.
        log_level:          Current logging level.
    """
    jobs: int = 1
    log_rich_format: bool = False
    log_level: LogLevel = LogLevel.WARNING

    @staticmethod
    def default() -> 'BundleContext':
        """Create a BundleContext with default settings."""
        return BundleContext(log_level=LogLevel.WARNING)
