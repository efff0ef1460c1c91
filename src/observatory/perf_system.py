"""Helpers for querying local process performance metrics."""

from __future__ import annotations

import os
from typing import Final

import psutil

_PROCESS: Final[psutil.Process] = psutil.Process(os.getpid())
_BYTES_PER_MB: Final[float] = 1024.0 * 1024.0


def get_process_memory_mb() -> float:
    """
    Return the resident set size of this process in megabytes.

    Falls back to 0.0 when the platform refuses the query; the value only
    feeds the metrics snapshot.
    """
    try:
        return float(_PROCESS.memory_info().rss) / _BYTES_PER_MB
    except (psutil.Error, OSError):
        return 0.0


def get_process_cpu_percent() -> float:
    """
    Return the current CPU usage of the process.

    psutil's cpu_percent needs to be called periodically; the first call
    may return 0.0.
    """
    try:
        return float(_PROCESS.cpu_percent(interval=None))
    except (psutil.Error, OSError):
        return 0.0
