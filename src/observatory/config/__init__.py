"""Configuration objects and helpers for Observatory.

This package loads YAML descriptors for the streaming service (buffer size,
tick cadence, synthetic scenario) and the filter engine (debounce window,
result cache). The typed dataclasses in :mod:`runtime` are imported
everywhere else so services and tools are configured consistently.
"""

from .runtime import (
    FilterConfig,
    ObservatoryConfig,
    StreamingConfig,
    config_from_mapping,
    load_config,
)

__all__ = ["FilterConfig", "ObservatoryConfig", "StreamingConfig", "config_from_mapping", "load_config"]
