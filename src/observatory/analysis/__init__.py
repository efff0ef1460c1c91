"""Throughput and timing helpers used to compute streaming metrics."""

from .perf_metrics import PerfStats
from .rate import RateEstimate, ThroughputMeter

__all__ = ["PerfStats", "RateEstimate", "ThroughputMeter"]
