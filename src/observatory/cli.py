"""Standalone demo that streams observations and filters them live."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterator, Optional

from .config import ObservatoryConfig, load_config
from .core.models import DataScenario
from .filters import FilterCriteria, create_single_category_filter
from .perf_system import get_process_cpu_percent
from .sources import DataSource, JsonLinesSource
from .wiring import build_dashboard

logger = logging.getLogger(__name__)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Observatory streaming/filter demo")
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional YAML file with 'streaming' and 'filter' sections",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Seconds to run before disconnecting (default: 10)",
    )
    parser.add_argument(
        "--scenario",
        choices=[s.value for s in DataScenario],
        help="Override the synthetic scenario without editing the YAML",
    )
    parser.add_argument(
        "--category",
        help="Only count points of this category in the filtered view",
    )
    parser.add_argument(
        "--spike",
        type=float,
        metavar="MULTIPLIER",
        help="Trigger a 2 s data spike with this multiplier after the first second",
    )
    parser.add_argument(
        "--jsonl",
        type=Path,
        help="Read observations from a JSON-lines file ('-' for stdin) instead of the synthetic feed",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


def _resolve_config(args: argparse.Namespace) -> ObservatoryConfig:
    cfg = load_config(args.config) if args.config else ObservatoryConfig()
    if args.scenario is not None:
        cfg.streaming = cfg.streaming.merged({"scenario": args.scenario})
    return cfg.sanitized()


def _jsonl_source(path: Path) -> DataSource:
    def open_stream() -> Iterator[str]:
        if str(path) == "-":
            return iter(sys.stdin)
        return _read_lines(path)

    return JsonLinesSource(open_stream)


def _read_lines(path: Path) -> Iterator[str]:
    with path.open("r", encoding="utf-8") as fh:
        yield from fh


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = _resolve_config(args)

    criteria = FilterCriteria()
    if args.category:
        criteria = criteria.with_condition(create_single_category_filter("category", args.category))

    source = _jsonl_source(args.jsonl) if args.jsonl else None
    handles = build_dashboard(cfg, source=source, criteria=criteria)
    service, coordinator = handles.service, handles.coordinator

    with handles:
        try:
            service.connect().result(timeout=cfg.streaming.connect_timeout_ms / 1000.0 + 1.0)
        except Exception as exc:
            logger.error("Could not connect: %s", exc)
            return 1

        get_process_cpu_percent()  # prime psutil's interval counter
        started = time.monotonic()
        spiked = False
        try:
            while time.monotonic() - started < args.duration:
                time.sleep(1.0)
                if args.spike and not spiked and time.monotonic() - started >= 1.0:
                    service.simulate_data_spike(2000, args.spike)
                    spiked = True
                metrics = service.get_metrics()
                state = coordinator.state()
                print(
                    f"[{service.get_status().value}] "
                    f"rate={metrics.data_points_per_second:7.1f}/s "
                    f"buffer={metrics.total_data_points:6d} ({metrics.buffer_utilization:5.1f}%) "
                    f"filtered={state.filtered_data_count}/{state.total_data_count} "
                    f"filter={metrics.filter_time:6.2f}ms "
                    f"mem={metrics.memory_usage:6.1f}MB cpu={get_process_cpu_percent():5.1f}%"
                )
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            service.disconnect()

        coordinator.flush(timeout=2.0)
        stats = coordinator.get_filter_stats()
        print(f"Final: {coordinator.filtered_data_count} of {coordinator.total_data_count} points match; stats={stats.as_dict()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
