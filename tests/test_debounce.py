from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from observatory.core.models import DataPoint
from observatory.core.scheduler import ManualScheduler, ThreadScheduler
from observatory.filters import (
    DebounceCoordinator,
    FilterCriteria,
    FilterState,
    create_single_category_filter,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _points(categories: list[str], start: int = 0) -> list[DataPoint]:
    return [
        DataPoint(
            id=f"p{start + i}",
            timestamp=T0 + timedelta(seconds=start + i),
            value=float(start + i),
            category=category,
            source="s1",
        )
        for i, category in enumerate(categories)
    ]


def _only(category: str) -> FilterCriteria:
    return FilterCriteria((create_single_category_filter("category", category),))


@pytest.fixture
def sched() -> ManualScheduler:
    return ManualScheduler()


def test_rapid_changes_collapse_into_one_recompute(sched) -> None:
    coord = DebounceCoordinator(300, scheduler=sched)
    coord.set_data(_points(["cpu", "memory", "cpu", "disk"]))
    sched.advance(1.0)

    published: list[FilterState] = []
    coord.subscribe(published.append)

    coord.set_criteria(_only("cpu"))
    sched.advance(0.1)
    coord.set_criteria(_only("memory"))
    sched.advance(0.1)
    coord.set_criteria(_only("disk"))
    sched.advance(0.299)

    assert [s.is_filtering for s in published] == [True]
    assert coord.is_filtering

    sched.advance(0.01)
    settled = [s for s in published if not s.is_filtering]
    assert len(settled) == 1
    assert [p.id for p in settled[0].filtered_data] == ["p3"]
    assert coord.filtered_data_count == 1
    assert coord.total_data_count == 4
    assert not coord.is_filtering


def test_state_generation_and_filter_time_callback(sched) -> None:
    durations: list[float] = []
    coord = DebounceCoordinator(50, scheduler=sched, on_filter_time=durations.append)
    coord.set_data(_points(["cpu", "memory"]))
    sched.advance(0.05)

    first = coord.state()
    assert first.generation == 1
    assert first.filtered_data_count == 2

    coord.set_criteria({"conditions": [{"field": "category", "operator": "eq", "value": "memory"}]})
    sched.advance(0.05)

    assert coord.state().generation == 2
    assert [p.id for p in coord.filtered_data] == ["p1"]
    assert len(durations) == 2
    assert all(d >= 0.0 for d in durations)


def test_update_data_appends_when_prefix_unchanged(sched, monkeypatch) -> None:
    coord = DebounceCoordinator(10, scheduler=sched, criteria=_only("cpu"))
    first = _points(["cpu", "memory"])
    coord.update_data(first)
    sched.advance(0.01)

    appended: list[list[DataPoint]] = []
    original = coord._evaluator.add_data

    def spy(points):
        appended.append(list(points))
        return original(points)

    monkeypatch.setattr(coord._evaluator, "add_data", spy)

    more = first + _points(["cpu"], start=2)
    coord.update_data(more)
    sched.advance(0.01)

    assert [[p.id for p in batch] for batch in appended] == [["p2"]]
    assert [p.id for p in coord.filtered_data] == ["p0", "p2"]

    # trimmed front: full replacement, no append
    coord.update_data(more[1:])
    sched.advance(0.01)
    assert len(appended) == 1
    assert [p.id for p in coord.filtered_data] == ["p2"]
    assert coord.total_data_count == 2


def test_update_data_with_same_snapshot_does_not_trigger(sched) -> None:
    coord = DebounceCoordinator(10, scheduler=sched)
    data = _points(["cpu"])
    coord.update_data(data)
    sched.advance(0.01)
    generation = coord.state().generation

    coord.update_data(list(data))
    assert sched.pending == 0
    sched.advance(1.0)
    assert coord.state().generation == generation


def test_append_data_accumulates(sched) -> None:
    coord = DebounceCoordinator(10, scheduler=sched)
    coord.append_data(_points(["cpu"]))
    coord.append_data(_points(["memory"], start=1))
    coord.append_data([])
    sched.advance(0.01)

    assert coord.total_data_count == 2
    assert coord.get_filter_stats().data_size == 2


def test_recompute_failure_publishes_unfiltered_data(sched, monkeypatch) -> None:
    coord = DebounceCoordinator(10, scheduler=sched, criteria=_only("cpu"))
    coord.set_data(_points(["cpu", "memory"]))

    def boom(_criteria):
        raise RuntimeError("index corrupted")

    monkeypatch.setattr(coord._evaluator, "filter", boom)
    sched.advance(0.01)

    state = coord.state()
    assert not state.is_filtering
    assert [p.id for p in state.filtered_data] == ["p0", "p1"]


def test_timer_during_recompute_schedules_a_rerun() -> None:
    scheduler = ThreadScheduler("test-debounce")
    coord = DebounceCoordinator(0, scheduler=scheduler)
    entered = threading.Event()
    release = threading.Event()
    seen: list[FilterCriteria] = []
    original = coord._evaluator.filter

    def slow_filter(criteria):
        seen.append(criteria)
        if len(seen) == 1:
            entered.set()
            release.wait(5.0)
        return original(criteria)

    coord._evaluator.filter = slow_filter
    published: list[FilterState] = []
    coord.subscribe(published.append)
    try:
        coord.set_data(_points(["cpu", "memory"]))
        assert entered.wait(5.0)

        final = _only("memory")
        coord.set_criteria(final)
        for _ in range(100):
            if coord._rerun:
                break
            time.sleep(0.01)
        release.set()

        assert coord.flush(timeout=5.0)
        assert seen[-1] is final
        assert published[-1].is_filtering is False
        assert [p.id for p in published[-1].filtered_data] == ["p1"]
        # the interrupted run still published, flagged as filtering
        assert any(s.is_filtering and s.generation == 1 for s in published)
    finally:
        release.set()
        coord.close()
        scheduler.shutdown()


def test_flush_runs_pending_recompute_immediately(sched) -> None:
    coord = DebounceCoordinator(10_000, scheduler=sched, criteria=_only("cpu"))
    coord.set_data(_points(["cpu", "memory", "cpu"]))
    assert coord.is_filtering

    assert coord.flush()
    assert not coord.is_filtering
    assert coord.filtered_data_count == 2
    assert sched.pending == 0
    assert coord.flush()


def test_close_cancels_pending_work(sched) -> None:
    coord = DebounceCoordinator(100, scheduler=sched)
    published: list[FilterState] = []
    coord.subscribe(published.append)
    coord.set_data(_points(["cpu"]))
    count = len(published)

    coord.close()
    sched.advance(1.0)
    coord.set_criteria(_only("cpu"))

    assert len(published) == count
    assert sched.pending == 0
    coord.close()


def test_context_manager_owns_its_scheduler() -> None:
    with DebounceCoordinator(0) as coord:
        coord.set_data(_points(["cpu"]))
        assert coord.flush(timeout=5.0)
        assert coord.total_data_count == 1
    assert coord._scheduler.pending == 0


def test_negative_debounce_is_rejected() -> None:
    with pytest.raises(ValueError):
        DebounceCoordinator(-1, scheduler=ManualScheduler())


def test_steady_data_does_not_postpone_the_recompute(sched) -> None:
    coord = DebounceCoordinator(300, scheduler=sched)
    published: list[FilterState] = []
    coord.subscribe(published.append)

    for i in range(3):
        coord.append_data(_points(["cpu"], start=i))
        sched.advance(0.1)

    settled = [s.total_data_count for s in published if not s.is_filtering]
    assert settled == [3]

    for i in range(3, 10):
        coord.append_data(_points(["cpu"], start=i))
        sched.advance(0.1)

    settled = [s.total_data_count for s in published if not s.is_filtering]
    assert len(settled) >= 2
    assert settled == sorted(settled)


def test_criteria_change_restarts_a_window_opened_by_data(sched) -> None:
    coord = DebounceCoordinator(300, scheduler=sched)
    coord.append_data(_points(["cpu", "memory"]))
    sched.advance(0.2)
    coord.set_criteria(_only("memory"))
    sched.advance(0.2)

    assert coord.is_filtering

    sched.advance(0.1)
    assert not coord.is_filtering
    assert [p.id for p in coord.state().filtered_data] == ["p1"]


def test_criteria_with_unknown_connector_publishes_empty_result(sched) -> None:
    coord = DebounceCoordinator(0, scheduler=sched)
    coord.set_data(_points(["cpu", "memory", "cpu"]))
    sched.run_pending()

    coord.set_criteria(
        {
            "conditions": [
                {"field": "category", "operator": "eq", "value": "cpu"},
                {"field": "value", "operator": "gt", "value": 0, "logicalOperator": "XOR"},
            ]
        }
    )
    sched.run_pending()

    state = coord.state()
    assert not state.is_filtering
    assert state.filtered_data == ()
    assert state.total_data_count == 3
