from __future__ import annotations

import threading
import time

from observatory.core.scheduler import ManualScheduler, ThreadScheduler


def test_manual_scheduler_runs_due_tasks_in_deadline_order() -> None:
    sched = ManualScheduler()
    calls = []
    sched.call_later(0.2, lambda: calls.append("b"))
    sched.call_later(0.1, lambda: calls.append("a"))

    assert sched.advance(0.15) == 1
    assert calls == ["a"]
    assert sched.now() == 0.15

    sched.advance(1.0)
    assert calls == ["a", "b"]
    assert sched.pending == 0


def test_manual_periodic_task_rereads_interval() -> None:
    sched = ManualScheduler()
    interval = [1.0]
    calls = []
    handle = sched.call_every(lambda: interval[0], lambda: calls.append(sched.now()))

    sched.advance(2.0)
    assert calls == [1.0, 2.0]

    interval[0] = 0.5
    sched.advance(2.0)
    assert calls == [1.0, 2.0, 3.0, 3.5, 4.0]

    handle.cancel()
    sched.advance(5.0)
    assert calls[-1] == 4.0
    assert sched.pending == 0


def test_manual_scheduler_logs_and_survives_failing_task() -> None:
    sched = ManualScheduler()
    calls = []

    def broken() -> None:
        raise RuntimeError("boom")

    sched.call_later(0.1, broken)
    sched.call_later(0.2, lambda: calls.append("ok"))
    sched.advance(1.0)

    assert calls == ["ok"]


def test_thread_scheduler_call_later_and_cancel() -> None:
    sched = ThreadScheduler("test")
    done = threading.Event()
    skipped = threading.Event()
    try:
        sched.call_later(0.01, done.set)
        handle = sched.call_later(0.2, skipped.set)
        handle.cancel()

        assert done.wait(1.0)
        time.sleep(0.3)
        assert not skipped.is_set()
        assert handle.cancelled
    finally:
        sched.shutdown()


def test_thread_scheduler_periodic_until_shutdown() -> None:
    sched = ThreadScheduler("test")
    ticks = []
    reached = threading.Event()

    def tick() -> None:
        ticks.append(time.monotonic())
        if len(ticks) >= 3:
            reached.set()

    sched.call_every(0.01, tick)
    assert reached.wait(1.0)
    sched.shutdown()

    time.sleep(0.05)
    count = len(ticks)
    time.sleep(0.05)
    assert len(ticks) == count
