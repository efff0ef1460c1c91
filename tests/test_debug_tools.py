from __future__ import annotations

from observatory.perf_system import get_process_cpu_percent, get_process_memory_mb
from observatory.tools import debug_enabled, time_block


def test_time_block_is_silent_when_disabled(monkeypatch) -> None:
    monkeypatch.delenv("OBSERVATORY_DEBUG", raising=False)
    messages: list[str] = []
    with time_block("push", emitter=messages.append):
        pass
    assert not debug_enabled()
    assert messages == []


def test_time_block_reports_when_enabled(monkeypatch) -> None:
    monkeypatch.setenv("OBSERVATORY_DEBUG", "yes")
    messages: list[str] = []
    with time_block("push", emitter=messages.append):
        pass
    assert debug_enabled()
    assert len(messages) == 1
    assert messages[0].startswith("push took ")


def test_process_probes_return_non_negative_numbers() -> None:
    assert get_process_memory_mb() > 0.0
    assert get_process_cpu_percent() >= 0.0
