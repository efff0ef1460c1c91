from __future__ import annotations

import json

import pytest

from observatory.cli import main


def test_demo_runs_and_prints_final_stats(capsys) -> None:
    assert main(["--duration", "0", "--category", "cpu", "--log-level", "WARNING"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Final: ")
    assert "dataSize" in out


def test_demo_reads_json_lines(tmp_path, capsys) -> None:
    feed = tmp_path / "feed.jsonl"
    feed.write_text(
        json.dumps(
            {"id": "a", "timestamp": "2024-01-01T00:00:00Z", "value": 1.0, "category": "cpu", "source": "probe"}
        )
        + "\n",
        encoding="utf-8",
    )
    assert main(["--duration", "0", "--jsonl", str(feed), "--log-level", "ERROR"]) == 0
    assert "Final: " in capsys.readouterr().out


def test_unknown_scenario_is_rejected() -> None:
    with pytest.raises(SystemExit):
        main(["--scenario", "apocalypse"])
