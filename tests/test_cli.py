from __future__ import annotations

import json
from pathlib import Path

import numpy as np

from ppgvitals.cli import build_parser, main, read_trace, replay


def _write_trace(path: Path, duration: float = 10.0, fs: float = 30.0) -> None:
    t = np.arange(int(round(duration * fs))) / fs
    values = 128.0 + 2.0 * np.sin(2 * np.pi * 1.0 * t)
    lines = ["timestamp_ms,value"] + [f"{1000.0 * ti:.3f},{v:.5f}" for ti, v in zip(t, values)]
    path.write_text("\n".join(lines) + "\n")


def test_read_trace_skips_header(tmp_path: Path) -> None:
    trace = tmp_path / "trace.csv"
    trace.write_text("timestamp_ms,value\n0,1.5\n33.3,1.6\n\nbad\n")
    assert list(read_trace(trace)) == [(0.0, 1.5), (33.3, 1.6)]


def test_replay_records_session(tmp_path: Path) -> None:
    trace = tmp_path / "pulse.csv"
    _write_trace(trace)
    last = replay(trace, tmp_path / "out")
    assert last is not None
    assert abs(last.bpm - 60.0) <= 3.0
    meta = json.loads((tmp_path / "out" / "pulse.json").read_text())
    assert meta["samples"] == 300
    rows = (tmp_path / "out" / "pulse.csv").read_text().strip().splitlines()
    assert len(rows) == 301


def test_main_replay_exit_codes(tmp_path: Path, capsys) -> None:
    trace = tmp_path / "pulse.csv"
    _write_trace(trace, duration=4.0)
    assert main(["replay", str(trace)]) == 0
    assert "bpm=" in capsys.readouterr().out
    empty = tmp_path / "empty.csv"
    empty.write_text("timestamp_ms,value\n")
    assert main(["replay", str(empty)]) == 1


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["serve"])
    assert (args.host, args.port) == ("127.0.0.1", 8000)
