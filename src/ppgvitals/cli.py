"""Command line: replay a recorded intensity trace or start the service.

Usage:
    ppgvitals replay trace.csv --out recordings/
    ppgvitals serve --port 8000

Replay input is a CSV with ``timestamp_ms,value`` rows (a header row is
optional).
"""

from __future__ import annotations

import argparse
import csv
import logging
from pathlib import Path
from typing import Iterator, Optional, Sequence

from .config import PipelineConfig
from .pipeline import VitalSignsPipeline, VitalSignsResult
from .recorder import Recorder, RecorderConfig

logger = logging.getLogger(__name__)


def read_trace(path: Path) -> Iterator[tuple[float, float]]:
    with path.open(newline="") as f:
        for row in csv.reader(f):
            if len(row) < 2:
                continue
            try:
                t, v = float(row[0]), float(row[1])
            except ValueError:
                # header or comment line
                continue
            yield t, v


def replay(
    path: Path,
    out_dir: Optional[Path] = None,
    cfg: PipelineConfig | None = None,
) -> Optional[VitalSignsResult]:
    """Run a trace through a fresh pipeline; returns the last result."""
    cfg = cfg or PipelineConfig(spectral_background=False)
    recorder = None
    if out_dir is not None:
        recorder = Recorder(RecorderConfig(out_dir=out_dir, base_name=path.stem))
        recorder.open()
    last = None
    count = 0
    with VitalSignsPipeline(cfg) as pipeline:
        for t, v in read_trace(path):
            last = pipeline.process(v, t)
            count += 1
            if recorder is not None:
                recorder.write_result(last)
    if recorder is not None:
        recorder.write_meta(
            {
                "source": str(path),
                "samples": count,
                "final": last.to_dict() if last is not None else None,
            }
        )
        recorder.close()
    logger.info("replayed %d samples from %s", count, path)
    return last


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ppgvitals", description=__doc__.splitlines()[0])
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    rp = sub.add_parser("replay", help="process a timestamp_ms,value CSV trace")
    rp.add_argument("trace", type=Path)
    rp.add_argument("--out", type=Path, default=None, help="directory for the session recording")

    sp = sub.add_parser("serve", help="start the HTTP/WebSocket service")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=8000)
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if args.command == "replay":
        last = replay(args.trace, args.out)
        if last is None:
            logger.error("no samples in %s", args.trace)
            return 1
        print(
            f"bpm={last.bpm:.1f} spo2={last.spo2:.1f} "
            f"bp={last.blood_pressure.systolic:.0f}/{last.blood_pressure.diastolic:.0f} "
            f"rhythm={last.arrhythmia_status}"
        )
        return 0
    from .service import main as serve

    serve(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
