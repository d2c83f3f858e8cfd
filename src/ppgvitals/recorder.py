"""Session recorder: per-tick results to CSV, session metadata to JSON.

Rows are written by a background thread so the processing loop never
waits on disk; if the queue is full the row is dropped and counted.
"""

from __future__ import annotations

import csv
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Full, Queue
from typing import IO, Iterable, Optional

from .pipeline import VitalSignsResult

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "timestamp",
    "filtered_value",
    "is_peak",
    "bpm",
    "confidence",
    "quality",
    "finger_detected",
    "arrhythmia_status",
    "spo2",
    "systolic",
    "diastolic",
    "total_cholesterol",
    "triglycerides",
    "glucose",
    "spectral_bpm",
    "spectral_confidence",
]


def result_row(r: VitalSignsResult) -> list[object]:
    spectral = r.spectral
    return [
        f"{r.timestamp:.1f}",
        f"{r.filtered_value:.4f}",
        int(r.is_peak),
        f"{r.bpm:.1f}",
        f"{r.confidence:.3f}",
        f"{r.quality:.1f}",
        int(r.finger_detected),
        r.arrhythmia_status,
        f"{r.spo2:.1f}",
        f"{r.blood_pressure.systolic:.1f}",
        f"{r.blood_pressure.diastolic:.1f}",
        f"{r.lipids.total_cholesterol:.1f}",
        f"{r.lipids.triglycerides:.1f}",
        f"{r.glucose:.1f}",
        f"{spectral.bpm:.1f}" if spectral is not None and spectral.available else "",
        f"{spectral.confidence:.3f}" if spectral is not None and spectral.available else "",
    ]


@dataclass
class RecorderConfig:
    out_dir: Path
    base_name: str = "session"
    queue_size: int = 1024


class Recorder:
    """Append rows to CSV and write a JSON metadata file."""

    def __init__(self, cfg: RecorderConfig) -> None:
        self.cfg = cfg
        self.cfg.out_dir.mkdir(parents=True, exist_ok=True)
        self.csv_path = self.cfg.out_dir / f"{self.cfg.base_name}.csv"
        self.meta_path = self.cfg.out_dir / f"{self.cfg.base_name}.json"
        self._csv_file: Optional[IO[str]] = None
        self._writer: Optional[csv.writer] = None
        self._queue: "Queue[list[object] | None]" = Queue(maxsize=self.cfg.queue_size)
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0

    def __enter__(self) -> "Recorder":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self, header: Iterable[str] = RESULT_COLUMNS) -> None:
        self._csv_file = self.csv_path.open("w", newline="")
        self._writer = csv.writer(self._csv_file)
        self._writer.writerow(list(header))
        self._worker = threading.Thread(target=self._loop, name="recorder", daemon=True)
        self._worker.start()

    def write_row(self, row: Iterable[object]) -> None:
        if self._writer is None:
            raise RuntimeError("Recorder not opened")
        try:
            self._queue.put_nowait(list(row))
        except Full:
            # never block the realtime loop
            self.dropped += 1

    def write_result(self, result: VitalSignsResult) -> None:
        self.write_row(result_row(result))

    def write_meta(self, meta: dict) -> None:
        self.meta_path.write_text(json.dumps(meta, ensure_ascii=False, indent=2))

    def close(self) -> None:
        if self._worker is not None:
            self._queue.put(None)
            self._worker.join(timeout=2.0)
            self._worker = None
        if self._csv_file is not None:
            self._csv_file.close()
            self._csv_file = None
            self._writer = None
        if self.dropped:
            logger.warning("recorder dropped %d rows", self.dropped)

    def _loop(self) -> None:
        assert self._writer is not None and self._csv_file is not None
        while True:
            try:
                item = self._queue.get(timeout=0.5)
            except Empty:
                self._csv_file.flush()
                continue
            if item is None:
                self._csv_file.flush()
                break
            self._writer.writerow(item)
