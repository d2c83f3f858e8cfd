"""Background spectral analysis with a bounded, non-blocking mailbox.

The pipeline submits snapshots and polls for results; it never waits.
A full mailbox drops the submission, and results computed before a reset
are discarded through a generation counter.
"""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Optional

import numpy as np

from .spectral import SpectralAnalyzer, SpectralResult

logger = logging.getLogger(__name__)


class SpectralWorker:
    def __init__(self, analyzer: SpectralAnalyzer | None = None, background: bool = True) -> None:
        self.analyzer = analyzer or SpectralAnalyzer()
        self.background = background
        self._queue: "Queue[tuple | None]" = Queue(maxsize=1)
        self._lock = threading.Lock()
        self._generation = 0
        self._latest: Optional[tuple[int, SpectralResult]] = None
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0
        if background:
            self._worker = threading.Thread(target=self._loop, name="spectral-worker", daemon=True)
            self._worker.start()

    def submit(self, values: np.ndarray, fs: float, timestamp: Optional[float] = None) -> bool:
        """Queue a window for analysis; returns False if it was dropped."""
        with self._lock:
            gen = self._generation
        job = (gen, np.array(values, dtype=np.float64), float(fs), timestamp)
        if not self.background:
            self._run(job)
            return True
        try:
            self._queue.put_nowait(job)
        except Full:
            self.dropped += 1
            logger.debug("spectral worker busy, dropping window")
            return False
        return True

    def poll(self) -> Optional[SpectralResult]:
        """Newest result not yet consumed, or None."""
        with self._lock:
            item = self._latest
            self._latest = None
            if item is None or item[0] != self._generation:
                return None
        return item[1]

    def reset(self) -> None:
        with self._lock:
            self._generation += 1
            self._latest = None
        self._drain()
        self.dropped = 0

    def close(self) -> None:
        if self._worker is None:
            return
        self._drain()
        try:
            self._queue.put(None, timeout=0.5)
        except Full:
            logger.warning("spectral worker did not accept stop signal")
        self._worker.join(timeout=1.0)
        self._worker = None

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                break

    def _run(self, job: tuple) -> None:
        gen, values, fs, timestamp = job
        result = self.analyzer.analyze(values, fs, timestamp)
        with self._lock:
            if gen == self._generation:
                self._latest = (gen, result)

    def _loop(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                break
            try:
                self._run(job)
            except Exception:
                logger.exception("spectral analysis failed")
