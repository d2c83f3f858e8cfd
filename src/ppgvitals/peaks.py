"""Adaptive-threshold peak and valley detection.

A sample is a peak candidate when it is strictly greater than both
neighbours and above ``mean + k * std`` of the recent window (valleys
mirror this below ``mean - k * std``). ``k`` tightens when peaks stand far
above the noise floor, loosens when they are marginal, and rises as the
signal quality drops. Candidates closer than the minimum physiological
spacing compete and the larger one wins.

Two entry points share these rules: :meth:`PeakValleyDetector.detect`
works on a complete window, :meth:`PeakValleyDetector.update` on a live
stream where a peak is confirmed once no larger rival can appear inside
the minimum spacing.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Sequence

import numpy as np

from .config import DetectorConfig
from .models import PeakEvent, PeakKind, RRInterval

logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    peaks: list[PeakEvent] = field(default_factory=list)
    valleys: list[PeakEvent] = field(default_factory=list)
    rr_intervals: list[RRInterval] = field(default_factory=list)
    threshold: float = 0.0

    @property
    def peak_indices(self) -> list[int]:
        return [p.sample_index for p in self.peaks]

    @property
    def valley_indices(self) -> list[int]:
        return [v.sample_index for v in self.valleys]


@dataclass
class DetectorUpdate:
    """Outcome of one streaming tick; events are set only when confirmed."""

    peak: Optional[PeakEvent] = None
    valley: Optional[PeakEvent] = None
    rr: Optional[RRInterval] = None
    k: float = 0.0


class _ExtremumGate:
    """Minimum-spacing arbitration for one kind of extremum."""

    def __init__(self, min_distance_ms: float) -> None:
        self.min_distance_ms = min_distance_ms
        self.pending: Optional[PeakEvent] = None
        self.last: Optional[PeakEvent] = None

    def reset(self) -> None:
        self.pending = None
        self.last = None

    def _stronger(self, a: PeakEvent, b: PeakEvent) -> bool:
        if a.kind is PeakKind.PEAK:
            return a.value > b.value
        return a.value < b.value

    def offer(self, cand: PeakEvent) -> Optional[PeakEvent]:
        """Register a candidate; returns a pending event it displaced by time."""
        confirmed = None
        if self.pending is not None:
            if cand.timestamp - self.pending.timestamp < self.min_distance_ms:
                if self._stronger(cand, self.pending):
                    self.pending = cand
                return None
            confirmed = self._confirm()
        if self.last is not None and cand.timestamp - self.last.timestamp < self.min_distance_ms:
            return confirmed
        self.pending = cand
        return confirmed

    def poll(self, now: float) -> Optional[PeakEvent]:
        if self.pending is not None and now - self.pending.timestamp >= self.min_distance_ms:
            return self._confirm()
        return None

    def _confirm(self) -> PeakEvent:
        ev = self.pending
        assert ev is not None
        self.pending = None
        self.last = ev
        return ev


class PeakValleyDetector:
    def __init__(self, cfg: DetectorConfig | None = None) -> None:
        self.cfg = cfg or DetectorConfig()
        self.k_offset = 0.0  # set by the feedback optimizer
        self._values: Deque[float] = deque(maxlen=self.cfg.window_size)
        self._times: Deque[float] = deque(maxlen=self.cfg.window_size)
        self._indices: Deque[int] = deque(maxlen=self.cfg.window_size)
        self._peaks = _ExtremumGate(self.cfg.min_distance_ms)
        self._valleys = _ExtremumGate(self.cfg.min_distance_ms)
        self._last_rr_peak: Optional[PeakEvent] = None

    def reset(self) -> None:
        self.k_offset = 0.0
        self._values.clear()
        self._times.clear()
        self._indices.clear()
        self._peaks.reset()
        self._valleys.reset()
        self._last_rr_peak = None

    # -- thresholding ---------------------------------------------------

    def adaptive_k(self, x: np.ndarray, quality: float = 100.0) -> float:
        """Threshold multiplier for the window ``x``."""
        cfg = self.cfg
        k = cfg.base_k
        mean = float(np.mean(x))
        amplitude = float(np.max(x)) - mean
        noise = float(np.std(np.diff(x))) / np.sqrt(2.0) if x.size > 2 else 0.0
        ratio = amplitude / noise if noise > 0 else np.inf
        if ratio > cfg.high_ratio:
            k -= cfg.k_step
        elif ratio < cfg.low_ratio:
            k += cfg.k_step
        q = float(np.clip(quality, 0.0, 100.0))
        k += (1.0 - q / 100.0) * cfg.quality_gain
        k += self.k_offset
        return float(np.clip(k, cfg.k_min, cfg.k_max))

    @staticmethod
    def _confidence(value: float, mean: float, std: float) -> float:
        if std <= 0:
            return 0.0
        return float(np.clip(abs(value - mean) / (2.0 * std), 0.0, 1.0))

    def _rr_from(self, peak: PeakEvent) -> Optional[RRInterval]:
        prev = self._last_rr_peak
        self._last_rr_peak = peak
        if prev is None:
            return None
        duration = peak.timestamp - prev.timestamp
        if not (self.cfg.min_rr_ms <= duration <= self.cfg.max_rr_ms):
            logger.debug("dropping RR interval %.1f ms outside physiological range", duration)
            return None
        return RRInterval(duration, peak.timestamp)

    # -- batch ----------------------------------------------------------

    def detect(
        self,
        values: Sequence[float],
        timestamps: Optional[Sequence[float]] = None,
        fs: float = 30.0,
        quality: float = 100.0,
    ) -> DetectionResult:
        """Detect peaks, valleys and RR intervals over a complete window.

        ``timestamps`` (ms) default to a uniform grid at ``fs``. The
        detector's streaming state is not touched.
        """
        x = np.asarray(values, dtype=np.float64)
        n = x.size
        if n < 3 or float(np.ptp(x)) < self.cfg.amplitude_floor:
            return DetectionResult()
        if timestamps is None:
            t = np.arange(n, dtype=np.float64) * (1000.0 / fs)
        else:
            t = np.asarray(timestamps, dtype=np.float64)
        mean = float(np.mean(x))
        std = float(np.std(x))
        k = self.adaptive_k(x, quality)
        upper = mean + k * std
        lower = mean - k * std

        mid = x[1:-1]
        is_max = (mid > x[:-2]) & (mid > x[2:]) & (mid > upper)
        is_min = (mid < x[:-2]) & (mid < x[2:]) & (mid < lower)
        peaks = self._space([int(i) + 1 for i in np.flatnonzero(is_max)], x, t, PeakKind.PEAK, mean, std)
        valleys = self._space([int(i) + 1 for i in np.flatnonzero(is_min)], x, t, PeakKind.VALLEY, mean, std)

        rr: list[RRInterval] = []
        for a, b in zip(peaks, peaks[1:]):
            d = b.timestamp - a.timestamp
            if self.cfg.min_rr_ms <= d <= self.cfg.max_rr_ms:
                rr.append(RRInterval(d, b.timestamp))
            else:
                logger.debug("dropping RR interval %.1f ms outside physiological range", d)
        return DetectionResult(peaks, valleys, rr, upper)

    def _space(
        self,
        idx: list[int],
        x: np.ndarray,
        t: np.ndarray,
        kind: PeakKind,
        mean: float,
        std: float,
    ) -> list[PeakEvent]:
        gate = _ExtremumGate(self.cfg.min_distance_ms)
        out: list[PeakEvent] = []
        for i in idx:
            ev = PeakEvent(i, float(t[i]), float(x[i]), kind, self._confidence(float(x[i]), mean, std))
            done = gate.offer(ev)
            if done is not None:
                out.append(done)
        if gate.pending is not None:
            out.append(gate.pending)
        return out

    # -- streaming ------------------------------------------------------

    def update(
        self,
        sample_index: int,
        timestamp: float,
        value: float,
        quality: float = 100.0,
    ) -> DetectorUpdate:
        """Push one sample; returns events confirmed at this tick."""
        cfg = self.cfg
        self._values.append(float(value))
        self._times.append(float(timestamp))
        self._indices.append(int(sample_index))
        out = DetectorUpdate()
        peak: Optional[PeakEvent] = None
        valley: Optional[PeakEvent] = None
        if len(self._values) < cfg.min_window:
            return out
        x = np.asarray(self._values)
        if float(np.ptp(x)) >= cfg.amplitude_floor:
            mean = float(np.mean(x))
            std = float(np.std(x))
            k = self.adaptive_k(x, quality)
            out.k = k
            a, b, c = x[-3], x[-2], x[-1]
            if b > a and b > c and b > mean + k * std:
                peak = self._peaks.offer(self._candidate(PeakKind.PEAK, mean, std))
            elif b < a and b < c and b < mean - k * std:
                valley = self._valleys.offer(self._candidate(PeakKind.VALLEY, mean, std))

        peak = peak or self._peaks.poll(timestamp)
        if peak is not None:
            out.peak = peak
            out.rr = self._rr_from(peak)
        valley = valley or self._valleys.poll(timestamp)
        if valley is not None:
            out.valley = valley
        return out

    def _candidate(self, kind: PeakKind, mean: float, std: float) -> PeakEvent:
        v = self._values[-2]
        return PeakEvent(self._indices[-2], self._times[-2], v, kind, self._confidence(v, mean, std))
