"""Multi-channel fusion with feedback-driven adaptation.

Three views of the pulse are mixed into the sample the detector sees: the
filtered signal, the raw signal and its first difference. Each channel's
confidence is the product of its autocorrelation periodicity and the
prominence of its cardiac spectral peak; weights follow the confidences
at the current adaptation rate and are projected back onto the
box-constrained simplex (sum 1, each within its band).

Consistency feedback from downstream consumers moves the detection
threshold offset and the quality gate, and changes how fast the weights
adapt: sustained agreement slows adaptation, sustained disagreement
speeds it up.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

import numpy as np
from scipy.optimize import brentq
from scipy.signal import find_peaks

from .acf_bpm import estimate_bpm_acf
from .config import FeedbackConfig
from .patterns import PatternBank, PatternMatch
from .quality import cardiac_peak, peak_confidence

logger = logging.getLogger(__name__)

CHANNELS = ("filtered", "raw", "derivative")


class Consistency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class FeedbackRecord:
    spo2: Consistency = Consistency.MEDIUM
    blood_pressure: Consistency = Consistency.MEDIUM
    heart_rate: Consistency = Consistency.MEDIUM
    signal_quality: float = 50.0  # 0..100

    def levels(self) -> list[Consistency]:
        return [Consistency(self.spo2), Consistency(self.blood_pressure), Consistency(self.heart_rate)]


@dataclass
class ChannelWeights:
    filtered: float
    raw: float
    derivative: float
    filtered_confidence: float = 0.0
    raw_confidence: float = 0.0
    derivative_confidence: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.filtered, self.raw, self.derivative], dtype=np.float64)

    def to_dict(self) -> dict[str, float]:
        return {k: float(v) for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class FusedSample:
    value: float
    correction: float


def project_weights(target: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
    """Closest point to ``target`` with sum 1 and ``lo <= w <= hi``.

    Solves sum(clip(target - tau, lo, hi)) == 1 for the shift ``tau``.
    """
    target = np.asarray(target, dtype=np.float64)
    if not (lo.sum() <= 1.0 <= hi.sum()):
        raise ValueError("weight bands cannot sum to 1")

    def excess(tau: float) -> float:
        return float(np.sum(np.clip(target - tau, lo, hi))) - 1.0

    a = float(np.min(target - hi))
    b = float(np.max(target - lo))
    if excess(a) == 0.0:
        tau = a
    elif excess(b) == 0.0:
        tau = b
    else:
        tau = brentq(excess, a, b, xtol=1e-12)
    return np.clip(target - tau, lo, hi)


class FeedbackOptimizer:
    def __init__(self, cfg: FeedbackConfig | None = None) -> None:
        self.cfg = cfg or FeedbackConfig()
        cfg = self.cfg
        self._lo = np.array([cfg.filtered_band[0], cfg.raw_band[0], cfg.derivative_band[0]])
        self._hi = np.array([cfg.filtered_band[1], cfg.raw_band[1], cfg.derivative_band[1]])
        self.bank = PatternBank(
            capacity=cfg.pattern_capacity,
            points=cfg.pattern_points,
            levels=cfg.pattern_levels,
            match_threshold=cfg.pattern_match,
            max_correction=cfg.max_correction,
        )
        self._history: list[Deque[float]] = [deque(maxlen=cfg.history_size) for _ in CHANNELS]
        self._fused: Deque[float] = deque(maxlen=cfg.history_size)
        self.reset()

    def reset(self) -> None:
        cfg = self.cfg
        self.weights = project_weights(np.asarray(cfg.init_weights, dtype=np.float64), self._lo, self._hi)
        self.confidence = np.zeros(len(CHANNELS))
        self.adaptation_rate = cfg.adaptation_rate
        self.quality_threshold = cfg.quality_threshold
        self.detection_k_offset = 0.0
        self.correction = 1.0
        self.last_match: Optional[PatternMatch] = None
        self._last_segment: Optional[np.ndarray] = None
        self._high_streak = 0
        self._low_streak = 0
        self._prev_filtered: Optional[float] = None
        self._count = 0
        for h in self._history:
            h.clear()
        self._fused.clear()
        self.bank.reset()

    @property
    def channel_weights(self) -> ChannelWeights:
        w, c = self.weights, self.confidence
        return ChannelWeights(float(w[0]), float(w[1]), float(w[2]), float(c[0]), float(c[1]), float(c[2]))

    def process(self, filtered_ac: float, raw_ac: float, filtered: float, fs: float = 30.0) -> FusedSample:
        """Fuse one tick of the three channels.

        Args:
            filtered_ac: filtered value minus baseline.
            raw_ac: raw value minus baseline.
            filtered: filtered value, differenced for the derivative channel.
            fs: current sampling rate (Hz).
        """
        deriv = 0.0 if self._prev_filtered is None else filtered - self._prev_filtered
        self._prev_filtered = filtered
        channels = np.array([filtered_ac, raw_ac, deriv], dtype=np.float64)
        for h, v in zip(self._history, channels):
            h.append(float(v))
        self._count += 1
        if self._count % self.cfg.update_interval == 0 and len(self._fused) >= self.cfg.min_history:
            self._update_weights(fs)
            self._update_pattern(fs)
        value = float(np.dot(self.weights, channels)) * self.correction
        self._fused.append(value)
        return FusedSample(value, self.correction)

    def channel_confidence(self, x: np.ndarray, fs: float) -> float:
        if x.size < 8 or float(np.std(x)) == 0.0:
            return 0.0
        acf = estimate_bpm_acf(x, fs).score
        mag, idx = cardiac_peak(x, fs)
        return acf * peak_confidence(mag, idx)

    def _update_weights(self, fs: float) -> None:
        rate = self.adaptation_rate
        conf = np.array([self.channel_confidence(np.asarray(h), fs) for h in self._history])
        self.confidence = (1.0 - rate) * self.confidence + rate * conf
        total = float(self.confidence.sum())
        if total <= 0:
            target = np.asarray(self.cfg.init_weights, dtype=np.float64)
        else:
            target = self.confidence / total
        blended = (1.0 - rate) * self.weights + rate * target
        self.weights = project_weights(blended, self._lo, self._hi)

    def _update_pattern(self, fs: float) -> None:
        x = np.asarray(self._fused)
        ptp = float(np.ptp(x))
        if ptp <= 0:
            self.correction = 1.0
            self.last_match = None
            return
        valleys, _ = find_peaks(-x, distance=max(1, int(0.3 * fs)), prominence=0.3 * ptp)
        if valleys.size < 2:
            self.correction = 1.0
            self.last_match = None
            return
        segment = x[valleys[-2] : valleys[-1] + 1]
        self._last_segment = segment
        self.last_match = self.bank.match(segment)
        self.correction = self.last_match.correction if self.last_match else 1.0

    def provide_feedback(self, record: FeedbackRecord) -> None:
        """Adapt thresholds and adaptation rate from consumer consistency."""
        cfg = self.cfg
        levels = record.levels()
        low = any(lv is Consistency.LOW for lv in levels) or record.signal_quality < self.quality_threshold
        high = not low and all(lv is Consistency.HIGH for lv in levels)
        if high:
            self._high_streak += 1
            self._low_streak = 0
            self.quality_threshold = max(cfg.quality_threshold_min, self.quality_threshold - 1.0)
            self.detection_k_offset = max(-cfg.k_offset_limit, self.detection_k_offset - cfg.k_offset_step)
            if self._last_segment is not None:
                self.bank.learn(self._last_segment, self.correction)
        elif low:
            self._low_streak += 1
            self._high_streak = 0
            self.quality_threshold = min(cfg.quality_threshold_max, self.quality_threshold + 1.0)
            self.detection_k_offset = min(cfg.k_offset_limit, self.detection_k_offset + cfg.k_offset_step)
            if self.last_match is not None:
                self.bank.relax(self.last_match.code)
        else:
            self._high_streak = 0
            self._low_streak = 0

        if self._high_streak >= cfg.sustain_count:
            self.adaptation_rate = max(cfg.rate_min, self.adaptation_rate * cfg.rate_slow)
        elif self._low_streak >= cfg.sustain_count:
            self.adaptation_rate = min(cfg.rate_max, self.adaptation_rate * cfg.rate_fast)
        logger.debug(
            "feedback: threshold %.0f, k offset %.2f, rate %.3f",
            self.quality_threshold,
            self.detection_k_offset,
            self.adaptation_rate,
        )

    def snapshot(self) -> dict:
        return {
            "weights": self.channel_weights.to_dict(),
            "adaptation_rate": self.adaptation_rate,
            "quality_threshold": self.quality_threshold,
            "detection_k_offset": self.detection_k_offset,
            "correction": self.correction,
            "patterns": len(self.bank),
        }
