"""RR intervals to a smoothed heart rate with warm-up and signal-loss decay."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional

import numpy as np

from .config import HeartRateConfig
from .models import RRInterval

logger = logging.getLogger(__name__)


class HeartRatePhase(str, Enum):
    WARMUP = "warmup"
    ACTIVE = "active"


@dataclass
class HeartRateState:
    bpm_history: Deque[float] = field(default_factory=lambda: deque(maxlen=5))
    smoothed_bpm: float = 0.0
    last_peak_time: Optional[float] = None
    warmup_start_time: Optional[float] = None


@dataclass(frozen=True)
class HeartRateReading:
    bpm: float
    confidence: float
    is_peak: bool
    phase: HeartRatePhase
    signal_lost: bool = False


class HeartRateEstimator:
    """Turn confirmed beats into a reported BPM.

    Each valid RR interval pushes 60000 / interval into a ring of five
    values. The ring mean (min and max dropped once the ring is full) is
    smoothed against the previous output and clamped. When no beat has
    been confirmed for ``loss_timeout_ms`` the output glides linearly to
    ``neutral_bpm`` over ``decay_ms`` instead of jumping.
    """

    def __init__(self, cfg: HeartRateConfig | None = None) -> None:
        self.cfg = cfg or HeartRateConfig()
        self.state = HeartRateState(bpm_history=deque(maxlen=self.cfg.history_size))
        self._decay_start_bpm: Optional[float] = None
        self._confidence = 0.0

    def reset(self) -> None:
        self.state = HeartRateState(bpm_history=deque(maxlen=self.cfg.history_size))
        self._decay_start_bpm = None
        self._confidence = 0.0

    @property
    def bpm(self) -> float:
        return self.state.smoothed_bpm

    def _ring_mean(self) -> float:
        values = sorted(self.state.bpm_history)
        if len(values) == self.state.bpm_history.maxlen and len(values) >= 3:
            values = values[1:-1]
        return float(np.mean(values))

    def _push(self, rr: RRInterval) -> None:
        cfg = self.cfg
        st = self.state
        st.bpm_history.append(rr.bpm)
        avg = self._ring_mean()
        if st.smoothed_bpm <= 0:
            smoothed = avg
        else:
            smoothed = cfg.alpha * avg + (1.0 - cfg.alpha) * st.smoothed_bpm
        st.smoothed_bpm = float(np.clip(smoothed, cfg.min_bpm, cfg.max_bpm))

    def _decay(self, timestamp: float) -> float:
        """Apply signal-loss decay; returns the decay fraction (0 = none)."""
        cfg = self.cfg
        st = self.state
        ref = st.last_peak_time if st.last_peak_time is not None else st.warmup_start_time
        if ref is None or st.smoothed_bpm <= 0:
            return 0.0
        elapsed = timestamp - ref
        if elapsed <= cfg.loss_timeout_ms:
            return 0.0
        if self._decay_start_bpm is None:
            logger.info("no beat for %.0f ms, decaying heart rate from %.1f", elapsed, st.smoothed_bpm)
            self._decay_start_bpm = st.smoothed_bpm
            st.bpm_history.clear()
        frac = float(np.clip((elapsed - cfg.loss_timeout_ms) / cfg.decay_ms, 0.0, 1.0))
        start = self._decay_start_bpm
        st.smoothed_bpm = start + (cfg.neutral_bpm - start) * frac
        return frac

    def update(
        self,
        timestamp: float,
        peak_confirmed: bool = False,
        rr: Optional[RRInterval] = None,
        peak_confidence: float = 1.0,
        quality: float = 100.0,
    ) -> HeartRateReading:
        """Advance to ``timestamp``.

        Args:
            timestamp: sample time (ms).
            peak_confirmed: a beat was confirmed at this tick.
            rr: the RR interval closed by that beat, if valid.
            peak_confidence: detector confidence of the beat (0..1).
            quality: current signal quality (0..100).
        """
        cfg = self.cfg
        st = self.state
        if st.warmup_start_time is None:
            st.warmup_start_time = timestamp
        in_warmup = timestamp - st.warmup_start_time < cfg.warmup_ms

        if peak_confirmed:
            st.last_peak_time = timestamp
            if self._decay_start_bpm is not None:
                logger.info("beat recovered at %.1f bpm", st.smoothed_bpm)
            self._decay_start_bpm = None
            self._confidence = float(np.clip(peak_confidence, 0.0, 1.0) * np.clip(quality, 0.0, 100.0) / 100.0)
        if rr is not None:
            self._push(rr)

        frac = self._decay(timestamp)
        confidence = 0.0 if in_warmup else self._confidence * (1.0 - frac)
        return HeartRateReading(
            bpm=st.smoothed_bpm,
            confidence=confidence,
            is_peak=bool(peak_confirmed and not in_warmup),
            phase=HeartRatePhase.WARMUP if in_warmup else HeartRatePhase.ACTIVE,
            signal_lost=self._decay_start_bpm is not None,
        )
