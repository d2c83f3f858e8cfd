"""Rhythm irregularity analysis on the RR-interval stream.

A beat is irregular when RMSSD and the RR variation of the recent window
both exceed their thresholds. Irregular beats drain a stability counter
faster than regular beats refill it, and an event is only confirmed once
the irregularity is sustained and the counter has dropped below the gate.
The session counter is rate limited and bounded. An independent pattern
detector watches the history of variation scores and raises its own flag.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional

import numpy as np

from .config import ArrhythmiaConfig
from .hrv import HrvMetrics, compute_metrics

logger = logging.getLogger(__name__)


class ArrhythmiaStatus(str, Enum):
    CALIBRATING = "CALIBRATING"
    NO_ARRHYTHMIA = "NO ARRHYTHMIAS"
    ARRHYTHMIA_DETECTED = "ARRHYTHMIA DETECTED"


@dataclass
class ArrhythmiaState:
    stability_counter: int = 30
    consecutive_pattern_count: int = 0
    arrhythmia_counter: int = 0
    last_event_time: Optional[float] = None
    last_event_metrics: Optional[HrvMetrics] = None


@dataclass(frozen=True)
class ArrhythmiaResult:
    status: ArrhythmiaStatus
    count: int
    is_arrhythmia: bool = False
    pattern_flag: bool = False
    metrics: Optional[HrvMetrics] = None
    last_event_time: Optional[float] = None

    @property
    def status_text(self) -> str:
        if self.status is ArrhythmiaStatus.CALIBRATING:
            return self.status.value
        return f"{self.status.value}|{self.count}"


class RhythmPatternDetector:
    """Flags runs or clusters of high RR-variation scores."""

    def __init__(self, cfg: ArrhythmiaConfig | None = None) -> None:
        self.cfg = cfg or ArrhythmiaConfig()
        self.scores: Deque[float] = deque(maxlen=self.cfg.pattern_history)

    def reset(self) -> None:
        self.scores.clear()

    def update(self, score: float) -> bool:
        self.scores.append(float(score))
        return self.flag()

    def flag(self) -> bool:
        cfg = self.cfg
        if len(self.scores) < cfg.pattern_min_scores:
            return False
        high = np.asarray(self.scores) > cfg.pattern_score_threshold
        if float(np.mean(high)) > cfg.pattern_ratio:
            return True
        run = longest = 0
        for h in high:
            run = run + 1 if h else 0
            longest = max(longest, run)
        return longest / float(cfg.pattern_history) > cfg.pattern_run_ratio


class ArrhythmiaAnalyzer:
    def __init__(self, cfg: ArrhythmiaConfig | None = None) -> None:
        self.cfg = cfg or ArrhythmiaConfig()
        self.state = ArrhythmiaState(stability_counter=self.cfg.stability_cap)
        self.intervals: Deque[float] = deque(maxlen=self.cfg.history_size)
        self.patterns = RhythmPatternDetector(self.cfg)
        self._valid_count = 0
        self._in_episode = False
        self._result = ArrhythmiaResult(ArrhythmiaStatus.CALIBRATING, 0)

    def reset(self) -> None:
        self.state = ArrhythmiaState(stability_counter=self.cfg.stability_cap)
        self.intervals.clear()
        self.patterns.reset()
        self._valid_count = 0
        self._in_episode = False
        self._result = ArrhythmiaResult(ArrhythmiaStatus.CALIBRATING, 0)

    @property
    def result(self) -> ArrhythmiaResult:
        return self._result

    @property
    def count(self) -> int:
        return self.state.arrhythmia_counter

    def is_irregular(self, metrics: HrvMetrics) -> bool:
        return (
            metrics.rmssd > self.cfg.rmssd_threshold
            and metrics.rr_variation > self.cfg.variation_threshold
        )

    def process_interval(self, duration_ms: float, timestamp: float) -> ArrhythmiaResult:
        """Analyse one RR interval closed at ``timestamp`` (ms).

        Intervals outside the physiological window are discarded without
        touching any state.
        """
        cfg = self.cfg
        duration_ms = float(duration_ms)
        if not np.isfinite(duration_ms) or not (cfg.min_rr_ms <= duration_ms <= cfg.max_rr_ms):
            logger.debug("rejecting RR interval %r ms", duration_ms)
            return self._result
        self.intervals.append(duration_ms)
        self._valid_count += 1
        if len(self.intervals) < cfg.min_intervals:
            self._result = ArrhythmiaResult(ArrhythmiaStatus.CALIBRATING, self.count)
            return self._result

        window = list(self.intervals)[-cfg.analysis_window :]
        metrics = compute_metrics(window, cfg.entropy_bin_ms)
        irregular = self.is_irregular(metrics)
        pattern_flag = self.patterns.update(metrics.rr_variation)

        st = self.state
        if irregular:
            st.stability_counter = max(0, st.stability_counter - cfg.stability_penalty)
            st.consecutive_pattern_count += 1
        else:
            st.stability_counter = min(cfg.stability_cap, st.stability_counter + cfg.stability_gain)
            st.consecutive_pattern_count = 0
            self._in_episode = False

        learning = self._valid_count < cfg.learning_intervals
        confirmed = (
            not learning
            and irregular
            and st.consecutive_pattern_count >= cfg.min_consecutive
            and st.stability_counter < cfg.stability_gate
        )
        if confirmed and not self._in_episode:
            self._count_event(timestamp, metrics)

        if learning:
            status = ArrhythmiaStatus.CALIBRATING
        elif confirmed:
            status = ArrhythmiaStatus.ARRHYTHMIA_DETECTED
        else:
            status = ArrhythmiaStatus.NO_ARRHYTHMIA
        self._result = ArrhythmiaResult(
            status=status,
            count=st.arrhythmia_counter,
            is_arrhythmia=confirmed,
            pattern_flag=pattern_flag,
            metrics=metrics,
            last_event_time=st.last_event_time,
        )
        return self._result

    def _count_event(self, timestamp: float, metrics: HrvMetrics) -> None:
        cfg = self.cfg
        st = self.state
        if st.arrhythmia_counter >= cfg.max_per_session:
            return
        if st.last_event_time is not None and timestamp - st.last_event_time < cfg.min_event_interval_ms:
            return
        st.arrhythmia_counter += 1
        st.last_event_time = timestamp
        st.last_event_metrics = metrics
        self._in_episode = True
        logger.info(
            "arrhythmia event %d (rmssd %.1f ms, variation %.2f)",
            st.arrhythmia_counter,
            metrics.rmssd,
            metrics.rr_variation,
        )

    def analyze(self, intervals: list[float], start_time: float = 0.0) -> ArrhythmiaResult:
        """Feed a whole RR sequence, using cumulative durations as timestamps."""
        t = start_time
        for rr in intervals:
            t += float(rr) if np.isfinite(rr) else 0.0
            self.process_interval(rr, t)
        return self._result
