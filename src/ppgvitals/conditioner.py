"""Per-sample signal conditioning: adaptive Kalman smoothing plus baseline."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .config import ConditionerConfig
from .kalman import AdaptiveKalmanFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionedValue:
    filtered: float
    baseline: float
    ac: float          # filtered - baseline
    normalized: float  # ac / |baseline|


class SignalConditioner:
    """Consume one raw intensity sample per tick, emit one filtered sample."""

    def __init__(self, cfg: ConditionerConfig | None = None) -> None:
        self.cfg = cfg or ConditionerConfig()
        self.kalman = AdaptiveKalmanFilter(self.cfg.kalman)
        self.baseline: float | None = None
        self.last: ConditionedValue | None = None

    def reset(self) -> None:
        self.kalman.reset()
        self.baseline = None
        self.last = None

    def update(self, value: float) -> ConditionedValue | None:
        """Filter ``value``; non-finite input is discarded and returns None."""
        value = float(value)
        if not math.isfinite(value):
            logger.debug("discarding non-finite sample %r", value)
            return None
        filtered = self.kalman.update(value)
        f = self.cfg.baseline_factor
        if self.baseline is None:
            self.baseline = filtered
        else:
            self.baseline = f * self.baseline + (1.0 - f) * filtered
        ac = filtered - self.baseline
        normalized = ac / abs(self.baseline) if self.baseline != 0 else 0.0
        self.last = ConditionedValue(filtered, self.baseline, ac, normalized)
        return self.last
