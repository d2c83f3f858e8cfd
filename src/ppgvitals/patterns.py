"""Fixed-capacity bank of normalized beat shapes.

Shapes are resampled to a fixed number of points, scaled to 0..1 and
quantized into a short code used as the bank key. Each entry carries a
multiplicative correction bounded around 1. When full, the least useful
learned entry (fewest hits, then least recently used) is evicted; the
canonical templates are never evicted.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class PatternEntry:
    shape: np.ndarray
    correction: float
    hits: int = 0
    last_used: int = 0
    template: bool = False


@dataclass(frozen=True)
class PatternMatch:
    code: str
    correction: float
    correlation: float


def normalize_shape(segment: np.ndarray, points: int = 32) -> Optional[np.ndarray]:
    """Resample ``segment`` to ``points`` samples scaled to 0..1."""
    x = np.asarray(segment, dtype=np.float64)
    if x.size < 4:
        return None
    ptp = float(np.ptp(x))
    if ptp <= 0:
        return None
    grid = np.linspace(0.0, x.size - 1, points)
    y = np.interp(grid, np.arange(x.size), x)
    return (y - y.min()) / ptp


def shape_code(shape: np.ndarray, levels: int = 4) -> str:
    q = np.minimum(levels - 1, np.floor(shape * levels)).astype(int)
    return "".join(str(v) for v in q)


def sinusoidal_template(points: int = 32) -> np.ndarray:
    t = np.linspace(0.0, 1.0, points)
    return 0.5 - 0.5 * np.cos(2.0 * np.pi * t)


def dicrotic_template(points: int = 32) -> np.ndarray:
    """Fast systolic upstroke, then a decay interrupted by a small notch wave."""
    t = np.linspace(0.0, 1.0, points)
    systolic = np.exp(-((t - 0.25) ** 2) / (2 * 0.08 ** 2))
    diastolic = 0.45 * np.exp(-((t - 0.6) ** 2) / (2 * 0.1 ** 2))
    y = systolic + diastolic
    return (y - y.min()) / np.ptp(y)


class PatternBank:
    def __init__(
        self,
        capacity: int = 16,
        points: int = 32,
        levels: int = 4,
        match_threshold: float = 0.9,
        max_correction: float = 0.1,
    ) -> None:
        self.capacity = capacity
        self.points = points
        self.levels = levels
        self.match_threshold = match_threshold
        self.max_correction = max_correction
        self.entries: "OrderedDict[str, PatternEntry]" = OrderedDict()
        self._clock = 0
        self._seed()

    def __len__(self) -> int:
        return len(self.entries)

    def _seed(self) -> None:
        for shape, corr in ((sinusoidal_template(self.points), 1.0), (dicrotic_template(self.points), 1.05)):
            code = shape_code(shape, self.levels)
            self.entries[code] = PatternEntry(shape, corr, template=True)

    def reset(self) -> None:
        self.entries.clear()
        self._clock = 0
        self._seed()

    def _bound(self, correction: float) -> float:
        return float(np.clip(correction, 1.0 - self.max_correction, 1.0 + self.max_correction))

    def match(self, segment: np.ndarray) -> Optional[PatternMatch]:
        """Best entry correlating at least ``match_threshold`` with the segment."""
        shape = normalize_shape(segment, self.points)
        if shape is None:
            return None
        best_code = None
        best_r = -1.0
        for code, entry in self.entries.items():
            r = float(np.corrcoef(shape, entry.shape)[0, 1])
            if np.isfinite(r) and r > best_r:
                best_code, best_r = code, r
        if best_code is None or best_r < self.match_threshold:
            return None
        self._clock += 1
        entry = self.entries[best_code]
        entry.hits += 1
        entry.last_used = self._clock
        return PatternMatch(best_code, entry.correction, best_r)

    def learn(self, segment: np.ndarray, correction: float) -> Optional[str]:
        """Store the segment's shape; existing codes blend their correction."""
        shape = normalize_shape(segment, self.points)
        if shape is None:
            return None
        code = shape_code(shape, self.levels)
        self._clock += 1
        entry = self.entries.get(code)
        if entry is not None:
            if not entry.template:
                entry.correction = self._bound(0.5 * entry.correction + 0.5 * correction)
                entry.shape = 0.5 * entry.shape + 0.5 * shape
            entry.last_used = self._clock
            return code
        if len(self.entries) >= self.capacity:
            self._evict()
            if len(self.entries) >= self.capacity:
                return None
        self.entries[code] = PatternEntry(shape, self._bound(correction), last_used=self._clock)
        return code

    def relax(self, code: str, rate: float = 0.5) -> None:
        """Pull a learned entry's correction back toward 1."""
        entry = self.entries.get(code)
        if entry is None or entry.template:
            return
        entry.correction = self._bound(1.0 + (entry.correction - 1.0) * (1.0 - rate))

    def _evict(self) -> None:
        learned = [(e.hits, e.last_used, c) for c, e in self.entries.items() if not e.template]
        if not learned:
            return
        _, _, code = min(learned)
        logger.debug("evicting pattern %s", code)
        del self.entries[code]
