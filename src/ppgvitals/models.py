"""Immutable records passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Sample:
    timestamp: float  # ms
    raw_value: float
    filtered_value: float
    quality: float  # 0..100
    finger_detected: bool


class PeakKind(str, Enum):
    PEAK = "peak"
    VALLEY = "valley"


@dataclass(frozen=True)
class PeakEvent:
    sample_index: int
    timestamp: float  # ms
    value: float
    kind: PeakKind
    confidence: float = 0.0  # 0..1


@dataclass(frozen=True)
class RRInterval:
    duration_ms: float
    timestamp: float  # ms, time of the closing peak

    @property
    def bpm(self) -> float:
        return 60000.0 / self.duration_ms
