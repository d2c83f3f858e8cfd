"""Heart-rate-variability statistics over RR-interval sequences (ms)."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Sequence

import numpy as np


def rmssd(rr: Sequence[float]) -> float:
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 2:
        return 0.0
    return float(np.sqrt(np.mean(np.diff(x) ** 2)))


def sdnn(rr: Sequence[float]) -> float:
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 2:
        return 0.0
    return float(np.std(x))


def rr_variation(rr: Sequence[float]) -> float:
    """|last - mean| / mean of the sequence."""
    x = np.asarray(rr, dtype=np.float64)
    if x.size == 0:
        return 0.0
    mean = float(np.mean(x))
    if mean <= 0:
        return 0.0
    return float(abs(x[-1] - mean) / mean)


def pnn50(rr: Sequence[float], threshold_ms: float = 50.0) -> float:
    """Fraction of successive differences larger than ``threshold_ms``."""
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 2:
        return 0.0
    return float(np.mean(np.abs(np.diff(x)) > threshold_ms))


def poincare(rr: Sequence[float]) -> tuple[float, float]:
    """Poincaré plot dispersions (SD1, SD2)."""
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 3:
        return 0.0, 0.0
    d = np.diff(x)
    sd1_sq = float(np.var(d)) / 2.0
    sd2_sq = max(0.0, 2.0 * float(np.var(x)) - sd1_sq)
    return float(np.sqrt(sd1_sq)), float(np.sqrt(sd2_sq))


def shannon_entropy(rr: Sequence[float], bin_ms: float = 25.0) -> float:
    """Shannon entropy (bits) of the RR histogram with fixed-width bins."""
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 2:
        return 0.0
    bins = np.floor(x / bin_ms).astype(np.int64)
    _, counts = np.unique(bins, return_counts=True)
    p = counts / counts.sum()
    return float(-np.sum(p * np.log2(p)))


def sample_entropy(rr: Sequence[float], m: int = 2, r: float = 0.2) -> float:
    """Sample entropy with tolerance ``r`` times the sequence std.

    Returns 0 when the sequence is too short or has no matching templates.
    """
    x = np.asarray(rr, dtype=np.float64)
    n = x.size
    if n <= m + 1:
        return 0.0
    tol = r * float(np.std(x))
    if tol <= 0:
        return 0.0

    def matches(length: int) -> int:
        t = np.lib.stride_tricks.sliding_window_view(x, length)[: n - m]
        dist = np.max(np.abs(t[:, None, :] - t[None, :, :]), axis=2)
        close = dist <= tol
        np.fill_diagonal(close, False)
        return int(close.sum())

    b = matches(m)
    a = matches(m + 1)
    if a == 0 or b == 0:
        return 0.0
    return float(-np.log(a / b))


@dataclass(frozen=True)
class HrvMetrics:
    mean_rr: float
    rmssd: float
    sdnn: float
    rr_variation: float
    cv: float
    pnn50: float
    sd1: float
    sd2: float
    sd_ratio: float
    shannon_entropy: float
    sample_entropy: float
    count: int

    def to_dict(self) -> dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


def compute_metrics(rr: Sequence[float], entropy_bin_ms: float = 25.0) -> HrvMetrics:
    x = np.asarray(rr, dtype=np.float64)
    mean = float(np.mean(x)) if x.size else 0.0
    sd = sdnn(x)
    sd1, sd2 = poincare(x)
    return HrvMetrics(
        mean_rr=mean,
        rmssd=rmssd(x),
        sdnn=sd,
        rr_variation=rr_variation(x),
        cv=sd / mean if mean > 0 else 0.0,
        pnn50=pnn50(x),
        sd1=sd1,
        sd2=sd2,
        sd_ratio=sd1 / sd2 if sd2 > 0 else 0.0,
        shannon_entropy=shannon_entropy(x, entropy_bin_ms),
        sample_entropy=sample_entropy(x),
        count=int(x.size),
    )
