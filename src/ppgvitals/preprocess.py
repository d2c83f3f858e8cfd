"""Window-level preprocessing shared by the analysis stages."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, filtfilt


def estimate_fs(timestamps_ms: np.ndarray, default: float = 30.0, tail: int = 50) -> float:
    """Sampling rate (Hz) from the median spacing of recent timestamps."""
    t = np.asarray(timestamps_ms, dtype=np.float64)
    if t.size < 2:
        return default
    d = np.diff(t[-tail:])
    d = d[d > 0]
    if d.size == 0:
        return default
    return float(1000.0 / np.median(d))


def detrend_poly(x: np.ndarray, order: int = 3) -> np.ndarray:
    """Remove a least-squares polynomial trend of the given order."""
    x = np.asarray(x, dtype=np.float64)
    n = x.size
    if n <= order + 1:
        return x - x.mean() if n else x.copy()
    t = np.linspace(-1.0, 1.0, n)
    coef = np.polyfit(t, x, order)
    return x - np.polyval(coef, t)


def bandpass(
    x: np.ndarray,
    fs: float,
    fmin: float = 0.5,
    fmax: float = 4.0,
    order: int = 3,
) -> np.ndarray:
    """Zero-phase Butterworth band-pass filter over a complete window.

    Args:
        x: 1D array.
        fs: sampling rate [Hz].
        fmin: low cut [Hz].
        fmax: high cut [Hz].
        order: IIR order.
    """
    x = np.asarray(x, dtype=np.float64)
    nyq = 0.5 * fs
    low = max(1e-6, fmin / nyq)
    high = min(0.999, fmax / nyq)
    if not (0 < low < high < 1):
        return x.copy()
    b, a = butter(order, [low, high], btype="band")
    padlen = 3 * max(len(a), len(b))
    if x.size <= padlen:
        return x - x.mean() if x.size else x.copy()
    return filtfilt(b, a, x)
