"""Autocorrelation-based pulse period estimation for short windows.

The ACF peak in the heart-rate lag range doubles as a periodicity score,
which the quality estimator and the channel optimizer both rely on.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class AcfResult:
    bpm: float | None
    peak_lag: float | None  # seconds
    score: float  # 0..1 relative peak strength


def parabolic_interp(y: np.ndarray, i: int) -> tuple[float, float]:
    """Quadratic interpolation around index i. Returns (x_peak, y_peak)."""
    i0 = max(0, i - 1)
    i2 = min(y.size - 1, i + 1)
    y0, y1, y2 = float(y[i0]), float(y[i]), float(y[i2])
    denom = y0 - 2 * y1 + y2
    if denom == 0.0:
        return float(i), y1
    x = i + 0.5 * (y0 - y2) / denom
    a = 0.5 * denom
    b = 0.5 * (y2 - y0)
    y_peak = a * (x - i) ** 2 + b * (x - i) + y1
    return float(x), float(y_peak)


def autocorrelation(x: np.ndarray) -> np.ndarray:
    """Unbiased autocorrelation for non-negative lags, scaled so acf[0] == 1.

    Computed through the power spectrum (Wiener-Khinchin).
    """
    x = np.asarray(x, dtype=np.float64)
    if x.size == 0:
        return x.copy()
    x = x - float(np.mean(x))
    std = float(np.std(x))
    if std > 0:
        x = x / std
    n = int(2 ** int(np.ceil(np.log2(max(2, 2 * x.size - 1)))))
    X = np.fft.rfft(x, n=n)
    acf = np.fft.irfft(np.abs(X) ** 2, n=n)[: x.size]
    acf = acf / np.arange(x.size, 0, -1)
    if acf[0] > 0:
        acf = acf / acf[0]
    return acf


def estimate_bpm_acf(
    x: np.ndarray,
    fs: float,
    bpm_min: float = 40.0,
    bpm_max: float = 200.0,
) -> AcfResult:
    """Estimate BPM by finding the dominant ACF peak in the heart-rate range.

    Args:
        x: time-domain PPG window (1D array).
        fs: sampling rate (Hz).
        bpm_min/bpm_max: search bounds (BPM).

    Returns:
        AcfResult with BPM, peak lag (s), and a simple 0..1 score.
    """
    x = np.asarray(x, dtype=np.float64)
    if x.size < 8 or fs <= 0:
        return AcfResult(None, None, 0.0)
    if float(np.std(x)) == 0.0:
        return AcfResult(None, None, 0.0)
    acf = autocorrelation(x)
    # positive lags only, lag=0 excluded by the BPM bound
    lag_min = max(1, int(np.floor(fs * 60.0 / bpm_max)))
    lag_max = int(np.ceil(fs * 60.0 / bpm_min))
    lag_max = min(acf.size - 1, max(lag_min + 2, lag_max))
    roi = acf[lag_min : lag_max + 1]
    if roi.size <= 3:
        return AcfResult(None, None, 0.0)
    k = int(np.argmax(roi)) + lag_min
    xk, yk = parabolic_interp(acf, k)
    lag_sec = xk / fs
    if lag_sec <= 0 or yk <= 0:
        return AcfResult(None, None, 0.0)
    bpm = 60.0 / lag_sec
    # peak height above the ROI median; acf is normalised to acf[0] == 1
    med = float(np.median(roi))
    score = float(np.clip(yk - max(med, 0.0), 0.0, 1.0))
    return AcfResult(float(bpm), float(lag_sec), score)
