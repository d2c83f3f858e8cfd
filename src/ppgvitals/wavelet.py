"""Continuous wavelet scale analysis of a PPG window.

Uses a complex Morlet wavelet over log-spaced scales. Scale power is
divided by the scale so that neighbouring scales compete fairly, and the
scale with maximum energy inside the cardiac band gives the pulse rate.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pywt
from scipy.signal import find_peaks

from .acf_bpm import autocorrelation


@dataclass
class CwtResult:
    freqs: np.ndarray        # Hz, one per scale
    scale_power: np.ndarray  # rectified mean power per scale
    best_index: int
    bpm: float
    time_consistency: float


def log_scales(
    fs: float,
    fmin: float = 0.4,
    fmax: float = 4.0,
    n_scales: int = 20,
    wavelet: str = "cmor1.5-1.0",
) -> tuple[np.ndarray, np.ndarray]:
    """Return (scales, freqs) for ``n_scales`` log-spaced frequencies."""
    freqs = np.geomspace(fmin, fmax, n_scales)
    fc = pywt.central_frequency(wavelet)
    scales = fc * fs / freqs
    return scales, freqs


def time_consistency(coef: np.ndarray, fallback: float = 0.3) -> float:
    """Regularity of the autocorrelation peaks of one scale's coefficients.

    1 means perfectly even spacing; ``fallback`` when fewer than two
    autocorrelation peaks are available.
    """
    x = np.real(np.asarray(coef))
    if x.size < 8 or float(np.std(x)) == 0.0:
        return 0.0
    acf = autocorrelation(x)[: x.size // 2 + 1]
    peaks, _ = find_peaks(acf)
    if peaks.size < 2:
        return fallback
    spacing = np.diff(np.concatenate(([0], peaks)))
    mean = float(np.mean(spacing))
    if mean <= 0:
        return 0.0
    return float(np.clip(1.0 - float(np.std(spacing)) / mean, 0.0, 1.0))


def cwt_analyze(
    x: np.ndarray,
    fs: float,
    fmin: float = 0.4,
    fmax: float = 4.0,
    n_scales: int = 20,
    wavelet: str = "cmor1.5-1.0",
    band: tuple[float, float] = (0.5, 4.0),
    fallback_consistency: float = 0.3,
) -> CwtResult:
    x = np.asarray(x, dtype=np.float64)
    scales, freqs = log_scales(fs, fmin, fmax, n_scales, wavelet)
    coefs, _ = pywt.cwt(x, scales, wavelet, sampling_period=1.0 / fs, method="fft")
    power = np.mean(np.abs(coefs) ** 2, axis=1) / scales
    in_band = (freqs >= band[0]) & (freqs <= band[1])
    if not np.any(in_band) or not np.any(power[in_band] > 0):
        return CwtResult(freqs, power, -1, 0.0, 0.0)
    best = int(np.argmax(np.where(in_band, power, -np.inf)))
    tc = time_consistency(coefs[best], fallback_consistency)
    return CwtResult(freqs, power, best, float(60.0 * freqs[best]), tc)
