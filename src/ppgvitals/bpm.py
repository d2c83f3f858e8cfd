"""Periodogram utilities for dominant pulse frequency."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .acf_bpm import parabolic_interp


def power_spectrum(
    x: np.ndarray,
    fs: float,
    nfft: int | None = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (freqs, power) of a Hann-windowed, mean-removed window.

    ``nfft`` zero-pads the transform; it is never shorter than the input.
    """
    x = np.asarray(x, dtype=np.float64)
    n = x.size
    nfft = max(n, int(nfft or n))
    w = np.hanning(n)
    X = np.fft.rfft((x - x.mean()) * w, n=nfft)
    freqs = np.fft.rfftfreq(nfft, d=1.0 / fs)
    return freqs, np.abs(X) ** 2


def estimate_bpm(
    signal: np.ndarray,
    fs: float,
    fmin: float = 0.5,
    fmax: float = 4.0,
    nfft: int | None = None,
) -> Tuple[float, float]:
    """Estimate BPM by the interpolated peak of the band-limited spectrum.

    Returns (bpm, peak_freq_hz). If invalid, returns (0.0, 0.0).
    """
    x = np.asarray(signal, dtype=np.float64)
    if x.size < 8 or fs <= 0:
        return 0.0, 0.0
    freqs, power = power_spectrum(x, fs, nfft)
    band = (freqs >= max(0.0, fmin)) & (freqs <= fmax)
    if not np.any(band) or not np.any(power[band] > 0):
        return 0.0, 0.0
    idx = int(np.argmax(np.where(band, power, 0.0)))
    xk, _ = parabolic_interp(power, idx)
    df = freqs[1] - freqs[0] if freqs.size > 1 else 0.0
    f_peak = float(np.clip(xk * df, fmin, fmax))
    bpm = float(60.0 * f_peak) if f_peak > 0 else 0.0
    return bpm, f_peak
