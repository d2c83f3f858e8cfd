"""Waveform morphology and perfusion features of a pulsatile window."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import numpy as np
from scipy.signal import find_peaks, peak_widths

from .bpm import power_spectrum
from .preprocess import bandpass


@dataclass(frozen=True)
class WaveformFeatures:
    ac: float = 0.0               # peak-to-peak of the pulsatile component
    dc: float = 0.0               # static level
    perfusion_index: float = 0.0  # ac / dc
    rise_time_ms: float = 0.0
    fall_time_ms: float = 0.0
    rise_fall_ratio: float = 0.0
    peak_width_ms: float = 0.0    # width at half prominence
    auc: float = 0.0              # mean of the window scaled to 0..1
    notch_position: float = 0.5   # relative position of the dicrotic notch in a beat
    prv: float = 0.0              # coefficient of variation of peak spacing
    spectral_ratio: float = 0.0   # cardiac-band share of total power
    peak_count: int = 0
    sample_count: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def _notch_position(x: np.ndarray, start: int, stop: int) -> float | None:
    """Relative position of the dicrotic notch between two systolic peaks.

    Only the downslope from the peak to the diastolic foot is searched. The
    notch is the first point where the slope turns upward; a shoulder with
    no real dip is taken where the descent is least steep.
    """
    seg = x[start:stop]
    if seg.size < 5:
        return None
    foot = int(np.argmin(seg))
    top = int(np.argmax(seg[:foot])) if foot > 0 else 0
    d = np.diff(seg[top : foot + 1])
    if d.size < 3:
        return None
    for i in range(1, d.size):
        if d[i - 1] < 0.0 <= d[i]:
            return float(top + i) / float(seg.size)
    for i in range(1, d.size - 1):
        if d[i - 1] < d[i] >= d[i + 1]:
            return float(top + i) / float(seg.size)
    return None


def extract_features(ac_values: np.ndarray, dc: float, fs: float) -> WaveformFeatures:
    """Compute features from a window of baseline-removed samples.

    Args:
        ac_values: filtered signal minus its baseline.
        dc: the baseline level the window rides on.
        fs: sampling rate (Hz).
    """
    x = np.asarray(ac_values, dtype=np.float64)
    n = x.size
    if n < 3 or fs <= 0:
        return WaveformFeatures(sample_count=n)
    duration_ms = 1000.0 * (n - 1) / fs
    ac = float(np.ptp(x))
    dc = abs(float(dc))
    pi = ac / dc if dc > 0 else 0.0
    if ac <= 0:
        return WaveformFeatures(dc=dc, sample_count=n, duration_ms=duration_ms)

    y = bandpass(x, fs, 0.5, 4.0)
    yr = float(np.ptp(y))
    if yr <= 0:
        return WaveformFeatures(ac=ac, dc=dc, perfusion_index=pi, sample_count=n, duration_ms=duration_ms)
    distance = max(1, int(0.3 * fs))
    peaks, _ = find_peaks(y, distance=distance, prominence=0.3 * yr)
    valleys, _ = find_peaks(-y, distance=distance, prominence=0.3 * yr)

    rises: list[float] = []
    falls: list[float] = []
    for p in peaks:
        before = valleys[valleys < p]
        after = valleys[valleys > p]
        if before.size:
            rises.append((p - before[-1]) / fs * 1000.0)
        if after.size:
            falls.append((after[0] - p) / fs * 1000.0)
    rise = float(np.mean(rises)) if rises else 0.0
    fall = float(np.mean(falls)) if falls else 0.0

    width = 0.0
    if peaks.size:
        widths = peak_widths(y, peaks, rel_height=0.5)[0]
        width = float(np.mean(widths)) / fs * 1000.0

    # wider pass that keeps the dicrotic notch
    detail = bandpass(x, fs, 0.5, 8.0)
    notches: list[float] = []
    for a, b in zip(peaks, peaks[1:]):
        pos = _notch_position(detail, int(a), int(b))
        if pos is not None:
            notches.append(pos)
    notch = float(np.mean(notches)) if notches else 0.5

    prv = 0.0
    if peaks.size >= 3:
        spacing = np.diff(peaks).astype(np.float64)
        prv = float(np.std(spacing) / np.mean(spacing))

    freqs, power = power_spectrum(x, fs)
    total = float(np.sum(power[freqs > 0]))
    band = (freqs >= 0.5) & (freqs <= 4.0)
    spectral_ratio = float(np.sum(power[band])) / total if total > 0 else 0.0

    return WaveformFeatures(
        ac=ac,
        dc=dc,
        perfusion_index=pi,
        rise_time_ms=rise,
        fall_time_ms=fall,
        rise_fall_ratio=rise / fall if fall > 0 else 0.0,
        peak_width_ms=width,
        auc=float(np.mean((x - x.min()) / ac)),
        notch_position=notch,
        prv=prv,
        spectral_ratio=spectral_ratio,
        peak_count=int(peaks.size),
        sample_count=n,
        duration_ms=duration_ms,
    )
