"""Signal quality metrics and the running quality / finger-presence estimate.

Includes a simple spectral SNR, a normalized peak confidence, and a
window-based quality score combining periodicity, SNR and amplitude.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque

import numpy as np

from .acf_bpm import estimate_bpm_acf
from .bpm import power_spectrum
from .config import QualityConfig
from .preprocess import estimate_fs

logger = logging.getLogger(__name__)


def snr_db(
    power_spectrum: np.ndarray,
    peak_index: int,
    guard_bins: int = 1,
    band_bins: int = 1,
) -> float:
    """Estimate SNR at a known peak using local noise floor.

    Signal is taken as the mean magnitude within the peak band (±band_bins),
    while noise is estimated as the median magnitude of bins outside a guard
    region (±guard_bins beyond the band). This is robust to outliers and
    independent of spectrum length.
    """
    p = np.asarray(power_spectrum, dtype=np.float64)
    n = int(p.size)
    if n == 0:
        return 0.0
    i0 = max(0, int(peak_index) - int(band_bins))
    i1 = min(n, int(peak_index) + int(band_bins) + 1)
    sig = float(np.mean(p[i0:i1])) if i1 > i0 else float(p[int(peak_index)])
    # noise mask excludes a guard region around the band
    g0 = max(0, i0 - int(guard_bins))
    g1 = min(n, i1 + int(guard_bins))
    if g0 <= 0 and g1 >= n:
        return 0.0
    noise_bins = np.concatenate([p[:g0], p[g1:]])
    if noise_bins.size == 0:
        return 0.0
    noise = float(np.median(noise_bins))
    if noise <= 0.0 or sig <= 0.0:
        return 0.0
    return 10.0 * float(np.log10(sig / noise))


def peak_confidence(
    power_spectrum: np.ndarray,
    peak_index: int,
    neighborhood: int = 2,
) -> float:
    """Return a 0..1 confidence based on peak prominence.

    Confidence is computed as (peak - median(neighborhood)) / (peak + median), clipped to [0, 1].

    Args:
        power_spectrum: magnitude or power spectrum (1D array).
        peak_index: index of the detected peak within the array.
        neighborhood: half-width around the peak to compute a local median.
    """
    p = np.asarray(power_spectrum, dtype=np.float64)
    if p.size == 0:
        return 0.0
    i0 = max(0, peak_index - neighborhood)
    i1 = min(p.size, peak_index + neighborhood + 1)
    local = p[i0:i1]
    peak = float(p[peak_index]) if 0 <= peak_index < p.size else 0.0
    med = float(np.median(local)) if local.size > 0 else 0.0
    num = max(0.0, peak - med)
    den = max(1e-9, peak + med)
    return float(np.clip(num / den, 0.0, 1.0))


def cardiac_peak(
    x: np.ndarray, fs: float, fmin: float = 0.5, fmax: float = 4.0
) -> tuple[np.ndarray, int]:
    """Magnitude spectrum of ``x`` and the index of its cardiac-band peak."""
    freqs, power = power_spectrum(x, fs)
    mag = np.sqrt(power)
    band = (freqs >= fmin) & (freqs <= fmax)
    idx = int(np.argmax(np.where(band, mag, 0.0)))
    return mag, idx


@dataclass
class QualityReading:
    quality: float  # 0..100
    finger_detected: bool


class SignalQualityEstimator:
    """Running 0..100 quality score with hysteresis-based finger detection.

    The score mixes the ACF periodicity score, the spectral SNR of the
    cardiac peak and the window amplitude. A window whose peak-to-peak
    amplitude is below the floor scores 0. Finger presence needs several
    stable frames in a row and decays at half speed, so a single bad frame
    does not drop it.
    """

    def __init__(self, cfg: QualityConfig | None = None, sample_rate: float = 30.0) -> None:
        self.cfg = cfg or QualityConfig()
        self.sample_rate = sample_rate
        self._t: Deque[float] = deque(maxlen=512)
        self._x: Deque[float] = deque(maxlen=512)
        self.stable_count = 0.0
        self.finger_detected = False
        self.quality = 0.0

    def reset(self) -> None:
        self._t.clear()
        self._x.clear()
        self.stable_count = 0.0
        self.finger_detected = False
        self.quality = 0.0

    def _trim(self) -> None:
        horizon = self._t[-1] - 1000.0 * self.cfg.window_sec
        while self._t and self._t[0] < horizon:
            self._t.popleft()
            self._x.popleft()

    def score(self, x: np.ndarray, fs: float) -> float:
        """Quality (0..100) of a single window."""
        cfg = self.cfg
        x = np.asarray(x, dtype=np.float64)
        if x.size < 8:
            return 0.0
        ptp = float(np.ptp(x))
        if ptp < cfg.amplitude_floor:
            return 0.0
        acf = estimate_bpm_acf(x, fs).score
        mag, idx = cardiac_peak(x, fs)
        snr = snr_db(mag, idx, guard_bins=1, band_bins=1)
        snr_score = float(np.clip(snr / cfg.snr_scale, 0.0, 1.0))
        amp_score = float(np.clip(ptp / cfg.amplitude_ref, 0.0, 1.0))
        q = cfg.acf_weight * acf + cfg.snr_weight * snr_score + cfg.amplitude_weight * amp_score
        return float(np.clip(100.0 * q, 0.0, 100.0))

    def update(
        self,
        timestamp: float,
        value: float,
        upstream_quality: float | None = None,
        upstream_finger: bool | None = None,
    ) -> QualityReading:
        """Add one filtered sample and return the combined reading.

        Upstream values, when supplied, cap the internal estimate: quality
        is the minimum of both, finger presence requires both.
        """
        cfg = self.cfg
        self._t.append(float(timestamp))
        self._x.append(float(value))
        self._trim()
        t = np.asarray(self._t)
        fs = estimate_fs(t, default=self.sample_rate)
        span_sec = (t[-1] - t[0]) / 1000.0 if t.size > 1 else 0.0
        if span_sec < cfg.min_window_sec:
            q = 0.0
        else:
            q = self.score(np.asarray(self._x), fs)
        if upstream_quality is not None:
            q = min(q, float(np.clip(upstream_quality, 0.0, 100.0)))

        if q >= cfg.stable_quality:
            self.stable_count = min(cfg.stability_cap, self.stable_count + 1.0)
        else:
            self.stable_count = max(0.0, self.stable_count - cfg.stability_decay)
        detected = self.stable_count >= cfg.stability_count
        if upstream_finger is not None:
            detected = detected and bool(upstream_finger)
        if detected != self.finger_detected:
            logger.info("finger %s (quality %.1f)", "detected" if detected else "lost", q)
        self.finger_detected = detected
        self.quality = q
        return QualityReading(q, detected)
