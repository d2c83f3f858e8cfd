"""Frequency-domain corroboration of the pulse rate.

Combines a zero-padded periodogram (dominant frequency, relative power,
SNR) with a Morlet wavelet scale analysis (scale rate and time
consistency) into one confidence score. The result never replaces the
time-domain heart rate; it scores whether the window looks like a pulse.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np

from .bpm import estimate_bpm, power_spectrum
from .config import SpectralConfig
from .preprocess import detrend_poly
from .wavelet import cwt_analyze

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpectralResult:
    available: bool
    dominant_freq_hz: float = 0.0
    bpm: float = 0.0
    relative_power: float = 0.0
    snr_db: float = 0.0
    time_consistency: float = 0.0
    cwt_bpm: float = 0.0
    confidence: float = 0.0
    timestamp: Optional[float] = None

    def agrees_with(self, bpm: float, tolerance: float = 10.0) -> bool:
        return self.available and bpm > 0 and abs(self.bpm - bpm) <= tolerance

    def to_dict(self) -> dict:
        return asdict(self)


class SpectralAnalyzer:
    def __init__(self, cfg: SpectralConfig | None = None) -> None:
        self.cfg = cfg or SpectralConfig()

    def analyze(
        self,
        values: np.ndarray,
        fs: float,
        timestamp: Optional[float] = None,
    ) -> SpectralResult:
        """Analyse a window of at least ``window_sec`` seconds.

        Shorter windows, and windows whose peak-to-peak swing is below
        ``amplitude_floor``, return ``available=False``.
        """
        cfg = self.cfg
        x = np.asarray(values, dtype=np.float64)
        if fs <= 0 or x.size < int(round(cfg.window_sec * fs)):
            return SpectralResult(False, timestamp=timestamp)
        if float(np.ptp(x)) < cfg.amplitude_floor:
            return SpectralResult(False, timestamp=timestamp)
        x = detrend_poly(x, cfg.detrend_order)

        nfft = max(cfg.nfft_min, int(2 ** int(np.ceil(np.log2(x.size)))))
        freqs, power = power_spectrum(x, fs, nfft)
        band = (freqs >= cfg.fmin) & (freqs <= cfg.fmax)
        out_band = (freqs > 0.0) & ~band
        band_power = float(np.sum(power[band]))
        if band_power <= 0.0:
            return SpectralResult(False, timestamp=timestamp)
        _, f_dom = estimate_bpm(x, fs, cfg.fmin, cfg.fmax, nfft)
        if f_dom <= 0.0:
            return SpectralResult(False, timestamp=timestamp)

        near = band & (np.abs(freqs - f_dom) <= cfg.peak_halfwidth_hz)
        relative = float(np.sum(power[near])) / band_power
        noise_power = float(np.sum(power[out_band]))
        snr_lin = band_power / noise_power if noise_power > 0 else cfg.snr_ref
        snr = 10.0 * float(np.log10(snr_lin)) if snr_lin > 0 else 0.0

        cwt = cwt_analyze(
            x,
            fs,
            cfg.cwt_fmin,
            cfg.cwt_fmax,
            cfg.n_scales,
            cfg.wavelet,
            band=(cfg.fmin, cfg.fmax),
            fallback_consistency=cfg.fallback_consistency,
        )
        confidence = (
            cfg.prominence_weight * float(np.clip(relative, 0.0, 1.0))
            + cfg.snr_weight * min(1.0, snr_lin / cfg.snr_ref)
            + cfg.consistency_weight * cwt.time_consistency
        )
        logger.debug(
            "spectral: %.1f bpm (cwt %.1f), snr %.1f dB, conf %.2f",
            60.0 * f_dom,
            cwt.bpm,
            snr,
            confidence,
        )
        return SpectralResult(
            available=True,
            dominant_freq_hz=f_dom,
            bpm=60.0 * f_dom,
            relative_power=relative,
            snr_db=snr,
            time_consistency=cwt.time_consistency,
            cwt_bpm=cwt.bpm,
            confidence=float(np.clip(confidence, 0.0, 1.0)),
            timestamp=timestamp,
        )
