from __future__ import annotations

import numpy as np

from ppgvitals.acf_bpm import estimate_bpm_acf
from ppgvitals.bpm import estimate_bpm
from ppgvitals.spectral import SpectralAnalyzer, SpectralResult
from ppgvitals.wavelet import cwt_analyze, log_scales


def _sine(f: float, duration: float, fs: float = 30.0) -> np.ndarray:
    t = np.arange(0, duration, 1 / fs)
    return np.sin(2 * np.pi * f * t)


def test_estimate_bpm_on_sine() -> None:
    fs = 30.0
    x = _sine(1.2, 20.0, fs).astype(np.float32)
    bpm, f_peak = estimate_bpm(x, fs=fs, fmin=0.7, fmax=4.0)
    assert 70.0 <= bpm <= 74.0
    assert abs(f_peak - 1.2) < 0.1


def test_acf_bpm_on_noisy_sine() -> None:
    fs = 30.0
    rng = np.random.RandomState(0)
    x = _sine(1.5, 10.0, fs) + 0.3 * rng.randn(300)
    res = estimate_bpm_acf(x, fs)
    assert res.bpm is not None
    assert abs(res.bpm - 90.0) < 4.0
    assert res.score > 0.3
    assert estimate_bpm_acf(np.zeros(300), fs).score == 0.0


def test_log_scales_follow_frequency_order() -> None:
    scales, freqs = log_scales(30.0, 0.4, 4.0, 20)
    assert freqs[0] == 0.4 and abs(freqs[-1] - 4.0) < 1e-9
    assert np.all(np.diff(scales) < 0)


def test_cwt_picks_cardiac_scale() -> None:
    res = cwt_analyze(_sine(1.2, 8.0), 30.0)
    assert abs(res.bpm - 72.0) < 10.0
    assert res.time_consistency > 0.7


def test_spectral_on_clean_sine() -> None:
    res = SpectralAnalyzer().analyze(_sine(1.2, 8.0), 30.0, timestamp=8000.0)
    assert res.available
    assert abs(res.bpm - 72.0) < 1.5
    assert abs(res.cwt_bpm - 72.0) < 10.0
    assert res.snr_db > 10.0
    assert res.time_consistency > 0.7
    assert res.confidence > 0.6
    assert res.timestamp == 8000.0


def test_short_or_flat_window_is_unavailable() -> None:
    an = SpectralAnalyzer()
    assert not an.analyze(_sine(1.2, 3.0), 30.0).available
    assert not an.analyze(np.full(240, 3.0), 30.0).available


def test_noise_scores_below_pulse() -> None:
    rng = np.random.RandomState(3)
    an = SpectralAnalyzer()
    pulse = an.analyze(_sine(1.2, 8.0) + 0.1 * rng.randn(240), 30.0)
    noise = an.analyze(rng.randn(240), 30.0)
    assert noise.confidence < pulse.confidence
    assert noise.snr_db < pulse.snr_db


def test_agreement_with_time_domain_rate() -> None:
    res = SpectralResult(True, 1.2, 72.0)
    assert res.agrees_with(75.0)
    assert not res.agrees_with(90.0)
    assert not res.agrees_with(0.0)
    assert not SpectralResult(False).agrees_with(72.0)
    assert res.to_dict()["bpm"] == 72.0
