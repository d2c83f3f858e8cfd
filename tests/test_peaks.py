from __future__ import annotations

import numpy as np

from ppgvitals.config import DetectorConfig
from ppgvitals.peaks import PeakValleyDetector


def _sine(f: float, dur: float = 10.0, fs: float = 30.0, phase: float = 0.3) -> np.ndarray:
    t = np.arange(0, dur, 1 / fs)
    return np.sin(2 * np.pi * f * t + phase)


def test_detect_finds_every_beat_of_a_sine() -> None:
    det = PeakValleyDetector()
    res = det.detect(_sine(1.2), fs=30.0)
    assert 11 <= len(res.peaks) <= 13
    assert 11 <= len(res.valleys) <= 13
    assert res.rr_intervals
    for rr in res.rr_intervals:
        assert abs(rr.duration_ms - 1000.0 / 1.2) < 1.0


def test_peak_and_valley_indices_never_coincide() -> None:
    rng = np.random.RandomState(0)
    det = PeakValleyDetector()
    for _ in range(20):
        x = _sine(1.0) + 0.5 * rng.randn(300)
        res = det.detect(x, fs=30.0, quality=float(rng.uniform(0, 100)))
        assert not set(res.peak_indices) & set(res.valley_indices)


def test_degenerate_windows_yield_empty_results() -> None:
    det = PeakValleyDetector()
    assert det.detect([1.0, 2.0]).peaks == []
    res = det.detect(np.full(100, 5.0))
    assert res.peaks == [] and res.valleys == [] and res.rr_intervals == []


def test_larger_candidate_wins_inside_minimum_distance() -> None:
    x = np.zeros(60)
    x[20] = 1.0
    x[25] = 1.5  # 167 ms later at 30 Hz
    x[50] = 1.2
    res = PeakValleyDetector().detect(x, fs=30.0)
    assert res.peak_indices == [25, 50]
    assert len(res.rr_intervals) == 1


def test_non_physiological_rr_is_dropped() -> None:
    # 0.5 Hz pulse gives 2000 ms intervals, outside the 300..1500 ms window
    res = PeakValleyDetector().detect(_sine(0.5), fs=30.0)
    assert len(res.peaks) >= 4
    assert res.rr_intervals == []


def test_low_quality_raises_threshold() -> None:
    det = PeakValleyDetector()
    x = _sine(1.2)
    assert det.adaptive_k(x, quality=10.0) > det.adaptive_k(x, quality=100.0)
    det.k_offset = 0.2
    assert det.adaptive_k(x, quality=100.0) > PeakValleyDetector().adaptive_k(x, quality=100.0)


def test_streaming_confirms_peaks_after_minimum_distance() -> None:
    fs = 30.0
    cfg = DetectorConfig()
    det = PeakValleyDetector(cfg)
    x = 128.0 + 2.0 * _sine(1.2, dur=10.0, fs=fs)
    peaks = []
    rrs = []
    for i, v in enumerate(x):
        now = i * 1000.0 / fs
        up = det.update(i, now, float(v), quality=100.0)
        if up.peak is not None:
            assert now - up.peak.timestamp >= cfg.min_distance_ms
            peaks.append(up.peak)
        if up.rr is not None:
            rrs.append(up.rr.duration_ms)
    assert 9 <= len(peaks) <= 12
    assert len(rrs) == len(peaks) - 1
    assert np.allclose(rrs, 1000.0 / 1.2, atol=1.0)
    # detection only starts once the window holds min_window samples
    assert peaks[0].sample_index >= cfg.min_window - 2


def test_streaming_reset_is_idempotent() -> None:
    det = PeakValleyDetector()
    for i, v in enumerate(_sine(1.2)):
        det.update(i, i * 33.3, float(v))
    det.reset()
    det.reset()
    assert len(det._values) == 0
    assert det._peaks.pending is None and det._peaks.last is None
    assert det._valleys.pending is None and det._last_rr_peak is None
    assert det.k_offset == 0.0
