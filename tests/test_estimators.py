from __future__ import annotations

import numpy as np
import pytest

from ppgvitals.config import EstimatorConfig
from ppgvitals.errors import CalibrationError
from ppgvitals.estimators import (
    BloodPressureEstimator,
    EstimatorBuffer,
    GlucoseEstimator,
    LipidEstimator,
    SpO2Estimator,
    VitalSignEstimators,
    weighted_median,
)
from ppgvitals.features import WaveformFeatures, extract_features


def _features(**kw) -> WaveformFeatures:
    base = dict(
        ac=0.6,
        dc=1.0,
        perfusion_index=0.6,
        rise_time_ms=200.0,
        fall_time_ms=400.0,
        notch_position=0.5,
        auc=0.5,
        prv=0.05,
        spectral_ratio=0.9,
        peak_count=6,
        sample_count=150,
        duration_ms=5000.0,
    )
    base.update(kw)
    return WaveformFeatures(**base)


def test_weighted_median() -> None:
    assert weighted_median(np.array([3.0, 1.0, 2.0]), np.ones(3)) == 2.0
    assert weighted_median(np.array([1.0, 10.0]), np.array([1.0, 9.0])) == 10.0


def test_buffer_is_bounded_fifo_with_clamped_calibration() -> None:
    buf = EstimatorBuffer(EstimatorConfig(buffer_size=10))
    for v in range(15):
        buf.fuse(float(v))
    assert list(buf.values) == [float(v) for v in range(5, 15)]
    assert buf.set_calibration(5.0) == 2.0
    assert buf.set_calibration(0.1) == 0.5
    buf.reset()
    assert len(buf) == 0 and buf.calibration_factor == 1.0 and buf.last_valid is None
    assert buf.fuse(42.0) == pytest.approx(42.0)


def test_spo2_follows_ratio_and_falls_back() -> None:
    est = SpO2Estimator()
    assert est.fallback() == 0.0
    assert est.estimate(_features()) == pytest.approx(95.0)
    assert est.estimate(_features(sample_count=3)) == pytest.approx(94.0)
    assert est.estimate(_features(ac=0.01, perfusion_index=0.01)) <= 100.0
    assert est.estimate(_features(ac=2.0, perfusion_index=2.0)) >= 70.0


def test_spo2_calibration() -> None:
    est = SpO2Estimator()
    with pytest.raises(CalibrationError):
        est.update_calibration(97.0)  # nothing estimated yet
    est.estimate(_features())
    with pytest.raises(CalibrationError):
        est.update_calibration(101.0)
    est.update_calibration(97.0)
    assert est.estimate(_features()) == pytest.approx(97.0)


def test_blood_pressure_defaults_without_beats() -> None:
    bp = BloodPressureEstimator().estimate(WaveformFeatures(), 70.0)
    assert (bp.systolic, bp.diastolic, bp.confidence) == (120.0, 80.0, 0.0)


def test_blood_pressure_invariants_over_feature_grid() -> None:
    cfg = EstimatorConfig()
    est = BloodPressureEstimator(cfg)
    rng = np.random.RandomState(11)
    for _ in range(500):
        f = _features(
            rise_time_ms=float(rng.uniform(20, 900)),
            fall_time_ms=float(rng.uniform(20, 900)),
            notch_position=float(rng.uniform(0, 1)),
            peak_count=int(rng.randint(2, 9)),
        )
        bp = est.estimate(f, float(rng.uniform(0, 240)))
        assert cfg.systolic_min <= bp.systolic <= cfg.systolic_max
        assert cfg.diastolic_min <= bp.diastolic <= cfg.diastolic_max
        assert cfg.min_pulse_pressure <= bp.pulse_pressure <= cfg.max_pulse_pressure
        assert 0.0 <= bp.confidence <= 1.0


def test_blood_pressure_calibration() -> None:
    est = BloodPressureEstimator()
    f = _features()  # fall/rise == 2, notch 0.5: neutral 120/80 at 70 bpm
    bp = est.estimate(f, 70.0)
    assert (bp.systolic, bp.diastolic) == pytest.approx((120.0, 80.0))
    est.update_calibration(130.0, 85.0)
    bp = est.estimate(f, 70.0)
    assert (bp.systolic, bp.diastolic) == pytest.approx((130.0, 85.0))


@pytest.mark.parametrize("ref", [(80.0, 90.0), (120.0, 120.0), (float("nan"), 80.0), (-120.0, 80.0)])
def test_invalid_blood_pressure_reference_keeps_factors(ref: tuple[float, float]) -> None:
    est = BloodPressureEstimator()
    est.update_calibration(126.0, 84.0)
    before = (est.systolic.calibration_factor, est.diastolic.calibration_factor)
    with pytest.raises(CalibrationError):
        est.update_calibration(*ref)
    assert (est.systolic.calibration_factor, est.diastolic.calibration_factor) == before


def test_lipids_need_long_window() -> None:
    cfg = EstimatorConfig()
    est = LipidEstimator(cfg)
    assert est.estimate(_features(duration_ms=2000.0)).total_cholesterol == 0.0
    lip = est.estimate(_features())
    assert cfg.cholesterol_min <= lip.total_cholesterol <= cfg.cholesterol_max
    assert cfg.triglycerides_min <= lip.triglycerides <= cfg.triglycerides_max
    # short window keeps the previous value
    assert est.estimate(_features(duration_ms=1000.0)) == lip


def test_glucose_range_and_defaults() -> None:
    cfg = EstimatorConfig()
    est = GlucoseEstimator(cfg)
    assert est.estimate(_features(perfusion_index=0.0)) == 0.0
    g = est.estimate(_features(ac=0.02, perfusion_index=0.02))
    assert cfg.glucose_min <= g <= cfg.glucose_max
    assert est.estimate(_features(peak_count=1)) == g
    with pytest.raises(CalibrationError):
        est.update_calibration(0.0)


def test_family_reset_restores_initial_values_and_calibration() -> None:
    fam = VitalSignEstimators()
    fam.estimate(_features(), 72.0)
    fam.blood_pressure.update_calibration(140.0, 90.0)
    fam.reset()
    assert fam.last == fam.initial()
    assert fam.blood_pressure.systolic.calibration_factor == 1.0
    assert len(fam.spo2.buffer) == 0


def test_extract_features_on_synthetic_pulse() -> None:
    fs = 30.0
    t = np.arange(0, 5.0, 1 / fs)
    ac = 2.0 * np.sin(2 * np.pi * 1.2 * t)
    f = extract_features(ac, 100.0, fs)
    assert 5 <= f.peak_count <= 7
    assert f.perfusion_index == pytest.approx(np.ptp(ac) / 100.0)
    assert abs(f.rise_time_ms - f.fall_time_ms) < 100.0
    assert 0.0 < f.notch_position < 1.0
    assert f.prv < 0.1
    assert f.spectral_ratio > 0.9
    assert f.duration_ms == pytest.approx(1000.0 * (t.size - 1) / fs)


def _dicrotic_train(fs: float, beats: int, period: float = 1.0) -> np.ndarray:
    t = np.arange(int(round(beats * period * fs))) / fs
    x = np.zeros_like(t)
    for k in range(beats):
        c = k * period
        x += np.exp(-((t - c - 0.2) ** 2) / (2 * 0.07**2))
        x += 0.3 * np.exp(-((t - c - 0.5) ** 2) / (2 * 0.08**2))
    return 2.0 * x


def test_notch_position_follows_the_dicrotic_dip() -> None:
    # systolic peak at 0.2 s, dip near 0.37 s, next upstroke near 1.1 s
    f = extract_features(_dicrotic_train(100.0, 8), 100.0, 100.0)
    assert 7 <= f.peak_count <= 8
    assert 0.1 < f.notch_position < 0.3


def test_extract_features_on_flat_window() -> None:
    f = extract_features(np.zeros(150), 100.0, 30.0)
    assert f.ac == 0.0 and f.peak_count == 0
    assert f.sample_count == 150
