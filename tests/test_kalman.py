from __future__ import annotations

import math

import numpy as np

from ppgvitals.conditioner import SignalConditioner
from ppgvitals.config import KalmanConfig
from ppgvitals.kalman import AdaptiveKalmanFilter


def test_cold_start_uses_first_sample() -> None:
    kf = AdaptiveKalmanFilter()
    assert kf.update(42.0) == 42.0
    assert kf.update(42.0) == 42.0


def test_filter_reduces_noise_on_constant_level() -> None:
    rng = np.random.RandomState(0)
    z = 100.0 + 0.5 * rng.randn(600)
    kf = AdaptiveKalmanFilter()
    y = np.array([kf.update(v) for v in z])
    assert np.std(y[100:]) < np.std(z[100:])
    assert abs(np.mean(y[100:]) - 100.0) < 0.2


def test_noise_terms_stay_within_bounds() -> None:
    cfg = KalmanConfig()
    rng = np.random.RandomState(1)
    kf = AdaptiveKalmanFilter(cfg)
    for v in np.cumsum(5.0 * rng.randn(500)):
        kf.update(float(v))
        assert cfg.q_min <= kf.Q <= cfg.q_max
        if kf._count > cfg.settle_samples + 1:
            assert cfg.r_min <= kf.R <= cfg.r_max


def test_reset_restores_initial_state() -> None:
    kf = AdaptiveKalmanFilter()
    for v in range(50):
        kf.update(float(v))
    kf.reset()
    fresh = AdaptiveKalmanFilter()
    assert kf.x is None
    assert (kf.P, kf.Q, kf.R) == (fresh.P, fresh.Q, fresh.R)


def test_conditioner_centres_waveform_on_baseline() -> None:
    fs = 30.0
    t = np.arange(0, 30.0, 1 / fs)
    x = 128.0 + 2.0 * np.sin(2 * np.pi * 1.0 * t)
    cond = SignalConditioner()
    out = [cond.update(v) for v in x]
    last = out[-1]
    assert last is not None
    assert abs(last.baseline - 128.0) < 0.5
    assert math.isclose(last.ac, last.filtered - last.baseline)
    assert math.isclose(last.normalized, last.ac / abs(last.baseline))
    ac = np.array([o.ac for o in out[-90:]])
    assert 2.0 < np.ptp(ac) < 4.5


def test_conditioner_discards_non_finite_input() -> None:
    cond = SignalConditioner()
    first = cond.update(10.0)
    assert cond.update(float("nan")) is None
    assert cond.update(float("inf")) is None
    assert cond.last == first
    assert cond.kalman._count == 1
