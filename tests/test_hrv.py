from __future__ import annotations

import numpy as np
import pytest

from ppgvitals.hrv import (
    compute_metrics,
    pnn50,
    poincare,
    rmssd,
    rr_variation,
    sample_entropy,
    shannon_entropy,
)


def test_constant_sequence_has_zero_variability() -> None:
    m = compute_metrics([800.0] * 10)
    assert m.rmssd == 0.0
    assert m.sdnn == 0.0
    assert m.rr_variation == 0.0
    assert m.pnn50 == 0.0
    assert m.sd1 == 0.0 and m.sd2 == 0.0
    assert m.shannon_entropy == 0.0


def test_known_values() -> None:
    assert rmssd([800, 850, 800, 850]) == pytest.approx(50.0)
    assert rr_variation([800, 800, 800, 1000]) == pytest.approx(150.0 / 850.0)
    assert pnn50([800, 850, 800]) == 0.0
    assert pnn50([800, 900, 800, 820]) == pytest.approx(2.0 / 3.0)


def test_poincare_sd1_matches_successive_differences() -> None:
    rr = np.array([800, 820, 790, 840, 810, 805], dtype=float)
    sd1, sd2 = poincare(rr)
    assert sd1 == pytest.approx(np.sqrt(np.var(np.diff(rr)) / 2.0))
    assert sd2 > 0.0


def test_shannon_entropy_uses_25ms_bins() -> None:
    assert shannon_entropy([800, 805, 810, 815]) == 0.0
    assert shannon_entropy([800, 800, 900, 900]) == pytest.approx(1.0)


def test_sample_entropy_lower_for_regular_rhythm() -> None:
    regular = [800.0, 900.0] * 20
    rng = np.random.RandomState(4)
    irregular = 800.0 + 50.0 * rng.randn(200)
    assert sample_entropy(regular) < 0.1
    assert sample_entropy(irregular) > sample_entropy(regular)
    assert sample_entropy([800.0, 810.0]) == 0.0
