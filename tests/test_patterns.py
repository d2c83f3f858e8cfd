from __future__ import annotations

import numpy as np
import pytest

from ppgvitals.patterns import (
    PatternBank,
    dicrotic_template,
    normalize_shape,
    shape_code,
    sinusoidal_template,
)


def test_normalize_shape_scales_and_resamples() -> None:
    shape = normalize_shape(np.array([2.0, 4.0, 6.0, 4.0, 2.0]), points=9)
    assert shape is not None and shape.size == 9
    assert shape.min() == 0.0 and shape.max() == 1.0
    assert normalize_shape(np.ones(10)) is None
    assert normalize_shape(np.array([1.0, 2.0])) is None


def test_templates_are_seeded_and_matched() -> None:
    bank = PatternBank()
    assert len(bank) == 2
    m = bank.match(10.0 + 3.0 * sinusoidal_template(50))
    assert m is not None and m.correction == 1.0 and m.correlation > 0.99
    m = bank.match(dicrotic_template(40))
    assert m is not None and m.correction == pytest.approx(1.05)


def test_unrelated_shape_does_not_match() -> None:
    rng = np.random.RandomState(5)
    assert PatternBank().match(rng.randn(32)) is None


def test_learned_correction_is_bounded_and_relaxes() -> None:
    bank = PatternBank(max_correction=0.1)
    ramp = np.linspace(0.0, 1.0, 32) ** 3
    code = bank.learn(ramp, 1.5)
    assert code == shape_code(normalize_shape(ramp))
    assert bank.entries[code].correction == pytest.approx(1.1)
    bank.relax(code, 0.5)
    assert bank.entries[code].correction == pytest.approx(1.05)
    bank.learn(ramp, 0.5)
    assert 0.9 <= bank.entries[code].correction <= 1.1


def test_templates_keep_their_correction() -> None:
    bank = PatternBank()
    code = bank.learn(sinusoidal_template(), 1.1)
    bank.relax(code, 1.0)
    assert bank.entries[code].template
    assert bank.entries[code].correction == 1.0


def test_capacity_evicts_learned_entries_only() -> None:
    bank = PatternBank(capacity=4)
    template_codes = set(bank.entries)
    rng = np.random.RandomState(9)
    for _ in range(30):
        bank.learn(rng.rand(32), 1.0)
        assert len(bank) <= 4
    assert template_codes <= set(bank.entries)
    bank.reset()
    assert set(bank.entries) == template_codes
