from __future__ import annotations

import json

import numpy as np
import pytest

from ppgvitals.config import PipelineConfig
from ppgvitals.errors import CalibrationError
from ppgvitals.feedback import Consistency, FeedbackRecord
from ppgvitals.pipeline import BeepGate, VitalSignsPipeline

FS = 30.0


def _pulse(duration: float, f: float = 1.0, t0: float = 0.0) -> tuple[np.ndarray, np.ndarray]:
    t = np.arange(int(round(duration * FS))) / FS + t0
    return 1000.0 * t, 128.0 + 2.0 * np.sin(2 * np.pi * f * t)


def _run(p: VitalSignsPipeline, times: np.ndarray, values: np.ndarray) -> list:
    return [p.process(float(v), float(t)) for t, v in zip(times, values)]


def _pipeline() -> VitalSignsPipeline:
    return VitalSignsPipeline(PipelineConfig(spectral_background=False))


def test_clean_pulse_gives_rate_and_vitals() -> None:
    p = _pipeline()
    out = _run(p, *_pulse(10.0))
    last = out[-1]
    assert abs(last.bpm - 60.0) <= 3.0
    assert last.finger_detected
    assert last.quality > 50.0
    assert not any(r.is_peak for r in out if r.timestamp < 2000.0)
    assert any(r.is_peak for r in out)
    assert last.spectral is not None and last.spectral.available
    assert abs(last.spectral.bpm - 60.0) < 3.0
    assert 70.0 <= last.spo2 <= 100.0
    bp = last.blood_pressure
    assert 25.0 <= bp.pulse_pressure <= 100.0
    assert last.arrhythmia_status in ("CALIBRATING", "NO ARRHYTHMIAS|0")


def test_flat_input_reports_no_finger() -> None:
    p = _pipeline()
    times = np.arange(600) * 1000.0 / FS
    out = _run(p, times, np.full(times.size, 128.0))
    last = out[-1]
    assert last.quality == 0.0
    assert not last.finger_detected
    assert last.bpm == 0.0
    assert not any(r.is_peak for r in out)
    assert last.spo2 == 0.0


def test_flat_input_never_reports_a_spectral_pulse() -> None:
    p = _pipeline()
    times = np.arange(600) * 1000.0 / FS
    out = _run(p, times, np.full(times.size, 128.0))
    assert p.last_spectral is not None
    assert all(r.spectral is None or not r.spectral.available for r in out)


def test_signal_loss_decays_to_neutral() -> None:
    p = _pipeline()
    _run(p, *_pulse(10.0))
    times = 10000.0 + np.arange(600) * 1000.0 / FS
    out = _run(p, times, np.full(times.size, 128.0))
    at = {round(r.timestamp): r for r in out}
    assert at[11500].bpm > 55.0
    assert out[-1].bpm == pytest.approx(75.0)
    assert not out[-1].finger_detected


def test_invalid_samples_return_previous_result() -> None:
    p = _pipeline()
    times, values = _pulse(3.0)
    out = _run(p, times, values)
    prev = out[-1]
    assert p.last_sample is not None and p.last_sample.timestamp == times[-1]
    assert p.process(float("nan"), times[-1] + 33.0) is prev
    assert p.process(128.0, float("nan")) is prev
    assert p.process(128.0, times[-1]) is prev
    assert p.process(128.0, times[-1] - 100.0) is prev
    assert p.last_sample.timestamp == times[-1]
    assert p.process(128.0, times[-1] + 33.0) is not prev


def test_first_invalid_sample_returns_empty_result() -> None:
    r = _pipeline().process(float("inf"), 0.0)
    assert r.bpm == 0.0 and not r.is_peak and not r.finger_detected


def test_reset_twice_matches_fresh_pipeline() -> None:
    times, values = _pulse(8.0)
    used = _pipeline()
    _run(used, times, values)
    used.provide_feedback(FeedbackRecord(Consistency.LOW, Consistency.LOW, Consistency.LOW, 10.0))
    used.reset()
    used.reset()
    again = [r.to_dict() for r in _run(used, times, values)]
    fresh = [r.to_dict() for r in _run(_pipeline(), times, values)]
    assert again == fresh


def test_beeps_are_rate_limited() -> None:
    p = _pipeline()
    out = _run(p, *_pulse(10.0, f=2.5))
    beeps = [r.timestamp for r in out if r.beep]
    assert beeps
    assert np.all(np.diff(beeps) >= 250.0)
    gate = BeepGate(250.0)
    assert gate.trigger(0.0) and not gate.trigger(100.0) and gate.trigger(250.0)


def test_calibration_and_feedback_hooks() -> None:
    p = _pipeline()
    with pytest.raises(CalibrationError):
        p.update_calibration(80.0, 90.0)
    sys_f, dia_f = p.update_calibration(132.0, 88.0)
    assert sys_f == pytest.approx(1.1) and dia_f == pytest.approx(1.1)
    p.provide_feedback(FeedbackRecord(Consistency.LOW, Consistency.MEDIUM, Consistency.MEDIUM, 80.0))
    assert p.detector.k_offset == pytest.approx(p.feedback.detection_k_offset) and p.detector.k_offset > 0


def test_result_serialises_to_json() -> None:
    with _pipeline() as p:
        out = _run(p, *_pulse(8.0))
    d = out[-1].to_dict()
    text = json.dumps(d)
    assert json.loads(text)["finger_detected"] is True
    assert set(d["blood_pressure"]) == {"systolic", "diastolic", "confidence"}
