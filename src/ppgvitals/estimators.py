"""Secondary vital-sign estimators driven by waveform features.

Every estimator maps the current :class:`WaveformFeatures` to an
instantaneous value, stabilises it through an :class:`EstimatorBuffer`
(recency-weighted median and mean, blended back with the instant value),
applies its calibration factor and clamps the result to a physiological
range. Missing data yields the last valid value or a neutral default.

The coefficients are heuristics kept as configuration, not physiology.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from .config import EstimatorConfig
from .errors import CalibrationError
from .features import WaveformFeatures

logger = logging.getLogger(__name__)


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    order = np.argsort(values)
    v = values[order]
    w = weights[order]
    cum = np.cumsum(w)
    i = int(np.searchsorted(cum, 0.5 * cum[-1]))
    return float(v[min(i, v.size - 1)])


class EstimatorBuffer:
    """Bounded FIFO of recent estimates plus a calibration factor."""

    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.values: Deque[float] = deque(maxlen=self.cfg.buffer_size)
        self.calibration_factor = 1.0
        self.last_valid: Optional[float] = None

    def __len__(self) -> int:
        return len(self.values)

    def reset(self) -> None:
        self.values.clear()
        self.calibration_factor = 1.0
        self.last_valid = None

    def set_calibration(self, factor: float) -> float:
        self.calibration_factor = float(np.clip(factor, self.cfg.calibration_min, self.cfg.calibration_max))
        return self.calibration_factor

    def fuse(self, instant: float) -> float:
        """Push ``instant`` and return the stabilised estimate."""
        cfg = self.cfg
        self.values.append(float(instant))
        v = np.asarray(self.values)
        w = np.arange(1, v.size + 1, dtype=np.float64)
        fused = cfg.median_weight * weighted_median(v, w) + (1.0 - cfg.median_weight) * float(np.mean(v))
        out = cfg.instant_weight * float(instant) + (1.0 - cfg.instant_weight) * fused
        self.last_valid = out
        return out


def _check_reference(name: str, value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        logger.warning("rejecting %s calibration reference %r", name, value)
        raise CalibrationError(f"{name} reference must be a positive number, got {value!r}")
    return value


class SpO2Estimator:
    """Ratio-of-ratios style SpO2: 110 - 25 * (AC / DC)."""

    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.buffer = EstimatorBuffer(self.cfg)
        self._last_raw: Optional[float] = None

    def reset(self) -> None:
        self.buffer.reset()
        self._last_raw = None

    def fallback(self) -> float:
        last = self.buffer.last_valid
        if last is None:
            return 0.0
        return max(self.cfg.spo2_min, last - 1.0)

    def estimate(self, f: WaveformFeatures) -> float:
        cfg = self.cfg
        if f.sample_count < cfg.min_samples or f.perfusion_index < cfg.min_perfusion or f.dc <= 0:
            return self.fallback()
        raw = 110.0 - 25.0 * (f.ac / f.dc)
        self._last_raw = raw
        value = self.buffer.fuse(raw) * self.buffer.calibration_factor
        value = float(np.clip(value, cfg.spo2_min, cfg.spo2_max))
        self.buffer.last_valid = value
        return value

    def update_calibration(self, reference: float) -> float:
        reference = _check_reference("SpO2", reference)
        if reference > 100.0:
            raise CalibrationError(f"SpO2 reference above 100%: {reference}")
        if self._last_raw is None or self._last_raw <= 0:
            raise CalibrationError("no SpO2 estimate to calibrate against yet")
        return self.buffer.set_calibration(reference / self._last_raw)


@dataclass(frozen=True)
class BloodPressure:
    systolic: float
    diastolic: float
    confidence: float = 0.0

    @property
    def pulse_pressure(self) -> float:
        return self.systolic - self.diastolic

    def to_dict(self) -> dict[str, float]:
        return {"systolic": self.systolic, "diastolic": self.diastolic, "confidence": self.confidence}


class BloodPressureEstimator:
    """Stiffness / notch / heart-rate heuristic around a 120/80 base."""

    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.systolic = EstimatorBuffer(self.cfg)
        self.diastolic = EstimatorBuffer(self.cfg)
        self._last_raw: Optional[tuple[float, float]] = None
        self.last: Optional[BloodPressure] = None

    def reset(self) -> None:
        self.systolic.reset()
        self.diastolic.reset()
        self._last_raw = None
        self.last = None

    def default(self) -> BloodPressure:
        return BloodPressure(self.cfg.base_systolic, self.cfg.base_diastolic, 0.0)

    def _bounded(self, sys_v: float, dia_v: float) -> tuple[float, float]:
        cfg = self.cfg
        sys_v = float(np.clip(sys_v, cfg.systolic_min, cfg.systolic_max))
        dia_v = float(np.clip(dia_v, cfg.diastolic_min, cfg.diastolic_max))
        if sys_v - dia_v < cfg.min_pulse_pressure:
            dia_v = sys_v - cfg.min_pulse_pressure
        elif sys_v - dia_v > cfg.max_pulse_pressure:
            dia_v = sys_v - cfg.max_pulse_pressure
        return sys_v, dia_v

    def raw_estimate(self, f: WaveformFeatures, bpm: float) -> tuple[float, float]:
        cfg = self.cfg
        # fall/rise of a typical pulse is ~2, mapped to a neutral stiffness of 1
        stiffness = float(np.clip((f.fall_time_ms / f.rise_time_ms) / 2.0, 0.5, 2.0))
        hr = bpm if bpm > 0 else 70.0
        sys_v = cfg.base_systolic * (1.0 + (stiffness - 1.0) * 0.2) + (hr - 70.0) * 0.3
        dia_v = cfg.base_diastolic * (1.0 + (f.notch_position - 0.5) * 0.15) + (hr - 70.0) * 0.1
        return sys_v, dia_v

    def estimate(self, f: WaveformFeatures, bpm: float) -> BloodPressure:
        if f.peak_count < 2 or f.rise_time_ms <= 0 or f.fall_time_ms <= 0 or f.ac <= 0:
            return self.last or self.default()
        sys_raw, dia_raw = self.raw_estimate(f, bpm)
        self._last_raw = (sys_raw, dia_raw)
        sys_v = self.systolic.fuse(sys_raw) * self.systolic.calibration_factor
        dia_v = self.diastolic.fuse(dia_raw) * self.diastolic.calibration_factor
        sys_v, dia_v = self._bounded(sys_v, dia_v)
        confidence = float(np.clip(f.peak_count / 5.0, 0.0, 1.0) * np.clip(f.spectral_ratio, 0.0, 1.0))
        self.last = BloodPressure(sys_v, dia_v, confidence)
        return self.last

    def update_calibration(self, systolic: float, diastolic: float) -> tuple[float, float]:
        """Derive correction factors from a reference cuff reading.

        Raises CalibrationError on non-positive values or systolic <=
        diastolic; the previous factors are kept in that case.
        """
        systolic = _check_reference("systolic", systolic)
        diastolic = _check_reference("diastolic", diastolic)
        if systolic <= diastolic:
            logger.warning("rejecting blood pressure reference %s/%s", systolic, diastolic)
            raise CalibrationError(f"systolic ({systolic}) must exceed diastolic ({diastolic})")
        sys_ref, dia_ref = self._last_raw or (self.cfg.base_systolic, self.cfg.base_diastolic)
        fs = self.systolic.set_calibration(systolic / sys_ref)
        fd = self.diastolic.set_calibration(diastolic / dia_ref)
        logger.info("blood pressure calibration factors %.3f / %.3f", fs, fd)
        return fs, fd


@dataclass(frozen=True)
class Lipids:
    total_cholesterol: float = 0.0
    triglycerides: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"total_cholesterol": self.total_cholesterol, "triglycerides": self.triglycerides}


class LipidEstimator:
    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.cholesterol = EstimatorBuffer(self.cfg)
        self.triglycerides = EstimatorBuffer(self.cfg)
        self._last_raw: Optional[tuple[float, float]] = None
        self.last: Optional[Lipids] = None

    def reset(self) -> None:
        self.cholesterol.reset()
        self.triglycerides.reset()
        self._last_raw = None
        self.last = None

    def estimate(self, f: WaveformFeatures) -> Lipids:
        cfg = self.cfg
        if f.duration_ms < cfg.lipid_min_duration_ms or f.peak_count < 2:
            return self.last or Lipids()
        chol_raw = 170.0 + 30.0 * f.auc
        trig_raw = 120.0 + 40.0 * f.auc
        self._last_raw = (chol_raw, trig_raw)
        chol = self.cholesterol.fuse(chol_raw) * self.cholesterol.calibration_factor
        trig = self.triglycerides.fuse(trig_raw) * self.triglycerides.calibration_factor
        self.last = Lipids(
            float(np.clip(chol, cfg.cholesterol_min, cfg.cholesterol_max)),
            float(np.clip(trig, cfg.triglycerides_min, cfg.triglycerides_max)),
        )
        return self.last

    def update_calibration(self, cholesterol: float, triglycerides: float) -> tuple[float, float]:
        cholesterol = _check_reference("cholesterol", cholesterol)
        triglycerides = _check_reference("triglycerides", triglycerides)
        if self._last_raw is None:
            raise CalibrationError("no lipid estimate to calibrate against yet")
        return (
            self.cholesterol.set_calibration(cholesterol / self._last_raw[0]),
            self.triglycerides.set_calibration(triglycerides / self._last_raw[1]),
        )


class GlucoseEstimator:
    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.buffer = EstimatorBuffer(self.cfg)
        self._last_raw: Optional[float] = None

    def reset(self) -> None:
        self.buffer.reset()
        self._last_raw = None

    def estimate(self, f: WaveformFeatures) -> float:
        cfg = self.cfg
        if f.perfusion_index <= 0 or f.peak_count < 2 or f.dc <= 0:
            return self.buffer.last_valid or 0.0
        raw = 100.0 + 5.0 * math.log(f.perfusion_index + 0.1) + 8.0 * (f.ac / f.dc) + 6.0 * f.prv
        self._last_raw = raw
        value = self.buffer.fuse(raw) * self.buffer.calibration_factor
        value = float(np.clip(value, cfg.glucose_min, cfg.glucose_max))
        self.buffer.last_valid = value
        return value

    def update_calibration(self, reference: float) -> float:
        reference = _check_reference("glucose", reference)
        if self._last_raw is None:
            raise CalibrationError("no glucose estimate to calibrate against yet")
        return self.buffer.set_calibration(reference / self._last_raw)


@dataclass(frozen=True)
class VitalSigns:
    spo2: float
    blood_pressure: BloodPressure
    lipids: Lipids
    glucose: float


class VitalSignEstimators:
    """The estimator family evaluated on one feature snapshot."""

    def __init__(self, cfg: EstimatorConfig | None = None) -> None:
        self.cfg = cfg or EstimatorConfig()
        self.spo2 = SpO2Estimator(self.cfg)
        self.blood_pressure = BloodPressureEstimator(self.cfg)
        self.lipids = LipidEstimator(self.cfg)
        self.glucose = GlucoseEstimator(self.cfg)
        self.last = self.initial()

    def initial(self) -> VitalSigns:
        return VitalSigns(0.0, self.blood_pressure.default(), Lipids(), 0.0)

    def reset(self) -> None:
        self.spo2.reset()
        self.blood_pressure.reset()
        self.lipids.reset()
        self.glucose.reset()
        self.last = self.initial()

    def estimate(self, f: WaveformFeatures, bpm: float) -> VitalSigns:
        self.last = VitalSigns(
            spo2=self.spo2.estimate(f),
            blood_pressure=self.blood_pressure.estimate(f, bpm),
            lipids=self.lipids.estimate(f),
            glucose=self.glucose.estimate(f),
        )
        return self.last
