"""Per-session vital-signs pipeline.

One :class:`VitalSignsPipeline` owns the whole instance tree of a
monitoring session. Samples must arrive in time order; each call to
:meth:`VitalSignsPipeline.process` handles exactly one sample and returns
the per-tick result for the presentation layer.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

import numpy as np

from .arrhythmia import ArrhythmiaAnalyzer, ArrhythmiaResult, ArrhythmiaStatus
from .conditioner import SignalConditioner
from .config import PipelineConfig
from .estimators import BloodPressure, Lipids, VitalSignEstimators
from .features import extract_features
from .feedback import FeedbackOptimizer, FeedbackRecord
from .heart_rate import HeartRateEstimator
from .models import Sample
from .peaks import PeakValleyDetector
from .preprocess import estimate_fs
from .quality import SignalQualityEstimator
from .spectral import SpectralAnalyzer, SpectralResult
from .worker import SpectralWorker

logger = logging.getLogger(__name__)


class BeepGate:
    """Rate-limits peak events handed to audio / haptic consumers."""

    def __init__(self, min_interval_ms: float = 250.0) -> None:
        self.min_interval_ms = min_interval_ms
        self.last_trigger: Optional[float] = None

    def reset(self) -> None:
        self.last_trigger = None

    def trigger(self, timestamp: float) -> bool:
        if self.last_trigger is not None and timestamp - self.last_trigger < self.min_interval_ms:
            return False
        self.last_trigger = timestamp
        return True


@dataclass(frozen=True)
class VitalSignsResult:
    timestamp: float
    filtered_value: float = 0.0
    fused_value: float = 0.0
    is_peak: bool = False
    beep: bool = False
    bpm: float = 0.0
    confidence: float = 0.0
    quality: float = 0.0
    finger_detected: bool = False
    arrhythmia: ArrhythmiaResult = field(
        default_factory=lambda: ArrhythmiaResult(ArrhythmiaStatus.CALIBRATING, 0)
    )
    spo2: float = 0.0
    blood_pressure: BloodPressure = field(default_factory=lambda: BloodPressure(120.0, 80.0))
    lipids: Lipids = field(default_factory=Lipids)
    glucose: float = 0.0
    spectral: Optional[SpectralResult] = None

    @property
    def arrhythmia_status(self) -> str:
        return self.arrhythmia.status_text

    def to_dict(self) -> dict:
        return {
            "timestamp": float(self.timestamp),
            "filtered_value": float(self.filtered_value),
            "fused_value": float(self.fused_value),
            "is_peak": bool(self.is_peak),
            "beep": bool(self.beep),
            "bpm": float(self.bpm),
            "confidence": float(self.confidence),
            "quality": float(self.quality),
            "finger_detected": bool(self.finger_detected),
            "arrhythmia_status": self.arrhythmia_status,
            "arrhythmia_count": int(self.arrhythmia.count),
            "arrhythmia_pattern": bool(self.arrhythmia.pattern_flag),
            "spo2": float(self.spo2),
            "blood_pressure": self.blood_pressure.to_dict(),
            "lipids": self.lipids.to_dict(),
            "glucose": float(self.glucose),
            "spectral": self.spectral.to_dict() if self.spectral is not None else None,
        }


class VitalSignsPipeline:
    def __init__(self, cfg: PipelineConfig | None = None) -> None:
        self.cfg = cfg or PipelineConfig()
        cfg = self.cfg
        self.conditioner = SignalConditioner(cfg.conditioner)
        self.quality = SignalQualityEstimator(cfg.quality, cfg.sample_rate)
        self.detector = PeakValleyDetector(cfg.detector)
        self.heart_rate = HeartRateEstimator(cfg.heart_rate)
        self.arrhythmia = ArrhythmiaAnalyzer(cfg.arrhythmia)
        self.spectral = SpectralWorker(SpectralAnalyzer(cfg.spectral), background=cfg.spectral_background)
        self.estimators = VitalSignEstimators(cfg.estimators)
        self.feedback = FeedbackOptimizer(cfg.feedback)
        self.beep_gate = BeepGate(cfg.beep_interval_ms)
        n = int(max(cfg.spectral.window_sec, cfg.estimators.window_sec) * cfg.sample_rate * 2)
        self._times: Deque[float] = deque(maxlen=n)
        self._filtered: Deque[float] = deque(maxlen=n)
        self._ac: Deque[float] = deque(maxlen=n)
        self._index = 0
        self._last_time: Optional[float] = None
        self.last_sample: Optional[Sample] = None
        self.last_spectral: Optional[SpectralResult] = None
        self.last_result: Optional[VitalSignsResult] = None

    def __enter__(self) -> "VitalSignsPipeline":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.spectral.close()

    def reset(self) -> None:
        """Restore every component to its just-constructed state."""
        self.conditioner.reset()
        self.quality.reset()
        self.detector.reset()
        self.heart_rate.reset()
        self.arrhythmia.reset()
        self.spectral.reset()
        self.estimators.reset()
        self.feedback.reset()
        self.beep_gate.reset()
        self._times.clear()
        self._filtered.clear()
        self._ac.clear()
        self._index = 0
        self._last_time = None
        self.last_spectral = None
        self.last_sample = None
        self.last_result = None
        logger.info("pipeline reset")

    # -- external hooks -------------------------------------------------

    def update_calibration(self, systolic: float, diastolic: float) -> tuple[float, float]:
        return self.estimators.blood_pressure.update_calibration(systolic, diastolic)

    def update_spo2_calibration(self, reference: float) -> float:
        return self.estimators.spo2.update_calibration(reference)

    def update_glucose_calibration(self, reference: float) -> float:
        return self.estimators.glucose.update_calibration(reference)

    def update_lipid_calibration(self, cholesterol: float, triglycerides: float) -> tuple[float, float]:
        return self.estimators.lipids.update_calibration(cholesterol, triglycerides)

    def provide_feedback(self, record: FeedbackRecord) -> None:
        self.feedback.provide_feedback(record)
        self.detector.k_offset = self.feedback.detection_k_offset

    # -- processing -----------------------------------------------------

    def _fallback(self, timestamp: float) -> VitalSignsResult:
        return self.last_result or VitalSignsResult(timestamp=timestamp)

    def process(
        self,
        value: float,
        timestamp: float,
        quality: Optional[float] = None,
        finger_detected: Optional[bool] = None,
    ) -> VitalSignsResult:
        """Process one intensity sample taken at ``timestamp`` (ms).

        Optional upstream ``quality`` (0..100) and ``finger_detected`` cap
        the internal estimates. Non-finite or out-of-order samples are
        discarded and the previous result is returned.
        """
        cfg = self.cfg
        value = float(value)
        timestamp = float(timestamp)
        if not math.isfinite(timestamp) or (self._last_time is not None and timestamp <= self._last_time):
            logger.debug("discarding sample with timestamp %r", timestamp)
            return self._fallback(timestamp)
        cond = self.conditioner.update(value)
        if cond is None:
            return self._fallback(timestamp)
        self._last_time = timestamp
        index = self._index
        self._index += 1

        self._times.append(timestamp)
        self._filtered.append(cond.filtered)
        self._ac.append(cond.ac)
        fs = estimate_fs(np.asarray(self._times), default=cfg.sample_rate)

        reading = self.quality.update(timestamp, cond.filtered, quality, finger_detected)
        self.last_sample = Sample(timestamp, value, cond.filtered, reading.quality, reading.finger_detected)
        fused = self.feedback.process(cond.ac, value - cond.baseline, cond.filtered, fs)
        self.detector.k_offset = self.feedback.detection_k_offset
        det = self.detector.update(index, timestamp, fused.value, reading.quality)

        beat = det.peak is not None and reading.quality >= self.feedback.quality_threshold
        if det.peak is not None and not beat:
            logger.debug("ignoring beat at %.0f ms, quality %.1f", timestamp, reading.quality)
        rr = det.rr if beat else None
        hr = self.heart_rate.update(
            timestamp,
            peak_confirmed=beat,
            rr=rr,
            peak_confidence=det.peak.confidence if det.peak is not None else 0.0,
            quality=reading.quality,
        )
        arrhythmia = self.arrhythmia.result
        if rr is not None:
            arrhythmia = self.arrhythmia.process_interval(rr.duration_ms, rr.timestamp)

        if index % cfg.spectral_every == 0:
            n = int(round(cfg.spectral.window_sec * fs))
            if len(self._filtered) >= n:
                window = np.asarray(self._filtered)[-n:]
                self.spectral.submit(window, fs, timestamp)
        spectral = self.spectral.poll()
        if spectral is not None:
            self.last_spectral = spectral

        vitals = self.estimators.last
        if index % cfg.estimator_every == 0 and reading.finger_detected:
            n = int(round(cfg.estimators.window_sec * fs))
            features = extract_features(np.asarray(self._ac)[-n:], cond.baseline, fs)
            vitals = self.estimators.estimate(features, hr.bpm)

        beep = hr.is_peak and self.beep_gate.trigger(timestamp)
        self.last_result = VitalSignsResult(
            timestamp=timestamp,
            filtered_value=cond.filtered,
            fused_value=fused.value,
            is_peak=hr.is_peak,
            beep=beep,
            bpm=hr.bpm,
            confidence=hr.confidence,
            quality=reading.quality,
            finger_detected=reading.finger_detected,
            arrhythmia=arrhythmia,
            spo2=vitals.spo2,
            blood_pressure=vitals.blood_pressure,
            lipids=vitals.lipids,
            glucose=vitals.glucose,
            spectral=self.last_spectral,
        )
        return self.last_result
