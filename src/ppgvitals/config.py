"""Explicit configuration for every pipeline component.

Each dataclass enumerates the options a component recognises, with the
default used by a monitoring session. Timestamps and durations are in
milliseconds unless the field name says otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KalmanConfig:
    p_init: float = 1.0          # initial error covariance
    q_init: float = 0.1          # initial process noise
    r_init: float = 0.01         # initial measurement noise
    q_min: float = 0.01
    q_max: float = 0.5
    r_min: float = 0.001
    r_max: float = 0.1
    velocity_alpha: float = 0.95  # weight of the previous rate-of-change EMA
    q_gain: float = 0.1           # Q = q_gain * |rate of change|
    r_gain: float = 0.05          # R = r_gain * |residual|
    settle_samples: int = 10      # samples before R starts adapting


@dataclass
class ConditionerConfig:
    kalman: KalmanConfig = field(default_factory=KalmanConfig)
    baseline_factor: float = 0.995  # EMA factor of the slow baseline (0.95..0.995)


@dataclass
class QualityConfig:
    window_sec: float = 3.0
    min_window_sec: float = 1.5    # below this quality is reported as 0
    amplitude_floor: float = 0.05  # peak-to-peak below this is "no signal"
    amplitude_ref: float = 1.0     # peak-to-peak that earns the full amplitude score
    snr_scale: float = 15.0        # dB mapped to a full SNR score
    acf_weight: float = 0.5
    snr_weight: float = 0.3
    amplitude_weight: float = 0.2
    stable_quality: float = 20.0   # quality counted as a stable frame
    stability_count: float = 3.0   # frames needed to declare finger detected
    stability_cap: float = 6.0
    stability_decay: float = 0.5


@dataclass
class DetectorConfig:
    window_size: int = 90          # samples kept for thresholding
    min_window: int = 30           # samples before detection starts
    base_k: float = 0.5            # threshold = mean + k * std
    k_step: float = 0.2            # adjustment from amplitude / noise ratio
    high_ratio: float = 5.0        # ratio above which k is tightened
    low_ratio: float = 2.0         # ratio below which k is loosened
    quality_gain: float = 0.3      # k += (1 - quality / 100) * quality_gain
    k_min: float = 0.1
    k_max: float = 1.2
    max_bpm: float = 200.0         # sets the minimum peak distance
    min_rr_ms: float = 300.0
    max_rr_ms: float = 1500.0
    amplitude_floor: float = 0.05

    @property
    def min_distance_ms(self) -> float:
        return 60000.0 / self.max_bpm


@dataclass
class HeartRateConfig:
    warmup_ms: float = 2000.0
    history_size: int = 5
    alpha: float = 0.2             # EMA weight of the new trimmed mean
    min_bpm: float = 40.0
    max_bpm: float = 200.0
    loss_timeout_ms: float = 3000.0  # no peak for this long starts the decay
    decay_ms: float = 5000.0         # duration of the linear decay
    neutral_bpm: float = 75.0


@dataclass
class ArrhythmiaConfig:
    min_rr_ms: float = 300.0
    max_rr_ms: float = 1500.0
    history_size: int = 20
    analysis_window: int = 8
    min_intervals: int = 3
    learning_intervals: int = 5
    rmssd_threshold: float = 40.0       # ms
    variation_threshold: float = 0.20   # |last - mean| / mean
    stability_cap: int = 30
    stability_gain: int = 1
    stability_penalty: int = 2
    stability_gate: int = 25
    min_consecutive: int = 2
    min_event_interval_ms: float = 1000.0
    max_per_session: int = 30
    pattern_history: int = 15
    pattern_score_threshold: float = 0.12
    pattern_ratio: float = 0.3          # share of high-variation scores
    pattern_run_ratio: float = 0.2      # longest run relative to capacity
    pattern_min_scores: int = 5
    entropy_bin_ms: float = 25.0


@dataclass
class SpectralConfig:
    window_sec: float = 6.0
    amplitude_floor: float = 0.05
    fmin: float = 0.5
    fmax: float = 4.0
    detrend_order: int = 3
    nfft_min: int = 2048
    peak_halfwidth_hz: float = 0.1
    cwt_fmin: float = 0.4
    cwt_fmax: float = 4.0
    n_scales: int = 20
    wavelet: str = "cmor1.5-1.0"
    snr_ref: float = 8.0            # linear SNR mapped to a full score
    prominence_weight: float = 0.4
    snr_weight: float = 0.4
    consistency_weight: float = 0.2
    fallback_consistency: float = 0.3
    agreement_bpm: float = 10.0


@dataclass
class EstimatorConfig:
    window_sec: float = 5.0
    buffer_size: int = 10
    median_weight: float = 0.6
    instant_weight: float = 0.3
    calibration_min: float = 0.5
    calibration_max: float = 2.0
    min_samples: int = 10
    min_perfusion: float = 0.001
    spo2_min: float = 70.0
    spo2_max: float = 100.0
    systolic_min: float = 70.0
    systolic_max: float = 200.0
    diastolic_min: float = 40.0
    diastolic_max: float = 130.0
    min_pulse_pressure: float = 25.0
    max_pulse_pressure: float = 100.0
    base_systolic: float = 120.0
    base_diastolic: float = 80.0
    cholesterol_min: float = 120.0
    cholesterol_max: float = 300.0
    triglycerides_min: float = 70.0
    triglycerides_max: float = 400.0
    lipid_min_duration_ms: float = 3000.0
    glucose_min: float = 70.0
    glucose_max: float = 300.0


@dataclass
class FeedbackConfig:
    update_interval: int = 15       # samples between weight updates
    history_size: int = 90
    min_history: int = 60
    init_weights: tuple[float, float, float] = (0.6, 0.3, 0.1)  # filtered, raw, derivative
    filtered_band: tuple[float, float] = (0.4, 0.85)
    raw_band: tuple[float, float] = (0.1, 0.5)
    derivative_band: tuple[float, float] = (0.0, 0.15)
    adaptation_rate: float = 0.1
    rate_min: float = 0.01
    rate_max: float = 0.3
    rate_slow: float = 0.9          # multiplier on sustained high consistency
    rate_fast: float = 1.1          # multiplier on sustained low consistency
    sustain_count: int = 3
    quality_threshold: float = 30.0
    quality_threshold_min: float = 20.0
    quality_threshold_max: float = 60.0
    k_offset_step: float = 0.02
    k_offset_limit: float = 0.2
    pattern_capacity: int = 16
    pattern_points: int = 32
    pattern_levels: int = 4
    pattern_match: float = 0.9      # minimum Pearson correlation
    max_correction: float = 0.1     # correction factor within 1 +/- this


@dataclass
class PipelineConfig:
    sample_rate: float = 30.0       # nominal; the live rate is estimated from timestamps
    spectral_every: int = 15        # samples between spectral submissions
    estimator_every: int = 30       # samples between vital-sign estimates
    beep_interval_ms: float = 250.0
    spectral_background: bool = True
    conditioner: ConditionerConfig = field(default_factory=ConditionerConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    heart_rate: HeartRateConfig = field(default_factory=HeartRateConfig)
    arrhythmia: ArrhythmiaConfig = field(default_factory=ArrhythmiaConfig)
    spectral: SpectralConfig = field(default_factory=SpectralConfig)
    estimators: EstimatorConfig = field(default_factory=EstimatorConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
