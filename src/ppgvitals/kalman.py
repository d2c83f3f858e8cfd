"""Scalar Kalman filter with noise terms adapted from the signal itself.

Process noise Q follows a smoothed rate of change so the filter loosens
during motion, and measurement noise R follows the innovation magnitude
once the filter has settled. Both are clipped to configured ranges.
"""

from __future__ import annotations

import numpy as np

from .config import KalmanConfig


class AdaptiveKalmanFilter:
    def __init__(self, cfg: KalmanConfig | None = None) -> None:
        self.cfg = cfg or KalmanConfig()
        self.x: float | None = None  # state estimate
        self.P = self.cfg.p_init
        self.Q = self.cfg.q_init
        self.R = self.cfg.r_init
        self._velocity = 0.0
        self._last_meas: float | None = None
        self._count = 0

    def reset(self) -> None:
        self.x = None
        self.P = self.cfg.p_init
        self.Q = self.cfg.q_init
        self.R = self.cfg.r_init
        self._velocity = 0.0
        self._last_meas = None
        self._count = 0

    def _adapt(self, z: float) -> None:
        cfg = self.cfg
        if self._last_meas is not None:
            rate = z - self._last_meas
            self._velocity = cfg.velocity_alpha * self._velocity + (1.0 - cfg.velocity_alpha) * rate
            self.Q = float(np.clip(abs(self._velocity) * cfg.q_gain, cfg.q_min, cfg.q_max))
        if self._count > cfg.settle_samples and self.x is not None:
            residual = abs(z - self.x)
            self.R = float(np.clip(residual * cfg.r_gain, cfg.r_min, cfg.r_max))

    def update(self, z: float) -> float:
        """Filter one measurement and return the new state estimate."""
        z = float(z)
        self._count += 1
        if self.x is None:
            # cold start on the first sample
            self.x = z
            self._last_meas = z
            return z
        self._adapt(z)
        self._last_meas = z
        self.P = self.P + self.Q
        K = self.P / (self.P + self.R)
        self.x = self.x + K * (z - self.x)
        self.P = (1.0 - K) * self.P
        return self.x
