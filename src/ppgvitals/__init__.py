"""Real-time PPG vital-signs pipeline.

Modules, leaves first: conditioner, peaks, heart_rate, arrhythmia,
spectral, estimators, feedback; `pipeline` wires one session together.
"""

__all__ = [
    "config",
    "conditioner",
    "peaks",
    "heart_rate",
    "arrhythmia",
    "spectral",
    "estimators",
    "feedback",
    "pipeline",
    "recorder",
    "service",
]

__version__ = "0.1.0"
