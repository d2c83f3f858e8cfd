"""Exceptions raised by the vital-signs core.

Live-data conditions never raise; only configuration calls do.
"""

from __future__ import annotations


class VitalsError(Exception):
    """Base class for errors raised by ppgvitals."""


class CalibrationError(VitalsError, ValueError):
    """A calibration reference was rejected; previous calibration is kept."""
