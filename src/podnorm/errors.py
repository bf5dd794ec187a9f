"""Error taxonomy for loudness normalisation runs."""

from __future__ import annotations


class NormalisationError(Exception):
    """Base class for failures that terminate a normalisation run."""


class SilentAudioError(NormalisationError):
    """Measured loudness is ``-inf`` or below the silence floor."""

    def __init__(self, measured_lufs: float) -> None:
        self.measured_lufs = measured_lufs
        super().__init__(f"Cannot normalise silent audio (measured {measured_lufs:.1f} LUFS).")


class MeasurementError(NormalisationError):
    """The measurement sub-pass produced no parseable diagnostic payload."""


class ApplyError(NormalisationError):
    """The apply sub-pass failed; any partial output was discarded."""


class ClampedCeilingWarning(UserWarning):
    """The pre-limiter ceiling was clamped to the lowest expressible value."""
