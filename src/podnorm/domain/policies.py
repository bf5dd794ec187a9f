"""Domain value objects describing normalisation targets and output format."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class NormalisationTargets:
    """Loudness targets held constant for one normalisation run."""

    desired_i: float = -18.0
    target_tp: float = -2.0
    tolerance_lu: float = 0.5
    target_lra: float = 20.0
    dual_mono: bool = True

    def with_integrated(self, integrated_lufs: float) -> "NormalisationTargets":
        return replace(self, desired_i=integrated_lufs)


@dataclass(frozen=True, slots=True)
class OutputFormat:
    """Sample format the apply pass resamples and quantises to."""

    sample_rate_hz: int = 44_100
    sample_format: str = "s16"
    frame_size: int = 4_096

    @property
    def bit_depth(self) -> int:
        return {"s16": 16, "s24": 24, "s32": 32, "flt": 32}[self.sample_format]


DEFAULT_TARGETS = NormalisationTargets()
DEFAULT_OUTPUT_FORMAT = OutputFormat()
