"""Domain models for normalisation runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from podnorm.decision import LimiterDecision
from podnorm.limiter_tuning import LimiterSettings
from podnorm.measurement import LoudnormStats, MeasurementSnapshot


class NormalisationState(str, Enum):
    """Lifecycle states of one normalisation run."""

    IDLE = "idle"
    MEASURING = "measuring"
    DECIDING = "deciding"
    APPLYING = "applying"
    VALIDATING = "validating"
    DONE = "done"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Progress side-channel payload; not part of the correctness contract."""

    pass_index: int
    label: str
    progress: float
    level: float = 0.0
    measurement: MeasurementSnapshot | None = None


@dataclass(frozen=True, slots=True)
class NormalisationResult:
    """Terminal record of a normalisation run."""

    input_lufs: float
    input_tp: float
    output_lufs: float
    output_tp: float
    gain_applied_db: float
    requested_target_i: float
    effective_target_i: float
    linear_mode_forced: bool
    limiter: LimiterDecision | None
    within_target: bool
    skipped: bool
    final_measurement: MeasurementSnapshot | None
    loudnorm_stats: LoudnormStats | None = None
    limiter_settings: LimiterSettings | None = None
    pre_limiter_applied: bool = False
    limiter_enabled: bool = True
    state: NormalisationState = NormalisationState.DONE

    @classmethod
    def skipped_result(cls) -> "NormalisationResult":
        nan = float("nan")
        return cls(
            input_lufs=nan,
            input_tp=nan,
            output_lufs=nan,
            output_tp=nan,
            gain_applied_db=0.0,
            requested_target_i=nan,
            effective_target_i=nan,
            linear_mode_forced=False,
            limiter=None,
            within_target=False,
            skipped=True,
            final_measurement=None,
            state=NormalisationState.SKIPPED,
        )

    @property
    def deviation_lu(self) -> float:
        return abs(self.output_lufs - self.effective_target_i)

    def as_report(self) -> dict[str, object]:
        """JSON-serialisable summary for reports and event payloads."""

        report: dict[str, object] = {
            "state": self.state.value,
            "skipped": self.skipped,
            "input_lufs": self.input_lufs,
            "input_tp": self.input_tp,
            "output_lufs": self.output_lufs,
            "output_tp": self.output_tp,
            "gain_applied_db": self.gain_applied_db,
            "requested_target_i": self.requested_target_i,
            "effective_target_i": self.effective_target_i,
            "linear_mode_forced": self.linear_mode_forced,
            "within_target": self.within_target,
            "pre_limiter_applied": self.pre_limiter_applied,
            "limiter_enabled": self.limiter_enabled,
        }
        if self.limiter is not None:
            report["limiter"] = {
                "ceiling_dbtp": self.limiter.ceiling_dbtp,
                "needed": self.limiter.needed,
                "clamped": self.limiter.clamped,
                "gain_required_db": self.limiter.gain_required_db,
            }
        if self.limiter_settings is not None:
            report["limiter_settings"] = {
                "attack_ms": self.limiter_settings.attack_ms,
                "release_ms": self.limiter_settings.release_ms,
                "asc": self.limiter_settings.asc,
                "asc_level": self.limiter_settings.asc_level,
            }
        if self.loudnorm_stats is not None:
            report["normalization_type"] = self.loudnorm_stats.normalization_type
        if self.final_measurement is not None:
            report["final_measurement"] = self.final_measurement.as_dict()
        return report
