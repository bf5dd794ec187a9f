from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from podnorm.domain.policies import NormalisationTargets, OutputFormat
from podnorm.limiter_tuning import LimiterSettings

SUPPORTED_SAMPLE_RATES_HZ = (8_000, 16_000, 22_050, 24_000, 32_000, 44_100, 48_000, 88_200, 96_000, 176_400, 192_000)


class TargetsConfig(BaseModel):
    integrated_lufs: float = Field(-18.0, ge=-70.0, le=-5.0)
    true_peak_dbtp: float = Field(-2.0, ge=-9.0, le=0.0)
    tolerance_lu: float = Field(0.5, gt=0.0, le=5.0)
    loudness_range_lu: float = Field(20.0, ge=1.0, le=50.0)
    dual_mono: bool = True

    @field_validator("integrated_lufs", "true_peak_dbtp", "tolerance_lu", "loudness_range_lu")
    @classmethod
    def _validate_finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("Loudness targets must be finite numbers.")
        return value

    def to_targets(self) -> NormalisationTargets:
        return NormalisationTargets(
            desired_i=self.integrated_lufs,
            target_tp=self.true_peak_dbtp,
            tolerance_lu=self.tolerance_lu,
            target_lra=self.loudness_range_lu,
            dual_mono=self.dual_mono,
        )


class LimiterStageConfig(BaseModel):
    enabled: bool = True
    attack_ms: float = Field(0.8, ge=0.1, le=80.0)
    release_ms: float = Field(150.0, ge=1.0, le=8000.0)
    asc: bool = True
    asc_level: float = Field(0.5, ge=0.0, le=1.0)

    def to_settings(self) -> LimiterSettings:
        return LimiterSettings(
            attack_ms=self.attack_ms,
            release_ms=self.release_ms,
            asc=self.asc,
            asc_level=self.asc_level,
        )


class OutputFormatConfig(BaseModel):
    sample_rate_hz: int = 44_100
    sample_format: Literal["s16", "s24", "s32", "flt"] = "s16"
    frame_size: int = Field(4_096, ge=64, le=65_536)

    @field_validator("sample_rate_hz")
    @classmethod
    def _validate_sample_rate(cls, value: int) -> int:
        if value not in SUPPORTED_SAMPLE_RATES_HZ:
            raise ValueError(f"sample_rate_hz must be one of {', '.join(map(str, SUPPORTED_SAMPLE_RATES_HZ))}.")
        return value

    def to_output_format(self) -> OutputFormat:
        return OutputFormat(
            sample_rate_hz=self.sample_rate_hz,
            sample_format=self.sample_format,
            frame_size=self.frame_size,
        )


class NormalisationSettings(BaseModel):
    enabled: bool = True
    targets: TargetsConfig = Field(default_factory=TargetsConfig)
    limiter: LimiterStageConfig = Field(default_factory=LimiterStageConfig)
    output: OutputFormatConfig = Field(default_factory=OutputFormatConfig)


def load_normalisation_settings(path: Path) -> NormalisationSettings:
    data = _load_config_data(path)
    return NormalisationSettings.model_validate(data)


def _load_config_data(path: Path) -> dict:
    if path.suffix.lower() in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError as exc:
            raise ImportError("PyYAML is required to load YAML configs.") from exc

        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
