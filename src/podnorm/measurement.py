"""Measurement snapshots produced by engine passes."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, fields

SILENCE_FLOOR_LUFS = -70.0


def is_silent_lufs(integrated_lufs: float) -> bool:
    """Return True when a loudness reading is unusable for normalisation."""

    if math.isnan(integrated_lufs):
        return True
    # -inf also falls below the floor.
    return integrated_lufs < SILENCE_FLOOR_LUFS


@dataclass(frozen=True, slots=True)
class SpectralSnapshot:
    """Post-filter signal statistics consumed by the limiter tuner."""

    transient_intensity: float
    spectral_crest: float
    spectral_flux: float
    dynamic_range_db: float
    noise_floor_dbfs: float


@dataclass(frozen=True, slots=True)
class MeasurementSnapshot:
    """Read-only output of one measurement pass over audio."""

    integrated_lufs: float
    true_peak_dbtp: float
    loudness_range_lu: float
    threshold_lufs: float
    target_offset_db: float = 0.0
    sample_peak_dbfs: float | None = None
    rms_level_dbfs: float | None = None
    spectral: SpectralSnapshot | None = None

    @property
    def is_silent(self) -> bool:
        return is_silent_lufs(self.integrated_lufs)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "integrated_lufs": self.integrated_lufs,
            "true_peak_dbtp": self.true_peak_dbtp,
            "loudness_range_lu": self.loudness_range_lu,
            "threshold_lufs": self.threshold_lufs,
            "target_offset_db": self.target_offset_db,
            "sample_peak_dbfs": self.sample_peak_dbfs,
            "rms_level_dbfs": self.rms_level_dbfs,
        }
        if self.spectral is not None:
            payload["spectral"] = {field.name: getattr(self.spectral, field.name) for field in fields(self.spectral)}
        return payload


def _parse_float(raw: object) -> float:
    # Engine emits numbers as strings, including "-inf" and "inf".
    try:
        return float(str(raw).strip())
    except ValueError:
        return float("nan")


@dataclass(frozen=True, slots=True)
class LoudnormStats:
    """Structured diagnostic payload of one loudness-normalisation filter instance."""

    input_i: float
    input_tp: float
    input_lra: float
    input_thresh: float
    output_i: float
    output_tp: float
    output_lra: float
    output_thresh: float
    normalization_type: str
    target_offset: float

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> "LoudnormStats":
        missing = [name for name in ("input_i", "input_tp", "target_offset") if name not in payload]
        if missing:
            raise ValueError(f"Loudnorm payload is missing keys: {', '.join(missing)}.")

        return cls(
            input_i=_parse_float(payload.get("input_i")),
            input_tp=_parse_float(payload.get("input_tp")),
            input_lra=_parse_float(payload.get("input_lra", "0.0")),
            input_thresh=_parse_float(payload.get("input_thresh", "-70.0")),
            output_i=_parse_float(payload.get("output_i", "nan")),
            output_tp=_parse_float(payload.get("output_tp", "nan")),
            output_lra=_parse_float(payload.get("output_lra", "nan")),
            output_thresh=_parse_float(payload.get("output_thresh", "nan")),
            normalization_type=str(payload.get("normalization_type", "unknown")),
            target_offset=_parse_float(payload.get("target_offset")),
        )

    @classmethod
    def from_text(cls, text: str) -> "LoudnormStats":
        """Extract the JSON object spanning the first ``{`` to the last ``}``."""

        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise ValueError(f"No JSON found in loudnorm output (captured {len(text)} bytes).")

        try:
            payload = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse loudnorm JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError("Loudnorm JSON payload is not an object.")
        return cls.from_payload(payload)

    def to_measurement(self, spectral: SpectralSnapshot | None = None) -> MeasurementSnapshot:
        return MeasurementSnapshot(
            integrated_lufs=self.input_i,
            true_peak_dbtp=self.input_tp,
            loudness_range_lu=self.input_lra,
            threshold_lufs=self.input_thresh,
            target_offset_db=self.target_offset,
            spectral=spectral,
        )
