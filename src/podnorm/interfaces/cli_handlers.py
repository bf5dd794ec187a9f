"""CLI-facing handlers that delegate to application services."""

from __future__ import annotations

import json
from pathlib import Path

from podnorm.application.normalisation_service import NormaliseLoudness, normalise_file
from podnorm.domain.models import NormalisationResult
from podnorm.infrastructure.logging_event_publisher import LoggingEventPublisher
from podnorm.infrastructure.pedalboard_codec import AudioFileSource
from podnorm.measurement import MeasurementSnapshot
from podnorm.utils.config import NormalisationSettings, load_normalisation_settings

_event_publisher = LoggingEventPublisher()
normalisation_service = NormaliseLoudness(event_publisher=_event_publisher)


def build_settings(
    config_path: Path | None = None,
    target_i: float | None = None,
    target_tp: float | None = None,
    tolerance: float | None = None,
    disable_limiter: bool = False,
) -> NormalisationSettings:
    """Load settings from ``config_path`` and layer command-line overrides on top."""

    settings = load_normalisation_settings(config_path) if config_path is not None else NormalisationSettings()
    data = settings.model_dump()
    overrides = {
        "integrated_lufs": target_i,
        "true_peak_dbtp": target_tp,
        "tolerance_lu": tolerance,
    }
    data["targets"].update({key: value for key, value in overrides.items() if value is not None})
    if disable_limiter:
        data["limiter"]["enabled"] = False
    return NormalisationSettings.model_validate(data)


def write_report(report_json: Path, result: NormalisationResult) -> None:
    report_json.parent.mkdir(parents=True, exist_ok=True)
    report_json.write_text(json.dumps(result.as_report(), indent=2))


def normalise_from_path(
    input_path: Path,
    settings: NormalisationSettings,
    correlation_id: str,
    output_path: Path | None = None,
    report_json: Path | None = None,
) -> NormalisationResult:
    result = normalise_file(
        input_path,
        settings=settings,
        output_path=output_path,
        service=normalisation_service,
        correlation_id=correlation_id,
    )
    if report_json is not None:
        write_report(report_json, result)
    return result


def measure_path(input_path: Path, settings: NormalisationSettings, correlation_id: str) -> MeasurementSnapshot:
    source = AudioFileSource(input_path, frame_size=settings.output.frame_size)
    return normalisation_service.measure(source, settings.targets.to_targets(), correlation_id=correlation_id)
