"""Public package exports for podnorm with lazy imports."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "NormaliseLoudness",
    "normalise_file",
    "NormalisationSettings",
    "load_normalisation_settings",
    "NormalisationResult",
    "NormalisationTargets",
    "MeasurementSnapshot",
    "SpectralSnapshot",
    "LimiterDecision",
    "LinearModeDecision",
    "calculate_gain",
    "calculate_linear_mode_target",
    "calculate_limiter_ceiling",
    "tune_limiter",
    "NormalisationError",
    "SilentAudioError",
    "MeasurementError",
    "ApplyError",
    "ClampedCeilingWarning",
]

_EXPORT_MODULES: dict[str, str] = {
    "NormaliseLoudness": "podnorm.application.normalisation_service",
    "normalise_file": "podnorm.application.normalisation_service",
    "NormalisationSettings": "podnorm.utils.config",
    "load_normalisation_settings": "podnorm.utils.config",
    "NormalisationResult": "podnorm.domain.models",
    "NormalisationTargets": "podnorm.domain.policies",
    "MeasurementSnapshot": "podnorm.measurement",
    "SpectralSnapshot": "podnorm.measurement",
    "LimiterDecision": "podnorm.decision",
    "LinearModeDecision": "podnorm.decision",
    "calculate_gain": "podnorm.decision",
    "calculate_linear_mode_target": "podnorm.decision",
    "calculate_limiter_ceiling": "podnorm.decision",
    "tune_limiter": "podnorm.limiter_tuning",
    "NormalisationError": "podnorm.errors",
    "SilentAudioError": "podnorm.errors",
    "MeasurementError": "podnorm.errors",
    "ApplyError": "podnorm.errors",
    "ClampedCeilingWarning": "podnorm.errors",
}


def __getattr__(name: str) -> Any:
    if name not in _EXPORT_MODULES:
        raise AttributeError(f"module 'podnorm' has no attribute {name!r}")

    module = import_module(_EXPORT_MODULES[name])
    value = getattr(module, name)
    globals()[name] = value
    return value
