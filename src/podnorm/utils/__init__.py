from .config import (
    LimiterStageConfig,
    NormalisationSettings,
    OutputFormatConfig,
    TargetsConfig,
    load_normalisation_settings,
)

__all__ = [
    "LimiterStageConfig",
    "NormalisationSettings",
    "OutputFormatConfig",
    "TargetsConfig",
    "load_normalisation_settings",
]
