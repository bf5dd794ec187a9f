"""DDD domain layer."""

from .events import (
    DomainEvent,
    NormalisationApplied,
    NormalisationDecided,
    NormalisationFailed,
    NormalisationMeasured,
    NormalisationSkipped,
)
from .models import NormalisationResult, NormalisationState, ProgressUpdate
from .policies import DEFAULT_OUTPUT_FORMAT, DEFAULT_TARGETS, NormalisationTargets, OutputFormat

__all__ = [
    "DomainEvent",
    "NormalisationSkipped",
    "NormalisationMeasured",
    "NormalisationDecided",
    "NormalisationApplied",
    "NormalisationFailed",
    "NormalisationResult",
    "NormalisationState",
    "ProgressUpdate",
    "NormalisationTargets",
    "OutputFormat",
    "DEFAULT_TARGETS",
    "DEFAULT_OUTPUT_FORMAT",
]
