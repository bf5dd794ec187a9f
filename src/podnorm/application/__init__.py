"""Application services for podnorm."""

from .event_publisher import EventPublisher, NullEventPublisher, RecordingEventPublisher
from .normalisation_service import NormalisationPlan, NormaliseLoudness, normalise_file

__all__ = [
    "EventPublisher",
    "NullEventPublisher",
    "RecordingEventPublisher",
    "NormalisationPlan",
    "NormaliseLoudness",
    "normalise_file",
]
