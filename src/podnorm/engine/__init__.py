"""Reference audio filtering engine."""

from .base import AudioFilteringEngine, AudioFrame, EngineError, FilterGraphError
from .pedalboard_engine import PedalboardEngine, build_filter_graph

__all__ = [
    "AudioFilteringEngine",
    "AudioFrame",
    "EngineError",
    "FilterGraphError",
    "PedalboardEngine",
    "build_filter_graph",
]
