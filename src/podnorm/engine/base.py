"""Audio filtering engine contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generator, Iterable, Protocol

import numpy as np

# Per-frame metadata keys written by the instrumentation stages.
R128_INTEGRATED = "ebur128.I"
R128_LOUDNESS_RANGE = "ebur128.LRA"
R128_THRESHOLD = "ebur128.threshold"
R128_TRUE_PEAK = "ebur128.true_peak"
R128_SAMPLE_PEAK = "ebur128.sample_peak"
ASTATS_PEAK_LEVEL = "astats.peak_level"
ASTATS_RMS_LEVEL = "astats.rms_level"
ASTATS_NOISE_FLOOR = "astats.noise_floor"
ASTATS_DYNAMIC_RANGE = "astats.dynamic_range"
ASTATS_CREST_FACTOR = "astats.crest_factor"
ASTATS_MAX_DIFFERENCE = "astats.max_difference"
SPECTRAL_CREST = "aspectralstats.crest"
SPECTRAL_FLUX = "aspectralstats.flux"


class EngineError(RuntimeError):
    """Audio could not be processed by the filter graph."""


class FilterGraphError(EngineError):
    """A filter-chain description could not be turned into a graph."""


@dataclass(slots=True)
class AudioFrame:
    """Channel-first float32 block of samples plus stage metadata."""

    samples: np.ndarray
    sample_rate: int
    metadata: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.samples.ndim == 1:
            self.samples = self.samples[np.newaxis, :]
        if self.samples.ndim != 2:
            raise ValueError("Audio frames must be 1D or channel-first 2D arrays.")
        self.samples = self.samples.astype(np.float32, copy=False)

    @property
    def channel_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[1])

    def with_samples(self, samples: np.ndarray, sample_rate: int | None = None) -> "AudioFrame":
        return AudioFrame(samples=samples, sample_rate=sample_rate or self.sample_rate, metadata=dict(self.metadata))


class AudioFilteringEngine(Protocol):
    """Port for engines that run a textual filter chain over audio frames."""

    def process(self, spec: str, frames: Iterable[AudioFrame]) -> Generator[AudioFrame, None, None]:
        """Filter ``frames`` through ``spec``; end of input flushes the graph, closing tears it down."""
