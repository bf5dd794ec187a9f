"""Frame sources and sinks consumed by the normalisation service."""

from __future__ import annotations

from typing import Iterator, Protocol

import numpy as np

from .engine.base import AudioFrame

DEFAULT_FRAME_SIZE = 4_096


class AudioSource(Protocol):
    """Re-iterable stream of audio frames; each pass starts from the beginning."""

    @property
    def sample_rate(self) -> int: ...

    @property
    def total_samples(self) -> int | None: ...

    def __iter__(self) -> Iterator[AudioFrame]: ...


class AudioSink(Protocol):
    """Destination for processed frames with commit/discard semantics."""

    def write(self, frame: AudioFrame) -> None: ...

    def commit(self) -> None: ...

    def discard(self) -> None: ...


class ArrayAudioSource:
    """Serve a channel-first array in fixed-size frames."""

    def __init__(self, audio: np.ndarray, sample_rate: int, frame_size: int = DEFAULT_FRAME_SIZE) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be positive.")
        channels = audio[np.newaxis, :] if audio.ndim == 1 else audio
        self.audio = channels.astype(np.float32, copy=False)
        self._sample_rate = int(sample_rate)
        self.frame_size = frame_size

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_samples(self) -> int:
        return int(self.audio.shape[-1])

    def __iter__(self) -> Iterator[AudioFrame]:
        for start in range(0, self.audio.shape[-1], self.frame_size):
            yield AudioFrame(samples=self.audio[:, start : start + self.frame_size], sample_rate=self._sample_rate)


class ArrayAudioSink:
    """Collect frames in memory; ``audio`` is available after ``commit``."""

    def __init__(self) -> None:
        self._frames: list[np.ndarray] = []
        self.sample_rate: int | None = None
        self.audio: np.ndarray | None = None
        self.committed = False
        self.discarded = False

    def write(self, frame: AudioFrame) -> None:
        if self.sample_rate is None:
            self.sample_rate = frame.sample_rate
        self._frames.append(frame.samples)

    def commit(self) -> None:
        if not self._frames:
            raise ValueError("No audio was written to the sink.")
        self.audio = np.concatenate(self._frames, axis=-1)
        self.committed = True

    def discard(self) -> None:
        self._frames.clear()
        self.audio = None
        self.discarded = True
