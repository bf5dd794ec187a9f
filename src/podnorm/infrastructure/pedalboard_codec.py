"""Audio file sources and sinks backed by pedalboard."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

import numpy as np
from pedalboard.io import AudioFile

from podnorm.audio_io import DEFAULT_FRAME_SIZE
from podnorm.engine.base import AudioFrame

LOGGER = logging.getLogger("podnorm.io")


def load_audio_file(path: Path) -> tuple[np.ndarray, int]:
    """Read an audio file into memory."""

    with AudioFile(str(path), "r") as audio_file:
        return audio_file.read(audio_file.frames), int(audio_file.samplerate)


def write_audio_file(path: Path, audio: np.ndarray, sample_rate: int, bit_depth: int = 16) -> None:
    """Write a channel-first array to disk."""

    channels = audio[np.newaxis, :] if audio.ndim == 1 else audio
    with AudioFile(str(path), "w", sample_rate, channels.shape[0], bit_depth=bit_depth) as output_file:
        output_file.write(channels)


def sibling_temp_path(path: Path) -> Path:
    """Temporary path in the same directory, keeping the extension so the codec is unchanged."""

    return path.with_name(f"{path.stem}.podnorm-tmp{path.suffix or '.wav'}")


class AudioFileSource:
    """Stream an audio file as fixed-size frames; every iteration reopens the file."""

    def __init__(self, path: Path, frame_size: int = DEFAULT_FRAME_SIZE) -> None:
        self.path = Path(path)
        self.frame_size = frame_size
        with AudioFile(str(self.path), "r") as audio_file:
            self._sample_rate = int(audio_file.samplerate)
            self._total_samples = int(audio_file.frames)
            self.channel_count = int(audio_file.num_channels)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def total_samples(self) -> int:
        return self._total_samples

    def __iter__(self) -> Iterator[AudioFrame]:
        with AudioFile(str(self.path), "r") as audio_file:
            while audio_file.tell() < audio_file.frames:
                samples = audio_file.read(self.frame_size)
                if samples.shape[-1] == 0:
                    break
                yield AudioFrame(samples=samples, sample_rate=self._sample_rate)


class AudioFileSink:
    """Write frames to a temporary sibling file and move it into place on commit."""

    def __init__(self, path: Path, bit_depth: int = 16) -> None:
        self.path = Path(path)
        self.bit_depth = bit_depth
        self.temp_path = sibling_temp_path(self.path)
        self._writer: AudioFile | None = None

    def write(self, frame: AudioFrame) -> None:
        if self._writer is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = AudioFile(
                str(self.temp_path),
                "w",
                frame.sample_rate,
                frame.channel_count,
                bit_depth=self.bit_depth,
            )
        self._writer.write(frame.samples)

    def _close_writer(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def commit(self) -> None:
        if self._writer is None:
            raise ValueError(f"No audio was written for {self.path}.")
        self._close_writer()
        os.replace(self.temp_path, self.path)
        LOGGER.info("audio_file_committed", extra={"destination": self.path.as_posix()})

    def discard(self) -> None:
        self._close_writer()
        if self.temp_path.exists():
            self.temp_path.unlink()
            LOGGER.info("audio_file_discarded", extra={"temp_path": self.temp_path.as_posix()})
