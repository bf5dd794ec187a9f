import numpy as np
import pytest

from podnorm.engine import AudioFrame
from podnorm.infrastructure.pedalboard_codec import (
    AudioFileSink,
    AudioFileSource,
    load_audio_file,
    sibling_temp_path,
    write_audio_file,
)


def test_file_source_streams_frames_on_every_pass(tmp_path):
    audio = np.linspace(-0.5, 0.5, 4410, dtype=np.float32)
    path = tmp_path / "episode.wav"
    write_audio_file(path, audio, 44100, bit_depth=32)

    source = AudioFileSource(path, frame_size=1000)

    first = [frame.sample_count for frame in source]
    second = np.concatenate([frame.samples for frame in source], axis=-1)
    assert source.sample_rate == 44100
    assert source.total_samples == 4410
    assert first == [1000, 1000, 1000, 1000, 410]
    assert np.allclose(second[0], audio, atol=1e-6)


def test_file_sink_commits_atomically(tmp_path):
    path = tmp_path / "episode.wav"
    sink = AudioFileSink(path, bit_depth=16)

    sink.write(AudioFrame(samples=np.zeros((2, 512), dtype=np.float32), sample_rate=48000))
    assert sink.temp_path.exists()
    assert not path.exists()
    sink.commit()

    loaded, sample_rate = load_audio_file(path)
    assert sample_rate == 48000
    assert loaded.shape == (2, 512)
    assert not sibling_temp_path(path).exists()


def test_file_sink_discard_removes_partial_output(tmp_path):
    path = tmp_path / "episode.wav"
    path.write_bytes(b"original")
    sink = AudioFileSink(path)

    sink.write(AudioFrame(samples=np.zeros(256, dtype=np.float32), sample_rate=44100))
    sink.discard()

    assert path.read_bytes() == b"original"
    assert not sink.temp_path.exists()


def test_file_sink_refuses_empty_commit(tmp_path):
    with pytest.raises(ValueError):
        AudioFileSink(tmp_path / "empty.wav").commit()


def test_temp_path_keeps_extension(tmp_path):
    assert sibling_temp_path(tmp_path / "show.flac").name == "show.podnorm-tmp.flac"
