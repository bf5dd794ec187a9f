import numpy as np
import pyloudnorm as pyln
import pytest


def scale_to_lufs(audio: np.ndarray, sample_rate: int, target_lufs: float) -> np.ndarray:
    meter = pyln.Meter(sample_rate)
    measured = meter.integrated_loudness(np.moveaxis(audio, 0, -1).astype(np.float64))
    gain = 10.0 ** ((target_lufs - measured) / 20.0)
    return (audio * gain).astype(np.float32)


@pytest.fixture
def sine_wave():
    sample_rate = 44100
    duration_s = 3.0
    t = np.linspace(0.0, duration_s, int(sample_rate * duration_s), endpoint=False)
    base = np.sin(2 * np.pi * 440.0 * t)
    return {
        "sample_rate": sample_rate,
        "quiet": 0.1 * base,
        "loud": 0.5 * base,
    }


@pytest.fixture
def stereo_tone_at_18_lufs(sine_wave):
    sample_rate = sine_wave["sample_rate"]
    stereo = np.stack([sine_wave["quiet"], sine_wave["quiet"]]).astype(np.float32)
    return scale_to_lufs(stereo, sample_rate, -18.0), sample_rate


@pytest.fixture
def peaky_stereo_at_20_lufs():
    """Eight seconds of tone at -20 LUFS with a click at -1.9 dBFS every two seconds."""

    sample_rate = 44100
    t = np.arange(sample_rate * 8, dtype=np.float64) / sample_rate
    tone = 0.1 * np.sin(2 * np.pi * 440.0 * t)
    audio = scale_to_lufs(np.stack([tone, tone]).astype(np.float32), sample_rate, -20.0)
    audio[:, sample_rate :: 2 * sample_rate] = 0.8
    return audio, sample_rate
