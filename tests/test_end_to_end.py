from pathlib import Path

import numpy as np
import pytest

from podnorm.application.event_publisher import RecordingEventPublisher
from podnorm.application.normalisation_service import NormaliseLoudness, normalise_file
from podnorm.audio_io import ArrayAudioSink, ArrayAudioSource
from podnorm.decision import calculate_gain
from podnorm.engine import metering
from podnorm.errors import SilentAudioError
from podnorm.infrastructure.pedalboard_codec import load_audio_file, write_audio_file
from podnorm.utils.config import NormalisationSettings


def _settings() -> NormalisationSettings:
    return NormalisationSettings.model_validate({"targets": {"integrated_lufs": -16.0, "true_peak_dbtp": -2.0}})


def test_quiet_tone_is_raised_linearly_to_target(stereo_tone_at_18_lufs) -> None:
    audio, sample_rate = stereo_tone_at_18_lufs
    publisher = RecordingEventPublisher()
    service = NormaliseLoudness(event_publisher=publisher)
    sink = ArrayAudioSink()

    result = service.run(ArrayAudioSource(audio, sample_rate), sink, _settings(), correlation_id="corr-e2e")

    assert result.input_lufs == pytest.approx(-18.0, abs=0.05)
    assert result.output_lufs == pytest.approx(-16.0, abs=0.1)
    assert result.within_target is True
    assert result.linear_mode_forced is False
    assert result.pre_limiter_applied is False
    assert result.limiter.needed is False
    assert result.output_tp <= -2.0
    assert result.loudnorm_stats.normalization_type == "linear"
    assert sink.audio.shape[0] == 2
    assert sink.sample_rate == 44_100
    assert [type(event).__name__ for event in publisher.events] == [
        "NormalisationMeasured",
        "NormalisationDecided",
        "NormalisationApplied",
    ]


def test_normalised_output_needs_no_further_gain(stereo_tone_at_18_lufs) -> None:
    audio, sample_rate = stereo_tone_at_18_lufs
    service = NormaliseLoudness()
    sink = ArrayAudioSink()
    settings = _settings()

    service.run(ArrayAudioSource(audio, sample_rate), sink, settings)
    remeasured = service.measure(ArrayAudioSource(sink.audio, sink.sample_rate), settings.targets.to_targets())

    decision = calculate_gain(remeasured.integrated_lufs, -16.0, settings.targets.tolerance_lu)
    assert decision.needed is False


def test_peaky_input_is_pre_limited_and_lands_on_target(peaky_stereo_at_20_lufs) -> None:
    audio, sample_rate = peaky_stereo_at_20_lufs
    sink = ArrayAudioSink()

    result = NormaliseLoudness().run(ArrayAudioSource(audio, sample_rate), sink, _settings())

    assert result.input_tp > -6.0
    assert result.pre_limiter_applied is True
    assert result.limiter.clamped is False
    assert result.effective_target_i == -16.0
    assert result.loudnorm_stats.normalization_type == "linear"
    assert result.within_target is True
    assert result.output_lufs == pytest.approx(-16.0, abs=0.3)
    assert result.output_tp <= -2.0
    assert sink.audio.shape == audio.shape


def test_normalise_file_replaces_input_in_place(stereo_tone_at_18_lufs, tmp_path: Path) -> None:
    audio, sample_rate = stereo_tone_at_18_lufs
    path = tmp_path / "episode.wav"
    write_audio_file(path, audio, sample_rate)

    result = normalise_file(path, settings=_settings())

    normalised, written_rate = load_audio_file(path)
    assert result.within_target is True
    assert written_rate == 44_100
    assert metering.integrated_loudness(normalised, written_rate) == pytest.approx(-16.0, abs=0.2)
    assert sorted(item.name for item in tmp_path.iterdir()) == ["episode.wav"]


def test_normalise_file_leaves_input_untouched_when_output_given(stereo_tone_at_18_lufs, tmp_path: Path) -> None:
    audio, sample_rate = stereo_tone_at_18_lufs
    source_path = tmp_path / "raw.wav"
    output_path = tmp_path / "out" / "normalised.wav"
    write_audio_file(source_path, audio, sample_rate)
    original = source_path.read_bytes()

    normalise_file(source_path, settings=_settings(), output_path=output_path)

    assert source_path.read_bytes() == original
    assert output_path.exists()


def test_silent_file_is_not_overwritten(tmp_path: Path) -> None:
    path = tmp_path / "silence.wav"
    write_audio_file(path, np.zeros((2, 44_100), dtype=np.float32), 44_100)
    original = path.read_bytes()

    with pytest.raises(SilentAudioError):
        normalise_file(path, settings=_settings())

    assert path.read_bytes() == original
