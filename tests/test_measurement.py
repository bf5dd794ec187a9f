import math

import pytest

from podnorm.measurement import LoudnormStats, MeasurementSnapshot, SpectralSnapshot, is_silent_lufs

LOUDNORM_OUTPUT = """[Parsed_loudnorm_0 @ 0x7f]
{
    "input_i" : "-24.93",
    "input_tp" : "-5.02",
    "input_lra" : "6.10",
    "input_thresh" : "-35.40",
    "output_i" : "-16.02",
    "output_tp" : "-2.01",
    "output_lra" : "5.20",
    "output_thresh" : "-26.50",
    "normalization_type" : "dynamic",
    "target_offset" : "0.02"
}
trailing chatter"""


def test_loudnorm_stats_parsed_from_noisy_text():
    stats = LoudnormStats.from_text(LOUDNORM_OUTPUT)

    assert stats.input_i == pytest.approx(-24.93)
    assert stats.input_tp == pytest.approx(-5.02)
    assert stats.input_thresh == pytest.approx(-35.4)
    assert stats.normalization_type == "dynamic"
    assert stats.target_offset == pytest.approx(0.02)


def test_loudnorm_stats_to_measurement_keeps_engine_offset():
    spectral = SpectralSnapshot(0.1, 30.0, 0.02, 25.0, -60.0)

    measurement = LoudnormStats.from_text(LOUDNORM_OUTPUT).to_measurement(spectral=spectral)

    assert measurement.integrated_lufs == pytest.approx(-24.93)
    assert measurement.loudness_range_lu == pytest.approx(6.1)
    assert measurement.target_offset_db == pytest.approx(0.02)
    assert measurement.spectral is spectral


def test_loudnorm_stats_accepts_infinite_values():
    stats = LoudnormStats.from_text('{"input_i": "-inf", "input_tp": "-inf", "target_offset": "0.00"}')

    assert stats.input_i == -math.inf
    assert stats.to_measurement().is_silent


def test_loudnorm_stats_without_json_raises():
    with pytest.raises(ValueError):
        LoudnormStats.from_text("no statistics were printed")


def test_loudnorm_stats_missing_keys_raise():
    with pytest.raises(ValueError, match="target_offset"):
        LoudnormStats.from_text('{"input_i": "-20.0", "input_tp": "-3.0"}')


def test_is_silent_boundaries():
    assert is_silent_lufs(-math.inf)
    assert is_silent_lufs(math.nan)
    assert is_silent_lufs(-70.01)
    assert not is_silent_lufs(-70.0)
    assert not is_silent_lufs(-23.0)


def test_measurement_as_dict_includes_spectral_fields():
    snapshot = MeasurementSnapshot(
        integrated_lufs=-16.0,
        true_peak_dbtp=-2.5,
        loudness_range_lu=5.0,
        threshold_lufs=-26.0,
        spectral=SpectralSnapshot(0.1, 30.0, 0.02, 25.0, -60.0),
    )

    payload = snapshot.as_dict()

    assert payload["integrated_lufs"] == -16.0
    assert payload["spectral"]["noise_floor_dbfs"] == -60.0
