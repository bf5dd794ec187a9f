import math

import pytest

from podnorm.decision import (
    LIMITER_FLOOR_CEILING_DBTP,
    LimiterDecision,
    calculate_gain,
    calculate_limiter_ceiling,
    calculate_linear_mode_target,
)
from podnorm.errors import SilentAudioError


def test_calculate_gain_reports_needed_gain():
    decision = calculate_gain(-20.0, -16.0, 0.5)

    assert decision.gain_db == pytest.approx(4.0)
    assert decision.needed is True


def test_calculate_gain_on_target_needs_nothing():
    decision = calculate_gain(-16.0, -16.0, 0.5)

    assert decision.gain_db == 0.0
    assert decision.needed is False


def test_calculate_gain_just_outside_tolerance():
    decision = calculate_gain(-16.6, -16.0, 0.5)

    assert decision.gain_db == pytest.approx(0.6)
    assert decision.needed is True


def test_calculate_gain_tolerance_band_is_inclusive_and_symmetric():
    for output_i in (-16.5, -16.25, -15.75, -15.5):
        decision = calculate_gain(output_i, -16.0, 0.5)
        assert decision.needed is False
        assert decision.gain_db == 0.0

    louder = calculate_gain(-15.0, -16.0, 0.5)
    quieter = calculate_gain(-17.0, -16.0, 0.5)
    assert louder.gain_db == pytest.approx(-quieter.gain_db)


def test_calculate_gain_rejects_silent_audio():
    for output_i in (-math.inf, -70.1, -90.0, math.nan):
        with pytest.raises(SilentAudioError):
            calculate_gain(output_i, -16.0, 0.5)


def test_silence_floor_itself_is_measurable():
    decision = calculate_gain(-70.0, -16.0, 0.5)

    assert decision.needed is True
    assert decision.gain_db == pytest.approx(54.0)


def test_limiter_ceiling_for_headroom_shortfall():
    decision = calculate_limiter_ceiling(-24.9, -5.0, -16.0, -2.0)

    assert decision.needed is True
    assert decision.clamped is False
    assert decision.ceiling_dbtp == pytest.approx(-12.9)
    assert decision.gain_required_db == pytest.approx(8.9)


def test_limiter_ceiling_clamps_to_floor():
    decision = calculate_limiter_ceiling(-43.0, -20.0, -16.0, -2.0)

    assert decision.needed is True
    assert decision.clamped is True
    assert decision.ceiling_dbtp == LIMITER_FLOOR_CEILING_DBTP


def test_limiter_not_needed_when_projected_peak_fits():
    decision = calculate_limiter_ceiling(-20.0, -10.0, -16.0, -2.0)

    assert decision.needed is False
    assert decision.clamped is False
    assert decision.ceiling_dbtp == 0.0


def test_limiter_rejects_silent_audio():
    with pytest.raises(SilentAudioError):
        calculate_limiter_ceiling(-math.inf, -40.0, -16.0, -2.0)


def test_linear_mode_target_lowered_when_peak_blocks_gain():
    decision = calculate_linear_mode_target(-20.0, -5.0, -16.0, -1.5)

    assert decision.linear_possible is False
    assert decision.effective_target_i == pytest.approx(-16.6)
    assert decision.offset_db == pytest.approx(3.4)


def test_linear_mode_attenuation_is_always_possible():
    decision = calculate_linear_mode_target(-12.0, -1.0, -16.0, -1.5)

    assert decision.linear_possible is True
    assert decision.effective_target_i == -16.0
    assert decision.offset_db == pytest.approx(-4.0)


def test_linear_mode_never_raises_target_above_request():
    decision = calculate_linear_mode_target(-30.0, -40.0, -16.0, -1.0)

    assert decision.effective_target_i == -16.0


def test_linear_mode_rejects_silent_audio():
    with pytest.raises(SilentAudioError):
        calculate_linear_mode_target(-80.0, -60.0, -16.0, -1.0)


def test_less_headroom_never_allows_a_louder_linear_target_or_looser_ceiling():
    previous_target = math.inf
    previous_ceiling = math.inf
    for measured_tp in (-20.0, -15.0, -10.0, -6.0, -3.0, -1.0, 0.0):
        linear = calculate_linear_mode_target(-24.0, measured_tp, -10.0, -1.0)
        limiter = calculate_limiter_ceiling(-24.0, measured_tp, -16.0, -2.0)
        ceiling = limiter.ceiling_dbtp if limiter.needed else 0.0

        assert linear.effective_target_i <= previous_target
        assert ceiling <= previous_ceiling
        previous_target = linear.effective_target_i
        previous_ceiling = ceiling


def test_effective_peak_uses_ceiling_only_for_unclamped_limiter():
    unclamped = LimiterDecision(ceiling_dbtp=-12.9, needed=True, clamped=False)
    clamped = LimiterDecision(ceiling_dbtp=-24.0, needed=True, clamped=True)
    unneeded = LimiterDecision(ceiling_dbtp=0.0, needed=False, clamped=False)

    assert unclamped.effective_peak(-5.0) == -12.9
    assert clamped.effective_peak(-20.0) == -20.0
    assert unneeded.effective_peak(-8.0) == -8.0


def test_limiter_hand_off_keeps_linear_mode_peak_safe():
    # Unclamped: the limited peak frees enough headroom for the full request.
    limiter = calculate_limiter_ceiling(-24.9, -5.0, -16.0, -2.0)
    linear = calculate_linear_mode_target(-24.9, limiter.effective_peak(-5.0), -16.0, -2.0)
    assert linear.linear_possible is True
    assert linear.effective_target_i == -16.0

    # Clamped: the floor ceiling cannot deliver the headroom, so the measured
    # peak bounds the target and the boosted peak stays under the ceiling.
    limiter = calculate_limiter_ceiling(-43.0, -20.0, -16.0, -2.0)
    linear = calculate_linear_mode_target(-43.0, limiter.effective_peak(-20.0), -16.0, -2.0)
    assert linear.linear_possible is False
    assert linear.effective_target_i == pytest.approx(-25.1)
    assert -20.0 + linear.offset_db <= -2.0

    wrong = calculate_linear_mode_target(-43.0, limiter.ceiling_dbtp, -16.0, -2.0)
    assert -20.0 + wrong.offset_db > -2.0
