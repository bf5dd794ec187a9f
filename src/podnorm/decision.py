"""Gain, linear-mode and limiter-ceiling decisions from loudness measurements.

These are pure functions. They decide *feasibility and safety* only: the precise
gain bias the engine applies is the engine's own ``target_offset`` from the
measurement pass and is never recomputed here.

Linear mode
-----------
A single constant gain stage is safe only while the boosted peak stays under the
true-peak target::

    measured_tp + (target_i - measured_i) <= target_tp

so the loudest achievable linear target is
``target_tp - measured_tp + measured_i``, less a small rounding margin.

Pre-limiting
------------
When the projected peak exceeds the target, a peak limiter placed ahead of the
gain stage must hold peaks at ``target_tp - gain_required``. The limiter itself
creates inter-sample peaks while reshaping waveforms (up to ~1.6 dB on worst-case
material), so the ceiling carries a 2.0 dB margin. The limiter cannot express a
ceiling below -24 dBTP (linear limit 0.0625); lower ceilings are clamped.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import SilentAudioError
from .measurement import is_silent_lufs

LINEAR_MODE_SAFETY_MARGIN_DB = 0.1
LIMITER_SAFETY_MARGIN_DB = 2.0
LIMITER_FLOOR_CEILING_DBTP = -24.0


@dataclass(frozen=True, slots=True)
class GainDecision:
    """Gain required to reach a loudness target."""

    gain_db: float
    needed: bool


@dataclass(frozen=True, slots=True)
class LinearModeDecision:
    """Largest target reachable with a single constant gain."""

    effective_target_i: float
    offset_db: float
    linear_possible: bool


@dataclass(frozen=True, slots=True)
class LimiterDecision:
    """Pre-limiter ceiling needed to make a gain peak-safe."""

    ceiling_dbtp: float
    needed: bool
    clamped: bool
    gain_required_db: float = 0.0

    def effective_peak(self, measured_tp: float) -> float:
        """Peak the gain stage will see once this limiter is in place.

        An unclamped limiter removes the headroom pressure, so the ceiling stands
        in for the measured peak. A clamped ceiling cannot deliver full headroom,
        so the original measured peak must be used instead.
        """

        if self.needed and not self.clamped:
            return self.ceiling_dbtp
        return measured_tp


def _reject_silent(measured_lufs: float) -> None:
    if is_silent_lufs(measured_lufs):
        raise SilentAudioError(measured_lufs)


def calculate_gain(output_i: float, target_i: float, tolerance_lu: float) -> GainDecision:
    """Return the gain needed to move ``output_i`` onto ``target_i``.

    Deviations inside the tolerance band (inclusive) need no action.
    """

    _reject_silent(output_i)

    gain_db = target_i - output_i
    if abs(gain_db) <= tolerance_lu:
        return GainDecision(gain_db=0.0, needed=False)
    return GainDecision(gain_db=gain_db, needed=True)


def calculate_linear_mode_target(
    measured_i: float,
    measured_tp: float,
    desired_i: float,
    target_tp: float,
) -> LinearModeDecision:
    """Clamp ``desired_i`` to the loudest target that keeps gain linear."""

    _reject_silent(measured_i)

    max_linear_i = target_tp - measured_tp + measured_i - LINEAR_MODE_SAFETY_MARGIN_DB
    if desired_i <= max_linear_i:
        return LinearModeDecision(
            effective_target_i=desired_i,
            offset_db=desired_i - measured_i,
            linear_possible=True,
        )
    return LinearModeDecision(
        effective_target_i=max_linear_i,
        offset_db=max_linear_i - measured_i,
        linear_possible=False,
    )


def calculate_limiter_ceiling(
    measured_i: float,
    measured_tp: float,
    target_i: float,
    target_tp: float,
) -> LimiterDecision:
    """Return the pre-limiter ceiling that lets the full gain stay under ``target_tp``."""

    _reject_silent(measured_i)

    gain_required = target_i - measured_i
    projected_tp = measured_tp + gain_required
    if projected_tp <= target_tp:
        return LimiterDecision(ceiling_dbtp=0.0, needed=False, clamped=False, gain_required_db=gain_required)

    ceiling = target_tp - gain_required - LIMITER_SAFETY_MARGIN_DB
    clamped = False
    if ceiling < LIMITER_FLOOR_CEILING_DBTP:
        ceiling = LIMITER_FLOOR_CEILING_DBTP
        clamped = True

    return LimiterDecision(ceiling_dbtp=ceiling, needed=True, clamped=clamped, gain_required_db=gain_required)
