"""Rule table mapping post-filter statistics to pre-limiter timing and soft clipping."""

from __future__ import annotations

from dataclasses import dataclass

from .measurement import SpectralSnapshot


@dataclass(slots=True)
class LimiterSettings:
    """Mutable pre-limiter configuration tuned before the apply pass."""

    attack_ms: float = 0.8
    release_ms: float = 150.0
    asc: bool = True
    asc_level: float = 0.5
    input_level: float = 1.0
    output_level: float = 1.0


@dataclass(frozen=True, slots=True)
class LimiterTuning:
    """Thresholds and values for the attack/release/soft-clip ladders."""

    transient_extreme: float = 0.25
    transient_sharp: float = 0.15
    transient_normal: float = 0.08
    crest_extreme: float = 50.0
    crest_sharp: float = 35.0
    attack_extreme_ms: float = 0.1
    attack_sharp_ms: float = 0.5
    attack_normal_ms: float = 0.8
    attack_gentle_ms: float = 1.0

    flux_dynamic: float = 0.03
    flux_static: float = 0.01
    lra_wide_lu: float = 15.0
    lra_narrow_lu: float = 10.0
    release_expressive_ms: float = 200.0
    release_controlled_ms: float = 100.0
    release_standard_ms: float = 150.0
    dynamic_range_wide_db: float = 35.0
    release_dynamic_range_boost_ms: float = 50.0

    dynamic_range_enable_asc_db: float = 30.0
    crest_enable_asc: float = 40.0
    dynamic_range_moderate_asc_db: float = 20.0
    asc_dynamic_level: float = 0.7
    asc_moderate_level: float = 0.5
    noise_floor_asc_dbfs: float = -50.0
    asc_noisy_boost: float = 0.2


DEFAULT_LIMITER_TUNING = LimiterTuning()


def tune_attack(settings: LimiterSettings, spectral: SpectralSnapshot, tuning: LimiterTuning = DEFAULT_LIMITER_TUNING) -> None:
    """Faster attack for sharper transients."""

    transient = spectral.transient_intensity
    crest = spectral.spectral_crest
    if transient > tuning.transient_extreme or crest > tuning.crest_extreme:
        settings.attack_ms = tuning.attack_extreme_ms
    elif transient > tuning.transient_sharp or crest > tuning.crest_sharp:
        settings.attack_ms = tuning.attack_sharp_ms
    elif transient > tuning.transient_normal:
        settings.attack_ms = tuning.attack_normal_ms
    else:
        settings.attack_ms = tuning.attack_gentle_ms


def tune_release(
    settings: LimiterSettings,
    spectral: SpectralSnapshot,
    loudness_range_lu: float,
    tuning: LimiterTuning = DEFAULT_LIMITER_TUNING,
) -> None:
    """Longer release for expressive delivery, shorter for controlled delivery."""

    flux = spectral.spectral_flux
    if flux > tuning.flux_dynamic and loudness_range_lu > tuning.lra_wide_lu:
        release_ms = tuning.release_expressive_ms
    elif flux < tuning.flux_static and loudness_range_lu < tuning.lra_narrow_lu:
        release_ms = tuning.release_controlled_ms
    else:
        release_ms = tuning.release_standard_ms

    if spectral.dynamic_range_db > tuning.dynamic_range_wide_db:
        release_ms += tuning.release_dynamic_range_boost_ms
    settings.release_ms = release_ms


def tune_soft_clip(settings: LimiterSettings, spectral: SpectralSnapshot, tuning: LimiterTuning = DEFAULT_LIMITER_TUNING) -> None:
    """Enable auto soft clipping for dynamic material, stronger on noisy recordings."""

    if spectral.dynamic_range_db > tuning.dynamic_range_enable_asc_db or spectral.spectral_crest > tuning.crest_enable_asc:
        settings.asc = True
        settings.asc_level = tuning.asc_dynamic_level
    elif spectral.dynamic_range_db > tuning.dynamic_range_moderate_asc_db:
        settings.asc = True
        settings.asc_level = tuning.asc_moderate_level
    else:
        settings.asc = False
        settings.asc_level = 0.0
        return

    # A raised noise floor makes pumping audible.
    if spectral.noise_floor_dbfs > tuning.noise_floor_asc_dbfs:
        settings.asc_level = min(1.0, settings.asc_level + tuning.asc_noisy_boost)


def tune_limiter(
    settings: LimiterSettings,
    spectral: SpectralSnapshot | None,
    loudness_range_lu: float,
    tuning: LimiterTuning = DEFAULT_LIMITER_TUNING,
) -> LimiterSettings:
    """Tune ``settings`` in place; ``None`` statistics keep the prior values."""

    if spectral is None:
        return settings

    tune_attack(settings, spectral, tuning)
    tune_release(settings, spectral, loudness_range_lu, tuning)
    tune_soft_clip(settings, spectral, tuning)
    return settings
