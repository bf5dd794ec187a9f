"""Application service running the two-pass loudness normalisation use-case."""

from __future__ import annotations

import contextlib
import logging
import math
import threading
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable
from uuid import uuid4

from podnorm.application.event_publisher import EventPublisher, NullEventPublisher
from podnorm.audio_io import AudioSink, AudioSource
from podnorm.decision import (
    LimiterDecision,
    LinearModeDecision,
    calculate_limiter_ceiling,
    calculate_linear_mode_target,
)
from podnorm.diagnostics import DiagnosticsSink
from podnorm.domain.events import (
    NormalisationApplied,
    NormalisationDecided,
    NormalisationFailed,
    NormalisationMeasured,
    NormalisationSkipped,
)
from podnorm.domain.models import NormalisationResult, NormalisationState, ProgressUpdate
from podnorm.domain.policies import NormalisationTargets, OutputFormat
from podnorm.engine import AudioFilteringEngine, AudioFrame, PedalboardEngine
from podnorm.engine import base as engine_keys
from podnorm.errors import ApplyError, ClampedCeilingWarning, MeasurementError, SilentAudioError
from podnorm.filter_spec import build_apply_spec, build_measurement_spec
from podnorm.limiter_tuning import DEFAULT_LIMITER_TUNING, LimiterSettings, LimiterTuning, tune_limiter
from podnorm.measurement import LoudnormStats, MeasurementSnapshot, SpectralSnapshot
from podnorm.utils.config import NormalisationSettings

LOGGER = logging.getLogger("podnorm.normalisation")

MEASURE_PASS = (1, "Measuring")
APPLY_PASS = (2, "Normalising")
PROGRESS_CAP = 0.99
PROGRESS_UPDATE_INTERVAL = 100

ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(frozen=True, slots=True)
class NormalisationPlan:
    """Everything the apply pass needs, fixed before any audio is written."""

    measurement: MeasurementSnapshot
    requested_limiter: LimiterDecision
    linear_mode: LinearModeDecision
    effective_targets: NormalisationTargets
    apply_limiter: LimiterDecision
    limiter_settings: LimiterSettings | None
    limiter_enabled: bool = True

    @property
    def pre_limiter_applied(self) -> bool:
        return self.limiter_settings is not None


def _spectral_from_metadata(metadata: dict[str, float]) -> SpectralSnapshot | None:
    required = (
        engine_keys.ASTATS_MAX_DIFFERENCE,
        engine_keys.ASTATS_PEAK_LEVEL,
        engine_keys.ASTATS_DYNAMIC_RANGE,
        engine_keys.ASTATS_NOISE_FLOOR,
        engine_keys.SPECTRAL_CREST,
        engine_keys.SPECTRAL_FLUX,
    )
    if any(key not in metadata for key in required):
        return None

    peak_db = metadata[engine_keys.ASTATS_PEAK_LEVEL]
    peak = 10.0 ** (peak_db / 20.0) if math.isfinite(peak_db) else 0.0
    # Largest sample-to-sample step relative to the widest possible swing.
    transient = metadata[engine_keys.ASTATS_MAX_DIFFERENCE] / (2.0 * peak) if peak > 0.0 else 0.0
    return SpectralSnapshot(
        transient_intensity=min(1.0, max(0.0, transient)),
        spectral_crest=metadata[engine_keys.SPECTRAL_CREST],
        spectral_flux=metadata[engine_keys.SPECTRAL_FLUX],
        dynamic_range_db=metadata[engine_keys.ASTATS_DYNAMIC_RANGE],
        noise_floor_dbfs=metadata[engine_keys.ASTATS_NOISE_FLOOR],
    )


def measurement_from_metadata(metadata: dict[str, float]) -> MeasurementSnapshot:
    """Build the validation snapshot from accumulated per-frame metadata."""

    if engine_keys.R128_INTEGRATED not in metadata:
        raise ValueError("Filter graph output carried no integrated loudness.")

    integrated = metadata[engine_keys.R128_INTEGRATED]
    return MeasurementSnapshot(
        integrated_lufs=integrated,
        true_peak_dbtp=metadata.get(engine_keys.R128_TRUE_PEAK, metadata.get(engine_keys.R128_SAMPLE_PEAK, math.nan)),
        loudness_range_lu=metadata.get(engine_keys.R128_LOUDNESS_RANGE, math.nan),
        threshold_lufs=metadata.get(engine_keys.R128_THRESHOLD, math.nan),
        sample_peak_dbfs=metadata.get(engine_keys.R128_SAMPLE_PEAK, metadata.get(engine_keys.ASTATS_PEAK_LEVEL)),
        rms_level_dbfs=metadata.get(engine_keys.ASTATS_RMS_LEVEL),
        spectral=_spectral_from_metadata(metadata),
    )


@dataclass(slots=True)
class NormaliseLoudness:
    """Use case that measures audio, decides a peak-safe gain and applies it."""

    engine: AudioFilteringEngine = field(default_factory=PedalboardEngine)
    diagnostics: DiagnosticsSink = field(default_factory=DiagnosticsSink)
    event_publisher: EventPublisher = field(default_factory=NullEventPublisher)
    progress_callback: ProgressCallback | None = None
    limiter_tuning: LimiterTuning = DEFAULT_LIMITER_TUNING
    state: NormalisationState = field(default=NormalisationState.IDLE, init=False)
    _run_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def run(
        self,
        source: AudioSource,
        sink: AudioSink,
        settings: NormalisationSettings | None = None,
        prior_measurement: MeasurementSnapshot | None = None,
        correlation_id: str | None = None,
    ) -> NormalisationResult:
        """Normalise ``source`` into ``sink``.

        ``prior_measurement`` is an earlier analysis of the same audio; its
        spectral snapshot tunes the pre-limiter when one is inserted.
        """

        settings = settings or NormalisationSettings()
        run_correlation_id = correlation_id or str(uuid4())
        with self._run_lock:
            self.state = NormalisationState.IDLE
            if not settings.enabled:
                return self._skip(run_correlation_id)

            targets = settings.targets.to_targets()
            try:
                measurement = self.measure(source, targets, correlation_id=run_correlation_id)
                plan = self.decide(measurement, targets, settings, prior_measurement, correlation_id=run_correlation_id)
                final_measurement, apply_stats = self.apply(
                    source, sink, plan, settings.output.to_output_format(), correlation_id=run_correlation_id
                )
                return self.validate(plan, targets, final_measurement, apply_stats, correlation_id=run_correlation_id)
            except Exception as error:  # noqa: BLE001
                failed_stage = self.state
                self.state = NormalisationState.ERROR
                LOGGER.error(
                    "normalisation_failed",
                    extra={"correlation_id": run_correlation_id, "stage": failed_stage.value, "error": str(error)},
                )
                self.event_publisher.publish(
                    NormalisationFailed(
                        correlation_id=run_correlation_id,
                        payload_summary={
                            "stage": failed_stage.value,
                            "error": str(error),
                            "error_type": type(error).__name__,
                        },
                    )
                )
                raise

    def _skip(self, correlation_id: str) -> NormalisationResult:
        self.state = NormalisationState.SKIPPED
        LOGGER.info("normalisation_skipped", extra={"correlation_id": correlation_id})
        self.event_publisher.publish(
            NormalisationSkipped(correlation_id=correlation_id, payload_summary={"reason": "disabled"})
        )
        return NormalisationResult.skipped_result()

    def measure(
        self,
        source: AudioSource,
        targets: NormalisationTargets,
        correlation_id: str | None = None,
    ) -> MeasurementSnapshot:
        """Run the measurement sub-pass and return the engine's own statistics."""

        self.state = NormalisationState.MEASURING
        spec = build_measurement_spec(targets)
        pass_index, label = MEASURE_PASS
        self._report(ProgressUpdate(pass_index=pass_index, label=label, progress=0.0))
        try:
            with self.diagnostics.capture():
                with contextlib.closing(self.engine.process(spec, source)) as frames:
                    self._pump(frames, source, MEASURE_PASS, sink=None)
        except Exception as exc:  # noqa: BLE001
            raise MeasurementError(f"Measurement pass failed: {exc}") from exc

        stats = self.diagnostics.stats
        if stats is None:
            raise MeasurementError("Measurement pass produced no parseable loudness statistics.")

        measurement = stats.to_measurement()
        if measurement.is_silent:
            raise SilentAudioError(measurement.integrated_lufs)

        self._report(ProgressUpdate(pass_index=pass_index, label=label, progress=1.0, measurement=measurement))
        self.event_publisher.publish(
            NormalisationMeasured(
                correlation_id=correlation_id or str(uuid4()),
                payload_summary={
                    "integrated_lufs": measurement.integrated_lufs,
                    "true_peak_dbtp": measurement.true_peak_dbtp,
                    "loudness_range_lu": measurement.loudness_range_lu,
                    "threshold_lufs": measurement.threshold_lufs,
                    "target_offset_db": measurement.target_offset_db,
                    "normalization_type": stats.normalization_type,
                },
            )
        )
        return measurement

    def decide(
        self,
        measurement: MeasurementSnapshot,
        targets: NormalisationTargets,
        settings: NormalisationSettings,
        prior_measurement: MeasurementSnapshot | None = None,
        correlation_id: str | None = None,
    ) -> NormalisationPlan:
        """Resolve the limiter ceiling and the loudest linear-mode target."""

        self.state = NormalisationState.DECIDING
        measured_i = measurement.integrated_lufs
        measured_tp = measurement.true_peak_dbtp
        limiter_enabled = settings.limiter.enabled

        requested_limiter = calculate_limiter_ceiling(measured_i, measured_tp, targets.desired_i, targets.target_tp)
        if limiter_enabled and requested_limiter.clamped:
            message = (
                f"Pre-limiter ceiling clamped to {requested_limiter.ceiling_dbtp:.1f} dBTP; "
                f"{requested_limiter.gain_required_db:+.1f} dB of gain cannot be made fully peak-safe."
            )
            warnings.warn(message, ClampedCeilingWarning, stacklevel=3)
            LOGGER.warning(
                "limiter_ceiling_clamped",
                extra={"correlation_id": correlation_id, "gain_required_db": requested_limiter.gain_required_db},
            )

        peak_for_linear = requested_limiter.effective_peak(measured_tp) if limiter_enabled else measured_tp
        linear_mode = calculate_linear_mode_target(measured_i, peak_for_linear, targets.desired_i, targets.target_tp)
        effective_targets = targets.with_integrated(linear_mode.effective_target_i)

        # The inserted limiter must protect the gain actually applied, not the requested one.
        apply_limiter = calculate_limiter_ceiling(
            measured_i, measured_tp, linear_mode.effective_target_i, targets.target_tp
        )
        limiter_settings = None
        if limiter_enabled and apply_limiter.needed:
            spectral = prior_measurement.spectral if prior_measurement is not None else None
            limiter_settings = tune_limiter(
                settings.limiter.to_settings(), spectral, measurement.loudness_range_lu, self.limiter_tuning
            )

        plan = NormalisationPlan(
            measurement=measurement,
            requested_limiter=requested_limiter,
            linear_mode=linear_mode,
            effective_targets=effective_targets,
            apply_limiter=apply_limiter,
            limiter_settings=limiter_settings,
            limiter_enabled=limiter_enabled,
        )
        self.event_publisher.publish(
            NormalisationDecided(
                correlation_id=correlation_id or str(uuid4()),
                payload_summary={
                    "requested_target_i": targets.desired_i,
                    "effective_target_i": linear_mode.effective_target_i,
                    "linear_possible": linear_mode.linear_possible,
                    "limiter_needed": requested_limiter.needed,
                    "limiter_ceiling_dbtp": requested_limiter.ceiling_dbtp,
                    "limiter_clamped": requested_limiter.clamped,
                    "pre_limiter_applied": plan.pre_limiter_applied,
                    "limiter_enabled": limiter_enabled,
                },
            )
        )
        return plan

    def apply(
        self,
        source: AudioSource,
        sink: AudioSink,
        plan: NormalisationPlan,
        output_format: OutputFormat,
        correlation_id: str | None = None,
    ) -> tuple[MeasurementSnapshot, LoudnormStats | None]:
        """Run the apply sub-pass into ``sink``; returns the final snapshot and loudnorm stats."""

        self.state = NormalisationState.APPLYING
        spec = build_apply_spec(
            plan.effective_targets,
            plan.measurement,
            plan.apply_limiter if plan.pre_limiter_applied else None,
            plan.limiter_settings,
            output_format,
        )
        LOGGER.info("normalisation_apply_started", extra={"correlation_id": correlation_id, "filter_chain": spec})

        pass_index, label = APPLY_PASS
        self._report(ProgressUpdate(pass_index=pass_index, label=label, progress=0.0))
        try:
            with self.diagnostics.capture():
                with contextlib.closing(self.engine.process(spec, source)) as frames:
                    metadata = self._pump(frames, source, APPLY_PASS, sink=sink)
            final_measurement = measurement_from_metadata(metadata)
            sink.commit()
        except Exception as exc:  # noqa: BLE001
            sink.discard()
            raise ApplyError(f"Apply pass failed: {exc}") from exc

        self._report(ProgressUpdate(pass_index=pass_index, label=label, progress=1.0, measurement=final_measurement))
        return final_measurement, self.diagnostics.stats

    def validate(
        self,
        plan: NormalisationPlan,
        targets: NormalisationTargets,
        final_measurement: MeasurementSnapshot,
        apply_stats: LoudnormStats | None = None,
        correlation_id: str | None = None,
    ) -> NormalisationResult:
        self.state = NormalisationState.VALIDATING
        effective_target_i = plan.linear_mode.effective_target_i
        deviation = abs(final_measurement.integrated_lufs - effective_target_i)
        within_target = deviation <= targets.tolerance_lu

        result = NormalisationResult(
            input_lufs=plan.measurement.integrated_lufs,
            input_tp=plan.measurement.true_peak_dbtp,
            output_lufs=final_measurement.integrated_lufs,
            output_tp=final_measurement.true_peak_dbtp,
            gain_applied_db=plan.measurement.target_offset_db,
            requested_target_i=targets.desired_i,
            effective_target_i=effective_target_i,
            linear_mode_forced=not plan.linear_mode.linear_possible,
            limiter=plan.requested_limiter,
            within_target=within_target,
            skipped=False,
            final_measurement=final_measurement,
            loudnorm_stats=apply_stats,
            limiter_settings=plan.limiter_settings,
            pre_limiter_applied=plan.pre_limiter_applied,
            limiter_enabled=plan.limiter_enabled,
            state=NormalisationState.DONE,
        )
        if not within_target:
            LOGGER.warning(
                "normalisation_outside_tolerance",
                extra={"correlation_id": correlation_id, "deviation_lu": deviation, "tolerance_lu": targets.tolerance_lu},
            )

        self.state = NormalisationState.DONE
        self.event_publisher.publish(
            NormalisationApplied(correlation_id=correlation_id or str(uuid4()), payload_summary=result.as_report())
        )
        return result

    def _report(self, update: ProgressUpdate) -> None:
        if self.progress_callback is not None:
            self.progress_callback(update)

    def _pump(
        self,
        frames: Iterable[AudioFrame],
        source: AudioSource,
        progress_pass: tuple[int, str],
        sink: AudioSink | None,
    ) -> dict[str, float]:
        """Drain engine output, writing it to ``sink`` and folding frame metadata (last value wins)."""

        pass_index, label = progress_pass
        total_seconds = (source.total_samples or 0) / source.sample_rate if source.sample_rate else 0.0
        processed_seconds = 0.0
        metadata: dict[str, float] = {}
        for index, frame in enumerate(frames, start=1):
            if sink is not None:
                sink.write(frame)
            metadata.update(frame.metadata)
            processed_seconds += frame.sample_count / frame.sample_rate

            if index % PROGRESS_UPDATE_INTERVAL == 0 and total_seconds > 0.0:
                self._report(
                    ProgressUpdate(
                        pass_index=pass_index,
                        label=label,
                        progress=min(PROGRESS_CAP, processed_seconds / total_seconds),
                        level=metadata.get(engine_keys.ASTATS_RMS_LEVEL, 0.0),
                    )
                )
        return metadata


def normalise_file(
    path: Path,
    settings: NormalisationSettings | None = None,
    output_path: Path | None = None,
    prior_measurement: MeasurementSnapshot | None = None,
    service: NormaliseLoudness | None = None,
    correlation_id: str | None = None,
) -> NormalisationResult:
    """Normalise an audio file, in place unless ``output_path`` is given."""

    from podnorm.infrastructure.pedalboard_codec import AudioFileSink, AudioFileSource

    settings = settings or NormalisationSettings()
    output_format = settings.output.to_output_format()
    source = AudioFileSource(Path(path), frame_size=output_format.frame_size)
    sink = AudioFileSink(Path(output_path or path), bit_depth=output_format.bit_depth)
    runner = service or NormaliseLoudness()
    return runner.run(source, sink, settings, prior_measurement=prior_measurement, correlation_id=correlation_id)
