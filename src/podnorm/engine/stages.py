"""Filter stages run by :class:`~podnorm.engine.pedalboard_engine.PedalboardEngine`.

Every stage consumes frames through ``push`` and may hold samples back; ``flush``
releases whatever is left at end of input and ``close`` runs when the graph is
torn down.
"""

from __future__ import annotations

import json
import logging
import math

import numpy as np
from pedalboard.io import StreamResampler

from podnorm.diagnostics import DIAGNOSTICS_LOGGER_NAME
from podnorm.filter_spec import FilterStageSpec

from . import base, metering
from .limiter import PeakLimiter

DIAGNOSTICS_LOGGER = logging.getLogger(DIAGNOSTICS_LOGGER_NAME)

_SAMPLE_FORMAT_SCALE = {"s16": 32767.0, "s24": 8388607.0, "s32": 2147483647.0}

DYNAMIC_ATTACK_MS = 5.0
DYNAMIC_RELEASE_MS = 100.0


class FilterStage:
    """Pass-through base stage."""

    name = "anull"

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        return [frame]

    def flush(self) -> list[base.AudioFrame]:
        return []

    def close(self) -> None:
        return


class AlimiterStage(FilterStage):
    """Peak limiter with no auto-levelling; ``attack`` sets the look-ahead.

    ``asc`` is accepted for chain compatibility and has no effect.
    """

    name = "alimiter"

    def __init__(self, spec: FilterStageSpec) -> None:
        limit = spec.float_option("limit", 1.0)
        if not 0.0625 <= limit <= 1.0:
            raise ValueError(f"alimiter limit must be within [0.0625, 1], got {limit}.")
        self.ceiling_db = float(20.0 * np.log10(limit))
        self.attack_ms = spec.float_option("attack", 5.0)
        self.release_ms = spec.float_option("release", 50.0)
        if self.attack_ms <= 0.0 or self.release_ms <= 0.0:
            raise ValueError("alimiter attack and release must be positive.")
        self.level_in = spec.float_option("level_in", 1.0)
        self.level_out = spec.float_option("level_out", 1.0)
        self.asc = spec.bool_option("asc", False)
        self.asc_level = spec.float_option("asc_level", 0.5)
        self._limiter: PeakLimiter | None = None
        self._last: base.AudioFrame | None = None

    def _emit(self, template: base.AudioFrame, processed: np.ndarray) -> list[base.AudioFrame]:
        if processed.shape[-1] == 0:
            return []
        return [template.with_samples(processed * np.float32(self.level_out))]

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        if self._limiter is None:
            self._limiter = PeakLimiter(self.ceiling_db, frame.sample_rate, self.attack_ms, self.release_ms)
        self._last = frame
        return self._emit(frame, self._limiter.process(frame.samples * np.float32(self.level_in)))

    def flush(self) -> list[base.AudioFrame]:
        if self._limiter is None or self._last is None:
            return []
        return self._emit(self._last, self._limiter.flush())


class LoudnormStage(FilterStage):
    """EBU R128 loudness normalisation.

    Without ``measured_*`` options the whole input is buffered, measured and
    normalised at end of input. With them, a linear gain is applied while
    streaming whenever it keeps the peak under ``TP`` and the range under
    ``LRA``, and nothing is buffered; the summary is then derived from the
    measured values. Otherwise the stage falls back to gain (biased by
    ``offset``) followed by peak limiting. A JSON summary is logged on the
    diagnostics channel at close.
    """

    name = "loudnorm"

    def __init__(self, spec: FilterStageSpec, instance_index: int = 0) -> None:
        self.instance_index = instance_index
        self.target_i = spec.float_option("I", -24.0)
        self.target_tp = spec.float_option("TP", -2.0)
        self.target_lra = spec.float_option("LRA", 7.0)
        if not -70.0 <= self.target_i <= -5.0:
            raise ValueError(f"loudnorm I must be within [-70, -5], got {self.target_i}.")
        if not -9.0 <= self.target_tp <= 0.0:
            raise ValueError(f"loudnorm TP must be within [-9, 0], got {self.target_tp}.")
        if not 1.0 <= self.target_lra <= 50.0:
            raise ValueError(f"loudnorm LRA must be within [1, 50], got {self.target_lra}.")

        self.measured_i = self._optional_float(spec, "measured_I")
        self.measured_tp = self._optional_float(spec, "measured_TP")
        self.measured_lra = self._optional_float(spec, "measured_LRA")
        self.measured_thresh = self._optional_float(spec, "measured_thresh")
        self.offset_db = spec.float_option("offset", 0.0)
        self.linear = spec.bool_option("linear", True)
        self.dual_mono = spec.bool_option("dual_mono", False)
        self.print_format = spec.option("print_format", "none")

        self._chunks: list[np.ndarray] = []
        self._sample_rate: int | None = None
        self._metadata: dict[str, float] = {}
        self._streaming_gain_db = self._measured_linear_gain()
        self._gain_db = self._streaming_gain_db
        self._normalization_type = "linear" if self._streaming_gain_db is not None else None
        self._input_stats_cache: tuple[float, float, float, float] | None = None
        self._output_stats: tuple[float, float, float, float] | None = None
        self._closed = False

    @staticmethod
    def _optional_float(spec: FilterStageSpec, key: str) -> float | None:
        if not spec.has_option(key):
            return None
        return spec.float_option(key, math.nan)

    def _measured_linear_gain(self) -> float | None:
        if not self.linear or self.measured_i is None or self.measured_tp is None:
            return None
        if not math.isfinite(self.measured_i):
            return None

        gain_db = self.target_i - self.measured_i
        if self.measured_tp + gain_db > self.target_tp:
            return None
        if self.measured_lra is not None and self.measured_lra > self.target_lra:
            return None
        return gain_db

    @property
    def buffered_samples(self) -> int:
        return sum(chunk.shape[-1] for chunk in self._chunks)

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        self._sample_rate = frame.sample_rate
        self._metadata = dict(frame.metadata)
        if self._streaming_gain_db is None:
            self._chunks.append(frame.samples.copy())
            return []
        return [frame.with_samples(frame.samples * _db_to_gain(self._streaming_gain_db))]

    def flush(self) -> list[base.AudioFrame]:
        if self._streaming_gain_db is not None or not self._chunks or self._sample_rate is None:
            return []

        audio = np.concatenate(self._chunks, axis=-1)
        input_i, input_tp, input_lra, _ = self._input_stats(audio)
        reference_i = self.measured_i if self.measured_i is not None and math.isfinite(self.measured_i) else input_i
        if not math.isfinite(reference_i):
            self._gain_db = 0.0
            self._normalization_type = "linear"
            processed = audio
        else:
            self._gain_db = self.target_i - reference_i
            linear_ok = self.linear and input_tp + self._gain_db <= self.target_tp and input_lra <= self.target_lra
            if linear_ok:
                self._normalization_type = "linear"
                processed = audio * _db_to_gain(self._gain_db)
            else:
                # Linear mode ignores the offset; it only biases the dynamic gain.
                self._gain_db += self.offset_db
                self._normalization_type = "dynamic"
                limiter = PeakLimiter(self.target_tp, self._sample_rate, DYNAMIC_ATTACK_MS, DYNAMIC_RELEASE_MS)
                processed = limiter.process(audio * _db_to_gain(self._gain_db), final=True)
                self._output_stats = self._measure(processed)

        frames: list[base.AudioFrame] = []
        start = 0
        for chunk in self._chunks:
            stop = start + chunk.shape[-1]
            frames.append(
                base.AudioFrame(samples=processed[:, start:stop], sample_rate=self._sample_rate, metadata=dict(self._metadata))
            )
            start = stop
        self._chunks = []
        return frames

    def _measure(self, audio: np.ndarray) -> tuple[float, float, float, float]:
        assert self._sample_rate is not None
        integrated = metering.integrated_loudness(audio, self._sample_rate, dual_mono=self.dual_mono)
        return (
            integrated,
            metering.measure_true_peak_dbtp(audio, self._sample_rate),
            metering.loudness_range(audio, self._sample_rate, dual_mono=self.dual_mono),
            metering.gating_threshold(integrated),
        )

    def _input_stats(self, audio: np.ndarray) -> tuple[float, float, float, float]:
        if self._input_stats_cache is None:
            self._input_stats_cache = self._measure(audio)
        return self._input_stats_cache

    def _measured_stats(self) -> tuple[float, float, float, float]:
        """Input statistics as given by the ``measured_*`` options of a streaming pass."""

        assert self.measured_i is not None and self.measured_tp is not None
        input_lra = self.measured_lra if self.measured_lra is not None and math.isfinite(self.measured_lra) else 0.0
        if self.measured_thresh is not None and math.isfinite(self.measured_thresh):
            input_thresh = self.measured_thresh
        else:
            input_thresh = metering.gating_threshold(self.measured_i)
        return self.measured_i, self.measured_tp, input_lra, input_thresh

    def summary(self) -> dict[str, str]:
        """Loudnorm statistics with every number rendered as a string."""

        if self._streaming_gain_db is not None:
            input_i, input_tp, input_lra, input_thresh = self._measured_stats()
        elif self._input_stats_cache is not None:
            input_i, input_tp, input_lra, input_thresh = self._input_stats_cache
        elif self._chunks and self._sample_rate is not None:
            input_i, input_tp, input_lra, input_thresh = self._input_stats(np.concatenate(self._chunks, axis=-1))
        else:
            input_i, input_tp, input_lra, input_thresh = -math.inf, -math.inf, 0.0, metering.ABSOLUTE_GATE_LUFS

        gain_db = self._gain_db or 0.0
        if self._output_stats is not None:
            output_i, output_tp, output_lra, output_thresh = self._output_stats
        else:
            output_i = input_i + gain_db
            output_tp = input_tp + gain_db
            output_lra = input_lra
            output_thresh = input_thresh + gain_db

        target_offset = self.target_i - output_i if math.isfinite(output_i) else 0.0
        return {
            "input_i": f"{input_i:.2f}",
            "input_tp": f"{input_tp:.2f}",
            "input_lra": f"{input_lra:.2f}",
            "input_thresh": f"{input_thresh:.2f}",
            "output_i": f"{output_i:.2f}",
            "output_tp": f"{output_tp:.2f}",
            "output_lra": f"{output_lra:.2f}",
            "output_thresh": f"{output_thresh:.2f}",
            "normalization_type": self._normalization_type or "linear",
            "target_offset": f"{target_offset:.2f}",
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.print_format != "json":
            return
        DIAGNOSTICS_LOGGER.info("[Parsed_loudnorm_%d]\n%s", self.instance_index, json.dumps(self.summary(), indent=4))


class AstatsStage(FilterStage):
    """Running amplitude statistics written to every frame's metadata."""

    name = "astats"

    def __init__(self, spec: FilterStageSpec) -> None:
        self.write_metadata = spec.bool_option("metadata", False)
        self._peak = 0.0
        self._sum_squares = 0.0
        self._sample_total = 0
        self._max_difference = 0.0
        self._previous: np.ndarray | None = None
        self._noise_floor = math.inf
        self._window_carry: np.ndarray | None = None

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        samples = frame.samples.astype(np.float64)
        if samples.size == 0:
            return [frame]

        self._peak = max(self._peak, float(np.max(np.abs(samples))))
        self._sum_squares += float(np.sum(np.square(samples)))
        self._sample_total += samples.size

        joined = samples if self._previous is None else np.concatenate([self._previous, samples], axis=-1)
        if joined.shape[-1] > 1:
            self._max_difference = max(self._max_difference, float(np.max(np.abs(np.diff(joined, axis=-1)))))
        self._previous = samples[:, -1:]

        self._update_noise_floor(samples, frame.sample_rate)
        if self.write_metadata:
            frame.metadata.update(self.values())
        return [frame]

    def _update_noise_floor(self, samples: np.ndarray, sample_rate: int) -> None:
        window = max(1, int(sample_rate * metering.NOISE_WINDOW_S))
        pending = samples if self._window_carry is None else np.concatenate([self._window_carry, samples], axis=-1)
        usable = (pending.shape[-1] // window) * window
        if usable:
            levels = metering.window_rms(pending[:, :usable], window)
            # Digital silence carries no noise floor.
            audible = levels[levels > 0.0]
            if audible.size:
                self._noise_floor = min(self._noise_floor, float(np.min(audible)))
        self._window_carry = pending[:, usable:]

    def values(self) -> dict[str, float]:
        rms = math.sqrt(self._sum_squares / self._sample_total) if self._sample_total else 0.0
        peak_db = metering.amplitude_to_db(self._peak)
        noise_floor_db = metering.amplitude_to_db(self._noise_floor) if math.isfinite(self._noise_floor) else -math.inf
        dynamic_range = peak_db - noise_floor_db if math.isfinite(peak_db) and math.isfinite(noise_floor_db) else 0.0
        return {
            base.ASTATS_PEAK_LEVEL: peak_db,
            base.ASTATS_RMS_LEVEL: metering.amplitude_to_db(rms),
            base.ASTATS_NOISE_FLOOR: noise_floor_db,
            base.ASTATS_DYNAMIC_RANGE: dynamic_range,
            base.ASTATS_CREST_FACTOR: self._peak / rms if rms > 0.0 else 0.0,
            base.ASTATS_MAX_DIFFERENCE: self._max_difference,
        }


class AspectralstatsStage(FilterStage):
    """Windowed spectral crest and flux averaged over the stream."""

    name = "aspectralstats"

    def __init__(self, spec: FilterStageSpec) -> None:
        self.win_size = int(spec.float_option("win_size", 2048))
        if self.win_size < 32:
            raise ValueError(f"aspectralstats win_size must be >= 32, got {self.win_size}.")
        win_func = spec.option("win_func", "hann")
        if win_func != "hann":
            raise ValueError(f"Unsupported aspectralstats window: {win_func!r}.")
        self.hop = self.win_size // 2
        self._window_fn = np.hanning(self.win_size)
        self._carry = np.zeros(0, dtype=np.float64)
        self._previous: np.ndarray | None = None
        self._crest_total = 0.0
        self._flux_total = 0.0
        self._windows = 0

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        mono = np.mean(frame.samples, axis=0, dtype=np.float64)
        self._carry = np.concatenate([self._carry, mono])
        while self._carry.size >= self.win_size:
            magnitudes = metering.magnitude_spectrum(self._carry[: self.win_size], self._window_fn)
            self._crest_total += metering.spectral_crest(magnitudes)
            self._flux_total += metering.spectral_flux(self._previous, magnitudes)
            self._previous = magnitudes
            self._windows += 1
            self._carry = self._carry[self.hop :]

        if self._windows:
            frame.metadata[base.SPECTRAL_CREST] = self._crest_total / self._windows
            frame.metadata[base.SPECTRAL_FLUX] = self._flux_total / max(1, self._windows - 1)
        return [frame]


class Ebur128Stage(FilterStage):
    """Loudness meter; integrated values land on the final frame."""

    name = "ebur128"

    def __init__(self, spec: FilterStageSpec) -> None:
        peak_modes = set((spec.option("peak", "") or "").split("+")) - {""}
        unknown = peak_modes - {"sample", "true"}
        if unknown:
            raise ValueError(f"Unsupported ebur128 peak mode(s): {', '.join(sorted(unknown))}.")
        self.sample_peak = "sample" in peak_modes
        self.true_peak = "true" in peak_modes
        self.dual_mono = spec.bool_option("dualmono", False)
        self.meter: metering.LoudnessAccumulator | None = None
        self._held: base.AudioFrame | None = None
        self._sample_peak = 0.0
        self._true_peak = 0.0
        self._resampler: StreamResampler | None = None

    def _track_peaks(self, frame: base.AudioFrame) -> None:
        if frame.samples.size == 0:
            return
        self._sample_peak = max(self._sample_peak, float(np.max(np.abs(frame.samples))))
        if not self.true_peak:
            return
        if self._resampler is None:
            self._resampler = StreamResampler(
                frame.sample_rate, frame.sample_rate * metering.TRUE_PEAK_OVERSAMPLE, frame.channel_count
            )
        upsampled = self._resampler.process(frame.samples)
        if upsampled.size:
            self._true_peak = max(self._true_peak, float(np.max(np.abs(upsampled))))

    def _peak_metadata(self) -> dict[str, float]:
        values: dict[str, float] = {}
        if self.sample_peak:
            values[base.R128_SAMPLE_PEAK] = metering.amplitude_to_db(self._sample_peak)
        if self.true_peak:
            values[base.R128_TRUE_PEAK] = metering.amplitude_to_db(max(self._true_peak, self._sample_peak))
        return values

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        if self.meter is None:
            self.meter = metering.LoudnessAccumulator(frame.sample_rate, dual_mono=self.dual_mono)
        self.meter.push(frame.samples)
        self._track_peaks(frame)
        frame.metadata.update(self._peak_metadata())

        released = [self._held] if self._held is not None else []
        self._held = frame
        return released

    def flush(self) -> list[base.AudioFrame]:
        if self._held is None or self.meter is None:
            return []

        if self._resampler is not None:
            remainder = self._resampler.process()
            if remainder.size:
                self._true_peak = max(self._true_peak, float(np.max(np.abs(remainder))))

        integrated = self.meter.integrated()
        self._held.metadata.update(self._peak_metadata())
        self._held.metadata[base.R128_INTEGRATED] = integrated
        self._held.metadata[base.R128_LOUDNESS_RANGE] = self.meter.loudness_range()
        self._held.metadata[base.R128_THRESHOLD] = metering.gating_threshold(integrated)

        final, self._held = self._held, None
        return [final]


class AformatStage(FilterStage):
    """Resample, quantise and re-block the stream to a fixed output format."""

    name = "aformat"

    def __init__(self, spec: FilterStageSpec) -> None:
        self.sample_rate = int(spec.float_option("sample_rates", 0))
        self.sample_format = spec.option("sample_fmts", "flt") or "flt"
        self.frame_size = int(spec.float_option("frame_size", 0))
        if self.sample_rate < 0 or self.frame_size < 0:
            raise ValueError("aformat sample_rates and frame_size must be positive.")
        if self.sample_format not in _SAMPLE_FORMAT_SCALE and self.sample_format != "flt":
            raise ValueError(f"Unsupported aformat sample format: {self.sample_format!r}.")
        self._resampler: StreamResampler | None = None
        self._source_rate: int | None = None
        self._pending: np.ndarray | None = None
        self._metadata: dict[str, float] = {}

    def _output_rate(self) -> int:
        assert self._source_rate is not None
        return self.sample_rate or self._source_rate

    def _resample(self, samples: np.ndarray | None) -> np.ndarray:
        if self._resampler is None:
            return samples if samples is not None else np.zeros((0, 0), dtype=np.float32)
        if samples is None:
            return self._resampler.process()
        return self._resampler.process(samples)

    def _quantise(self, samples: np.ndarray) -> np.ndarray:
        scale = _SAMPLE_FORMAT_SCALE.get(self.sample_format)
        if scale is None:
            return samples
        return (np.round(np.clip(samples, -1.0, 1.0) * scale) / scale).astype(np.float32)

    def _emit(self, samples: np.ndarray, final: bool) -> list[base.AudioFrame]:
        if samples.size:
            self._pending = samples if self._pending is None else np.concatenate([self._pending, samples], axis=-1)
        if self._pending is None or self._pending.shape[-1] == 0:
            return []

        block = self.frame_size or self._pending.shape[-1]
        frames: list[base.AudioFrame] = []
        while self._pending.shape[-1] >= block or (final and self._pending.shape[-1] > 0):
            chunk, self._pending = self._pending[:, :block], self._pending[:, block:]
            frames.append(
                base.AudioFrame(samples=self._quantise(chunk), sample_rate=self._output_rate(), metadata=dict(self._metadata))
            )
        return frames

    def push(self, frame: base.AudioFrame) -> list[base.AudioFrame]:
        if self._source_rate is None:
            self._source_rate = frame.sample_rate
            if self.sample_rate and self.sample_rate != frame.sample_rate:
                self._resampler = StreamResampler(frame.sample_rate, self.sample_rate, frame.channel_count)
        elif frame.sample_rate != self._source_rate:
            raise ValueError("aformat input sample rate changed mid-stream.")

        self._metadata = dict(frame.metadata)
        return self._emit(self._resample(frame.samples), final=False)

    def flush(self) -> list[base.AudioFrame]:
        if self._source_rate is None:
            return []
        remainder = self._resample(None) if self._resampler is not None else np.zeros((0, 0), dtype=np.float32)
        return self._emit(remainder, final=True)


def _db_to_gain(db: float) -> float:
    return float(10.0 ** (db / 20.0))


STAGE_TYPES: dict[str, type[FilterStage]] = {
    stage.name: stage
    for stage in (AlimiterStage, LoudnormStage, AstatsStage, AspectralstatsStage, Ebur128Stage, AformatStage)
}
