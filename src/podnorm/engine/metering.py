"""Loudness, peak and signal statistics measured with pyloudnorm, pedalboard and numpy."""

from __future__ import annotations

import math

import numpy as np
import pyloudnorm as pyln
from numpy.lib.stride_tricks import sliding_window_view
from pedalboard.io import StreamResampler
from pyloudnorm.iirfilter import IIRfilter
from scipy import signal

SUB_BLOCK_S = 0.1
MOMENTARY_BLOCK_S = 0.4
SHORT_TERM_BLOCK_S = 3.0
SHORT_TERM_HOP_S = 1.0
ABSOLUTE_GATE_LUFS = -70.0
RELATIVE_GATE_LU = 10.0
LRA_RELATIVE_GATE_LU = 20.0
TRUE_PEAK_OVERSAMPLE = 4
NOISE_WINDOW_S = 0.05

_LOUDNESS_OFFSET = -0.691
# BS.1770 channel weights for L, R, C, Ls, Rs.
_CHANNEL_WEIGHTS = (1.0, 1.0, 1.0, 1.41, 1.41)


def amplitude_to_db(value: float, floor: float = -math.inf) -> float:
    if value <= 0.0:
        return floor
    return float(20.0 * np.log10(value))


def _channel_first(audio: np.ndarray) -> np.ndarray:
    if audio.ndim == 1:
        return audio[np.newaxis, :]
    return audio


def _audio_for_loudness_measurement(audio: np.ndarray, dual_mono: bool) -> np.ndarray:
    """Convert channel-first arrays to pyloudnorm's channel-last float64 layout.

    With ``dual_mono`` a single channel is measured as two identical channels,
    the way a mono programme is heard on a stereo playback system.
    """

    channels = _channel_first(audio).astype(np.float64, copy=False)
    if dual_mono and channels.shape[0] == 1:
        channels = np.repeat(channels, 2, axis=0)
    return np.moveaxis(channels, 0, -1)


def _gated_loudness(data: np.ndarray, sample_rate: int, block_size: float) -> float:
    if data.shape[0] < int(round(block_size * sample_rate)):
        return -math.inf

    meter = pyln.Meter(sample_rate, block_size=block_size)
    with np.errstate(divide="ignore", invalid="ignore"):
        measured = float(meter.integrated_loudness(data))
    if math.isnan(measured):
        return -math.inf
    return measured


def integrated_loudness(audio: np.ndarray, sample_rate: int, dual_mono: bool = False) -> float:
    """BS.1770 gated integrated loudness in LUFS; ``-inf`` when nothing passes the gate."""

    return _gated_loudness(_audio_for_loudness_measurement(audio, dual_mono), sample_rate, MOMENTARY_BLOCK_S)


def gating_threshold(integrated_lufs: float) -> float:
    """Relative gate used by the integrated measurement."""

    if not math.isfinite(integrated_lufs):
        return ABSOLUTE_GATE_LUFS
    return max(ABSOLUTE_GATE_LUFS, integrated_lufs - RELATIVE_GATE_LU)


def short_term_loudness(audio: np.ndarray, sample_rate: int, dual_mono: bool = False) -> np.ndarray:
    """Loudness of 3 s windows taken every second."""

    data = _audio_for_loudness_measurement(audio, dual_mono)
    window = int(round(SHORT_TERM_BLOCK_S * sample_rate))
    hop = int(round(SHORT_TERM_HOP_S * sample_rate))
    if data.shape[0] < window:
        return np.array([], dtype=np.float64)

    values = [
        _gated_loudness(data[start : start + window], sample_rate, SHORT_TERM_BLOCK_S)
        for start in range(0, data.shape[0] - window + 1, hop)
    ]
    return np.asarray(values, dtype=np.float64)


def loudness_range(audio: np.ndarray, sample_rate: int, dual_mono: bool = False) -> float:
    """EBU Tech 3342 loudness range: spread between the 10th and 95th percentiles."""

    return range_of_short_term(short_term_loudness(audio, sample_rate, dual_mono=dual_mono))


def range_of_short_term(blocks: np.ndarray) -> float:
    blocks = blocks[np.isfinite(blocks) & (blocks > ABSOLUTE_GATE_LUFS)]
    if blocks.size < 2:
        return 0.0

    mean_energy = float(np.mean(np.power(10.0, blocks / 10.0)))
    relative_gate = 10.0 * np.log10(mean_energy) - LRA_RELATIVE_GATE_LU
    gated = blocks[blocks >= relative_gate]
    if gated.size < 2:
        return 0.0
    return float(np.percentile(gated, 95) - np.percentile(gated, 10))


class LoudnessAccumulator:
    """Streaming BS.1770 meter that keeps one energy value per 100 ms.

    K-weighting runs with carried filter state, so frames may arrive in any
    size. Gating blocks (400 ms every 100 ms) and short-term windows (3 s
    every second) are assembled from the sub-block energies on demand.
    """

    def __init__(self, sample_rate: int, dual_mono: bool = False) -> None:
        self.sample_rate = sample_rate
        self.dual_mono = dual_mono
        self.sub_block = int(round(SUB_BLOCK_S * sample_rate))
        self._filters = [
            IIRfilter(4.0, 1.0 / np.sqrt(2.0), 1500.0, sample_rate, "high_shelf"),
            IIRfilter(0.0, 0.5, 38.0, sample_rate, "high_pass"),
        ]
        self._coefficients = [(stage.b, stage.a, stage.passband_gain) for stage in self._filters]
        self._states: list[np.ndarray] | None = None
        self._carry = np.zeros(0, dtype=np.float64)
        self.energies: list[float] = []

    def push(self, samples: np.ndarray) -> None:
        channels = _channel_first(samples).astype(np.float64)
        if self.dual_mono and channels.shape[0] == 1:
            channels = np.repeat(channels, 2, axis=0)
        if channels.shape[-1] == 0:
            return
        if self._states is None:
            self._states = [
                np.zeros((channels.shape[0], max(len(a), len(b)) - 1), dtype=np.float64)
                for b, a, _ in self._coefficients
            ]

        weighted = channels
        for index, (b, a, passband_gain) in enumerate(self._coefficients):
            weighted, self._states[index] = signal.lfilter(b, a, weighted, axis=-1, zi=self._states[index])
            weighted = weighted * passband_gain

        weights = np.asarray(
            [_CHANNEL_WEIGHTS[channel] if channel < len(_CHANNEL_WEIGHTS) else 1.0 for channel in range(weighted.shape[0])]
        )
        power = np.concatenate([self._carry, np.sum(np.square(weighted) * weights[:, np.newaxis], axis=0)])
        usable = (power.size // self.sub_block) * self.sub_block
        if usable:
            self.energies.extend(power[:usable].reshape(-1, self.sub_block).mean(axis=1).tolist())
        self._carry = power[usable:]

    def _window_energies(self, size: int, hop: int) -> np.ndarray:
        energies = np.asarray(self.energies, dtype=np.float64)
        if energies.size < size:
            return np.zeros(0, dtype=np.float64)
        return sliding_window_view(energies, size)[::hop].mean(axis=-1)

    def integrated(self) -> float:
        """Gated integrated loudness in LUFS; ``-inf`` when nothing passes the gate."""

        blocks = self._window_energies(_sub_blocks(MOMENTARY_BLOCK_S), 1)
        with np.errstate(divide="ignore"):
            levels = _LOUDNESS_OFFSET + 10.0 * np.log10(blocks)
        audible = blocks[levels >= ABSOLUTE_GATE_LUFS]
        if audible.size == 0:
            return -math.inf
        relative_gate = _LOUDNESS_OFFSET + 10.0 * math.log10(float(np.mean(audible))) - RELATIVE_GATE_LU
        gated = blocks[(levels >= ABSOLUTE_GATE_LUFS) & (levels > relative_gate)]
        if gated.size == 0:
            return -math.inf
        return float(_LOUDNESS_OFFSET + 10.0 * math.log10(float(np.mean(gated))))

    def loudness_range(self) -> float:
        windows = self._window_energies(_sub_blocks(SHORT_TERM_BLOCK_S), _sub_blocks(SHORT_TERM_HOP_S))
        with np.errstate(divide="ignore"):
            return range_of_short_term(_LOUDNESS_OFFSET + 10.0 * np.log10(windows))


def _sub_blocks(duration_s: float) -> int:
    return int(round(duration_s / SUB_BLOCK_S))


def oversample(audio: np.ndarray, sample_rate: int, factor: int = TRUE_PEAK_OVERSAMPLE) -> np.ndarray:
    channels = _channel_first(audio).astype(np.float32, copy=False)
    resampler = StreamResampler(sample_rate, sample_rate * factor, channels.shape[0])
    blocks = [block for block in (resampler.process(channels), resampler.process()) if block.size]
    if not blocks:
        return np.zeros((channels.shape[0], 0), dtype=np.float32)
    return np.concatenate(blocks, axis=-1)


def measure_true_peak_dbtp(audio: np.ndarray, sample_rate: int, oversample_factor: int = TRUE_PEAK_OVERSAMPLE) -> float:
    """Estimate true peak (dBTP) from a band-limited oversampled copy."""

    if oversample_factor < 1:
        raise ValueError("oversample_factor must be >= 1")

    channels = _channel_first(audio)
    if channels.size == 0:
        return -math.inf

    peak = float(np.max(np.abs(channels)))
    if oversample_factor > 1:
        upsampled = oversample(channels, sample_rate, oversample_factor)
        if upsampled.size:
            peak = max(peak, float(np.max(np.abs(upsampled))))
    return amplitude_to_db(peak)


def measure_sample_peak_dbfs(audio: np.ndarray) -> float:
    if audio.size == 0:
        return -math.inf
    return amplitude_to_db(float(np.max(np.abs(audio))))


def measure_rms_dbfs(audio: np.ndarray) -> float:
    if audio.size == 0:
        return -math.inf
    return amplitude_to_db(float(np.sqrt(np.mean(np.square(audio, dtype=np.float64)))))


def window_rms(audio: np.ndarray, window: int) -> np.ndarray:
    """RMS of consecutive non-overlapping windows of the channel mix."""

    mono = np.mean(_channel_first(audio), axis=0, dtype=np.float64)
    usable = (mono.size // window) * window
    if usable == 0:
        return np.array([], dtype=np.float64)
    blocks = mono[:usable].reshape(-1, window)
    return np.sqrt(np.mean(np.square(blocks), axis=1))


def magnitude_spectrum(window_samples: np.ndarray, window_fn: np.ndarray) -> np.ndarray:
    return np.abs(np.fft.rfft(window_samples * window_fn))


def spectral_crest(magnitudes: np.ndarray) -> float:
    mean = float(np.mean(magnitudes))
    if mean <= 0.0:
        return 0.0
    return float(np.max(magnitudes) / mean)


def spectral_flux(previous: np.ndarray | None, current: np.ndarray) -> float:
    """Distance between consecutive spectra after normalising each to unit sum."""

    if previous is None:
        return 0.0
    previous_total = float(np.sum(previous))
    current_total = float(np.sum(current))
    if previous_total <= 0.0 or current_total <= 0.0:
        return 0.0
    difference = current / current_total - previous / previous_total
    return float(np.sqrt(np.sum(np.square(difference))))
