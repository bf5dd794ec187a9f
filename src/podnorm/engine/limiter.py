"""Look-ahead peak limiter used by the ``alimiter`` and dynamic ``loudnorm`` stages."""

from __future__ import annotations

import math

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

# Initial slope of a one-pole release, in dB per time constant.
RELEASE_DB_PER_TIME_CONSTANT = 20.0 * math.log10(math.e)


class PeakLimiter:
    """Brick-wall limiter with linked channels and latency compensation.

    The gain each sample needs to sit at the ceiling is spread backwards over
    the look-ahead window and averaged across it, so reduction ramps in before
    a peak arrives and no sample leaves above the ceiling. Gain then recovers
    at a fixed rate in dB. Material that never reaches the ceiling passes at
    exactly unity gain.

    ``process`` holds back the last look-ahead's worth of samples; pass
    ``final=True`` (or call :meth:`flush`) at end of input to release them.
    """

    def __init__(self, ceiling_db: float, sample_rate: int, attack_ms: float = 5.0, release_ms: float = 50.0) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive.")
        self.ceiling_db = float(ceiling_db)
        self.ceiling = float(10.0 ** (self.ceiling_db / 20.0))
        self.lookahead = max(1, int(round(sample_rate * attack_ms / 1000.0)))
        release_samples = max(1.0, sample_rate * release_ms / 1000.0)
        self.release_step_db = RELEASE_DB_PER_TIME_CONSTANT / release_samples

        self._pending: np.ndarray | None = None
        self._pending_targets = np.zeros(0, dtype=np.float64)
        self._history = np.zeros(self.lookahead - 1, dtype=np.float64)
        self._gain_db = 0.0

    def _targets(self, samples: np.ndarray) -> np.ndarray:
        """Gain in dB that brings each sample down to the ceiling (0 when already under)."""

        peaks = np.max(np.abs(samples), axis=0).astype(np.float64)
        targets = np.zeros(peaks.shape, dtype=np.float64)
        over = peaks > self.ceiling
        targets[over] = 20.0 * np.log10(self.ceiling / peaks[over])
        return targets

    def process(self, samples: np.ndarray, final: bool = False) -> np.ndarray:
        channels = samples[np.newaxis, :] if samples.ndim == 1 else samples
        channels = channels.astype(np.float64, copy=False)
        if self._pending is None:
            self._pending = np.zeros((channels.shape[0], 0), dtype=np.float64)
        elif channels.shape[0] != self._pending.shape[0]:
            raise ValueError("Limiter channel count changed mid-stream.")

        buffered = np.concatenate([self._pending, channels], axis=-1)
        targets = np.concatenate([self._pending_targets, self._targets(channels)])
        if final:
            ready = buffered.shape[-1]
            targets_ahead = np.concatenate([targets, np.zeros(self.lookahead - 1, dtype=np.float64)])
        else:
            ready = buffered.shape[-1] - (self.lookahead - 1)
            targets_ahead = targets
        if ready <= 0:
            self._pending, self._pending_targets = buffered, targets
            return np.zeros((buffered.shape[0], 0), dtype=np.float32)

        held = sliding_window_view(targets_ahead, self.lookahead)[:ready].min(axis=-1)
        joined = np.concatenate([self._history, held])
        ramped = sliding_window_view(joined, self.lookahead).mean(axis=-1)

        steps = np.arange(ready, dtype=np.float64) * self.release_step_db
        released = steps + np.minimum.accumulate(ramped - steps)
        released = np.minimum(released, self._gain_db + steps + self.release_step_db)
        # Peaks inside the first look-ahead of the stream get no ramp.
        gain_db = np.minimum(released, targets[:ready])

        self._gain_db = float(gain_db[-1])
        self._history = joined[joined.size - (self.lookahead - 1) :]
        self._pending, self._pending_targets = buffered[:, ready:], targets[ready:]
        return (buffered[:, :ready] * np.power(10.0, gain_db / 20.0)).astype(np.float32)

    def flush(self) -> np.ndarray:
        if self._pending is None:
            return np.zeros((1, 0), dtype=np.float32)
        return self.process(np.zeros((self._pending.shape[0], 0), dtype=np.float64), final=True)
