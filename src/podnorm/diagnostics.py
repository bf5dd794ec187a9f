"""Capture of the engine's diagnostic log channel during one sub-pass."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .measurement import LoudnormStats

DIAGNOSTICS_LOGGER_NAME = "podnorm.engine.diagnostics"


class DiagnosticsSink(logging.Handler):
    """Buffers diagnostic log lines while armed and parses the loudnorm payload.

    ``start()`` arms the buffer and raises the diagnostic logger to INFO so the
    engine's summary is emitted; ``stop()`` restores the previous level and
    returns the parsed stats, or ``None`` when nothing parseable was captured.
    """

    def __init__(self, logger_name: str = DIAGNOSTICS_LOGGER_NAME) -> None:
        super().__init__(level=logging.INFO)
        self.logger_name = logger_name
        self._buffer: list[str] = []
        self._capturing = False
        self._saved_level: int | None = None
        self._saved_propagate = True
        self._state_lock = threading.Lock()
        self.stats: LoudnormStats | None = None

    @property
    def capturing(self) -> bool:
        with self._state_lock:
            return self._capturing

    @property
    def captured_text(self) -> str:
        with self._state_lock:
            return "\n".join(self._buffer)

    def emit(self, record: logging.LogRecord) -> None:
        with self._state_lock:
            if not self._capturing:
                return
            self._buffer.append(record.getMessage())

    def start(self) -> None:
        logger = logging.getLogger(self.logger_name)
        with self._state_lock:
            self._buffer.clear()
            self.stats = None
            self._capturing = True
            self._saved_level = logger.level
            self._saved_propagate = logger.propagate
        logger.setLevel(logging.INFO)
        # Captured payloads are large; keep them out of the application log.
        logger.propagate = False
        if self not in logger.handlers:
            logger.addHandler(self)

    def stop(self) -> LoudnormStats | None:
        logger = logging.getLogger(self.logger_name)
        with self._state_lock:
            self._capturing = False
            saved_level = self._saved_level
            saved_propagate = self._saved_propagate
            self._saved_level = None
            text = "\n".join(self._buffer)
        logger.removeHandler(self)
        if saved_level is not None:
            logger.setLevel(saved_level)
        logger.propagate = saved_propagate
        self.stats = self.parse(text)
        return self.stats

    @staticmethod
    def parse(text: str) -> LoudnormStats | None:
        try:
            return LoudnormStats.from_text(text)
        except ValueError:
            return None

    @contextmanager
    def capture(self) -> Iterator["DiagnosticsSink"]:
        """Arm the sink for the duration of the block; always restores logger state."""

        self.start()
        try:
            yield self
        finally:
            if self.capturing:
                self.stop()
