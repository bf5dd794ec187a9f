"""Logging-backed implementation of the event publisher."""

from __future__ import annotations

import logging

from podnorm.domain.events import DomainEvent, NormalisationFailed

LOGGER = logging.getLogger("podnorm.events")


class LoggingEventPublisher:
    """Emit normalisation events as structured log records."""

    def publish(self, event: DomainEvent) -> None:
        level = logging.WARNING if isinstance(event, NormalisationFailed) else logging.INFO
        LOGGER.log(
            level,
            "normalisation_event_emitted",
            extra={
                "event_name": type(event).__name__,
                "correlation_id": event.correlation_id,
                "payload_summary": event.payload_summary,
                "occurred_at": event.occurred_at.isoformat(),
            },
        )
