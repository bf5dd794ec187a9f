"""Application-level event publishing contracts."""

from __future__ import annotations

from typing import Protocol

from podnorm.domain.events import DomainEvent


class EventPublisher(Protocol):
    """Port for publishing normalisation lifecycle events."""

    def publish(self, event: DomainEvent) -> None:
        """Publish a single event."""


class NullEventPublisher:
    """No-op publisher used when nobody listens for run events."""

    def publish(self, event: DomainEvent) -> None:  # noqa: ARG002
        return


class RecordingEventPublisher:
    """Keeps published events in memory, in order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)
