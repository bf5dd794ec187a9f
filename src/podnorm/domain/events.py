"""Domain event contracts for normalisation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base domain event emitted by application services."""

    correlation_id: str
    payload_summary: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@dataclass(frozen=True, slots=True)
class NormalisationSkipped(DomainEvent):
    """Normalisation is disabled; no measurement was performed."""


@dataclass(frozen=True, slots=True)
class NormalisationMeasured(DomainEvent):
    """The measurement sub-pass produced a usable snapshot."""


@dataclass(frozen=True, slots=True)
class NormalisationDecided(DomainEvent):
    """Limiter ceiling and linear-mode target were decided."""


@dataclass(frozen=True, slots=True)
class NormalisationApplied(DomainEvent):
    """The apply sub-pass completed and its output was validated."""


@dataclass(frozen=True, slots=True)
class NormalisationFailed(DomainEvent):
    """Run terminated with an error."""
