"""Observability events emitted by the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BatchDispatched:
    table: str
    size: int
    sequence: int
    at: str = field(default_factory=_now)


@dataclass(frozen=True)
class BatchWriteFailedEvent:
    table: str
    size: int
    failed: int
    error: str
    at: str = field(default_factory=_now)


@dataclass(frozen=True)
class StaleSlot:
    slot: int
    status: str
    age_seconds: float
    reports: int
    at: str = field(default_factory=_now)


@dataclass(frozen=True)
class ProtocolViolationEvent:
    slot: int
    detail: str
    at: str = field(default_factory=_now)


ObservabilityEvent = Union[BatchDispatched, BatchWriteFailedEvent, StaleSlot, ProtocolViolationEvent]
