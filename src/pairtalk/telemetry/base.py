"""Telemetry provider ABC, Span dataclass, SpanKind enum, and Attr constants."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class SpanKind(StrEnum):
    """Span classifications for telemetry."""

    DISPATCH = "pairtalk.dispatch"
    BROADCAST = "pairtalk.broadcast"
    CALL_TRANSITION = "pairtalk.call_transition"
    QUOTA_COMMIT = "pairtalk.quota_commit"
    EXPIRE_SWEEP = "pairtalk.expire_sweep"
    SESSION_TICK = "pairtalk.session_tick"
    CUSTOM = "custom"


class Attr:
    """Well-known attribute and metric names."""

    SESSION_ID = "session_id"
    PAIR_KEY = "pair_key"
    EVENT_TYPE = "event_type"
    ERROR_CODE = "error_code"

    DELIVERED = "broadcast.delivered"
    FAILED = "broadcast.failed"

    CALL_STATE = "call.state"
    CALL_END_REASON = "call.end_reason"
    CALL_DURATION_SECONDS = "call.duration_seconds"

    QUOTA_USED_SECONDS = "quota.used_seconds"
    QUOTA_CLAMPED = "quota.clamped"

    SWEEP_EXPIRED = "sweep.expired"


@dataclass
class Span:
    """Represents a telemetry span."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    kind: SpanKind = SpanKind.CUSTOM
    name: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    status: str = "ok"
    error_message: str | None = None
    room_id: str | None = None
    session_id: str | None = None

    @property
    def duration_ms(self) -> float | None:
        """Duration in milliseconds, or None if not yet ended."""
        if self.end_time is None:
            return None
        delta = self.end_time - self.start_time
        return delta.total_seconds() * 1000


class TelemetryProvider(ABC):
    """Abstract base class for telemetry providers.

    The default ``NoopTelemetryProvider`` has zero overhead.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for identification."""
        ...

    @abstractmethod
    def start_span(
        self,
        kind: SpanKind,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        room_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Start a new telemetry span and return its id."""
        ...

    @abstractmethod
    def end_span(
        self,
        span_id: str,
        *,
        status: str = "ok",
        error_message: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """End a previously started span."""
        ...

    @abstractmethod
    def record_metric(
        self,
        name: str,
        value: float,
        *,
        unit: str = "",
        attributes: dict[str, Any] | None = None,
    ) -> None:
        """Record a metric value."""
        ...

    def close(self) -> None:  # noqa: B027
        """Close the provider and flush any pending data."""

    @contextmanager
    def span(
        self,
        kind: SpanKind,
        name: str,
        **kwargs: Any,
    ) -> Generator[str, None, None]:
        """Context manager for span lifecycle.

        Yields the span ID and records error status if an exception escapes.
        """
        span_id = self.start_span(kind, name, **kwargs)
        try:
            yield span_id
            self.end_span(span_id)
        except Exception as exc:
            self.end_span(span_id, status="error", error_message=str(exc))
            raise
