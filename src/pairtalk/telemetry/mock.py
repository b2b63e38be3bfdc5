"""Recording telemetry provider for test assertions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pairtalk.telemetry.base import Span, SpanKind, TelemetryProvider


class MockTelemetryProvider(TelemetryProvider):
    """Keeps every finished span and every metric sample.

    Example::

        telemetry = MockTelemetryProvider()
        kit = PairTalk(relationships, telemetry=telemetry)
        # ... place and end a call ...
        assert telemetry.metric_values("pairtalk.call.duration_seconds") == [42.0]
    """

    def __init__(self) -> None:
        self._open: dict[str, Span] = {}
        self.completed_spans: list[Span] = []
        self.metrics: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def spans(self) -> list[Span]:
        return self.completed_spans

    @property
    def open_spans(self) -> list[Span]:
        """Spans started but not yet ended, e.g. after a leaked error path."""
        return list(self._open.values())

    def get_spans(self, kind: SpanKind) -> list[Span]:
        return [s for s in self.completed_spans if s.kind == kind]

    def spans_for_session(self, session_id: str) -> list[Span]:
        """Finished spans recorded against one call."""
        return [s for s in self.completed_spans if s.session_id == session_id]

    def get_metrics(self, name: str) -> list[dict[str, Any]]:
        return [m for m in self.metrics if m["name"] == name]

    def metric_values(self, name: str) -> list[float]:
        return [m["value"] for m in self.get_metrics(name)]

    def start_span(
        self,
        kind: SpanKind,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        room_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        span = Span(
            kind=kind,
            name=name,
            attributes=dict(attributes or {}),
            room_id=room_id,
            session_id=session_id,
        )
        self._open[span.id] = span
        return span.id

    def end_span(
        self,
        span_id: str,
        *,
        status: str = "ok",
        error_message: str | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        span = self._open.pop(span_id, None)
        if span is None:
            return
        span.end_time = datetime.now(UTC)
        span.status = status
        span.error_message = error_message
        span.attributes.update(attributes or {})
        self.completed_spans.append(span)

    def record_metric(
        self,
        name: str,
        value: float,
        *,
        unit: str = "",
        attributes: dict[str, Any] | None = None,
    ) -> None:
        self.metrics.append(
            {"name": name, "value": value, "unit": unit, "attributes": dict(attributes or {})}
        )

    def reset(self) -> None:
        """Forget all spans and metrics, including unfinished spans."""
        self._open.clear()
        self.completed_spans.clear()
        self.metrics.clear()
