"""Telemetry provider used when none is configured."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from pairtalk.telemetry.base import SpanKind, TelemetryProvider


class NoopTelemetryProvider(TelemetryProvider):
    """Discards spans and metrics.

    Dispatch, broadcast, and the scheduled sweeps open spans on every
    call, so ``span`` skips the start/end bookkeeping entirely.
    """

    @property
    def name(self) -> str:
        return "noop"

    def start_span(self, kind: SpanKind, name: str, **_: Any) -> str:
        return ""

    def end_span(self, span_id: str, **_: Any) -> None:
        return None

    def record_metric(self, name: str, value: float, **_: Any) -> None:
        return None

    @contextmanager
    def span(self, kind: SpanKind, name: str, **_: Any) -> Generator[str, None, None]:
        yield ""
