"""Telemetry provider system for PairTalk."""

from pairtalk.telemetry.base import Attr, Span, SpanKind, TelemetryProvider
from pairtalk.telemetry.mock import MockTelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

__all__ = [
    "Attr",
    "MockTelemetryProvider",
    "NoopTelemetryProvider",
    "Span",
    "SpanKind",
    "TelemetryProvider",
]
