"""Quota gate enforcing the monthly call-time budget per pair."""

from __future__ import annotations

import logging

from pairtalk.core.locks import InMemoryLockManager, KeyedLockManager
from pairtalk.core.scheduler import Clock, SystemClock
from pairtalk.models.quota import QuotaRecord, month_key
from pairtalk.store.base import QuotaStore
from pairtalk.store.memory import InMemoryQuotaStore
from pairtalk.telemetry.base import Attr, SpanKind, TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.quota")


class QuotaGate:
    """Serializes per-pair monthly usage counters.

    Every read-modify-write of a pair's counter runs under the pair's
    lock, so two calls ending together cannot double-credit usage.
    Committed usage is clamped at the cap.
    """

    def __init__(
        self,
        store: QuotaStore | None = None,
        *,
        cap_seconds: float = 300.0,
        clock: Clock | None = None,
        lock_manager: KeyedLockManager | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        if cap_seconds <= 0:
            raise ValueError("cap_seconds must be positive")
        self._store = store or InMemoryQuotaStore()
        self._cap_seconds = cap_seconds
        self._clock = clock or SystemClock()
        self._locks = lock_manager or InMemoryLockManager()
        self._telemetry = telemetry or NoopTelemetryProvider()

    @property
    def cap_seconds(self) -> float:
        return self._cap_seconds

    def current_month(self) -> str:
        return month_key(self._clock.now())

    async def usage(self, pair_key: str) -> QuotaRecord:
        """Return this month's record; an unseen month reads as zero usage."""
        month = self.current_month()
        record = await self._store.get_record(pair_key, month)
        if record is None:
            return QuotaRecord(pair_key=pair_key, month_key=month, cap_seconds=self._cap_seconds)
        return record

    async def remaining_seconds(self, pair_key: str) -> float:
        record = await self.usage(pair_key)
        return max(self._cap_seconds - record.used_seconds, 0.0)

    async def authorize(self, pair_key: str) -> bool:
        """Return ``False`` once the pair has used its whole monthly budget."""
        record = await self.usage(pair_key)
        return record.used_seconds < self._cap_seconds

    async def commit_usage(self, pair_key: str, seconds: float) -> QuotaRecord:
        """Add *seconds* to this month's usage, clamped at the cap."""
        if seconds < 0:
            raise ValueError("seconds must be non-negative")

        span_id = self._telemetry.start_span(
            SpanKind.QUOTA_COMMIT,
            "quota.commit_usage",
            attributes={Attr.PAIR_KEY: pair_key},
        )
        try:
            async with self._locks.locked(f"quota:{pair_key}"):
                current = await self.usage(pair_key)
                requested = current.used_seconds + seconds
                used = min(requested, self._cap_seconds)
                record = await self._store.put_record(
                    current.model_copy(
                        update={"used_seconds": used, "cap_seconds": self._cap_seconds}
                    )
                )
        except Exception as exc:
            self._telemetry.end_span(span_id, status="error", error_message=str(exc))
            raise

        clamped = requested > self._cap_seconds
        if clamped:
            logger.info(
                "Quota for pair %s clamped at cap (%.1fs requested, %.1fs cap)",
                pair_key,
                requested,
                self._cap_seconds,
            )
        self._telemetry.end_span(
            span_id,
            attributes={Attr.QUOTA_USED_SECONDS: used, Attr.QUOTA_CLAMPED: clamped},
        )
        self._telemetry.record_metric(
            "pairtalk.quota.committed_seconds",
            used - current.used_seconds,
            unit="s",
            attributes={Attr.PAIR_KEY: pair_key},
        )
        return record
