"""Session registry force-ending calls that run out of time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from pairtalk.core.errors import InvalidStateError, NotFoundError
from pairtalk.core.quota import QuotaGate
from pairtalk.core.scheduler import Clock, SystemClock
from pairtalk.core.signaling import CallSignalingController
from pairtalk.core.state_machine import SYSTEM_USER_ID, Transition
from pairtalk.models.call import CallSession
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.enums import EndReason, InvitationState
from pairtalk.models.events import QuotaWarning
from pairtalk.telemetry.base import Attr, SpanKind, TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.sessions")


@dataclass
class TrackedSession:
    session_id: str
    pair_key: str
    started_at: datetime
    participant_ids: tuple[str, ...] = ()
    warned: bool = False


class SessionRegistry:
    """Tracks accepted calls and ends them when their budget runs out.

    Subscribes to the controller, so accepted calls are tracked and ended
    calls untracked without callers doing anything. ``tick`` is driven
    by the scheduler.
    """

    def __init__(
        self,
        controller: CallSignalingController,
        quota: QuotaGate,
        *,
        clock: Clock | None = None,
        config: PairTalkConfig | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        self._controller = controller
        self._quota = quota
        self._clock = clock or SystemClock()
        self._config = config or PairTalkConfig()
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._sessions: dict[str, TrackedSession] = {}
        controller.add_listener(self._on_transition)

    @property
    def active_session_ids(self) -> list[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> TrackedSession | None:
        return self._sessions.get(session_id)

    def track(
        self,
        session_id: str,
        pair_key: str,
        started_at: datetime,
        participant_ids: tuple[str, ...] = (),
    ) -> None:
        self._sessions[session_id] = TrackedSession(
            session_id=session_id,
            pair_key=pair_key,
            started_at=started_at,
            participant_ids=participant_ids,
        )

    def untrack(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def tick(self) -> list[tuple[str, EndReason]]:
        """Check every active call once.

        Monthly quota takes precedence over the per-call ceiling when
        both are reached on the same tick.

        Returns:
            The ``(session_id, reason)`` pairs this tick force-ended.
        """
        now = self._clock.now()
        forced: list[tuple[str, EndReason]] = []
        with self._telemetry.span(SpanKind.SESSION_TICK, "sessions.tick"):
            for tracked in list(self._sessions.values()):
                elapsed = (now - tracked.started_at).total_seconds()
                remaining_quota = await self._quota.remaining_seconds(tracked.pair_key)

                reason: EndReason | None = None
                if elapsed >= remaining_quota:
                    reason = EndReason.QUOTA_EXHAUSTED
                elif elapsed >= self._config.call_ceiling_seconds:
                    reason = EndReason.TIME_LIMIT_REACHED
                if reason is not None:
                    if await self._force_end(tracked, reason):
                        forced.append((tracked.session_id, reason))
                    continue

                budget = min(remaining_quota, self._config.call_ceiling_seconds) - elapsed
                if not tracked.warned and budget <= self._config.quota_warning_seconds:
                    tracked.warned = True
                    await self._controller.notify(
                        tracked.participant_ids,
                        QuotaWarning(pair_key=tracked.pair_key, remaining_seconds=budget),
                    )
        return forced

    async def _force_end(self, tracked: TrackedSession, reason: EndReason) -> bool:
        logger.info("Force-ending call %s: %s", tracked.session_id, reason)
        try:
            await self._controller.end(tracked.session_id, SYSTEM_USER_ID, reason)
        except (InvalidStateError, NotFoundError):
            logger.debug("Call %s already ended", tracked.session_id)
            self.untrack(tracked.session_id)
            return False
        self._telemetry.record_metric(
            "pairtalk.sessions.forced_end",
            1,
            attributes={Attr.SESSION_ID: tracked.session_id, Attr.CALL_END_REASON: str(reason)},
        )
        return True

    async def _on_transition(self, committed: Transition, session: CallSession | None) -> None:
        current = committed.current
        if current.state == InvitationState.ACCEPTED and session is not None:
            self.track(
                session.session_id,
                session.pair_key,
                session.started_at,
                tuple(session.participant_ids),
            )
        elif current.state == InvitationState.ENDED:
            self.untrack(current.session_id)
