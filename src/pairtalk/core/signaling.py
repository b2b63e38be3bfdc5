"""Call signaling controller running the invitation handshake."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from pairtalk.collaborators.base import MediaProvider, PersistenceService, RelationshipService
from pairtalk.core.errors import (
    AlreadyInProgressError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    QuotaExceededError,
)
from pairtalk.core.locks import InMemoryLockManager, KeyedLockManager
from pairtalk.core.quota import QuotaGate
from pairtalk.core.retry import retry_with_backoff
from pairtalk.core.router import RoomRouter
from pairtalk.core.scheduler import Clock, SystemClock
from pairtalk.core.state_machine import SYSTEM_USER_ID, Transition, transition
from pairtalk.core.writer import WriteBehind
from pairtalk.models.call import CallInvitation, CallSession, pair_key
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.enums import CallAction, CallDecision, EndReason, InvitationState
from pairtalk.models.events import CallInvited, OutboundEvent
from pairtalk.models.room import personal_room
from pairtalk.store.base import CallStore
from pairtalk.store.memory import InMemoryCallStore
from pairtalk.telemetry.base import Attr, SpanKind, TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.signaling")

TransitionListener = Callable[[Transition, CallSession | None], Awaitable[None]]


class InitiateResult(BaseModel):
    """Outcome of ``initiate``.

    ``delivered`` is ``False`` when the recipient had no live connection;
    the invitation is still pending and is redelivered on reconnect.
    """

    invitation: CallInvitation
    delivered: bool


def invited_event(invitation: CallInvitation) -> CallInvited:
    return CallInvited(
        session_id=invitation.session_id,
        call_id=invitation.call_id,
        caller_id=invitation.caller_id,
        expires_at=invitation.expires_at,
    )


class CallSignalingController:
    """Runs the call-invitation state machine.

    Every transition is computed by the pure ``transition`` function and
    committed with ``CallStore.compare_and_set`` keyed by session id.
    When two writers race (accept vs. expiry, two ``end`` calls) the
    first commit wins and the other raises ``InvalidStateError``.
    """

    def __init__(
        self,
        router: RoomRouter,
        quota: QuotaGate,
        relationships: RelationshipService,
        persistence: PersistenceService,
        media: MediaProvider | None = None,
        *,
        store: CallStore | None = None,
        clock: Clock | None = None,
        lock_manager: KeyedLockManager | None = None,
        config: PairTalkConfig | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        self._router = router
        self._quota = quota
        self._relationships = relationships
        self._persistence = persistence
        self._media = media
        self._store = store or InMemoryCallStore()
        self._clock = clock or SystemClock()
        self._locks = lock_manager or InMemoryLockManager()
        self._config = config or PairTalkConfig()
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._writer = WriteBehind("invitations")
        self._listeners: list[TransitionListener] = []

    @property
    def store(self) -> CallStore:
        return self._store

    @property
    def writer(self) -> WriteBehind:
        return self._writer

    def add_listener(self, listener: TransitionListener) -> None:
        """Register a coroutine called after every committed transition."""
        self._listeners.append(listener)

    # -- Handshake --

    async def initiate(self, caller_id: str, recipient_id: str) -> InitiateResult:
        """Create a pending invitation and ring the recipient.

        Raises:
            NotAuthorizedError: Self-call, or the users are not matched.
            AlreadyInProgressError: The pair already has a live invitation.
            QuotaExceededError: The pair used its monthly call time.
        """
        if caller_id == recipient_id:
            raise NotAuthorizedError("Cannot call yourself")
        if not await self._relationships.are_matched(caller_id, recipient_id):
            raise NotAuthorizedError(f"Users {caller_id} and {recipient_id} are not matched")

        key = pair_key(caller_id, recipient_id)
        async with self._locks.locked(f"pair:{key}"):
            active = await self._store.active_for_pair(key)
            if active is not None:
                raise AlreadyInProgressError(
                    f"A call between {key} is already {active.state}",
                    session_id=active.session_id,
                )
            if not await self._quota.authorize(key):
                raise QuotaExceededError(f"Monthly call time used up for {key}")

            call_id = await self._persistence.allocate_call_id()
            now = self._clock.now()
            invitation = CallInvitation(
                session_id=uuid4().hex,
                call_id=call_id,
                caller_id=caller_id,
                recipient_id=recipient_id,
                created_at=now,
                expires_at=now + timedelta(seconds=self._config.ring_timeout_seconds),
                updated_at=now,
            )
            if not await self._store.create_invitation(invitation):
                raise AlreadyInProgressError(f"A call between {key} is already in progress")

        self._writer.submit("save_invitation", self._persistence.save_invitation, invitation)
        result = await self._router.broadcast(
            personal_room(recipient_id), invited_event(invitation)
        )
        delivered = result.delivered > 0
        if delivered:
            logger.info(
                "Call %s: %s invited %s", invitation.session_id, caller_id, recipient_id
            )
        else:
            logger.info(
                "Call %s: %s is offline, invitation held for reconnect",
                invitation.session_id,
                recipient_id,
            )
        return InitiateResult(invitation=invitation, delivered=delivered)

    async def respond(
        self, session_id: str, responder_id: str, decision: CallDecision
    ) -> CallInvitation:
        """Accept or decline a pending invitation as its recipient.

        Raises:
            NotFoundError: Unknown session.
            InvalidStateError: Not pending, wrong responder, or lost a race.
        """
        invitation = await self._require(session_id)
        if decision == CallDecision.DECLINE:
            committed = await self._apply(invitation, CallAction.DECLINE, actor_id=responder_id)
            return committed.current

        now = self._clock.now()
        # Validate before claiming the session; the commit below re-checks.
        transition(invitation, CallAction.ACCEPT, actor_id=responder_id, now=now)

        session = CallSession(
            session_id=session_id,
            pair_key=invitation.pair_key,
            participant_ids=list(invitation.participant_ids),
            started_at=now,
        )
        # Only the first accept (e.g. of two devices) owns the session and media.
        if not await self._store.create_session(session):
            raise InvalidStateError(
                f"Call {session_id} is already being answered", session_id=session_id
            )

        join_reference = await self._open_media(session)
        if join_reference is not None:
            session = await self._store.put_session(
                session.model_copy(update={"join_reference": join_reference})
            )
        accepted = transition(
            invitation,
            CallAction.ACCEPT,
            actor_id=responder_id,
            now=now,
            join_reference=join_reference,
        )

        if not await self._store.compare_and_set(
            session_id, InvitationState.PENDING, accepted.current
        ):
            # Lost to expiry or cancel; the session and media are ours to undo.
            await self._store.delete_session(session_id)
            if join_reference is not None:
                await self._close_media(session_id)
            raise InvalidStateError(
                f"Call {session_id} is no longer pending", session_id=session_id
            )

        await self._after_commit(accepted, session)
        return accepted.current

    async def cancel(self, session_id: str, caller_id: str) -> CallInvitation:
        """Withdraw a pending invitation as its caller."""
        invitation = await self._require(session_id)
        committed = await self._apply(invitation, CallAction.CANCEL, actor_id=caller_id)
        return committed.current

    async def end(
        self,
        session_id: str,
        ender_id: str,
        reason: EndReason = EndReason.HANGUP,
    ) -> CallInvitation:
        """End an accepted call and charge its duration to the pair's quota.

        ``ender_id`` is a participant or ``SYSTEM_USER_ID`` for forced ends.
        The state commit happens first, so only one ``end`` ever charges
        usage. A usage commit that still fails after its retry is logged
        and the call ends regardless.
        """
        invitation = await self._require(session_id)
        session = await self._store.get_session(session_id)
        now = self._clock.now()
        started_at = session.started_at if session else (invitation.answered_at or now)
        duration = max((now - started_at).total_seconds(), 0.0)

        ended = transition(
            invitation,
            CallAction.END,
            actor_id=ender_id,
            now=now,
            reason=reason,
            duration_seconds=duration,
        )
        if not await self._store.compare_and_set(
            session_id, InvitationState.ACCEPTED, ended.current
        ):
            raise InvalidStateError(f"Call {session_id} is not active", session_id=session_id)

        try:
            await retry_with_backoff(
                self._quota.commit_usage,
                self._config.commit_retry,
                invitation.pair_key,
                duration,
                operation="quota commit",
                context={"pair_key": invitation.pair_key, "session_id": session_id},
            )
        except Exception:
            logger.exception(
                "Could not record %.1fs of usage for pair %s; call %s ended anyway",
                duration,
                invitation.pair_key,
                session_id,
            )

        removed = await self._store.delete_session(session_id)
        if removed is not None:
            removed = removed.model_copy(
                update={"ended_at": now, "accumulated_seconds": duration}
            )
            if removed.join_reference is not None:
                await self._close_media(session_id)

        self._telemetry.record_metric(
            "pairtalk.call.duration_seconds",
            duration,
            unit="s",
            attributes={Attr.CALL_END_REASON: str(reason)},
        )
        await self._after_commit(ended, removed)
        return ended.current

    async def expire_sweep(self) -> int:
        """Move pending invitations past their ring timeout to missed.

        Returns:
            The number of invitations this sweep expired.
        """
        now = self._clock.now()
        expired = 0
        with self._telemetry.span(SpanKind.EXPIRE_SWEEP, "signaling.expire_sweep"):
            for invitation in await self._store.list_expired(now):
                try:
                    await self._apply(invitation, CallAction.EXPIRE, actor_id=SYSTEM_USER_ID)
                except InvalidStateError:
                    logger.debug("Call %s answered before it expired", invitation.session_id)
                    continue
                expired += 1
        self._telemetry.record_metric(Attr.SWEEP_EXPIRED, expired)
        if expired:
            logger.info("Expired %d unanswered call(s)", expired)
        return expired

    # -- Presence --

    async def handle_user_offline(self, user_id: str) -> None:
        """Clean up after a user's last connection dropped.

        Outgoing pending invitations are canceled. Accepted calls end
        with ``participant_disconnected`` when configured to.
        """
        for invitation in await self._store.live_for_user(user_id):
            try:
                if (
                    invitation.state == InvitationState.PENDING
                    and invitation.caller_id == user_id
                ):
                    await self.cancel(invitation.session_id, user_id)
                elif (
                    invitation.state == InvitationState.ACCEPTED
                    and self._config.end_calls_on_disconnect
                ):
                    await self.end(
                        invitation.session_id,
                        SYSTEM_USER_ID,
                        EndReason.PARTICIPANT_DISCONNECTED,
                    )
            except InvalidStateError:
                logger.debug("Call %s settled before disconnect cleanup", invitation.session_id)

    async def pending_for(self, user_id: str) -> list[CallInvitation]:
        """Pending invitations addressed to *user_id*."""
        pending = await self._store.list_invitations(
            state=InvitationState.PENDING, user_id=user_id
        )
        return [inv for inv in pending if inv.recipient_id == user_id]

    async def get(self, session_id: str) -> CallInvitation:
        return await self._require(session_id)

    async def notify(self, user_ids: Iterable[str], event: OutboundEvent) -> None:
        """Deliver *event* to every connection of each user."""
        for user_id in user_ids:
            await self._router.broadcast(personal_room(user_id), event)

    async def close(self) -> None:
        await self._writer.close()

    # -- Internals --

    async def _require(self, session_id: str) -> CallInvitation:
        invitation = await self._store.get_invitation(session_id)
        if invitation is None:
            raise NotFoundError(f"Unknown call {session_id}", session_id=session_id)
        return invitation

    async def _apply(
        self, invitation: CallInvitation, action: CallAction, *, actor_id: str
    ) -> Transition:
        committed = transition(invitation, action, actor_id=actor_id, now=self._clock.now())
        if not await self._store.compare_and_set(
            invitation.session_id, invitation.state, committed.current
        ):
            raise InvalidStateError(
                f"Call {invitation.session_id} changed state concurrently",
                session_id=invitation.session_id,
            )
        await self._after_commit(committed, None)
        return committed

    async def _after_commit(self, committed: Transition, session: CallSession | None) -> None:
        current = committed.current
        logger.info(
            "Call %s: %s -> %s (%s)",
            current.session_id,
            committed.previous.state,
            current.state,
            committed.action,
        )
        attributes: dict[str, Any] = {Attr.CALL_STATE: str(current.state)}
        if current.end_reason is not None:
            attributes[Attr.CALL_END_REASON] = str(current.end_reason)
        if current.duration_seconds is not None:
            attributes[Attr.CALL_DURATION_SECONDS] = current.duration_seconds
        with self._telemetry.span(
            SpanKind.CALL_TRANSITION,
            f"call.{committed.action}",
            session_id=current.session_id,
            attributes=attributes,
        ):
            self._writer.submit("save_invitation", self._persistence.save_invitation, current)
            for listener in self._listeners:
                try:
                    await listener(committed, session)
                except Exception:
                    logger.exception("Transition listener failed for call %s", current.session_id)
            for notification in committed.notifications:
                await self._router.broadcast(
                    personal_room(notification.user_id), notification.event
                )

    async def _open_media(self, session: CallSession) -> str | None:
        if self._media is None:
            return None
        try:
            return await self._media.create_session(session)
        except Exception:
            logger.exception("Media provider failed to open call %s", session.session_id)
            return None

    async def _close_media(self, session_id: str) -> None:
        if self._media is None:
            return
        try:
            await self._media.close_session(session_id)
        except Exception:
            logger.exception("Media provider failed to close call %s", session_id)
