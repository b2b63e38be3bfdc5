"""Inbound event dispatch table."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from pairtalk.collaborators.base import PersistenceService
from pairtalk.core.errors import (
    BadRequestError,
    NotAuthorizedError,
    PairTalkError,
    TransportUnavailableError,
)
from pairtalk.core.registry import ConnectionRegistry
from pairtalk.core.router import RoomRouter
from pairtalk.core.scheduler import Clock, SystemClock
from pairtalk.core.signaling import CallSignalingController
from pairtalk.core.writer import WriteBehind
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.enums import EndReason, ErrorCode
from pairtalk.models.events import (
    CallCancel,
    CallEnd,
    CallInitiate,
    CallInitiated,
    CallRespond,
    ErrorEvent,
    JoinRoom,
    LeaveRoom,
    MarkRead,
    MessageDelivered,
    MessageSent,
    MessagesRead,
    OutboundEvent,
    Ping,
    Pong,
    RoomJoined,
    RoomLeft,
    SendMessage,
    parse_inbound,
)
from pairtalk.models.message import ChatMessage
from pairtalk.models.room import PERSONAL_ROOM_PREFIX
from pairtalk.telemetry.base import Attr, SpanKind, TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.dispatcher")


@dataclass(frozen=True)
class RequestContext:
    """Who sent an inbound event."""

    connection_id: str
    user_id: str


InboundHandler = Callable[[RequestContext, Any], Awaitable[list[OutboundEvent]]]


def error_event(exc: PairTalkError, request_type: str | None = None) -> ErrorEvent:
    """Render a service error as the wire ``error`` event."""
    return ErrorEvent(
        code=exc.code,
        message=str(exc),
        request_type=request_type,
        session_id=exc.session_id,
    )


class InboundDispatcher:
    """Maps inbound event types to handlers.

    A handler returns the replies owed to the requesting connection;
    anything addressed to other users goes through the router. Errors
    never escape ``dispatch``: they become an ``error`` event sent to the
    requester only.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: RoomRouter,
        controller: CallSignalingController,
        persistence: PersistenceService,
        *,
        clock: Clock | None = None,
        config: PairTalkConfig | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        self._registry = registry
        self._router = router
        self._controller = controller
        self._persistence = persistence
        self._clock = clock or SystemClock()
        self._config = config or PairTalkConfig()
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._writer = WriteBehind("messages")
        self._handlers: dict[str, InboundHandler] = {
            "join_room": self._on_join_room,
            "leave_room": self._on_leave_room,
            "send_message": self._on_send_message,
            "mark_read": self._on_mark_read,
            "call_initiate": self._on_call_initiate,
            "call_respond": self._on_call_respond,
            "call_cancel": self._on_call_cancel,
            "call_end": self._on_call_end,
            "ping": self._on_ping,
        }

    @property
    def writer(self) -> WriteBehind:
        return self._writer

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, event_type: str, handler: InboundHandler) -> None:
        """Add or replace the handler for *event_type*."""
        self._handlers[event_type] = handler

    async def dispatch(
        self, connection_id: str, payload: str | bytes | dict[str, Any]
    ) -> list[OutboundEvent]:
        """Handle one inbound payload and send the replies to the requester.

        Returns:
            The replies that were sent.
        """
        connection = self._registry.get(connection_id)
        if connection is None:
            logger.warning("Dropping event from unknown connection %s", connection_id)
            return [ErrorEvent(code=ErrorCode.NOT_FOUND, message="Unknown connection")]

        replies = await self._handle(RequestContext(connection_id, connection.user_id), payload)
        for reply in replies:
            await self._router.send_to_connection(connection_id, reply)
        return replies

    async def _handle(
        self, ctx: RequestContext, payload: str | bytes | dict[str, Any]
    ) -> list[OutboundEvent]:
        try:
            event = parse_inbound(payload)
        except ValidationError as exc:
            request_type = payload.get("type") if isinstance(payload, dict) else None
            logger.debug("Malformed event from %s: %s", ctx.connection_id, exc)
            return [
                ErrorEvent(
                    code=ErrorCode.BAD_REQUEST,
                    message=f"Malformed event: {exc.error_count()} validation error(s)",
                    request_type=str(request_type) if request_type is not None else None,
                )
            ]

        handler = self._handlers.get(event.type)
        if handler is None:
            return [
                ErrorEvent(
                    code=ErrorCode.BAD_REQUEST,
                    message=f"Unsupported event {event.type}",
                    request_type=event.type,
                )
            ]

        span_id = self._telemetry.start_span(
            SpanKind.DISPATCH,
            f"dispatch.{event.type}",
            attributes={Attr.EVENT_TYPE: event.type},
        )
        try:
            replies = await handler(ctx, event)
        except PairTalkError as exc:
            self._telemetry.end_span(
                span_id,
                status="error",
                error_message=str(exc),
                attributes={Attr.ERROR_CODE: str(exc.code)},
            )
            logger.info("Rejected %s from %s: %s", event.type, ctx.user_id, exc)
            return [error_event(exc, event.type)]
        except Exception as exc:
            self._telemetry.end_span(span_id, status="error", error_message=str(exc))
            logger.exception("Handler for %s failed", event.type)
            return [
                ErrorEvent(
                    code=ErrorCode.INTERNAL,
                    message="Internal error",
                    request_type=event.type,
                )
            ]
        self._telemetry.end_span(span_id)
        return replies

    async def close(self) -> None:
        await self._writer.close()

    # -- Rooms and chat --

    async def _on_join_room(self, ctx: RequestContext, event: JoinRoom) -> list[OutboundEvent]:
        room = await self._registry.join_room(ctx.connection_id, event.room_id)
        return [RoomJoined(room_id=room.id)]

    async def _on_leave_room(self, ctx: RequestContext, event: LeaveRoom) -> list[OutboundEvent]:
        room = await self._registry.leave_room(ctx.connection_id, event.room_id)
        return [RoomLeft(room_id=room.id)]

    def _require_member(self, ctx: RequestContext, room_id: str) -> None:
        if room_id.startswith(PERSONAL_ROOM_PREFIX) or not self._registry.is_member(
            ctx.user_id, room_id
        ):
            raise NotAuthorizedError(f"Join room {room_id} before using it")

    async def _on_send_message(
        self, ctx: RequestContext, event: SendMessage
    ) -> list[OutboundEvent]:
        self._require_member(ctx, event.room_id)
        body = event.body.strip()
        if not body:
            raise BadRequestError("Message body is empty")
        if len(body) > self._config.max_message_length:
            raise BadRequestError(
                f"Message exceeds {self._config.max_message_length} characters"
            )

        message = ChatMessage(
            id=await self._persistence.allocate_message_id(),
            room_id=event.room_id,
            sender_id=ctx.user_id,
            body=body,
            sent_at=self._clock.now(),
        )
        self._writer.submit("save_message", self._persistence.save_message, message)
        await self._router.broadcast(
            message.room_id,
            MessageDelivered(
                room_id=message.room_id,
                message_id=message.id,
                sender_id=message.sender_id,
                body=message.body,
                sent_at=message.sent_at,
                kind=message.kind,
            ),
            exclude_connection_id=ctx.connection_id,
        )
        return [
            MessageSent(room_id=message.room_id, message_id=message.id, sent_at=message.sent_at)
        ]

    async def _on_mark_read(self, ctx: RequestContext, event: MarkRead) -> list[OutboundEvent]:
        self._require_member(ctx, event.room_id)
        read_at = self._clock.now()
        updated = await self._persistence.mark_read(event.room_id, ctx.user_id, read_at)
        logger.debug("%s read %d message(s) in %s", ctx.user_id, updated, event.room_id)
        await self._router.broadcast(
            event.room_id,
            MessagesRead(room_id=event.room_id, reader_id=ctx.user_id, read_at=read_at),
        )
        return []

    # -- Calls --

    async def _on_call_initiate(
        self, ctx: RequestContext, event: CallInitiate
    ) -> list[OutboundEvent]:
        result = await self._controller.initiate(ctx.user_id, event.recipient_id)
        invitation = result.invitation
        replies: list[OutboundEvent] = [
            CallInitiated(
                session_id=invitation.session_id,
                call_id=invitation.call_id,
                recipient_id=invitation.recipient_id,
                expires_at=invitation.expires_at,
            )
        ]
        if not result.delivered:
            offline = TransportUnavailableError(
                f"{invitation.recipient_id} is offline; invitation held for reconnect",
                session_id=invitation.session_id,
            )
            replies.append(error_event(offline, event.type))
        return replies

    async def _on_call_respond(
        self, ctx: RequestContext, event: CallRespond
    ) -> list[OutboundEvent]:
        await self._controller.respond(event.session_id, ctx.user_id, event.decision)
        return []

    async def _on_call_cancel(self, ctx: RequestContext, event: CallCancel) -> list[OutboundEvent]:
        await self._controller.cancel(event.session_id, ctx.user_id)
        return []

    async def _on_call_end(self, ctx: RequestContext, event: CallEnd) -> list[OutboundEvent]:
        await self._controller.end(event.session_id, ctx.user_id, EndReason.HANGUP)
        return []

    async def _on_ping(self, ctx: RequestContext, event: Ping) -> list[OutboundEvent]:
        return [
            Pong(
                connection_id=ctx.connection_id,
                user_connections=len(self._registry.connections_for(ctx.user_id)),
                total_connections=self._registry.connection_count,
            )
        ]
