"""Wire protocol models for inbound and outbound events."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from pairtalk.models.enums import CallDecision, EndReason, ErrorCode, MessageKind

# -- Inbound ------------------------------------------------------------------


class JoinRoom(BaseModel):
    type: Literal["join_room"] = "join_room"
    room_id: str = Field(min_length=1)


class LeaveRoom(BaseModel):
    type: Literal["leave_room"] = "leave_room"
    room_id: str = Field(min_length=1)


class SendMessage(BaseModel):
    type: Literal["send_message"] = "send_message"
    room_id: str = Field(min_length=1)
    body: str


class MarkRead(BaseModel):
    """Marks every message in a room as read by the sender."""

    type: Literal["mark_read"] = "mark_read"
    room_id: str = Field(min_length=1)


class CallInitiate(BaseModel):
    type: Literal["call_initiate"] = "call_initiate"
    recipient_id: str = Field(min_length=1, pattern=r"^[^:]+$")


class CallRespond(BaseModel):
    type: Literal["call_respond"] = "call_respond"
    session_id: str
    decision: CallDecision


class CallCancel(BaseModel):
    type: Literal["call_cancel"] = "call_cancel"
    session_id: str


class CallEnd(BaseModel):
    type: Literal["call_end"] = "call_end"
    session_id: str


class Ping(BaseModel):
    type: Literal["ping"] = "ping"


InboundEvent = Annotated[
    JoinRoom
    | LeaveRoom
    | SendMessage
    | MarkRead
    | CallInitiate
    | CallRespond
    | CallCancel
    | CallEnd
    | Ping,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(data: str | bytes | dict[str, Any]) -> InboundEvent:
    """Validate a raw client payload into a typed inbound event.

    Raises:
        pydantic.ValidationError: If the payload is malformed.
    """
    if isinstance(data, str | bytes):
        return _inbound_adapter.validate_json(data)
    return _inbound_adapter.validate_python(data)


# -- Outbound -----------------------------------------------------------------


class RoomJoined(BaseModel):
    type: Literal["room_joined"] = "room_joined"
    room_id: str


class RoomLeft(BaseModel):
    type: Literal["room_left"] = "room_left"
    room_id: str


class MessageDelivered(BaseModel):
    type: Literal["message_delivered"] = "message_delivered"
    room_id: str
    message_id: str
    sender_id: str
    body: str
    sent_at: datetime
    kind: MessageKind = MessageKind.TEXT


class MessageSent(BaseModel):
    """Acknowledges a ``send_message`` to the sending connection."""

    type: Literal["message_sent"] = "message_sent"
    room_id: str
    message_id: str
    sent_at: datetime


class MessagesRead(BaseModel):
    type: Literal["messages_read"] = "messages_read"
    room_id: str
    reader_id: str
    read_at: datetime


class CallInitiated(BaseModel):
    """Acknowledges a ``call_initiate`` to the caller."""

    type: Literal["call_initiated"] = "call_initiated"
    session_id: str
    call_id: str
    recipient_id: str
    expires_at: datetime


class CallInvited(BaseModel):
    type: Literal["call_invited"] = "call_invited"
    session_id: str
    call_id: str
    caller_id: str
    expires_at: datetime


class CallAccepted(BaseModel):
    type: Literal["call_accepted"] = "call_accepted"
    session_id: str
    join_reference: str | None = None


class CallDeclined(BaseModel):
    type: Literal["call_declined"] = "call_declined"
    session_id: str


class CallCanceled(BaseModel):
    type: Literal["call_canceled"] = "call_canceled"
    session_id: str


class CallMissed(BaseModel):
    type: Literal["call_missed"] = "call_missed"
    session_id: str


class CallEnded(BaseModel):
    type: Literal["call_ended"] = "call_ended"
    session_id: str
    duration_seconds: float
    reason: EndReason


class QuotaWarning(BaseModel):
    type: Literal["quota_warning"] = "quota_warning"
    pair_key: str
    remaining_seconds: float


class Pong(BaseModel):
    type: Literal["pong"] = "pong"
    connection_id: str
    user_connections: int
    total_connections: int


class ErrorEvent(BaseModel):
    """Sent to the requesting connection only."""

    type: Literal["error"] = "error"
    code: ErrorCode
    message: str
    request_type: str | None = None
    session_id: str | None = None


OutboundEvent = (
    RoomJoined
    | RoomLeft
    | MessageDelivered
    | MessageSent
    | MessagesRead
    | CallInitiated
    | CallInvited
    | CallAccepted
    | CallDeclined
    | CallCanceled
    | CallMissed
    | CallEnded
    | QuotaWarning
    | Pong
    | ErrorEvent
)
