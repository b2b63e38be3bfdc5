"""Chat message model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pairtalk.models.enums import MessageKind, MessageStatus


class ChatMessage(BaseModel):
    """A chat message. The id is allocated durably before broadcast."""

    id: str
    room_id: str
    sender_id: str
    body: str = Field(min_length=1)
    sent_at: datetime
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.UNREAD
