"""PairTalk - async coordination core for matched-pair chat and video calls."""

from pairtalk._version import __version__
from pairtalk.collaborators.base import MediaProvider, PersistenceService, RelationshipService
from pairtalk.collaborators.mock import (
    InMemoryPersistence,
    MockMediaProvider,
    MockRelationshipService,
)
from pairtalk.core.dispatcher import InboundDispatcher, RequestContext
from pairtalk.core.errors import (
    AlreadyInProgressError,
    BadRequestError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    PairTalkError,
    QuotaExceededError,
    TransportUnavailableError,
)
from pairtalk.core.framework import PairTalk
from pairtalk.core.locks import InMemoryLockManager, KeyedLockManager
from pairtalk.core.quota import QuotaGate
from pairtalk.core.registry import ConnectionRegistry
from pairtalk.core.router import BroadcastResult, RoomRouter
from pairtalk.core.scheduler import (
    AsyncioScheduler,
    Clock,
    ManualClock,
    ManualScheduler,
    Scheduler,
    SystemClock,
)
from pairtalk.core.sessions import SessionRegistry
from pairtalk.core.signaling import CallSignalingController, InitiateResult
from pairtalk.core.state_machine import SYSTEM_USER_ID, Notification, Transition, transition
from pairtalk.models.call import CallInvitation, CallSession, pair_key
from pairtalk.models.config import PairTalkConfig, RetryPolicy
from pairtalk.models.enums import (
    CallAction,
    CallDecision,
    EndReason,
    ErrorCode,
    InvitationState,
    MessageKind,
    MessageStatus,
)
from pairtalk.models.events import InboundEvent, OutboundEvent, parse_inbound
from pairtalk.models.message import ChatMessage
from pairtalk.models.quota import QuotaRecord, month_key
from pairtalk.models.room import Connection, Room, SendFn, personal_room
from pairtalk.store.base import CallStore, QuotaStore
from pairtalk.store.memory import InMemoryCallStore, InMemoryQuotaStore

__all__ = [
    "SYSTEM_USER_ID",
    "AlreadyInProgressError",
    "AsyncioScheduler",
    "BadRequestError",
    "BroadcastResult",
    "CallAction",
    "CallDecision",
    "CallInvitation",
    "CallSession",
    "CallSignalingController",
    "CallStore",
    "ChatMessage",
    "Clock",
    "Connection",
    "ConnectionRegistry",
    "EndReason",
    "ErrorCode",
    "InMemoryCallStore",
    "InMemoryLockManager",
    "InMemoryPersistence",
    "InMemoryQuotaStore",
    "InboundDispatcher",
    "InboundEvent",
    "InitiateResult",
    "InvalidStateError",
    "InvitationState",
    "KeyedLockManager",
    "ManualClock",
    "ManualScheduler",
    "MediaProvider",
    "MessageKind",
    "MessageStatus",
    "MockMediaProvider",
    "MockRelationshipService",
    "NotAuthorizedError",
    "NotFoundError",
    "Notification",
    "OutboundEvent",
    "PairTalk",
    "PairTalkConfig",
    "PairTalkError",
    "PersistenceService",
    "QuotaExceededError",
    "QuotaGate",
    "QuotaRecord",
    "QuotaStore",
    "RelationshipService",
    "RequestContext",
    "RetryPolicy",
    "Room",
    "RoomRouter",
    "Scheduler",
    "SendFn",
    "SessionRegistry",
    "SystemClock",
    "Transition",
    "TransportUnavailableError",
    "__version__",
    "month_key",
    "pair_key",
    "parse_inbound",
    "personal_room",
    "transition",
]
