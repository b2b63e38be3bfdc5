"""PairTalk - central orchestrator for chat fan-out and call signaling."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pairtalk.collaborators.base import MediaProvider, PersistenceService, RelationshipService
from pairtalk.collaborators.mock import InMemoryPersistence
from pairtalk.core.dispatcher import InboundDispatcher
from pairtalk.core.locks import InMemoryLockManager, KeyedLockManager
from pairtalk.core.quota import QuotaGate
from pairtalk.core.registry import ConnectionRegistry
from pairtalk.core.router import RoomRouter
from pairtalk.core.scheduler import AsyncioScheduler, Clock, Scheduler, SystemClock
from pairtalk.core.sessions import SessionRegistry
from pairtalk.core.signaling import CallSignalingController, invited_event
from pairtalk.models.config import PairTalkConfig
from pairtalk.models.events import OutboundEvent
from pairtalk.models.room import Connection, SendFn
from pairtalk.store.base import CallStore, QuotaStore
from pairtalk.telemetry.base import TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.framework")


class PairTalk:
    """Wires the registry, router, controller, quota gate, and session registry.

    One instance per process. Every service is constructed here and
    passed by handle; nothing is stored in module globals.

    Example::

        async with PairTalk(relationships=my_relationships) as kit:
            await kit.connect("conn-1", "alice", websocket_send)
            await kit.handle("conn-1", {"type": "join_room", "room_id": "r1"})
    """

    def __init__(
        self,
        relationships: RelationshipService,
        *,
        persistence: PersistenceService | None = None,
        media: MediaProvider | None = None,
        config: PairTalkConfig | None = None,
        call_store: CallStore | None = None,
        quota_store: QuotaStore | None = None,
        lock_manager: KeyedLockManager | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            relationships: Authorizes room joins and calls between users.
            persistence: Durable id allocation and storage. Defaults to
                ``InMemoryPersistence``.
            media: Third-party video provider. Without one, accepted calls
                carry no join reference.
            config: Quota, timeout, and delivery settings.
            call_store: Invitation and session storage. Defaults to
                ``InMemoryCallStore``; supply a distributed implementation
                for multi-instance deployments.
            quota_store: Usage counter storage. Defaults to
                ``InMemoryQuotaStore``.
            lock_manager: Per-key locking backend. Defaults to
                ``InMemoryLockManager``.
            clock: Time source. Defaults to ``SystemClock``.
            scheduler: Runs the expiry sweep and session tick. Defaults to
                ``AsyncioScheduler``.
            telemetry: Span and metric collection. Defaults to
                ``NoopTelemetryProvider``.
        """
        self._config = config or PairTalkConfig()
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or AsyncioScheduler()
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._persistence = persistence or InMemoryPersistence()
        locks = lock_manager or InMemoryLockManager()

        self._registry = ConnectionRegistry(relationships)
        self._router = RoomRouter(
            self._registry,
            max_consecutive_errors=self._config.max_consecutive_send_errors,
            on_drop=self._on_connection_dropped,
            telemetry=self._telemetry,
        )
        self._quota = QuotaGate(
            quota_store,
            cap_seconds=self._config.monthly_cap_seconds,
            clock=self._clock,
            lock_manager=locks,
            telemetry=self._telemetry,
        )
        self._controller = CallSignalingController(
            self._router,
            self._quota,
            relationships,
            self._persistence,
            media,
            store=call_store,
            clock=self._clock,
            lock_manager=locks,
            config=self._config,
            telemetry=self._telemetry,
        )
        self._sessions = SessionRegistry(
            self._controller,
            self._quota,
            clock=self._clock,
            config=self._config,
            telemetry=self._telemetry,
        )
        self._dispatcher = InboundDispatcher(
            self._registry,
            self._router,
            self._controller,
            self._persistence,
            clock=self._clock,
            config=self._config,
            telemetry=self._telemetry,
        )
        self._background: set[asyncio.Task[Any]] = set()
        self._started = False

    @property
    def config(self) -> PairTalkConfig:
        return self._config

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def router(self) -> RoomRouter:
        return self._router

    @property
    def quota(self) -> QuotaGate:
        return self._quota

    @property
    def controller(self) -> CallSignalingController:
        return self._controller

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def dispatcher(self) -> InboundDispatcher:
        return self._dispatcher

    @property
    def persistence(self) -> PersistenceService:
        return self._persistence

    @property
    def telemetry(self) -> TelemetryProvider:
        return self._telemetry

    # -- Lifecycle --

    async def start(self) -> None:
        """Schedule the ring-timeout sweep and the session tick."""
        if self._started:
            return
        self._started = True
        self._scheduler.every(
            "expire_sweep", self._config.sweep_interval_seconds, self._controller.expire_sweep
        )
        self._scheduler.every(
            "session_tick", self._config.tick_interval_seconds, self._sessions.tick
        )
        await self._scheduler.start()

    async def close(self) -> None:
        """Stop timers, flush pending writes, and stop room dispatchers."""
        await self._scheduler.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._dispatcher.close()
        await self._controller.close()
        await self._router.close()
        self._telemetry.close()
        self._started = False

    async def __aenter__(self) -> PairTalk:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Transport surface --

    async def connect(self, connection_id: str, user_id: str, send_fn: SendFn) -> Connection:
        """Register a transport connection and replay invitations still ringing."""
        connection = self._registry.register(connection_id, user_id, send_fn)
        for invitation in await self._controller.pending_for(user_id):
            await self._router.send_to_connection(connection_id, invited_event(invitation))
        return connection

    async def disconnect(self, connection_id: str) -> None:
        """Unregister a connection; cleans up calls when it was the user's last."""
        connection = self._registry.unregister(connection_id)
        self._router.forget(connection_id)
        if connection is None:
            return
        if not self._registry.is_online(connection.user_id):
            await self._controller.handle_user_offline(connection.user_id)

    async def handle(
        self, connection_id: str, payload: str | bytes | dict[str, Any]
    ) -> list[OutboundEvent]:
        """Dispatch one inbound client payload; replies go to that connection."""
        return await self._dispatcher.dispatch(connection_id, payload)

    def _on_connection_dropped(self, connection: Connection) -> None:
        if self._registry.is_online(connection.user_id):
            return
        task = asyncio.create_task(self._controller.handle_user_offline(connection.user_id))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background cleanup failed", exc_info=task.exception())
