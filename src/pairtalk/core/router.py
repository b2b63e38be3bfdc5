"""Room router delivering events to every live connection of a room."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel

from pairtalk.core.registry import ConnectionRegistry
from pairtalk.models.events import OutboundEvent
from pairtalk.models.room import Connection
from pairtalk.telemetry.base import Attr, SpanKind, TelemetryProvider
from pairtalk.telemetry.noop import NoopTelemetryProvider

logger = logging.getLogger("pairtalk.router")


class BroadcastResult(BaseModel):
    """Outcome of one broadcast."""

    room_id: str
    delivered: int = 0
    failed: int = 0


@dataclass
class _Delivery:
    event: OutboundEvent
    exclude_connection_id: str | None
    future: asyncio.Future[BroadcastResult]


DeliverFn = Callable[[str, _Delivery], Awaitable[BroadcastResult]]


class _RoomDispatcher:
    """Single serialized dispatch path for one room.

    Deliveries are drained strictly in submission order. The drain task
    exits once the queue is empty and is recreated by the next submit.
    """

    def __init__(self, room_id: str, deliver: DeliverFn, on_idle: Callable[[str], None]) -> None:
        self.room_id = room_id
        self._deliver = deliver
        self._on_idle = on_idle
        self._queue: deque[_Delivery] = deque()
        self._task: asyncio.Task[None] | None = None

    def submit(self, delivery: _Delivery) -> None:
        self._queue.append(delivery)
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"pairtalk:room:{self.room_id}")

    @property
    def idle(self) -> bool:
        return self._task is None and not self._queue

    async def _run(self) -> None:
        try:
            while self._queue:
                delivery = self._queue.popleft()
                try:
                    result = await self._deliver(self.room_id, delivery)
                except Exception as exc:
                    logger.exception("Broadcast to room %s failed", self.room_id)
                    if not delivery.future.done():
                        delivery.future.set_exception(exc)
                else:
                    if not delivery.future.done():
                        delivery.future.set_result(result)
        finally:
            self._task = None
            if not self._queue:
                self._on_idle(self.room_id)

    async def stop(self) -> None:
        for delivery in self._queue:
            delivery.future.cancel()
        self._queue.clear()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


class RoomRouter:
    """Fans events out to rooms with per-room total ordering.

    Delivery is best-effort: a failed send is not retried, and a
    connection that fails ``max_consecutive_errors`` sends in a row is
    unregistered. Clients that reconnect pull missed history from the
    persistence service and dedupe by message or call id.

    Transports must not await ``broadcast`` to the same room from inside
    their send function; that would wait on the dispatcher it runs in.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        max_consecutive_errors: int = 3,
        on_drop: Callable[[Connection], None] | None = None,
        telemetry: TelemetryProvider | None = None,
    ) -> None:
        self._registry = registry
        self._max_consecutive_errors = max_consecutive_errors
        self._on_drop = on_drop
        self._telemetry = telemetry or NoopTelemetryProvider()
        self._dispatchers: dict[str, _RoomDispatcher] = {}
        self._error_counts: dict[str, int] = {}
        self._closed = False

    @property
    def active_rooms(self) -> int:
        return len(self._dispatchers)

    async def broadcast(
        self,
        room_id: str,
        event: OutboundEvent,
        exclude_connection_id: str | None = None,
    ) -> BroadcastResult:
        """Deliver *event* to every live connection of every room member.

        Returns once this event has been handed to every recipient. Events
        broadcast to the same room are delivered in the order submitted.
        """
        if self._closed:
            return BroadcastResult(room_id=room_id)

        future: asyncio.Future[BroadcastResult] = asyncio.get_running_loop().create_future()
        dispatcher = self._dispatchers.get(room_id)
        if dispatcher is None:
            dispatcher = _RoomDispatcher(room_id, self._deliver, self._release)
            self._dispatchers[room_id] = dispatcher
        dispatcher.submit(_Delivery(event, exclude_connection_id, future))
        return await future

    async def send_to_connection(self, connection_id: str, event: OutboundEvent) -> bool:
        """Send *event* to one connection, e.g. a reply to the requester."""
        connection = self._registry.get(connection_id)
        if connection is None or self._closed:
            return False
        return await self._send(connection, event)

    def error_count(self, connection_id: str) -> int:
        """Consecutive failed sends to *connection_id* since its last success."""
        return self._error_counts.get(connection_id, 0)

    def forget(self, connection_id: str) -> None:
        """Drop send-failure state for a connection that has gone away."""
        self._error_counts.pop(connection_id, None)

    async def close(self) -> None:
        self._closed = True
        for dispatcher in list(self._dispatchers.values()):
            await dispatcher.stop()
        self._dispatchers.clear()
        self._error_counts.clear()

    def _release(self, room_id: str) -> None:
        dispatcher = self._dispatchers.get(room_id)
        if dispatcher is not None and dispatcher.idle:
            del self._dispatchers[room_id]

    async def _deliver(self, room_id: str, delivery: _Delivery) -> BroadcastResult:
        result = BroadcastResult(room_id=room_id)
        span_id = self._telemetry.start_span(
            SpanKind.BROADCAST,
            f"broadcast.{delivery.event.type}",
            room_id=room_id,
            attributes={Attr.EVENT_TYPE: delivery.event.type},
        )
        try:
            for connection in self._registry.recipients(room_id):
                if connection.connection_id == delivery.exclude_connection_id:
                    continue
                if await self._send(connection, delivery.event):
                    result.delivered += 1
                else:
                    result.failed += 1
        except Exception as exc:
            self._telemetry.end_span(span_id, status="error", error_message=str(exc))
            raise
        self._telemetry.end_span(
            span_id,
            status="error" if result.failed else "ok",
            attributes={Attr.DELIVERED: result.delivered, Attr.FAILED: result.failed},
        )
        logger.debug(
            "Broadcast %s to room %s: delivered=%d failed=%d",
            delivery.event.type,
            room_id,
            result.delivered,
            result.failed,
        )
        return result

    async def _send(self, connection: Connection, event: OutboundEvent) -> bool:
        try:
            await connection.send_fn(connection.connection_id, event)
        except Exception:
            self._handle_send_error(connection.connection_id)
            return False
        self._error_counts.pop(connection.connection_id, None)
        return True

    def _handle_send_error(self, connection_id: str) -> None:
        """Increment error count and drop the connection after the threshold."""
        consecutive = self._error_counts.get(connection_id, 0) + 1
        self._error_counts[connection_id] = consecutive
        if consecutive >= self._max_consecutive_errors:
            logger.warning(
                "Connection %s removed after %d consecutive send failures",
                connection_id,
                consecutive,
            )
            self._error_counts.pop(connection_id, None)
            dropped = self._registry.unregister(connection_id)
            if dropped is not None and self._on_drop is not None:
                self._on_drop(dropped)
        else:
            logger.warning(
                "Send failed for connection %s (attempt %d/%d)",
                connection_id,
                consecutive,
                self._max_consecutive_errors,
            )
