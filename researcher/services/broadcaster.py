from __future__ import annotations

import asyncio
import threading
from typing import Optional

from researcher.models.trace import TraceStep
from researcher.services import logger as log_service

_CLOSED = object()


class SubscriberGone(Exception):
    """Delivery target has disconnected or fallen too far behind."""


class Subscription:
    """One observer's view of a session's live trace.

    Registered with the broadcaster at construction, so it only sees steps
    published after it was created. Iterate it with `async for`; iteration
    ends when the run closes the session's stream or `cancel()` is called.
    """

    def __init__(self, broadcaster: "TraceBroadcaster", session_id: str, max_queue: int):
        self.session_id = session_id
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def deliver(self, step: TraceStep) -> None:
        if self._cancelled:
            raise SubscriberGone(self.session_id)
        try:
            self._queue.put_nowait(step)
        except asyncio.QueueFull as e:
            raise SubscriberGone(f"{self.session_id}: subscriber queue full") from e

    def finish(self) -> None:
        """Wake the consumer so its iteration ends after draining queued steps."""
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            self._cancelled = True

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._broadcaster.unsubscribe(self)
        self.finish()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> TraceStep:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._cancelled = True
            self._broadcaster.unsubscribe(self)
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class TraceBroadcaster:
    """Best-effort fan-out of trace steps to live observers, per session id.

    `publish` never blocks and never raises: a subscriber that cannot take a
    step is dropped and logged, and the others are unaffected. Nothing is
    buffered for sessions without subscribers; the session store is the
    durable record.
    """

    def __init__(self, max_queue: int = 256):
        self.max_queue = max(int(max_queue), 1)
        self._subscribers: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str) -> Subscription:
        subscription = Subscription(self, session_id, self.max_queue)
        with self._lock:
            self._subscribers.setdefault(session_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.session_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.session_id, None)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, []))

    def publish(self, session_id: str, step: TraceStep) -> int:
        """Deliver `step` to every current subscriber; returns how many took it."""
        with self._lock:
            subscribers = list(self._subscribers.get(session_id, []))

        delivered = 0
        for subscription in subscribers:
            try:
                subscription.deliver(step)
                delivered += 1
            except Exception as e:
                log_service.log_event(
                    event_type="broadcast_dropped",
                    message="Dropping trace subscriber after failed delivery",
                    session_id=session_id,
                    error=str(e),
                )
                self._drop(subscription)
        return delivered

    def close(self, session_id: str, reason: Optional[str] = None) -> None:
        """End every subscription for `session_id`; called when a run finishes."""
        with self._lock:
            subscribers = self._subscribers.pop(session_id, [])
        for subscription in subscribers:
            subscription.finish()
        if subscribers:
            log_service.log_event(
                event_type="broadcast_closed",
                message=reason or "Run finished",
                session_id=session_id,
                subscribers=len(subscribers),
            )

    def _drop(self, subscription: Subscription) -> None:
        self.unsubscribe(subscription)
        try:
            subscription.cancel()
        except Exception as e:
            log_service.log_event(
                event_type="broadcast_drop_failed",
                message="Failed to cancel dropped subscriber",
                session_id=subscription.session_id,
                error=str(e),
            )
