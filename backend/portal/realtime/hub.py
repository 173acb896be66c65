"""
In-process fan-out of row change events.

Subscribers register a (table, filter, event_type) triple and read events from
a private bounded queue. Publishing never blocks: a full queue drops its
oldest event. Subscribers may live on a different event loop (or thread)
than the publisher, so delivery goes through ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from portal import config
from portal.utils.logger import get_logger

log = get_logger("realtime")

INSERT = "INSERT"

# Queued on close so a consumer blocked in ``async for`` wakes up and stops
_CLOSED = object()


@dataclass(frozen=True)
class RowEvent:
    table: str
    event_type: str
    record: Dict[str, Any]

    def as_payload(self) -> dict:
        return {"table": self.table, "event": self.event_type, "new": self.record}

    @classmethod
    def from_payload(cls, payload: dict) -> "RowEvent":
        return cls(table=payload["table"], event_type=payload["event"], record=payload["new"])


@dataclass(eq=False)
class Subscription:
    hub: "RealtimeHub"
    table: str
    filter: Dict[str, Any]
    event_type: str
    maxsize: int
    loop: Optional[asyncio.AbstractEventLoop] = None
    queue: Optional[asyncio.Queue] = None
    closed: bool = False
    dropped: int = field(default=0)

    def matches(self, event: RowEvent) -> bool:
        if event.table != self.table or event.event_type != self.event_type:
            return False
        return all(str(event.record.get(k)) == str(v) for k, v in self.filter.items())

    def _deliver(self, event: RowEvent) -> None:
        # Runs on the subscriber's loop
        if self.closed or self.queue is None:
            return
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            log.warning("subscriber queue full, dropped oldest event (table=%s filter=%s)", self.table, self.filter)
        self.queue.put_nowait(event)

    def _wake(self) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(_CLOSED)

    async def get(self) -> RowEvent:
        return await self.queue.get()

    def close(self) -> None:
        """Unregister. Safe to call from any task or thread."""
        if self.closed:
            return
        self.closed = True
        self.hub._remove(self)
        if self.loop is None or self.queue is None:
            return
        try:
            self.loop.call_soon_threadsafe(self._wake)
        except RuntimeError:
            # Loop already closed; nobody is waiting
            pass

    async def __aenter__(self) -> "Subscription":
        self.loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue(maxsize=self.maxsize)
        self.hub._add(self)
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> RowEvent:
        if self.closed and (self.queue is None or self.queue.empty()):
            raise StopAsyncIteration
        event = await self.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event


class RealtimeHub:
    def __init__(self, queue_size: int = config.REALTIME_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subs: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self, table: str, filter: Dict[str, Any], event_type: str = INSERT) -> Subscription:
        """
        Use as ``async with hub.subscribe(...) as sub: async for event in sub``.
        Registration happens on enter, so nothing published before that is seen.
        """
        return Subscription(self, table, dict(filter), event_type, self.queue_size)

    def publish(self, event: RowEvent) -> int:
        with self._lock:
            targets = [s for s in self._subs if s.matches(event)]
        for sub in targets:
            try:
                sub.loop.call_soon_threadsafe(sub._deliver, event)
            except RuntimeError:
                # Loop already closed; the subscriber is gone
                sub.close()
        return len(targets)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def _add(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.add(sub)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.discard(sub)


hub = RealtimeHub()
