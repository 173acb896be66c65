"""
Keeps a ``MessageTimeline`` in step with one conversation.

Order of operations when a conversation is opened:

1. tear down the previous subscription (if any) and wait for it to finish;
2. subscribe to INSERT events for the new conversation;
3. load history once, ascending;
4. for each event: skip ids already present, otherwise fetch the row with
   its sender and append it.

Subscribing before loading history means an insert that lands between the
two shows up in both; the timeline's insert-if-absent drops the second copy.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Optional

from portal.client.api import PortalApiClient
from portal.client.timeline import MessageTimeline
from portal.errors import PortalError

logger = logging.getLogger(__name__)

Subscribe = Callable[[int], AsyncContextManager[AsyncIterator[Any]]]


def event_record(event) -> Optional[dict]:
    """Row from either a hub ``RowEvent`` or a WebSocket payload dict."""
    record = getattr(event, "record", None)
    if record is None and isinstance(event, dict):
        record = event.get("new")
    return record


class ConversationSync:
    def __init__(
        self,
        api: PortalApiClient,
        subscribe: Subscribe,
        timeline: Optional[MessageTimeline] = None,
        on_change: Optional[Callable[[MessageTimeline], None]] = None,
    ):
        self.api = api
        self._subscribe = subscribe
        self.timeline = timeline or MessageTimeline()
        self.on_change = on_change
        self._task: Optional[asyncio.Task] = None

    @property
    def conversation_id(self) -> Optional[int]:
        return self.timeline.conversation_id

    async def open(self, conversation_id: int) -> MessageTimeline:
        """Switch to ``conversation_id``; returns once history is loaded."""
        await self.close()
        self.timeline.clear(conversation_id)

        ready = asyncio.Event()
        self._task = asyncio.create_task(self._run(conversation_id, ready))
        waiter = asyncio.create_task(ready.wait())
        done, _ = await asyncio.wait({self._task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if self._task in done:
            waiter.cancel()
            task, self._task = self._task, None
            self.timeline.clear()
            task.result()  # raises what the feed raised
            raise PortalError("Feed ended before history loaded")
        return self.timeline

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except PortalError as e:
            logger.warning("feed for conversation %s ended with %s", self.conversation_id, e)

    async def __aenter__(self) -> "ConversationSync":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def send(self, content: str) -> dict:
        """Send into the open conversation. The row shows up via the feed."""
        if self.conversation_id is None:
            raise PortalError("No conversation open")
        return await self.api.send_message(self.conversation_id, content)

    async def _run(self, conversation_id: int, ready: asyncio.Event) -> None:
        async with self._subscribe(conversation_id) as feed:
            history = await self.api.list_messages(conversation_id)
            self.timeline.load(history)
            ready.set()
            self._notify()
            async for event in feed:
                await self.handle_event(conversation_id, event)

    async def handle_event(self, conversation_id: int, event) -> bool:
        """Merge one INSERT notification. Returns True if the timeline grew."""
        record = event_record(event)
        if record is None:
            return False
        if record.get("conversation_id") != conversation_id or self.conversation_id != conversation_id:
            return False
        message_id = record["id"]
        if message_id in self.timeline:
            return False

        try:
            enriched = await self.api.get_message(message_id)
        except PortalError as e:
            logger.error("could not fetch message %s: %s", message_id, e)
            return False

        # The user may have switched conversations while we were fetching
        if self.conversation_id != conversation_id:
            return False
        appended = self.timeline.append(enriched)
        if appended:
            self._notify()
        return appended

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.timeline)
