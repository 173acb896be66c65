from __future__ import annotations

from typing import Iterator, Optional


class MessageTimeline:
    """
    Client-held ordered message list.

    ``load`` replaces the contents with history (ascending by creation time);
    ``append`` adds a pushed message at the end unless its id is already
    present, so re-delivered notifications and load/push races never create
    duplicates.
    """

    def __init__(self, conversation_id: Optional[int] = None):
        self.conversation_id = conversation_id
        self._items: list[dict] = []
        self._ids: set[int] = set()

    def load(self, history: list[dict]) -> None:
        self._items = []
        self._ids = set()
        for message in history:
            self.append(message)

    def append(self, message: dict) -> bool:
        """Insert-if-absent. Returns False when the id was already present."""
        message_id = message["id"]
        if message_id in self._ids:
            return False
        self._ids.add(message_id)
        self._items.append(message)
        return True

    def clear(self, conversation_id: Optional[int] = None) -> None:
        self.conversation_id = conversation_id
        self._items = []
        self._ids = set()

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._ids

    def __iter__(self) -> Iterator[dict]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def ids(self) -> list[int]:
        return [m["id"] for m in self._items]

    @property
    def last(self) -> Optional[dict]:
        return self._items[-1] if self._items else None
