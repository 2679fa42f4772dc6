"""Bounded LRU cache of active participant sets per conversation."""

import threading
from collections import OrderedDict
from uuid import UUID


class ParticipantCache:
    """Least-recently-used map of conversation id -> active participant ids.

    A read-through accelerator for the membership check only. Entries must be
    deleted after every membership mutation; a miss always falls back to
    storage. Process-local: other processes learn about mutations through
    the membership broadcast.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: OrderedDict[UUID, frozenset[UUID]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, conversation_id: UUID) -> frozenset[UUID] | None:
        with self._lock:
            members = self._entries.get(conversation_id)
            if members is not None:
                self._entries.move_to_end(conversation_id)
            return members

    def put(self, conversation_id: UUID, members: set[UUID] | frozenset[UUID]) -> None:
        with self._lock:
            self._entries[conversation_id] = frozenset(members)
            self._entries.move_to_end(conversation_id)
            if len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def delete(self, conversation_id: UUID) -> None:
        with self._lock:
            self._entries.pop(conversation_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._entries
