from __future__ import annotations

from threading import RLock
from typing import Optional, Protocol


class QueryStore(Protocol):
    def set(self, query: str) -> None: ...

    def get(self) -> Optional[str]: ...

    def clear(self) -> None: ...


class InMemoryQueryStore:
    """Single slot holding the most recently submitted query.

    Writes replace the previous value outright; reads never mutate. The lock
    only guarantees a reader sees a complete prior write, not any ordering
    between concurrent submitters.
    """

    def __init__(self) -> None:
        self._query: Optional[str] = None
        self._lock = RLock()

    def set(self, query: str) -> None:
        with self._lock:
            self._query = query

    def get(self) -> Optional[str]:
        with self._lock:
            return self._query

    def clear(self) -> None:
        with self._lock:
            self._query = None


_store: Optional[InMemoryQueryStore] = None


def get_query_store() -> QueryStore:
    global _store
    if _store is None:
        _store = InMemoryQueryStore()
    return _store
