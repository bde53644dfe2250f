"""In-process cache owned by the registry."""

from __future__ import annotations

from typing import Generic, Protocol, TypeVar

V = TypeVar("V")


class Cache(Protocol[V]):
    """Minimal cache interface; implementations are disposable projections of the store."""

    def get(self, key: str) -> V | None: ...

    def put(self, key: str, value: V) -> None: ...

    def invalidate(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemoryCache(Generic[V]):
    """Dict-backed cache for a single process and event loop."""

    def __init__(self) -> None:
        self._entries: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        return self._entries.get(key)

    def put(self, key: str, value: V) -> None:
        self._entries[key] = value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
