from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TtlCache(Protocol):
    def get(self, key: str, max_age: timedelta) -> Any | None: ...

    def get_stale(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryTtlCache(TtlCache):
    """Process-local map of ``key -> (stored_at, value)``; entries are never evicted."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[datetime, Any]] = {}

    def get(self, key: str, max_age: timedelta) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= max_age:
            return None
        return value

    def get_stale(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        return entry[1] if entry is not None else None

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["Clock", "InMemoryTtlCache", "TtlCache", "utc_now"]
