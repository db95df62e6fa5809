from __future__ import annotations

from typing import Iterable, Iterator, Sequence, TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        msg = "size must be > 0"
        raise ValueError(msg)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def unique(items: Iterable[T]) -> list[T]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(items))


__all__ = ["chunked", "unique"]
