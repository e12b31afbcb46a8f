from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyCache(Generic[K, V]):
    """Process-lifetime cache that fetches a value the first time its key is asked for.

    Entries never expire. Concurrent misses for the same key share one fetch:
    the first caller fetches under a per-key lock and later callers read the
    stored entry. A fetch that raises stores nothing, unless the exception is
    one of ``permanent_errors``, in which case it is remembered and re-raised
    for every later lookup of that key. Per-key locks are dropped once no
    caller is waiting on them.
    """

    def __init__(
        self,
        fetch_fn: Callable[..., Awaitable[V]],
        *,
        permanent_errors: tuple[type[Exception], ...] = (),
    ) -> None:
        self._fetch_fn = fetch_fn
        self._permanent_errors = permanent_errors
        self._entries: dict[K, V] = {}
        self._failures: dict[K, Exception] = {}
        self._locks: dict[K, asyncio.Lock] = {}
        self._waiting: dict[K, int] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: K, **fetch_kwargs) -> V:
        cached = self._lookup(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            async with lock:
                cached = self._lookup(key)
                if cached is not None:
                    return cached

                try:
                    value = await self._fetch_fn(key, **fetch_kwargs)
                except self._permanent_errors as error:
                    self._failures[key] = error
                    raise
                self._entries[key] = value
                return value
        finally:
            self._waiting[key] -= 1
            if not self._waiting[key]:
                del self._waiting[key]
                del self._locks[key]

    def _lookup(self, key: K) -> V | None:
        failure = self._failures.get(key)
        if failure is not None:
            raise failure
        return self._entries.get(key)
