"""Run-scoped memoizing cache with single-flight fetches."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from datetime import datetime, timedelta

from safir.datetime import current_datetime

__all__ = ["SingleFlightCache"]


@dataclass(frozen=True, slots=True)
class _CacheEntry[V]:
    """A successfully fetched value and when it was fetched."""

    value: V
    fetched_at: datetime


class SingleFlightCache[K: Hashable, V]:
    """Cache the results of an async fetch function by key.

    Concurrent loads of the same key share a single call to the fetch
    function. Successful results are kept until they expire; failures are
    never cached, so the next load after a failure fetches again.

    The shared fetch runs as its own task and each caller waits on it through
    `asyncio.shield`, so cancelling one caller does not cancel the fetch for
    the others. Call `aclose` when the cache is no longer needed to cancel
    any fetches still running.

    Parameters
    ----------
    fetch
        Function that retrieves the value for a key.
    expiry
        How long a fetched value remains valid. `None` or zero means values
        never expire.
    """

    def __init__(
        self,
        fetch: Callable[[K], Awaitable[V]],
        expiry: timedelta | None = None,
    ) -> None:
        self._fetch = fetch
        self._expiry = expiry if expiry else None
        self._entries: dict[K, _CacheEntry[V]] = {}
        self._in_flight: dict[K, asyncio.Task[V]] = {}

    def __contains__(self, key: K) -> bool:
        return self._get_fresh(key) is not None

    async def load(self, key: K) -> V:
        """Return the value for a key, fetching it if needed.

        Parameters
        ----------
        key
            Key to load.

        Returns
        -------
        object
            Cached or freshly fetched value.

        Raises
        ------
        Exception
            Whatever the fetch function raised. Every caller waiting on the
            same fetch sees the same exception.
        asyncio.CancelledError
            Raised if the calling task was cancelled while waiting.
        """
        entry = self._get_fresh(key)
        if entry:
            return entry.value
        task = self._in_flight.get(key)
        if not task:
            task = asyncio.create_task(self._run_fetch(key))
            task.add_done_callback(self._retrieve_exception)
            self._in_flight[key] = task
        return await asyncio.shield(task)

    def invalidate(self, key: K) -> None:
        """Discard any cached value for a key.

        A fetch already in progress is not affected.
        """
        self._entries.pop(key, None)

    async def aclose(self) -> None:
        """Cancel all in-progress fetches and wait for them to finish."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    def _get_fresh(self, key: K) -> _CacheEntry[V] | None:
        entry = self._entries.get(key)
        if not entry:
            return None
        if self._expiry:
            age = current_datetime(microseconds=True) - entry.fetched_at
            if age > self._expiry:
                return None
        return entry

    @staticmethod
    def _retrieve_exception(task: asyncio.Task[object]) -> None:
        # All waiters may have been cancelled before a fetch fails.
        if not task.cancelled():
            task.exception()

    async def _run_fetch(self, key: K) -> V:
        try:
            value = await self._fetch(key)
            now = current_datetime(microseconds=True)
            self._entries[key] = _CacheEntry(value=value, fetched_at=now)
            return value
        finally:
            self._in_flight.pop(key, None)
