"""Keyed work queue with per-key exclusion and rate-limited requeue."""

from __future__ import annotations

import asyncio
from collections.abc import Hashable
from typing import Generic, TypeVar

import structlog

from kairos.resilience.backoff import BackoffPolicy

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)

_SHUTDOWN = object()


class WorkQueue(Generic[K]):
    """Queue of keys to reconcile.

    Guarantees:

    - a key waits in the queue at most once, however often it is added;
    - a key handed out by :meth:`get` is not handed out again until
      :meth:`done` is called for it, so two workers never process the same
      key concurrently;
    - a key added while it is being processed is queued again on
      :meth:`done`, so the change that triggered it is not lost.

    Usage::

        key = await queue.get()
        if key is None:  # shut down
            return
        try:
            ...
        finally:
            queue.done(key)
    """

    def __init__(self, backoff: BackoffPolicy | None = None) -> None:
        self._backoff = backoff or BackoffPolicy()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: K) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: K, delay: float) -> None:
        """Add *key* once *delay* seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    def add_rate_limited(self, key: K) -> None:
        """Add *key* after its per-key exponential backoff delay."""
        delay = self._backoff.when(key)
        logger.debug("queue_requeue", key=str(key), delay=round(delay, 3))
        self.add_after(key, delay)

    def forget(self, key: K) -> None:
        """Stop tracking failures for *key*; its next backoff starts over."""
        self._backoff.forget(key)

    def num_requeues(self, key: K) -> int:
        return self._backoff.num_requeues(key)

    async def get(self) -> K | None:
        """Wait for the next key; ``None`` once the queue is shut down."""
        item = await self._queue.get()
        if item is _SHUTDOWN:
            # Leave the marker in place for the other waiting workers.
            self._queue.put_nowait(_SHUTDOWN)
            return None
        key: K = item  # type: ignore[assignment]
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: K) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        """Stop accepting keys and release every worker blocked in :meth:`get`."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._dirty.clear()
        self._queue.put_nowait(_SHUTDOWN)
