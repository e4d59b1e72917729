"""Controller manager — event source, periodic resync and the worker pool."""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import AsyncIterator

import httpx
import structlog

from kairos.callbacks.dispatcher import CallbackDispatcher
from kairos.controller.queue import WorkQueue
from kairos.controller.reconciler import Reconciler
from kairos.core.config import ControllerConfig
from kairos.core.constants import BUILD_KIND, JOB_KIND
from kairos.core.exceptions import StoreError
from kairos.core.types import ObjectKey, WatchEvent
from kairos.resilience.backoff import BackoffPolicy
from kairos.store.base import ObjectStore
from kairos.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def key_for_event(event: WatchEvent) -> ObjectKey | None:
    """Return the Build key a change notification should trigger.

    Build events map to the Build itself; events on any other kind map to
    the Build that controls the object, if there is one.
    """
    obj = event.object
    if obj.kind == BUILD_KIND:
        return obj.key
    owner = obj.controller_owner()
    if owner is not None and owner.kind == BUILD_KIND:
        return ObjectKey(obj.metadata.namespace, owner.name)
    return None


class ControllerManager:
    """Runs the reconciler for every Build the store knows about.

    Change notifications (Builds and the Jobs they own) and a periodic full
    resync feed one :class:`WorkQueue`; ``max_concurrent_reconciles``
    workers drain it. The queue ensures a given Build is only ever
    reconciled by one worker at a time.

    Example::

        async with ControllerManager.from_config(store, ControllerConfig.from_env()):
            await asyncio.Event().wait()
    """

    def __init__(
        self,
        store: ObjectStore,
        reconciler: Reconciler,
        config: ControllerConfig | None = None,
        *,
        dispatcher: CallbackDispatcher | None = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._config = config or ControllerConfig()
        # Dispatcher owned by this manager, closed on stop().
        self._dispatcher = dispatcher
        self._queue: WorkQueue[ObjectKey] = WorkQueue(
            backoff=BackoffPolicy(**self._config.backoff.model_dump())
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._started = False

    @classmethod
    def from_config(
        cls,
        store: ObjectStore,
        config: ControllerConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> ControllerManager:
        """Wire a dispatcher and reconciler from *config*."""
        config = config or ControllerConfig()
        dispatcher = CallbackDispatcher(
            http_client, timeout=config.callback_timeout_seconds
        )
        reconciler = Reconciler(store, dispatcher, template=config.job)
        return cls(store, reconciler, config, dispatcher=dispatcher)

    @property
    def queue(self) -> WorkQueue[ObjectKey]:
        return self._queue

    @property
    def running(self) -> bool:
        return self._started

    def enqueue(self, key: ObjectKey) -> None:
        self._queue.add(key)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        events = await self._store.subscribe([BUILD_KIND, JOB_KIND])
        await self._enqueue_all()
        self._tasks.append(asyncio.create_task(self._watch(events), name="kairos-watch"))
        self._tasks.append(asyncio.create_task(self._resync(), name="kairos-resync"))
        for n in range(self._config.max_concurrent_reconciles):
            self._tasks.append(
                asyncio.create_task(self._worker(n), name=f"kairos-worker-{n}")
            )
        logger.info(
            "controller_started",
            workers=self._config.max_concurrent_reconciles,
            resync_period=self._config.resync_period_seconds,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._queue.shutdown()
        for task in self._tasks:
            if not task.get_name().startswith("kairos-worker"):
                task.cancel()
        # Workers finish their current reconcile and exit on the shutdown marker.
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._dispatcher is not None:
            await self._dispatcher.aclose()
        logger.info("controller_stopped")

    async def run(self) -> None:
        """Configure logging, start and block until cancelled, then stop cleanly.

        This is the process entry point; embedders that own logging call
        :meth:`start`/:meth:`stop` instead.
        """
        configure_logging(self._config.log_level, self._config.log_json)
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def __aenter__(self) -> ControllerManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------ #
    # Event sources
    # ------------------------------------------------------------------ #

    async def _watch(self, events: AsyncIterator[WatchEvent]) -> None:
        async for event in events:
            key = key_for_event(event)
            if key is not None:
                logger.debug(
                    "watch_event",
                    type=str(event.type),
                    kind=event.object.kind,
                    build=str(key),
                )
                self._queue.add(key)

    async def _resync(self) -> None:
        while True:
            await asyncio.sleep(self._config.resync_period_seconds)
            await self._enqueue_all()

    async def _enqueue_all(self) -> None:
        try:
            builds = await self._store.list_builds()
        except StoreError as exc:
            logger.warning("resync_failed", error=str(exc))
            return
        for build in builds:
            self._queue.add(build.key)
        logger.debug("resync", builds=len(builds))

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #

    async def _worker(self, n: int) -> None:
        while True:
            key = await self._queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            finally:
                self._queue.done(key)

    async def process(self, key: ObjectKey) -> None:
        """Reconcile *key* once and schedule its follow-up, if any."""
        try:
            result = await self._reconciler.reconcile(key)
        except Exception as exc:  # noqa: BLE001
            self._queue.add_rate_limited(key)
            logger.warning(
                "reconcile_failed",
                build=str(key),
                error=str(exc),
                error_type=type(exc).__name__,
                retryable=getattr(exc, "is_retryable", True),
                requeues=self._queue.num_requeues(key),
            )
            return

        if result.requeue_after is not None:
            self._queue.forget(key)
            self._queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self._queue.add_rate_limited(key)
        else:
            self._queue.forget(key)
