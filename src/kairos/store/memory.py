from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import datetime
from typing import AsyncIterator

import structlog

from kairos.core.constants import JOB_KIND, WatchEventType
from kairos.core.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from kairos.core.types import JobStatus, ObjectKey, Resource, WatchEvent, utcnow
from kairos.store.base import ObjectStore, R

logger = structlog.get_logger(__name__)

_StoreKey = tuple[str, str, str]


def _store_key(kind: str, key: ObjectKey) -> _StoreKey:
    return (kind, key.namespace, key.name)


class InMemoryStore(ObjectStore):
    """In-memory object store for tests and single-process use.

    Usage::

        store = InMemoryStore()
        build = await store.create(Build(metadata=ObjectMeta(name="web"), spec=...))
        await store.set_job_status(ObjectKey("default", "build-web"), succeeded=1)

        async for event in await store.subscribe():
            print(event.type, event.object.key)

    Objects handed out are deep copies, so callers mutate their own copy and
    must write it back through ``update``/``update_status``, which check the
    resource version exactly like a real API server would.

    Failures can be injected per operation::

        store.inject_error("update_status", ConflictError("stale"), kind="Build")
    """

    def __init__(self) -> None:
        self._objects: dict[_StoreKey, Resource] = {}
        self._version = 0
        self._subscribers: list[tuple[asyncio.Queue[WatchEvent | None], set[str] | None]] = []
        self._errors: deque[tuple[str, str | None, Exception]] = deque()
        self.calls: list[tuple[str, str, str]] = []

    # ------------------------------------------------------------------ #
    # Test helpers
    # ------------------------------------------------------------------ #

    def inject_error(self, op: str, exc: Exception, *, kind: str | None = None) -> None:
        """Make the next matching *op* (``create``, ``update_status``...) raise *exc*."""
        self._errors.append((op, kind, exc))

    def call_count(self, op: str, kind: str | None = None) -> int:
        return sum(1 for o, k, _ in self.calls if o == op and (kind is None or k == kind))

    def count(self, kind: str) -> int:
        return sum(1 for k, _, _ in self._objects if k == kind)

    async def set_job_status(
        self,
        key: ObjectKey,
        *,
        active: int = 0,
        succeeded: int = 0,
        failed: int = 0,
        start_time: datetime | None = None,
        completion_time: datetime | None = None,
    ) -> None:
        """Report job progress the way the execution substrate would."""
        stored = self._objects.get(_store_key(JOB_KIND, key))
        if stored is None:
            raise NotFoundError(f"Job {key} not found", code="NOT_FOUND")
        stored.status = JobStatus(  # type: ignore[attr-defined]
            active=active,
            succeeded=succeeded,
            failed=failed,
            start_time=start_time,
            completion_time=completion_time,
        )
        self._bump(stored)
        self._emit(WatchEventType.MODIFIED, stored)

    def close(self) -> None:
        """End every open subscription."""
        for queue, _ in self._subscribers:
            queue.put_nowait(None)
        self._subscribers.clear()

    # ------------------------------------------------------------------ #
    # ObjectStore implementation
    # ------------------------------------------------------------------ #

    async def get(self, kind: str, key: ObjectKey) -> Resource | None:
        self._record("get", kind, key)
        stored = self._objects.get(_store_key(kind, key))
        return stored.model_copy(deep=True) if stored is not None else None

    async def list(self, kind: str, namespace: str | None = None) -> list[Resource]:
        self._record("list", kind, ObjectKey(namespace or "", ""))
        return [
            obj.model_copy(deep=True)
            for (k, ns, _), obj in sorted(self._objects.items())
            if k == kind and (namespace is None or ns == namespace)
        ]

    async def create(self, obj: R) -> R:
        self._record("create", obj.kind, obj.key)
        skey = _store_key(obj.kind, obj.key)
        if skey in self._objects:
            raise AlreadyExistsError(
                f"{obj.kind} {obj.key} already exists",
                code="ALREADY_EXISTS",
                details={"kind": obj.kind, "key": str(obj.key)},
            )
        stored = obj.model_copy(deep=True)
        stored.metadata.uid = str(uuid.uuid4())
        stored.metadata.creation_timestamp = utcnow()
        self._bump(stored)
        self._objects[skey] = stored
        logger.debug("store_created", kind=obj.kind, key=str(obj.key))
        self._emit(WatchEventType.ADDED, stored)
        return stored.model_copy(deep=True)

    async def update(self, obj: R) -> R:
        self._record("update", obj.kind, obj.key)
        stored = self._checked(obj)
        replacement = obj.model_copy(deep=True)
        replacement.metadata.uid = stored.metadata.uid
        replacement.metadata.creation_timestamp = stored.metadata.creation_timestamp
        if hasattr(stored, "status"):
            replacement.status = stored.status.model_copy(deep=True)  # type: ignore[attr-defined]
        self._bump(replacement)
        self._objects[_store_key(obj.kind, obj.key)] = replacement
        self._emit(WatchEventType.MODIFIED, replacement)
        return replacement.model_copy(deep=True)

    async def update_status(self, obj: R) -> R:
        self._record("update_status", obj.kind, obj.key)
        stored = self._checked(obj)
        if not hasattr(obj, "status"):
            raise NotFoundError(f"{obj.kind} has no status subresource", code="NO_STATUS")
        stored.status = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]
        self._bump(stored)
        self._emit(WatchEventType.MODIFIED, stored)
        return stored.model_copy(deep=True)  # type: ignore[return-value]

    async def delete(self, kind: str, key: ObjectKey) -> None:
        self._record("delete", kind, key)
        stored = self._objects.get(_store_key(kind, key))
        if stored is None:
            raise NotFoundError(f"{kind} {key} not found", code="NOT_FOUND")
        self._delete_cascading(stored)

    async def subscribe(
        self, kinds: list[str] | None = None
    ) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue[WatchEvent | None] = asyncio.Queue()
        self._subscribers.append((queue, set(kinds) if kinds else None))
        return self._stream_events(queue)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _stream_events(
        self, queue: asyncio.Queue[WatchEvent | None]
    ) -> AsyncIterator[WatchEvent]:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield event

    def _record(self, op: str, kind: str, key: ObjectKey) -> None:
        self.calls.append((op, kind, str(key)))
        for i, (err_op, err_kind, exc) in enumerate(self._errors):
            if err_op == op and (err_kind is None or err_kind == kind):
                del self._errors[i]
                raise exc

    def _checked(self, obj: Resource) -> Resource:
        stored = self._objects.get(_store_key(obj.kind, obj.key))
        if stored is None:
            raise NotFoundError(f"{obj.kind} {obj.key} not found", code="NOT_FOUND")
        if obj.metadata.resource_version != stored.metadata.resource_version:
            raise ConflictError(
                f"{obj.kind} {obj.key} was modified concurrently",
                code="CONFLICT",
                details={
                    "expected": stored.metadata.resource_version,
                    "got": obj.metadata.resource_version,
                },
            )
        return stored

    def _bump(self, obj: Resource) -> None:
        self._version += 1
        obj.metadata.resource_version = str(self._version)

    def _delete_cascading(self, obj: Resource) -> None:
        self._objects.pop(_store_key(obj.kind, obj.key), None)
        logger.debug("store_deleted", kind=obj.kind, key=str(obj.key))
        self._emit(WatchEventType.DELETED, obj)
        uid = obj.metadata.uid
        dependents = [
            child
            for child in self._objects.values()
            if any(ref.uid == uid for ref in child.metadata.owner_references)
        ]
        for child in dependents:
            if _store_key(child.kind, child.key) in self._objects:
                self._delete_cascading(child)

    def _emit(self, event_type: WatchEventType, obj: Resource) -> None:
        for queue, kinds in self._subscribers:
            if kinds is None or obj.kind in kinds:
                queue.put_nowait(WatchEvent(type=event_type, object=obj.model_copy(deep=True)))
