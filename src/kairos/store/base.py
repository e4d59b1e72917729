from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, TypeVar

from kairos.core.constants import BUILD_KIND, JOB_KIND
from kairos.core.types import Build, Job, ObjectKey, Resource, WatchEvent

R = TypeVar("R", bound=Resource)


def _coerce(model: type[R], obj: Resource | None) -> R | None:
    if obj is None or isinstance(obj, model):
        return obj
    return model.model_validate(obj.model_dump())


class ObjectStore(ABC):
    """Abstract base for the record store holding builds and their jobs.

    Implement the primitives; the typed facades below are thin wrappers over
    them. Every write is optimistic: ``update`` and ``update_status`` must
    reject a stale ``resourceVersion`` with :class:`ConflictError`, and
    ``delete`` must cascade to every object owned by the deleted one.
    """

    # ------------------------------------------------------------------ #
    # Primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def get(self, kind: str, key: ObjectKey) -> Resource | None:
        """Return the object, or ``None`` if it does not exist."""

    @abstractmethod
    async def list(self, kind: str, namespace: str | None = None) -> list[Resource]: ...

    @abstractmethod
    async def create(self, obj: R) -> R:
        """Persist a new object.

        Raises:
            AlreadyExistsError: If an object of that kind and key exists.
        """

    @abstractmethod
    async def update(self, obj: R) -> R:
        """Replace metadata and spec, leaving status untouched.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If ``obj`` carries a stale resource version.
        """

    @abstractmethod
    async def update_status(self, obj: R) -> R:
        """Replace only the status of the object.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If ``obj`` carries a stale resource version.
        """

    @abstractmethod
    async def delete(self, kind: str, key: ObjectKey) -> None:
        """Delete the object and, transitively, everything it owns.

        Raises:
            NotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def subscribe(
        self, kinds: list[str] | None = None
    ) -> AsyncIterator[WatchEvent]: ...

    # ------------------------------------------------------------------ #
    # Build facade
    # ------------------------------------------------------------------ #

    async def get_build(self, key: ObjectKey) -> Build | None:
        return _coerce(Build, await self.get(BUILD_KIND, key))

    async def list_builds(self, namespace: str | None = None) -> list[Build]:
        items = await self.list(BUILD_KIND, namespace)
        return [b for b in (_coerce(Build, i) for i in items) if b is not None]

    async def update_build_status(self, build: Build) -> Build:
        return await self.update_status(build)

    async def delete_build(self, key: ObjectKey) -> None:
        await self.delete(BUILD_KIND, key)

    # ------------------------------------------------------------------ #
    # Job facade
    # ------------------------------------------------------------------ #

    async def get_job(self, key: ObjectKey) -> Job | None:
        return _coerce(Job, await self.get(JOB_KIND, key))

    async def create_job(self, job: Job) -> Job:
        return await self.create(job)
