"""Tests for store/memory.py — optimistic writes, cascading deletes, watch events."""
from __future__ import annotations

import asyncio

import pytest

from conftest import make_build
from kairos.builder.job import construct_job
from kairos.core.constants import BUILD_KIND, JOB_KIND, BuildPhase, WatchEventType
from kairos.core.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from kairos.core.types import ObjectKey, ObjectMeta, OwnerReference, Resource
from kairos.store.memory import InMemoryStore


def _pod_owned_by(job_uid: str, job_name: str, namespace: str = "default") -> Resource:
    return Resource(
        api_version="v1",
        kind="Pod",
        metadata=ObjectMeta(
            name=f"{job_name}-abcde",
            namespace=namespace,
            owner_references=[
                OwnerReference(
                    api_version="batch/v1", kind="Job", name=job_name, uid=job_uid, controller=True
                )
            ],
        ),
    )


# ---------------------------------------------------------------------------
# create / get / list
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_assigns_identity(self, store: InMemoryStore) -> None:
        created = await store.create(make_build("web"))
        assert created.metadata.uid
        assert created.metadata.resource_version == "1"
        assert created.metadata.creation_timestamp is not None

    async def test_duplicate_rejected(self, store: InMemoryStore) -> None:
        await store.create(make_build("web"))
        with pytest.raises(AlreadyExistsError):
            await store.create(make_build("web"))

    async def test_same_name_other_namespace_is_fine(self, store: InMemoryStore) -> None:
        await store.create(make_build("web", "a"))
        await store.create(make_build("web", "b"))
        assert store.count(BUILD_KIND) == 2

    async def test_get_missing_returns_none(self, store: InMemoryStore) -> None:
        assert await store.get_build(ObjectKey("default", "nope")) is None

    async def test_get_returns_copies(self, store: InMemoryStore) -> None:
        await store.create(make_build("web"))
        first = await store.get_build(ObjectKey("default", "web"))
        assert first is not None
        first.status.phase = BuildPhase.FAILED
        again = await store.get_build(ObjectKey("default", "web"))
        assert again is not None
        assert again.status.phase == BuildPhase.PENDING

    async def test_list_by_namespace(self, store: InMemoryStore) -> None:
        await store.create(make_build("a", "one"))
        await store.create(make_build("b", "two"))
        await store.create(make_build("c", "one"))
        assert [b.metadata.name for b in await store.list_builds("one")] == ["a", "c"]
        assert len(await store.list_builds()) == 3


# ---------------------------------------------------------------------------
# update / update_status
# ---------------------------------------------------------------------------


class TestOptimisticWrites:
    async def test_update_status_bumps_version(self, store: InMemoryStore) -> None:
        build = await store.create(make_build("web"))
        build.status.phase = BuildPhase.RUNNING
        updated = await store.update_build_status(build)
        assert updated.status.phase == BuildPhase.RUNNING
        assert int(updated.metadata.resource_version or 0) > int(
            build.metadata.resource_version or 0
        )

    async def test_stale_status_write_conflicts(self, store: InMemoryStore) -> None:
        build = await store.create(make_build("web"))
        stale = build.model_copy(deep=True)
        build.status.phase = BuildPhase.RUNNING
        await store.update_build_status(build)

        stale.status.phase = BuildPhase.FAILED
        with pytest.raises(ConflictError) as exc_info:
            await store.update_build_status(stale)
        assert exc_info.value.is_retryable is True

        current = await store.get_build(build.key)
        assert current is not None
        assert current.status.phase == BuildPhase.RUNNING

    async def test_update_status_ignores_spec_changes(self, store: InMemoryStore) -> None:
        build = await store.create(make_build("web"))
        build.spec.output_image = "evil/other:latest"
        build.status.phase = BuildPhase.RUNNING
        await store.update_build_status(build)
        current = await store.get_build(build.key)
        assert current is not None
        assert current.spec.output_image == "registry.example.com/team/app:1.0"
        assert current.status.phase == BuildPhase.RUNNING

    async def test_update_keeps_status(self, store: InMemoryStore) -> None:
        build = await store.create(make_build("web"))
        build.status.phase = BuildPhase.RUNNING
        build = await store.update_build_status(build)

        build.metadata.labels["team"] = "infra"
        build.status.phase = BuildPhase.PENDING
        updated = await store.update(build)
        assert updated.metadata.labels == {"team": "infra"}
        assert updated.status.phase == BuildPhase.RUNNING
        assert updated.metadata.uid == build.metadata.uid

    async def test_write_to_missing_object(self, store: InMemoryStore) -> None:
        with pytest.raises(NotFoundError):
            await store.update_build_status(make_build("ghost"))


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


class TestCascadingDelete:
    async def test_deleting_build_removes_job_and_its_pods(self, store: InMemoryStore) -> None:
        build = await store.create(make_build("web"))
        job = await store.create_job(construct_job(build))
        assert job.metadata.uid is not None
        await store.create(_pod_owned_by(job.metadata.uid, job.metadata.name))
        unrelated = await store.create(make_build("other"))
        await store.create_job(construct_job(unrelated))

        await store.delete_build(build.key)

        assert await store.get_build(build.key) is None
        assert await store.get_job(job.key) is None
        assert store.count("Pod") == 0
        assert store.count(BUILD_KIND) == 1
        assert store.count(JOB_KIND) == 1

    async def test_delete_missing_raises(self, store: InMemoryStore) -> None:
        with pytest.raises(NotFoundError):
            await store.delete_build(ObjectKey("default", "ghost"))


# ---------------------------------------------------------------------------
# subscribe
# ---------------------------------------------------------------------------


class TestSubscribe:
    async def test_events_in_order(self, store: InMemoryStore) -> None:
        events = await store.subscribe()
        build = await store.create(make_build("web"))
        job = await store.create_job(construct_job(build))
        await store.set_job_status(job.key, succeeded=1)
        await store.delete_build(build.key)
        store.close()

        seen = [(e.type, e.object.kind) async for e in events]
        assert seen == [
            (WatchEventType.ADDED, "Build"),
            (WatchEventType.ADDED, "Job"),
            (WatchEventType.MODIFIED, "Job"),
            (WatchEventType.DELETED, "Build"),
            (WatchEventType.DELETED, "Job"),
        ]

    async def test_kind_filter(self, store: InMemoryStore) -> None:
        events = await store.subscribe([JOB_KIND])
        build = await store.create(make_build("web"))
        await store.create_job(construct_job(build))
        store.close()
        kinds = [e.object.kind async for e in events]
        assert kinds == ["Job"]

    async def test_each_subscriber_gets_every_event(self, store: InMemoryStore) -> None:
        first = await store.subscribe()
        second = await store.subscribe()
        await store.create(make_build("web"))
        store.close()
        a = [e async for e in first]
        b = [e async for e in second]
        assert len(a) == len(b) == 1

    async def test_stream_blocks_until_event(self, store: InMemoryStore) -> None:
        events = await store.subscribe()
        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0)
        assert not pending.done()
        await store.create(make_build("web"))
        event = await asyncio.wait_for(pending, timeout=1)
        assert event.object.metadata.name == "web"


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    async def test_inject_error_is_one_shot(self, store: InMemoryStore) -> None:
        store.inject_error("create", RuntimeError("boom"), kind=JOB_KIND)
        await store.create(make_build("web"))  # other kind unaffected
        build = await store.get_build(ObjectKey("default", "web"))
        assert build is not None
        with pytest.raises(RuntimeError):
            await store.create_job(construct_job(build))
        await store.create_job(construct_job(build))
        assert store.count(JOB_KIND) == 1

    async def test_set_job_status_missing_job(self, store: InMemoryStore) -> None:
        with pytest.raises(NotFoundError):
            await store.set_job_status(ObjectKey("default", "build-x"), failed=1)

    async def test_calls_recorded(self, store: InMemoryStore) -> None:
        await store.create(make_build("web"))
        await store.get_build(ObjectKey("default", "web"))
        assert store.call_count("create", BUILD_KIND) == 1
        assert store.call_count("get") == 1
