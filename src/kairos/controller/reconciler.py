"""Build reconciler — drives one Build toward its desired state per call.

Each call is level triggered: it reads the Build and its Job afresh and acts
on what it sees, never on the event that caused it. Calls for one Build are
serialised by the work queue but may be repeated at any time, so every step
checks whether it has already happened before doing it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel

from kairos.builder.job import construct_job, job_name_for
from kairos.callbacks.dispatcher import CallbackDispatcher
from kairos.cleanup.policy import retain_reason, should_delete
from kairos.core.config import JobTemplateConfig
from kairos.core.constants import BuildPhase, CallbackStatus
from kairos.core.exceptions import NotFoundError, StoreError
from kairos.core.types import Build, ObjectKey, utcnow
from kairos.status.sync import target_phase
from kairos.store.base import ObjectStore

logger = structlog.get_logger(__name__)


class ReconcileResult(BaseModel):
    """What the work queue should do with the key after a successful call."""

    requeue: bool = False
    requeue_after: float | None = None


class Reconciler:
    def __init__(
        self,
        store: ObjectStore,
        dispatcher: CallbackDispatcher,
        *,
        template: JobTemplateConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._template = template or JobTemplateConfig()
        self._clock = clock

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """Run one reconcile pass for the Build at *key*.

        Store errors (including conflicts) and job construction errors
        propagate so the caller requeues with backoff; a conflict means the
        whole pass starts over from a fresh read. Callback failures are only
        recorded in the Build status.
        """
        log = logger.bind(build=str(key))

        build = await self._store.get_build(key)
        if build is None:
            log.debug("build_gone")
            return ReconcileResult()

        job_key = ObjectKey(key.namespace, job_name_for(key.name))
        job = await self._store.get_job(job_key)

        if job is None:
            if build.status.phase.is_terminal:
                # The job was removed after the build finished; never rerun it.
                log.debug("job_missing_for_finished_build", phase=str(build.status.phase))
                return ReconcileResult()
            return await self._submit(build, log)

        owner = job.controller_owner()
        if owner is None or owner.uid != build.metadata.uid:
            # Left over from an earlier Build with the same name whose cascade
            # deletion has not finished; its counters say nothing about this one.
            log.info(
                "job_owned_by_other",
                job=job.metadata.name,
                owner_uid=owner.uid if owner is not None else None,
            )
            return ReconcileResult(requeue=True)

        if not build.status.phase.is_terminal and (
            build.status.phase == BuildPhase.PENDING or build.status.job_ref is None
        ):
            # A previous pass created the job but lost the status write.
            build = await self._mark_running(build, job.metadata.name)
            log.info("build_running", job=job.metadata.name, recovered=True)

        target = target_phase(job.status, self._clock())
        if not build.status.phase.is_terminal:
            if target is None:
                log.debug("job_in_progress", job=job.metadata.name)
                return ReconcileResult()
            build.status.phase = target.phase
            build.status.completion_time = target.completion_time
            build = await self._store.update_build_status(build)
            log.info(
                "build_finished",
                phase=str(target.phase),
                completion_time=target.completion_time.isoformat(),
            )

        # From here on the stored phase is terminal.
        callback_status = build.status.callback_status
        if build.spec.callback is not None and callback_status == CallbackStatus.UNSET:
            callback_status = await self._notify(build, log)

        phase = build.status.phase
        configured = build.spec.callback is not None
        if should_delete(phase, configured, callback_status):
            log.info("build_cleanup", phase=str(phase))
            try:
                await self._store.delete_build(key)
            except NotFoundError:
                log.debug("build_already_deleted")
            return ReconcileResult()

        log.info(
            "build_retained",
            phase=str(phase),
            reason=retain_reason(phase, configured, callback_status),
        )
        return ReconcileResult()

    async def _submit(self, build: Build, log: structlog.BoundLogger) -> ReconcileResult:
        job = construct_job(build, self._template)
        created = await self._store.create_job(job)
        log.info("job_created", job=created.metadata.name)
        await self._mark_running(build, created.metadata.name)
        return ReconcileResult(requeue=True)

    async def _mark_running(self, build: Build, job_name: str) -> Build:
        build.status.phase = BuildPhase.RUNNING
        if build.status.job_ref is None:
            build.status.job_ref = job_name
        return await self._store.update_build_status(build)

    async def _notify(self, build: Build, log: structlog.BoundLogger) -> CallbackStatus:
        """Dispatch the callback once and record its outcome best-effort."""
        outcome = await self._dispatcher.dispatch(build, build.status.phase)
        build.status.callback_status = outcome.status
        try:
            await self._store.update_build_status(build)
        except StoreError as exc:
            # The outcome still drives cleanup below; an unrecorded failure
            # only means the callback may be sent again.
            log.warning(
                "callback_status_not_persisted",
                callback_status=str(outcome.status),
                error=str(exc),
            )
        return outcome.status
