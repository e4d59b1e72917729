"""Map execution-job counters onto a build phase."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from kairos.core.constants import BuildPhase
from kairos.core.types import JobStatus


class PhaseTarget(BaseModel):
    """Terminal phase a build should move to, with its completion time."""

    phase: BuildPhase
    completion_time: datetime


def target_phase(status: JobStatus, now: datetime) -> PhaseTarget | None:
    """Return the terminal phase implied by *status*, or ``None`` while running.

    A succeeded count wins over a failed count (a pod may fail before a
    later attempt succeeds). When the job reports no completion time, *now*
    is used so a terminal phase always carries one.
    """
    if status.succeeded > 0:
        return PhaseTarget(
            phase=BuildPhase.SUCCEEDED,
            completion_time=status.completion_time or now,
        )
    if status.failed > 0:
        return PhaseTarget(
            phase=BuildPhase.FAILED,
            completion_time=status.completion_time or now,
        )
    return None
