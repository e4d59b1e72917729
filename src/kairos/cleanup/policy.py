from __future__ import annotations

from kairos.core.constants import BuildPhase, CallbackStatus


def should_delete(
    phase: BuildPhase,
    callback_configured: bool,
    callback_status: CallbackStatus,
) -> bool:
    """Whether a build may delete itself now.

    Only a successful build whose callback was configured and delivered is
    garbage collected. Failed builds, and successful builds that were never
    (or unsuccessfully) reported, stay around until an operator removes them.
    """
    return (
        phase == BuildPhase.SUCCEEDED
        and callback_configured
        and callback_status == CallbackStatus.SUCCESS
    )


def retain_reason(
    phase: BuildPhase,
    callback_configured: bool,
    callback_status: CallbackStatus,
) -> str | None:
    """Short reason a terminal build is kept, ``None`` if it is deleted or still running."""
    if not phase.is_terminal or should_delete(phase, callback_configured, callback_status):
        return None
    if phase == BuildPhase.FAILED:
        return "build_failed"
    if not callback_configured:
        return "no_callback"
    if callback_status == CallbackStatus.FAILED:
        return "callback_failed"
    return "callback_pending"
