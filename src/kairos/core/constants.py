from __future__ import annotations

from enum import StrEnum

API_GROUP = "ops.kairos.io"
API_VERSION = "v1alpha1"
BUILD_API_VERSION = f"{API_GROUP}/{API_VERSION}"
BUILD_KIND = "Build"
BUILD_PLURAL = "builds"

JOB_API_VERSION = "batch/v1"
JOB_KIND = "Job"

BUILD_LABEL = "kairos.io/build"

# Object names are DNS labels.
MAX_NAME_LENGTH = 63

DEFAULT_REVISION = "master"
DEFAULT_DOCKERFILE_PATH = "Dockerfile"


class BuildPhase(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildPhase.SUCCEEDED, BuildPhase.FAILED)


class CallbackStatus(StrEnum):
    # Never written to the wire: the field is absent until the first dispatch.
    UNSET = ""
    SUCCESS = "Success"
    FAILED = "Failed"


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
