from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, NamedTuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    model_serializer,
)
from pydantic.alias_generators import to_camel

from kairos.core.constants import (
    BUILD_API_VERSION,
    BUILD_KIND,
    DEFAULT_DOCKERFILE_PATH,
    DEFAULT_REVISION,
    JOB_API_VERSION,
    JOB_KIND,
    BuildPhase,
    CallbackStatus,
    WatchEventType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ObjectKey(NamedTuple):
    """Identity of a namespaced object: ``(namespace, name)``."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        """Parse ``"namespace/name"``; a bare name lands in ``default``."""
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls("default", namespace)
        if not namespace or not name:
            raise ValueError(f"Invalid object key: {value!r}")
        return cls(namespace, name)


class WireModel(BaseModel):
    """Base for all persisted records: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Object metadata
# ---------------------------------------------------------------------------


class OwnerReference(WireModel):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectMeta(WireModel):
    name: str = Field(min_length=1)
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    creation_timestamp: datetime | None = None
    owner_references: list[OwnerReference] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


class Resource(WireModel):
    """Any object held by the store, identified by ``kind`` and ``key``."""

    api_version: str
    kind: str
    metadata: ObjectMeta

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    def controller_owner(self) -> OwnerReference | None:
        """Return the owner reference flagged as the controller, if any."""
        for ref in self.metadata.owner_references:
            if ref.controller:
                return ref
        return None


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class CallbackSpec(WireModel):
    """Webhook called once the build reaches a terminal phase."""

    url: str = Field(min_length=1)
    auth_token: str | None = None


class BuildSpec(WireModel):
    """Desired state of a build. Treated as immutable after submission."""

    context_url: str = Field(min_length=1)
    revision: str | None = None
    dockerfile_path: str | None = None
    output_image: str = Field(min_length=1)
    push_credential_ref: str | None = None
    callback: CallbackSpec | None = None

    @property
    def resolved_revision(self) -> str:
        return self.revision or DEFAULT_REVISION

    @property
    def resolved_dockerfile_path(self) -> str:
        return self.dockerfile_path or DEFAULT_DOCKERFILE_PATH


class BuildStatus(WireModel):
    phase: BuildPhase = BuildPhase.PENDING
    job_ref: str | None = None
    callback_status: CallbackStatus = CallbackStatus.UNSET
    completion_time: datetime | None = None

    @model_serializer(mode="wrap")
    def _omit_unset_callback_status(
        self, handler: SerializerFunctionWrapHandler
    ) -> dict[str, Any]:
        data: dict[str, Any] = handler(self)
        if self.callback_status == CallbackStatus.UNSET:
            data.pop("callbackStatus", None)
            data.pop("callback_status", None)
        return data


class Build(Resource):
    api_version: str = BUILD_API_VERSION
    kind: str = BUILD_KIND
    spec: BuildSpec
    status: BuildStatus = Field(default_factory=BuildStatus)


# ---------------------------------------------------------------------------
# Execution job
# ---------------------------------------------------------------------------


class EnvVar(WireModel):
    name: str
    value: str


class VolumeMount(WireModel):
    name: str
    mount_path: str
    sub_path: str | None = None
    read_only: bool = False


class SecurityContext(WireModel):
    privileged: bool = False


class Container(WireModel):
    name: str
    image: str
    command: list[str] = Field(default_factory=list)
    args: list[str] = Field(default_factory=list)
    env: list[EnvVar] = Field(default_factory=list)
    volume_mounts: list[VolumeMount] = Field(default_factory=list)
    working_dir: str | None = None
    security_context: SecurityContext | None = None


class EmptyDirVolumeSource(WireModel): ...


class SecretVolumeSource(WireModel):
    secret_name: str


class Volume(WireModel):
    name: str
    empty_dir: EmptyDirVolumeSource | None = None
    secret: SecretVolumeSource | None = None


class PodSpec(WireModel):
    restart_policy: str = "Never"
    init_containers: list[Container] = Field(default_factory=list)
    containers: list[Container] = Field(default_factory=list)
    volumes: list[Volume] = Field(default_factory=list)


class PodTemplateSpec(WireModel):
    metadata: dict[str, Any] = Field(default_factory=dict)
    spec: PodSpec = Field(default_factory=PodSpec)


class JobSpec(WireModel):
    backoff_limit: int = 0
    template: PodTemplateSpec = Field(default_factory=PodTemplateSpec)


class JobStatus(WireModel):
    """Counters reported by the execution substrate."""

    active: int = 0
    succeeded: int = 0
    failed: int = 0
    start_time: datetime | None = None
    completion_time: datetime | None = None


class Job(Resource):
    api_version: str = JOB_API_VERSION
    kind: str = JOB_KIND
    spec: JobSpec = Field(default_factory=JobSpec)
    status: JobStatus = Field(default_factory=JobStatus)


# ---------------------------------------------------------------------------
# Change notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    object: Resource
