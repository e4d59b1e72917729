"""Translate a Build into the execution job that performs it.

Everything here is a pure function of its input: the same Build always yields
the same Job, which is what lets the reconciler treat "a job with this name
exists" as "this build has already been submitted".
"""

from __future__ import annotations

import hashlib
import shlex

from kairos.core.config import JobTemplateConfig
from kairos.core.constants import BUILD_LABEL, MAX_NAME_LENGTH
from kairos.core.exceptions import JobConstructionError
from kairos.core.types import (
    Build,
    Container,
    EmptyDirVolumeSource,
    EnvVar,
    Job,
    JobSpec,
    ObjectMeta,
    OwnerReference,
    PodSpec,
    PodTemplateSpec,
    SecretVolumeSource,
    SecurityContext,
    Volume,
    VolumeMount,
)

JOB_NAME_PREFIX = "build-"
_HASH_LENGTH = 10

WORKSPACE_VOLUME = "workspace"
STORAGE_VOLUME = "containers-storage"
REGISTRY_AUTH_VOLUME = "registry-auth"
REGISTRY_AUTH_KEY = ".dockerconfigjson"

FETCH_CONTAINER = "git-clone"
BUILD_CONTAINER = "buildah"


def job_name_for(build_name: str) -> str:
    """Return the name of the job owned by the build called *build_name*.

    Names that would overflow the object name limit are truncated and
    suffixed with a digest of the full name so two long build names sharing
    a prefix still map to distinct jobs.
    """
    name = f"{JOB_NAME_PREFIX}{build_name}"
    if len(name) <= MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:_HASH_LENGTH]
    head = name[: MAX_NAME_LENGTH - _HASH_LENGTH - 1].rstrip("-.")
    return f"{head}-{digest}"


def fetch_script(context_url: str, revision: str, workspace: str) -> str:
    return (
        "set -e\n"
        f"git clone {shlex.quote(context_url)} {shlex.quote(workspace)}\n"
        f"git -C {shlex.quote(workspace)} checkout {shlex.quote(revision)}\n"
    )


def build_script(
    context_url: str, dockerfile: str, image: str, storage_driver: str
) -> str:
    q_image = shlex.quote(image)
    q_driver = shlex.quote(storage_driver)
    return (
        "set -e\n"
        f"echo {shlex.quote(f'Building image {image} from {context_url}...')}\n"
        f"buildah bud --storage-driver={q_driver} -f {shlex.quote(dockerfile)} -t {q_image} .\n"
        'echo "Pushing image..."\n'
        f"buildah push --storage-driver={q_driver} {q_image}\n"
        'echo "Done!"\n'
    )


def owner_reference(build: Build) -> OwnerReference:
    """Controller reference that makes *build* the owner of the job."""
    if not build.metadata.uid:
        raise JobConstructionError(
            f"Build {build.key} has no uid and cannot own a job",
            code="MISSING_UID",
            details={"build": str(build.key)},
        )
    return OwnerReference(
        api_version=build.api_version,
        kind=build.kind,
        name=build.metadata.name,
        uid=build.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def construct_job(build: Build, template: JobTemplateConfig | None = None) -> Job:
    """Build the execution job for *build*.

    The pod runs two ordered stages sharing an ephemeral ``workspace``
    volume: the ``git-clone`` init container checks the source out, then the
    privileged ``buildah`` container builds and pushes the image. Image
    layers go to a second, separate ephemeral volume so the build storage is
    never nested inside the workspace.

    Raises:
        JobConstructionError: If the build cannot be given an owner reference.
    """
    template = template or JobTemplateConfig()
    spec = build.spec
    workspace = template.workspace_path

    fetch = Container(
        name=FETCH_CONTAINER,
        image=template.fetch_image,
        command=["/bin/sh", "-c"],
        args=[fetch_script(spec.context_url, spec.resolved_revision, workspace)],
        volume_mounts=[VolumeMount(name=WORKSPACE_VOLUME, mount_path=workspace)],
    )

    builder = Container(
        name=BUILD_CONTAINER,
        image=template.build_image,
        command=["/bin/sh", "-c"],
        args=[
            build_script(
                spec.context_url,
                spec.resolved_dockerfile_path,
                spec.output_image,
                template.storage_driver,
            )
        ],
        env=[EnvVar(name="STORAGE_DRIVER", value=template.storage_driver)],
        volume_mounts=[
            VolumeMount(name=WORKSPACE_VOLUME, mount_path=workspace),
            VolumeMount(name=STORAGE_VOLUME, mount_path=template.storage_path),
        ],
        working_dir=workspace,
        security_context=SecurityContext(privileged=True),
    )

    volumes = [
        Volume(name=WORKSPACE_VOLUME, empty_dir=EmptyDirVolumeSource()),
        Volume(name=STORAGE_VOLUME, empty_dir=EmptyDirVolumeSource()),
    ]

    if spec.push_credential_ref:
        builder.volume_mounts.append(
            VolumeMount(
                name=REGISTRY_AUTH_VOLUME,
                mount_path=template.registry_auth_path,
                sub_path=REGISTRY_AUTH_KEY,
                read_only=True,
            )
        )
        volumes.append(
            Volume(
                name=REGISTRY_AUTH_VOLUME,
                secret=SecretVolumeSource(secret_name=spec.push_credential_ref),
            )
        )

    labels = {BUILD_LABEL: build.metadata.name}
    return Job(
        metadata=ObjectMeta(
            name=job_name_for(build.metadata.name),
            namespace=build.metadata.namespace,
            labels=labels,
            owner_references=[owner_reference(build)],
        ),
        spec=JobSpec(
            backoff_limit=template.backoff_limit,
            template=PodTemplateSpec(
                metadata={"labels": dict(labels)},
                spec=PodSpec(
                    restart_policy="Never",
                    init_containers=[fetch],
                    containers=[builder],
                    volumes=volumes,
                ),
            ),
        ),
    )
