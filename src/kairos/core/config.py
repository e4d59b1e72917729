from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from kairos.core.exceptions import ConfigurationError
from kairos.resilience.backoff import BackoffPolicy


class JobTemplateConfig(BaseModel):
    """Images and paths baked into every execution job."""

    fetch_image: str = "alpine/git"
    build_image: str = "quay.io/buildah/stable"
    storage_driver: str = "vfs"
    workspace_path: str = "/workspace"
    storage_path: str = "/var/lib/containers"
    registry_auth_path: str = "/root/.docker/config.json"
    backoff_limit: int = Field(default=0, ge=0)
    """Execution-substrate retries of the build pod; 0 means one attempt."""


class ControllerConfig(BaseModel):
    max_concurrent_reconciles: int = Field(default=4, ge=1, le=64)
    resync_period_seconds: float = Field(default=600.0, gt=0)
    callback_timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    job: JobTemplateConfig = Field(default_factory=JobTemplateConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Create a :class:`ControllerConfig` from ``KAIROS_*`` environment variables.

        Reads the following env vars (all optional):

        * ``KAIROS_MAX_CONCURRENT_RECONCILES`` → ``max_concurrent_reconciles``
        * ``KAIROS_RESYNC_PERIOD`` → ``resync_period_seconds``
        * ``KAIROS_CALLBACK_TIMEOUT`` → ``callback_timeout_seconds``
        * ``KAIROS_BACKOFF_BASE`` / ``KAIROS_BACKOFF_MAX`` → ``backoff``
        * ``KAIROS_FETCH_IMAGE`` / ``KAIROS_BUILD_IMAGE`` → ``job``
        * ``KAIROS_LOG_LEVEL`` → ``log_level`` (``DEBUG``, ``INFO``, ``WARNING``, ``ERROR``)
        * ``KAIROS_LOG_JSON`` → ``log_json`` (``1``/``true``/``yes`` enable it)

        Any variable that is not set or is empty is left at its default value.

        Raises:
            ConfigurationError: If a variable holds a value that fails validation.
        """
        kwargs: dict[str, Any] = {}

        workers = os.environ.get("KAIROS_MAX_CONCURRENT_RECONCILES")
        if workers:
            kwargs["max_concurrent_reconciles"] = workers

        resync = os.environ.get("KAIROS_RESYNC_PERIOD")
        if resync:
            kwargs["resync_period_seconds"] = resync

        callback_timeout = os.environ.get("KAIROS_CALLBACK_TIMEOUT")
        if callback_timeout:
            kwargs["callback_timeout_seconds"] = callback_timeout

        backoff: dict[str, Any] = {}
        if base := os.environ.get("KAIROS_BACKOFF_BASE"):
            backoff["backoff_base"] = base
        if cap := os.environ.get("KAIROS_BACKOFF_MAX"):
            backoff["backoff_max"] = cap
        if backoff:
            kwargs["backoff"] = backoff

        job: dict[str, Any] = {}
        if fetch_image := os.environ.get("KAIROS_FETCH_IMAGE"):
            job["fetch_image"] = fetch_image
        if build_image := os.environ.get("KAIROS_BUILD_IMAGE"):
            job["build_image"] = build_image
        if job:
            kwargs["job"] = job

        log_level = os.environ.get("KAIROS_LOG_LEVEL")
        if log_level:
            kwargs["log_level"] = log_level.upper()

        log_json = os.environ.get("KAIROS_LOG_JSON")
        if log_json:
            kwargs["log_json"] = log_json.strip().lower() in ("1", "true", "yes")

        try:
            return cls(**kwargs)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid controller configuration: {exc}",
                code="INVALID_CONFIG",
            ) from exc
