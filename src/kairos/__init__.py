"""Kairos — declarative container image builds, reconciled."""

from kairos.__version__ import __version__
from kairos.builder.job import construct_job, job_name_for
from kairos.callbacks.dispatcher import CallbackDispatcher, CallbackOutcome
from kairos.cleanup.policy import should_delete
from kairos.controller.manager import ControllerManager
from kairos.controller.queue import WorkQueue
from kairos.controller.reconciler import ReconcileResult, Reconciler
from kairos.core.config import ControllerConfig, JobTemplateConfig
from kairos.core.constants import BuildPhase, CallbackStatus
from kairos.core.exceptions import (
    AlreadyExistsError,
    CallbackError,
    ConfigurationError,
    ConflictError,
    JobConstructionError,
    KairosError,
    NotFoundError,
    StoreError,
)
from kairos.core.types import (
    Build,
    BuildSpec,
    BuildStatus,
    CallbackSpec,
    Job,
    JobStatus,
    ObjectKey,
    ObjectMeta,
)
from kairos.status.sync import PhaseTarget, target_phase
from kairos.store.base import ObjectStore
from kairos.store.memory import InMemoryStore
from kairos.utils.logging import configure_logging

__all__ = [
    "__version__",
    # Data model
    "Build",
    "BuildPhase",
    "BuildSpec",
    "BuildStatus",
    "CallbackSpec",
    "CallbackStatus",
    "Job",
    "JobStatus",
    "ObjectKey",
    "ObjectMeta",
    # Components
    "CallbackDispatcher",
    "CallbackOutcome",
    "ControllerManager",
    "PhaseTarget",
    "ReconcileResult",
    "Reconciler",
    "WorkQueue",
    "construct_job",
    "job_name_for",
    "should_delete",
    "target_phase",
    # Store
    "InMemoryStore",
    "ObjectStore",
    # Config
    "ControllerConfig",
    "JobTemplateConfig",
    "configure_logging",
    # Errors
    "AlreadyExistsError",
    "CallbackError",
    "ConfigurationError",
    "ConflictError",
    "JobConstructionError",
    "KairosError",
    "NotFoundError",
    "StoreError",
]
