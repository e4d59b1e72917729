from kairos.controller.manager import ControllerManager, key_for_event
from kairos.controller.queue import WorkQueue
from kairos.controller.reconciler import ReconcileResult, Reconciler

__all__ = [
    "ControllerManager",
    "ReconcileResult",
    "Reconciler",
    "WorkQueue",
    "key_for_event",
]
