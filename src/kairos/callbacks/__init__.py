from kairos.callbacks.dispatcher import (
    CallbackDispatcher,
    CallbackOutcome,
    build_payload,
)

__all__ = [
    "CallbackDispatcher",
    "CallbackOutcome",
    "build_payload",
]
