"""Per-item exponential backoff for requeued reconciles."""

from __future__ import annotations

import random
from collections.abc import Hashable

from pydantic import BaseModel, Field, PrivateAttr


class BackoffPolicy(BaseModel):
    """Exponential backoff tracked separately for every queued item.

    Attributes:
        backoff_base: Delay in seconds after the first failure.
        backoff_max: Maximum delay in seconds (caps the exponential growth).
        jitter: If ``True``, spread the delay uniformly between half and the
            full computed value.
    """

    backoff_base: float = Field(default=0.005, gt=0.0)
    backoff_max: float = Field(default=1000.0, gt=0.0)
    jitter: bool = False

    _failures: dict[Hashable, int] = PrivateAttr(default_factory=dict)

    def compute_delay(self, failures: int) -> float:
        """Compute the delay for an item that already failed *failures* times.

        Uses ``backoff_base * 2^failures`` capped at ``backoff_max``.
        """
        try:
            delay = self.backoff_base * (2**failures)
        except OverflowError:
            delay = self.backoff_max
        delay = min(delay, self.backoff_max)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)  # noqa: S311
        return delay

    def when(self, item: Hashable) -> float:
        """Return the delay for *item* and record one more failure for it."""
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        return self.compute_delay(failures)

    def forget(self, item: Hashable) -> None:
        """Reset the failure count of *item*."""
        self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)
