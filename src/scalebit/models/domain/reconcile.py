"""Result of a reconciliation pass."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

__all__ = ["ReconcileResult"]


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Outcome of a successful reconciliation pass.

    Failed passes raise an exception instead of returning a result.
    """

    requeue_after: timedelta | None = None
    """If set, convergence is in progress and the object should be checked
    again after this delay."""

    changed: bool = False
    """Whether the pass wrote anything to the store."""

    @property
    def done(self) -> bool:
        """Whether the object is fully converged."""
        return self.requeue_after is None
