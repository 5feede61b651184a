"""Typed failures raised by the duty scheduler and arrangement coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .periods import Period


class ArrangementError(Exception):
    """Base class carrying enough context (period, duty, reason) to act on."""

    code = "arrangement_error"

    def __init__(self, reason: str, *, period: Period | None = None, duty: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.period = period
        self.duty = duty

    def as_detail(self) -> dict:
        return {
            "error": self.code,
            "message": self.reason,
            "period": str(self.period) if self.period is not None else None,
            "duty": self.duty,
        }


class InvalidPeriod(ArrangementError, ValueError):
    code = "invalid_period"


class InsufficientRoster(ArrangementError):
    code = "insufficient_roster"


class Unsatisfiable(ArrangementError):
    code = "unsatisfiable"


class ConcurrentArrangementInProgress(ArrangementError):
    code = "arrangement_in_progress"


class RotationStateConflict(ArrangementError):
    """Rotation rows changed between read and commit."""

    code = "rotation_state_conflict"


class PeriodNotArranged(ArrangementError):
    code = "period_not_arranged"


class PersistenceFailure(ArrangementError):
    code = "persistence_failure"
