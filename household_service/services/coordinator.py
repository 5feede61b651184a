"""Arrangement coordination: per-period locking, idempotency and atomic commit."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import ledger, rotation
from .activity import log_event
from .duties import active_duty_specs
from .engine import DEFAULT_POLICY, ComputedAssignment, RotationPolicy, compute_assignments
from .errors import (
    ArrangementError,
    ConcurrentArrangementInProgress,
    PeriodNotArranged,
    PersistenceFailure,
    RotationStateConflict,
)
from .periods import Period, now_utc
from .roster import RosterProvider, resolve_actor_user

_LOGGER = logging.getLogger(__name__)


class ArrangementState(str, Enum):
    UNARRANGED = "unarranged"
    ARRANGING = "arranging"
    COMMITTED = "committed"


@dataclass(frozen=True)
class ArrangementResult:
    period: Period
    generation: int
    assignments: list[dict]
    computed: bool
    state: ArrangementState = ArrangementState.COMMITTED


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class PeriodLocks:
    """Mutual exclusion per period; entries live only while someone holds or waits."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Period, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, period: Period, timeout: float | None = None) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(period, _LockEntry())
            entry.holders += 1

        acquired = False
        try:
            acquired = entry.lock.acquire(timeout=-1 if timeout is None else max(timeout, 0.0))
            if not acquired:
                raise ConcurrentArrangementInProgress(
                    "another arrangement for this period is still running",
                    period=period,
                )
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(period, None)


class ArrangementCoordinator:
    """Serializes arrange requests per period and commits each period at most once.

    ``arrange`` is idempotent: a committed period is served from the ledger
    without recomputation. ``re_arrange`` is the explicit override that appends
    a new generation. The ``arranging`` state exists only in memory, inside the
    period lock, so a crash mid-arrangement leaves the period unarranged.
    """

    def __init__(
        self,
        roster: RosterProvider,
        *,
        policy: RotationPolicy = DEFAULT_POLICY,
        lock_timeout: float | None = 10.0,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._roster = roster
        self.policy = policy
        self._lock_timeout = lock_timeout
        self._max_attempts = max(max_attempts, 1)
        self._clock = clock
        self._locks = PeriodLocks()
        self._in_flight: set[Period] = set()
        self._in_flight_guard = threading.Lock()

    def state(self, session: Session, period: Period) -> ArrangementState:
        with self._in_flight_guard:
            if period in self._in_flight:
                return ArrangementState.ARRANGING
        if ledger.get_record(session, period) is not None:
            return ArrangementState.COMMITTED
        return ArrangementState.UNARRANGED

    def get_assignments(self, session: Session, period: Period) -> list[dict]:
        record = ledger.get_record(session, period)
        if record is None:
            return []
        return ledger.assignments_for(session, period, record.generation)

    def history(self, session: Session, period: Period) -> dict:
        return ledger.history(session, period)

    def arrange(
        self,
        session: Session,
        period: Period,
        *,
        actor_user_id: str | None = None,
        wait: bool = True,
    ) -> ArrangementResult:
        existing = self._committed(session, period)
        if existing is not None:
            _LOGGER.debug("Period %s already committed at generation %s", period, existing.generation)
            return existing
        # Do not carry a read transaction into the wait for the lock.
        session.rollback()

        with self._locks.hold(period, self._lock_timeout if wait else 0.0):
            existing = self._committed(session, period)
            if existing is not None:
                _LOGGER.debug("Period %s was committed while waiting for the lock", period)
                return existing
            with self._arranging(period):
                return self._run(session, period, actor_user_id=actor_user_id, reason=None)

    def re_arrange(
        self,
        session: Session,
        period: Period,
        *,
        reason: str,
        actor_user_id: str | None = None,
        wait: bool = True,
    ) -> ArrangementResult:
        reason = reason.strip()
        if not reason:
            raise ValueError("A re-arrangement needs a reason")
        session.rollback()

        with self._locks.hold(period, self._lock_timeout if wait else 0.0):
            if ledger.get_record(session, period) is None:
                raise PeriodNotArranged("period has no committed arrangement to supersede", period=period)
            with self._arranging(period):
                return self._run(session, period, actor_user_id=actor_user_id, reason=reason)

    @contextmanager
    def _arranging(self, period: Period) -> Iterator[None]:
        with self._in_flight_guard:
            self._in_flight.add(period)
        try:
            yield
        finally:
            with self._in_flight_guard:
                self._in_flight.discard(period)

    def _committed(self, session: Session, period: Period) -> ArrangementResult | None:
        record = ledger.get_record(session, period)
        if record is None:
            return None
        return ArrangementResult(
            period=period,
            generation=record.generation,
            assignments=ledger.assignments_for(session, period, record.generation),
            computed=False,
        )

    def _run(
        self,
        session: Session,
        period: Period,
        *,
        actor_user_id: str | None,
        reason: str | None,
    ) -> ArrangementResult:
        conflict: RotationStateConflict | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._compute_and_commit(session, period, actor_user_id=actor_user_id, reason=reason)
            except RotationStateConflict as exc:
                session.rollback()
                conflict = exc
                _LOGGER.warning(
                    "Rotation state changed while arranging %s (attempt %s/%s): %s",
                    period,
                    attempt,
                    self._max_attempts,
                    exc.reason,
                )
            except ArrangementError:
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                _LOGGER.exception("Committing the arrangement for %s failed", period)
                raise PersistenceFailure(
                    f"could not commit arrangement ({exc.__class__.__name__})",
                    period=period,
                ) from exc

        raise RotationStateConflict(
            f"rotation state kept changing after {self._max_attempts} attempts",
            period=period,
        ) from conflict

    def _compute_and_commit(
        self,
        session: Session,
        period: Period,
        *,
        actor_user_id: str | None,
        reason: str | None,
    ) -> ArrangementResult:
        record = ledger.get_record(session, period)
        if reason is None and record is not None:
            return self._committed(session, period)
        if reason is not None and record is None:
            raise PeriodNotArranged("period has no committed arrangement to supersede", period=period)

        roster = self._roster.eligible_user_ids(session, period)
        duties = active_duty_specs(session)
        snapshot = rotation.load_snapshot(session)

        released: list[ComputedAssignment] = []
        base_state = snapshot.state
        if record is not None:
            released = ledger.computed_assignments_for(session, period, record.generation)
            base_state = base_state.release(released)

        _LOGGER.info(
            "Arranging %s: %s duties over %s eligible users%s",
            period,
            len(duties),
            len(roster),
            f" (override: {reason})" if reason else "",
        )
        result = compute_assignments(period, roster, duties, base_state, self.policy)

        committed_at = self._clock()
        if record is None:
            if not ledger.create_record(session, period, committed_at=committed_at):
                session.rollback()
                _LOGGER.info("Period %s was committed by another writer", period)
                existing = self._committed(session, period)
                if existing is None:
                    raise RotationStateConflict("arrangement record vanished after a conflict", period=period)
                return existing
            generation = 1
        else:
            generation = ledger.advance_generation(
                session,
                period,
                expected=record.generation,
                committed_at=committed_at,
            )

        ledger.append_generation(
            session,
            period,
            generation=generation,
            assignments=result.assignments,
            committed_at=committed_at,
        )
        rotation.commit_rotation(
            session,
            snapshot,
            result.state,
            period=period,
            assigned=result.assignments,
            released=released,
        )

        actor = resolve_actor_user(session, actor_user_id)
        if record is not None:
            ledger.record_override(
                session,
                period,
                superseded_generation=record.generation,
                generation=generation,
                reason=reason or "",
                actor_user_id_raw=actor_user_id,
                created_at=committed_at,
            )
        log_event(
            session,
            domain="cleaning_duty",
            action="duties_rearranged" if record is not None else "duties_arranged",
            actor_user_id=actor.id if actor else None,
            actor_user_id_raw=actor_user_id,
            payload={
                "period": str(period),
                "generation": generation,
                "assignments": result.by_duty_key(),
                "reason": reason,
            },
            created_at=committed_at,
        )
        session.commit()

        _LOGGER.info("Committed %s generation %s: %s", period, generation, result.by_duty_key())
        return ArrangementResult(
            period=period,
            generation=generation,
            assignments=ledger.assignments_for(session, period, generation),
            computed=True,
        )
