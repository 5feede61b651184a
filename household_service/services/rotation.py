"""Persisted rotation cursors and load counters.

Rows carry a ``version`` column. Writes are compare-and-swap against the
version read in the snapshot, so two arrangements touching the same duty or
user cannot silently overwrite each other; the loser sees
``RotationStateConflict`` and recomputes from fresh state.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Duty, DutyRotation, UserLoad, utc_now
from .engine import ComputedAssignment, DutyCursor, RotationState
from .errors import RotationStateConflict
from .periods import Period

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotationSnapshot:
    state: RotationState
    cursor_versions: dict[int, int] = field(default_factory=dict)
    load_versions: dict[int, int] = field(default_factory=dict)
    last_periods: dict[int, Period] = field(default_factory=dict)


def load_snapshot(session: Session) -> RotationSnapshot:
    cursors: dict[int, DutyCursor] = {}
    cursor_versions: dict[int, int] = {}
    last_periods: dict[int, Period] = {}
    for row in session.execute(select(DutyRotation).order_by(DutyRotation.duty_id)).scalars().all():
        cursors[row.duty_id] = DutyCursor(index=row.cursor_index, user_id=row.cursor_user_id)
        cursor_versions[row.duty_id] = row.version
        if row.last_year is not None and row.last_month is not None:
            last_periods[row.duty_id] = Period(row.last_year, row.last_month)

    loads: dict[int, float] = {}
    load_versions: dict[int, int] = {}
    for row in session.execute(select(UserLoad).order_by(UserLoad.user_id)).scalars().all():
        loads[row.user_id] = float(row.assigned_weight)
        load_versions[row.user_id] = row.version

    return RotationSnapshot(
        state=RotationState(cursors=cursors, loads=loads),
        cursor_versions=cursor_versions,
        load_versions=load_versions,
        last_periods=last_periods,
    )


def _compare_and_swap(session: Session, statement, *, period: Period, what: str) -> None:
    result = session.execute(statement.execution_options(synchronize_session=False))
    if result.rowcount != 1:
        raise RotationStateConflict(f"{what} changed during arrangement", period=period)


def _insert_once(session: Session, statement, *, period: Period, what: str) -> None:
    try:
        session.execute(statement)
    except IntegrityError as exc:
        raise RotationStateConflict(f"{what} was created during arrangement", period=period) from exc


def commit_rotation(
    session: Session,
    snapshot: RotationSnapshot,
    new_state: RotationState,
    *,
    period: Period,
    assigned: Sequence[ComputedAssignment],
    released: Sequence[ComputedAssignment] = (),
) -> None:
    """Stage cursor and load writes for the current transaction; the caller commits."""

    now = utc_now()

    for assignment in assigned:
        duty_id = assignment.duty_id
        cursor = new_state.cursors[duty_id]
        previous = snapshot.last_periods.get(duty_id)
        if previous is not None and period < previous:
            _LOGGER.warning(
                "Arranging %s after %s for duty %s; rotation continues from the later cursor",
                period,
                previous,
                assignment.duty_key,
            )
        latest = max(period, previous) if previous is not None else period
        values = {
            "cursor_index": cursor.index,
            "cursor_user_id": cursor.user_id,
            "last_year": latest.year,
            "last_month": latest.month,
            "updated_at": now,
        }
        expected = snapshot.cursor_versions.get(duty_id)
        if expected is None:
            _insert_once(
                session,
                insert(DutyRotation).values(duty_id=duty_id, version=1, **values),
                period=period,
                what=f"rotation cursor for duty {assignment.duty_key}",
            )
        else:
            _compare_and_swap(
                session,
                update(DutyRotation)
                .where(DutyRotation.duty_id == duty_id, DutyRotation.version == expected)
                .values(version=expected + 1, **values),
                period=period,
                what=f"rotation cursor for duty {assignment.duty_key}",
            )

    count_deltas: Counter[int] = Counter()
    for assignment in assigned:
        count_deltas[assignment.user_id] += 1
    for assignment in released:
        count_deltas[assignment.user_id] -= 1

    for user_id in sorted(count_deltas):
        weight = float(new_state.loads.get(user_id, 0.0))
        expected = snapshot.load_versions.get(user_id)
        if expected is None:
            _insert_once(
                session,
                insert(UserLoad).values(
                    user_id=user_id,
                    assigned_weight=weight,
                    assignment_count=max(count_deltas[user_id], 0),
                    version=1,
                    updated_at=now,
                ),
                period=period,
                what=f"load counter for user {user_id}",
            )
        else:
            _compare_and_swap(
                session,
                update(UserLoad)
                .where(UserLoad.user_id == user_id, UserLoad.version == expected)
                .values(
                    assigned_weight=weight,
                    assignment_count=UserLoad.assignment_count + count_deltas[user_id],
                    version=expected + 1,
                    updated_at=now,
                ),
                period=period,
                what=f"load counter for user {user_id}",
            )


def rotation_overview(session: Session) -> dict:
    cursor_rows = session.execute(
        select(DutyRotation, Duty.key)
        .join(Duty, Duty.id == DutyRotation.duty_id)
        .order_by(Duty.sort_order.asc(), Duty.id.asc())
    ).all()
    load_rows = session.execute(select(UserLoad).order_by(UserLoad.user_id.asc())).scalars().all()

    return {
        "cursors": [
            {
                "duty_id": rotation.duty_id,
                "duty_key": duty_key,
                "cursor_index": rotation.cursor_index,
                "cursor_user_id": rotation.cursor_user_id,
                "version": rotation.version,
                "last_period": (
                    str(Period(rotation.last_year, rotation.last_month))
                    if rotation.last_year is not None and rotation.last_month is not None
                    else None
                ),
            }
            for rotation, duty_key in cursor_rows
        ],
        "loads": [
            {
                "user_id": row.user_id,
                "assigned_weight": float(row.assigned_weight),
                "assignment_count": row.assignment_count,
            }
            for row in load_rows
        ],
    }
