"""Committed duty assignments and per-period arrangement records.

Assignment rows are append-only. A period's current generation is the one named
by its arrangement record; superseded generations stay in the table as history.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import ArrangementOverride, ArrangementRecord, Duty, DutyAssignment, User
from .engine import ComputedAssignment
from .errors import RotationStateConflict
from .periods import Period


def get_record(session: Session, period: Period) -> ArrangementRecord | None:
    return session.execute(
        select(ArrangementRecord)
        .where(ArrangementRecord.year == period.year, ArrangementRecord.month == period.month)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def create_record(session: Session, period: Period, *, committed_at: datetime) -> bool:
    """Insert the period's record; False when another writer committed it first."""

    try:
        session.execute(
            insert(ArrangementRecord).values(
                year=period.year,
                month=period.month,
                generation=1,
                committed_at=committed_at,
                updated_at=committed_at,
            )
        )
    except IntegrityError:
        return False
    return True


def advance_generation(session: Session, period: Period, *, expected: int, committed_at: datetime) -> int:
    result = session.execute(
        update(ArrangementRecord)
        .where(
            ArrangementRecord.year == period.year,
            ArrangementRecord.month == period.month,
            ArrangementRecord.generation == expected,
        )
        .values(generation=expected + 1, committed_at=committed_at, updated_at=committed_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RotationStateConflict("arrangement record changed during re-arrangement", period=period)
    return expected + 1


def append_generation(
    session: Session,
    period: Period,
    *,
    generation: int,
    assignments: Sequence[ComputedAssignment],
    committed_at: datetime,
) -> None:
    session.add_all(
        [
            DutyAssignment(
                year=period.year,
                month=period.month,
                generation=generation,
                duty_id=assignment.duty_id,
                user_id=assignment.user_id,
                weight=assignment.weight,
                committed_at=committed_at,
            )
            for assignment in assignments
        ]
    )
    session.flush()


def record_override(
    session: Session,
    period: Period,
    *,
    superseded_generation: int,
    generation: int,
    reason: str,
    actor_user_id_raw: str | None,
    created_at: datetime,
) -> ArrangementOverride:
    override = ArrangementOverride(
        year=period.year,
        month=period.month,
        superseded_generation=superseded_generation,
        generation=generation,
        reason=reason,
        actor_user_id_raw=actor_user_id_raw,
        created_at=created_at,
    )
    session.add(override)
    session.flush()
    return override


def _assignment_rows(session: Session, period: Period, generation: int | None = None) -> list:
    query = (
        select(DutyAssignment, Duty.key, Duty.label, User.display_name)
        .join(Duty, Duty.id == DutyAssignment.duty_id)
        .outerjoin(User, User.id == DutyAssignment.user_id)
        .where(DutyAssignment.year == period.year, DutyAssignment.month == period.month)
    )
    if generation is not None:
        query = query.where(DutyAssignment.generation == generation)
    return session.execute(query.order_by(DutyAssignment.generation.asc(), DutyAssignment.id.asc())).all()


def _as_dict(assignment: DutyAssignment, duty_key: str, duty_label: str, display_name: str | None) -> dict:
    return {
        "duty_id": assignment.duty_id,
        "duty_key": duty_key,
        "duty_label": duty_label,
        "user_id": assignment.user_id,
        "user_display_name": display_name,
        "weight": float(assignment.weight),
        "generation": assignment.generation,
        "committed_at": assignment.committed_at,
    }


def assignments_for(session: Session, period: Period, generation: int) -> list[dict]:
    return [_as_dict(*row) for row in _assignment_rows(session, period, generation)]


def computed_assignments_for(session: Session, period: Period, generation: int) -> list[ComputedAssignment]:
    return [
        ComputedAssignment(
            duty_id=assignment.duty_id,
            duty_key=duty_key,
            user_id=assignment.user_id,
            weight=float(assignment.weight),
        )
        for assignment, duty_key, _label, _name in _assignment_rows(session, period, generation)
    ]


def history(session: Session, period: Period) -> dict:
    record = get_record(session, period)
    generations: dict[int, list[dict]] = {}
    for row in _assignment_rows(session, period):
        generations.setdefault(row[0].generation, []).append(_as_dict(*row))

    overrides = session.execute(
        select(ArrangementOverride)
        .where(ArrangementOverride.year == period.year, ArrangementOverride.month == period.month)
        .order_by(ArrangementOverride.created_at.asc(), ArrangementOverride.id.asc())
    ).scalars().all()

    return {
        "year": period.year,
        "month": period.month,
        "generations": [
            {
                "generation": generation,
                "current": record is not None and record.generation == generation,
                "assignments": rows,
            }
            for generation, rows in sorted(generations.items())
        ],
        "overrides": [
            {
                "superseded_generation": row.superseded_generation,
                "generation": row.generation,
                "reason": row.reason,
                "actor_user_id_raw": row.actor_user_id_raw,
                "created_at": row.created_at,
            }
            for row in overrides
        ],
    }
