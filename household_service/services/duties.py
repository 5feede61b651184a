"""Duty catalog synchronization and lookup."""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Duty
from ..schemas import DutySyncItem
from .activity import log_event
from .engine import DutySpec

_LOGGER = logging.getLogger(__name__)


def duty_key_for(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", label.strip().lower()).strip("_")


def list_duties(session: Session) -> list[Duty]:
    return session.execute(select(Duty).order_by(Duty.sort_order.asc(), Duty.id.asc())).scalars().all()


def active_duty_specs(session: Session) -> list[DutySpec]:
    """Active duties in catalog order, as engine input."""

    return [
        DutySpec(
            duty_id=duty.id,
            key=duty.key,
            label=duty.label,
            weight=float(duty.weight),
            excluded_user_ids=frozenset(int(value) for value in duty.excluded_user_ids_json or []),
        )
        for duty in list_duties(session)
        if duty.active
    ]


def sync_duties(
    session: Session,
    items: list[DutySyncItem],
    *,
    actor_user_id_raw: str | None = None,
) -> list[Duty]:
    """Upsert the duty catalog; catalog order follows the payload, missing duties are deactivated."""

    keys = [duty_key_for(item.key) for item in items]
    if any(not key for key in keys):
        raise ValueError("Duty keys must contain at least one letter or digit")
    if len(set(keys)) != len(keys):
        raise ValueError("Duty keys must be unique")

    existing = {duty.key: duty for duty in session.execute(select(Duty)).scalars().all()}

    for position, (key, item) in enumerate(zip(keys, items)):
        excluded = sorted({int(value) for value in item.excluded_user_ids})
        duty = existing.get(key)
        if duty is None:
            duty = Duty(key=key)
            session.add(duty)
            existing[key] = duty
        duty.label = item.label.strip()
        duty.weight = float(item.weight)
        duty.sort_order = position
        duty.excluded_user_ids_json = excluded
        duty.active = item.active

    for key, duty in existing.items():
        if key not in keys and duty.active:
            duty.active = False

    log_event(
        session,
        domain="duties",
        action="duty_catalog_synced",
        actor_user_id=None,
        actor_user_id_raw=actor_user_id_raw,
        payload={"keys": keys},
    )
    session.commit()
    return list_duties(session)


def seed_default_duties(session: Session, entries: list[tuple[str, float]]) -> list[Duty]:
    """Populate an empty catalog from configured ``(label, weight)`` pairs."""

    if session.execute(select(Duty.id).limit(1)).first() is not None:
        return []

    seeded: list[Duty] = []
    for position, (label, weight) in enumerate(entries):
        key = duty_key_for(label)
        if not key or any(duty.key == key for duty in seeded):
            continue
        duty = Duty(key=key, label=label, weight=weight, sort_order=position, excluded_user_ids_json=[])
        session.add(duty)
        seeded.append(duty)

    if seeded:
        _LOGGER.info("Seeded duty catalog with %s", ", ".join(duty.key for duty in seeded))
    session.commit()
    return seeded
