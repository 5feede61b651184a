"""Roster synchronization and eligible-user lookup."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import User
from ..schemas import UserSyncItem
from .periods import Period


class RosterProvider(Protocol):
    """Supplies the ordered eligible users for a period."""

    def eligible_user_ids(self, session: Session, period: Period) -> list[int]:
        ...


class ActiveUserRoster:
    """Active users in ascending id order."""

    def eligible_user_ids(self, session: Session, period: Period) -> list[int]:
        return list(
            session.execute(
                select(User.id).where(User.active.is_(True)).order_by(User.id.asc())
            ).scalars().all()
        )


def sync_users(session: Session, items: list[UserSyncItem]) -> tuple[list[User], list[int]]:
    """Upsert users from the upstream account system; missing users are deactivated."""

    existing = {
        user.external_id: user
        for user in session.execute(select(User)).scalars().all()
    }

    seen_external_ids: set[str] = set()
    deactivated_user_ids: set[int] = set()

    for item in items:
        external_id = item.external_id.strip()
        user = existing.get(external_id)
        if user is None:
            user = User(
                external_id=external_id,
                display_name=item.display_name.strip(),
                active=item.active,
            )
            session.add(user)
            existing[external_id] = user
        else:
            was_active = bool(user.active)
            user.display_name = item.display_name.strip()
            user.active = item.active
            if was_active and not user.active:
                deactivated_user_ids.add(user.id)
        seen_external_ids.add(external_id)

    for user in existing.values():
        if user.external_id not in seen_external_ids and user.active:
            user.active = False
            deactivated_user_ids.add(user.id)

    session.commit()

    rows = list_users(session)
    return rows, sorted(deactivated_user_ids)


def list_users(session: Session) -> list[User]:
    return session.execute(select(User).order_by(User.id.asc())).scalars().all()


def resolve_actor_user(session: Session, actor_user_id: str | None) -> User | None:
    """Resolve an external actor id to a user; unknown actors return None."""

    if not actor_user_id:
        return None
    return session.execute(select(User).where(User.external_id == actor_user_id)).scalar_one_or_none()
