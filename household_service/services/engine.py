"""Duty rotation engine.

Pure computation: given a period, the eligible roster, the duty catalog and the
previous rotation state, return the period's assignments and the advanced
rotation state. No I/O, no clock, no randomness, so a recomputation with the
same inputs always yields the same output.

Selection per duty, in catalog order:

1. candidates are roster users not excluded from the duty (and, when duties are
   exclusive, not already holding a duty this period);
2. candidates are ranked by cumulative assigned weight, then by distance from
   the duty's cursor in roster order, then by user id;
3. the best-ranked candidate that still leaves every later duty coverable wins;
4. the duty's cursor moves past the assignee and the duty weight is added to the
   assignee's counter.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .errors import InsufficientRoster, Unsatisfiable
from .periods import Period


@dataclass(frozen=True)
class RotationPolicy:
    exclusive: bool = True
    seed_new_users_at_minimum: bool = True


DEFAULT_POLICY = RotationPolicy()

# Loads are sums of fractional weights; compare and store them at this precision.
LOAD_PRECISION = 9


def settle_load(value: float) -> float:
    return round(value, LOAD_PRECISION)


@dataclass(frozen=True)
class DutySpec:
    duty_id: int
    key: str
    label: str = ""
    weight: float = 1.0
    excluded_user_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class DutyCursor:
    """Position of the next due user; ``user_id`` re-anchors it after roster changes."""

    index: int = 0
    user_id: int | None = None


@dataclass(frozen=True)
class ComputedAssignment:
    duty_id: int
    duty_key: str
    user_id: int
    weight: float


@dataclass(frozen=True)
class RotationState:
    cursors: Mapping[int, DutyCursor] = field(default_factory=dict)
    loads: Mapping[int, float] = field(default_factory=dict)

    def release(self, assignments: Iterable[ComputedAssignment]) -> RotationState:
        """Return a copy with the assignments' weight taken back off the counters."""

        loads = dict(self.loads)
        for assignment in assignments:
            remaining = settle_load(loads.get(assignment.user_id, 0.0) - assignment.weight)
            loads[assignment.user_id] = max(remaining, 0.0)
        return RotationState(cursors=dict(self.cursors), loads=dict(sorted(loads.items())))


@dataclass(frozen=True)
class EngineResult:
    period: Period
    assignments: tuple[ComputedAssignment, ...]
    state: RotationState

    def by_duty_key(self) -> dict[str, int]:
        return {assignment.duty_key: assignment.user_id for assignment in self.assignments}


def _resolve_cursor(cursor: DutyCursor | None, ordered: list[int], position: dict[int, int]) -> int:
    if cursor is None:
        return 0
    if cursor.user_id is not None and cursor.user_id in position:
        return position[cursor.user_id]
    return min(max(cursor.index, 0), len(ordered) - 1)


def _seed_loads(ordered: list[int], known: Mapping[int, float], policy: RotationPolicy) -> dict[int, float]:
    baseline = 0.0
    if policy.seed_new_users_at_minimum:
        present = [known[user_id] for user_id in ordered if user_id in known]
        if present:
            baseline = settle_load(min(present))
    return {user_id: known.get(user_id, baseline) for user_id in ordered}


def _unmatched_duty(
    duties: Sequence[DutySpec],
    eligible: Mapping[int, list[int]],
    available: set[int],
) -> DutySpec | None:
    """Return a duty no one-duty-per-user matching can cover, or None if all fit."""

    owner: dict[int, int] = {}

    def augment(index: int, seen: set[int]) -> bool:
        for user_id in eligible[duties[index].duty_id]:
            if user_id not in available or user_id in seen:
                continue
            seen.add(user_id)
            if user_id not in owner or augment(owner[user_id], seen):
                owner[user_id] = index
                return True
        return False

    for index, duty in enumerate(duties):
        if not augment(index, set()):
            return duty
    return None


def compute_assignments(
    period: Period,
    roster: Sequence[int],
    duties: Sequence[DutySpec],
    state: RotationState | None = None,
    policy: RotationPolicy = DEFAULT_POLICY,
) -> EngineResult:
    state = state or RotationState()
    ordered = list(dict.fromkeys(roster))

    if not ordered:
        raise InsufficientRoster("no eligible users for this period", period=period)
    if not duties:
        raise Unsatisfiable("no active duties in the catalog", period=period)
    if policy.exclusive and len(duties) > len(ordered):
        raise InsufficientRoster(
            "insufficient users for exclusive assignment: "
            f"{len(duties)} duties but {len(ordered)} eligible users",
            period=period,
        )

    eligible = {
        duty.duty_id: [user_id for user_id in ordered if user_id not in duty.excluded_user_ids]
        for duty in duties
    }
    for duty in duties:
        if not eligible[duty.duty_id]:
            raise Unsatisfiable(
                f"every eligible user is excluded from '{duty.key}'",
                period=period,
                duty=duty.key,
            )

    available = set(ordered)
    if policy.exclusive:
        stranded = _unmatched_duty(duties, eligible, available)
        if stranded is not None:
            raise Unsatisfiable(
                f"no exclusive assignment leaves a user for '{stranded.key}'",
                period=period,
                duty=stranded.key,
            )

    position = {user_id: index for index, user_id in enumerate(ordered)}
    loads = _seed_loads(ordered, state.loads, policy)
    cursors = dict(state.cursors)
    touched_loads: dict[int, float] = {}
    assignments: list[ComputedAssignment] = []

    for offset, duty in enumerate(duties):
        start = _resolve_cursor(cursors.get(duty.duty_id), ordered, position)
        candidates = sorted(
            (user_id for user_id in eligible[duty.duty_id] if user_id in available),
            key=lambda user_id: (settle_load(loads[user_id]), (position[user_id] - start) % len(ordered), user_id),
        )

        assignee: int | None = None
        if policy.exclusive:
            remaining = duties[offset + 1:]
            for user_id in candidates:
                if _unmatched_duty(remaining, eligible, available - {user_id}) is None:
                    assignee = user_id
                    break
        elif candidates:
            assignee = candidates[0]

        if assignee is None:
            raise Unsatisfiable(f"no candidate left for '{duty.key}'", period=period, duty=duty.key)

        if policy.exclusive:
            available.discard(assignee)

        following = (position[assignee] + 1) % len(ordered)
        cursors[duty.duty_id] = DutyCursor(index=following, user_id=ordered[following])
        loads[assignee] = settle_load(loads[assignee] + duty.weight)
        touched_loads[assignee] = loads[assignee]
        assignments.append(
            ComputedAssignment(
                duty_id=duty.duty_id,
                duty_key=duty.key,
                user_id=assignee,
                weight=duty.weight,
            )
        )

    merged_loads = dict(state.loads)
    merged_loads.update(touched_loads)
    return EngineResult(
        period=period,
        assignments=tuple(assignments),
        state=RotationState(
            cursors=dict(sorted(cursors.items())),
            loads=dict(sorted(merged_loads.items())),
        ),
    )
