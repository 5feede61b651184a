"""FastAPI entrypoint for the household duty service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from . import db
from .db import Base, get_session
from .schemas import (
    ActivityEventResponse,
    ArrangeRequest,
    ArrangementHistoryResponse,
    CleaningDutiesResponse,
    DutiesSyncRequest,
    DutyResponse,
    ReArrangeRequest,
    RosterSyncRequest,
    RosterSyncResponse,
    RotationStateResponse,
    UserResponse,
)
from .services import duties, roster
from .services.activity import list_events
from .services.coordinator import ArrangementCoordinator, ArrangementResult
from .services.engine import RotationPolicy
from .services.errors import (
    ArrangementError,
    ConcurrentArrangementInProgress,
    InsufficientRoster,
    InvalidPeriod,
    PeriodNotArranged,
    PersistenceFailure,
    RotationStateConflict,
    Unsatisfiable,
)
from .services.periods import Period, parse_period
from .services.rotation import rotation_overview
from .settings import settings

_ERROR_STATUS: dict[type[ArrangementError], int] = {
    InvalidPeriod: status.HTTP_400_BAD_REQUEST,
    PeriodNotArranged: status.HTTP_404_NOT_FOUND,
    InsufficientRoster: status.HTTP_409_CONFLICT,
    Unsatisfiable: status.HTTP_409_CONFLICT,
    ConcurrentArrangementInProgress: status.HTTP_409_CONFLICT,
    RotationStateConflict: status.HTTP_409_CONFLICT,
    PersistenceFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def build_coordinator() -> ArrangementCoordinator:
    return ArrangementCoordinator(
        roster.ActiveUserRoster(),
        policy=RotationPolicy(
            exclusive=settings.exclusive_duties,
            seed_new_users_at_minimum=settings.seed_new_users_at_minimum,
        ),
        lock_timeout=settings.arrange_lock_timeout,
        max_attempts=settings.arrange_max_attempts,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.configure_engine()
    db.ensure_db_dir()
    assert db.engine is not None
    Base.metadata.create_all(bind=db.engine)
    session = db.new_session()
    try:
        duties.seed_default_duties(session, settings.default_duties)
    finally:
        session.close()
    app.state.coordinator = build_coordinator()
    yield


app = FastAPI(title="household-duty-service", version="0.1.0", lifespan=lifespan)


def require_token(x_household_token: str | None = Header(default=None)) -> None:
    if x_household_token != settings.api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_coordinator(request: Request) -> ArrangementCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        coordinator = build_coordinator()
        request.app.state.coordinator = coordinator
    return coordinator


def _http_error(exc: ArrangementError) -> HTTPException:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return HTTPException(status_code=status_code, detail=exc.as_detail())


def _requested_period(payload: ArrangeRequest | None) -> Period:
    if payload is None or (payload.year is None and payload.month is None):
        return Period.current(settings.timezone)
    if payload.year is None or payload.month is None:
        raise InvalidPeriod("year and month must be given together")
    return parse_period(payload.year, payload.month)


def _duties_response(result: ArrangementResult) -> CleaningDutiesResponse:
    return CleaningDutiesResponse(
        year=result.period.year,
        month=result.period.month,
        state=result.state.value,
        generation=result.generation,
        computed=result.computed,
        assignments=result.assignments,
    )


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.get("/v1/roster", response_model=list[UserResponse], dependencies=[Depends(require_token)])
def get_roster(session: Session = Depends(get_session)) -> list[UserResponse]:
    return [
        UserResponse(
            id=row.id,
            external_id=row.external_id,
            display_name=row.display_name,
            active=row.active,
        )
        for row in roster.list_users(session)
    ]


@app.put("/v1/roster/sync", response_model=RosterSyncResponse, dependencies=[Depends(require_token)])
def put_roster_sync(
    payload: RosterSyncRequest,
    session: Session = Depends(get_session),
) -> RosterSyncResponse:
    rows, deactivated_user_ids = roster.sync_users(session, payload.users)
    return RosterSyncResponse(
        users=[
            UserResponse(
                id=row.id,
                external_id=row.external_id,
                display_name=row.display_name,
                active=row.active,
            )
            for row in rows
        ],
        deactivated_user_ids=deactivated_user_ids,
    )


def _duty_response(row) -> DutyResponse:
    return DutyResponse(
        id=row.id,
        key=row.key,
        label=row.label,
        weight=row.weight,
        sort_order=row.sort_order,
        excluded_user_ids=list(row.excluded_user_ids_json or []),
        active=row.active,
    )


@app.get("/v1/duties", response_model=list[DutyResponse], dependencies=[Depends(require_token)])
def get_duties(session: Session = Depends(get_session)) -> list[DutyResponse]:
    return [_duty_response(row) for row in duties.list_duties(session)]


@app.put("/v1/duties/sync", response_model=list[DutyResponse], dependencies=[Depends(require_token)])
def put_duties_sync(
    payload: DutiesSyncRequest,
    session: Session = Depends(get_session),
) -> list[DutyResponse]:
    try:
        rows = duties.sync_duties(session, payload.duties)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return [_duty_response(row) for row in rows]


@app.post(
    "/v1/cleaning-duties/arrange",
    response_model=CleaningDutiesResponse,
    dependencies=[Depends(require_token)],
)
def post_arrange_cleaning_duties(
    payload: ArrangeRequest | None = Body(default=None),
    session: Session = Depends(get_session),
    coordinator: ArrangementCoordinator = Depends(get_coordinator),
) -> CleaningDutiesResponse:
    try:
        period = _requested_period(payload)
        result = coordinator.arrange(
            session,
            period,
            actor_user_id=payload.actor_user_id if payload else None,
            wait=payload.wait if payload else True,
        )
    except ArrangementError as exc:
        raise _http_error(exc) from exc
    return _duties_response(result)


@app.get(
    "/v1/cleaning-duties/rotation",
    response_model=RotationStateResponse,
    dependencies=[Depends(require_token)],
)
def get_rotation_state(session: Session = Depends(get_session)) -> RotationStateResponse:
    return RotationStateResponse(**rotation_overview(session))


@app.get(
    "/v1/cleaning-duties/{year}/{month}",
    response_model=CleaningDutiesResponse,
    dependencies=[Depends(require_token)],
)
def get_cleaning_duties(
    year: str,
    month: str,
    session: Session = Depends(get_session),
    coordinator: ArrangementCoordinator = Depends(get_coordinator),
) -> CleaningDutiesResponse:
    try:
        period = parse_period(year, month)
    except InvalidPeriod as exc:
        raise _http_error(exc) from exc

    state = coordinator.state(session, period)
    assignments = coordinator.get_assignments(session, period)
    return CleaningDutiesResponse(
        year=period.year,
        month=period.month,
        state=state.value,
        generation=assignments[0]["generation"] if assignments else None,
        computed=False,
        assignments=assignments,
    )


@app.post(
    "/v1/cleaning-duties/{year}/{month}/rearrange",
    response_model=CleaningDutiesResponse,
    dependencies=[Depends(require_token)],
)
def post_rearrange_cleaning_duties(
    year: str,
    month: str,
    payload: ReArrangeRequest,
    session: Session = Depends(get_session),
    coordinator: ArrangementCoordinator = Depends(get_coordinator),
) -> CleaningDutiesResponse:
    try:
        period = parse_period(year, month)
        result = coordinator.re_arrange(
            session,
            period,
            reason=payload.reason,
            actor_user_id=payload.actor_user_id,
        )
    except ArrangementError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _duties_response(result)


@app.get(
    "/v1/cleaning-duties/{year}/{month}/history",
    response_model=ArrangementHistoryResponse,
    dependencies=[Depends(require_token)],
)
def get_cleaning_duty_history(
    year: str,
    month: str,
    session: Session = Depends(get_session),
    coordinator: ArrangementCoordinator = Depends(get_coordinator),
) -> ArrangementHistoryResponse:
    try:
        period = parse_period(year, month)
    except InvalidPeriod as exc:
        raise _http_error(exc) from exc
    return ArrangementHistoryResponse(**coordinator.history(session, period))


@app.get(
    "/v1/activity",
    response_model=list[ActivityEventResponse],
    dependencies=[Depends(require_token)],
)
def get_activity(
    limit: int = Query(default=50, ge=1, le=500),
    domain: str | None = Query(default=None, min_length=1, max_length=64),
    session: Session = Depends(get_session),
) -> list[ActivityEventResponse]:
    return [
        ActivityEventResponse(
            id=row.id,
            domain=row.domain,
            action=row.action,
            actor_user_id=row.actor_user_id,
            actor_user_id_raw=row.actor_user_id_raw,
            payload_json=row.payload_json,
            created_at=row.created_at,
        )
        for row in list_events(session, limit=limit, domain=domain)
    ]
