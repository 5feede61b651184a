"""Pydantic schemas for API contracts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class UserSyncItem(BaseModel):
    external_id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(min_length=1, max_length=120)
    active: bool = True


class RosterSyncRequest(BaseModel):
    users: list[UserSyncItem]


class UserResponse(BaseModel):
    id: int
    external_id: str
    display_name: str
    active: bool


class RosterSyncResponse(BaseModel):
    users: list[UserResponse]
    deactivated_user_ids: list[int] = Field(default_factory=list)


class DutySyncItem(BaseModel):
    key: str = Field(min_length=1, max_length=64)
    label: str = Field(min_length=1, max_length=120)
    weight: float = Field(default=1.0, gt=0)
    excluded_user_ids: list[int] = Field(default_factory=list)
    active: bool = True


class DutiesSyncRequest(BaseModel):
    duties: list[DutySyncItem]


class DutyResponse(BaseModel):
    id: int
    key: str
    label: str
    weight: float
    sort_order: int
    excluded_user_ids: list[int]
    active: bool


class ArrangeRequest(BaseModel):
    year: int | float | str | None = None
    month: int | float | str | None = None
    actor_user_id: str | None = None
    wait: bool = True


class ReArrangeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    actor_user_id: str | None = None


class DutyAssignmentResponse(BaseModel):
    duty_id: int
    duty_key: str
    duty_label: str
    user_id: int
    user_display_name: str | None
    weight: float
    generation: int
    committed_at: datetime


class CleaningDutiesResponse(BaseModel):
    year: int
    month: int
    state: str
    generation: int | None
    computed: bool = False
    assignments: list[DutyAssignmentResponse]


class ArrangementGenerationResponse(BaseModel):
    generation: int
    current: bool
    assignments: list[DutyAssignmentResponse]


class ArrangementOverrideResponse(BaseModel):
    superseded_generation: int
    generation: int
    reason: str
    actor_user_id_raw: str | None
    created_at: datetime


class ArrangementHistoryResponse(BaseModel):
    year: int
    month: int
    generations: list[ArrangementGenerationResponse]
    overrides: list[ArrangementOverrideResponse]


class DutyCursorResponse(BaseModel):
    duty_id: int
    duty_key: str
    cursor_index: int
    cursor_user_id: int | None
    version: int
    last_period: str | None


class UserLoadResponse(BaseModel):
    user_id: int
    assigned_weight: float
    assignment_count: int


class RotationStateResponse(BaseModel):
    cursors: list[DutyCursorResponse]
    loads: list[UserLoadResponse]


class ActivityEventResponse(BaseModel):
    id: int
    domain: str
    action: str
    actor_user_id: int | None
    actor_user_id_raw: str | None
    payload_json: dict[str, Any]
    created_at: datetime
