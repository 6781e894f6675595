"""Goals router: staking, check-ins, progress, settlement and analytics."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.analytics_service import get_analytics
from .services.checkin_service import check_in
from .services.errors import GoalNotFoundError, GoalStateError, GoalValidationError
from .services.goals_service import (
    create_goal,
    get_goal,
    get_goal_progress,
    list_categories,
    list_goals,
    update_goal,
)
from .services.settlement_service import settle_goal
from .transactions import LedgerEntryResponse, _money

GoalStatus = Literal["active", "completed", "failed", "cancelled"]
GoalStatusFilter = Literal["active", "completed", "failed", "cancelled", "all"]

router = APIRouter(prefix="/goals", tags=["goals"])


def _error(status_code: int, exc: Exception) -> HTTPException:
    """Stable `{kind, message}` error body for service-level failures."""
    return HTTPException(
        status_code=status_code,
        detail={"kind": getattr(exc, "kind", "validation_error"), "message": str(exc)},
    )


class GoalCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=160)
    description: str | None = None
    category: str | None = Field(default=None, max_length=80)
    # Either a list or a comma-separated string.
    tags: list[str] | str | None = None
    end_date: datetime
    stake_amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)


class GoalUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=160)
    description: str | None = None
    category: str | None = Field(default=None, max_length=80)
    tags: list[str] | str | None = None
    end_date: datetime | None = None


class CheckInRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=500)


class CheckInResponse(BaseModel):
    id: UUID
    goal_id: UUID
    date: date
    checked_in: bool
    notes: str | None
    created_at: datetime


class GoalResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: str | None
    category: str | None
    tags: list[str]
    start_date: datetime
    end_date: datetime
    stake_amount: Decimal
    status: GoalStatus
    created_at: datetime
    updated_at: datetime
    total_days: int
    completed_days: int
    progress_percentage: int
    days_remaining: int

    @field_serializer("stake_amount")
    def serialize_decimal(self, value: Decimal) -> str:
        return _money(value)


class GoalDetailResponse(GoalResponse):
    checkins: list[CheckInResponse]
    transactions: list[LedgerEntryResponse]


class GoalProgressResponse(BaseModel):
    total_days: int
    completed_days: int
    progress_percentage: int
    days_remaining: int
    checkins: list[CheckInResponse]


class SettlementResultResponse(BaseModel):
    goal_id: UUID
    success_rate: int
    status: Literal["completed", "failed"]
    refund_amount: Decimal
    total_days: int
    completed_days: int

    @field_serializer("refund_amount")
    def serialize_decimal(self, value: Decimal) -> str:
        return _money(value)


class SettleGoalResponse(BaseModel):
    settled: bool
    result: SettlementResultResponse | None


class AnalyticsResponse(BaseModel):
    total_goals: int
    active_goals: int
    completed_goals: int
    failed_goals: int
    success_rate: int
    total_staked: Decimal
    total_refunded: Decimal
    total_forfeited: Decimal
    net_amount: Decimal

    @field_serializer("total_staked", "total_refunded", "total_forfeited", "net_amount")
    def serialize_decimal(self, value: Decimal) -> str:
        return _money(value)


@router.post("", response_model=GoalDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_goal_endpoint(
    payload: GoalCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> GoalDetailResponse:
    """Create an active goal and record its stake as a deposit."""
    try:
        result = await create_goal(connection, user_id, payload.model_dump())
    except GoalValidationError as exc:
        raise _error(422, exc) from exc

    return GoalDetailResponse(**result)


@router.get("", response_model=list[GoalResponse])
async def list_goals_endpoint(
    status: GoalStatusFilter = Query(default="all"),
    category: str | None = Query(default=None),
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> list[GoalResponse]:
    try:
        rows = await list_goals(connection, user_id, status=status, category=category)
    except GoalValidationError as exc:
        raise _error(422, exc) from exc

    return [GoalResponse(**row) for row in rows]


@router.get("/categories", response_model=list[str])
async def list_categories_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> list[str]:
    return await list_categories(connection, user_id)


@router.get("/analytics", response_model=AnalyticsResponse)
async def analytics_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> AnalyticsResponse:
    """
    Totals across all of the caller's goals.

    Example response:
    {
      "total_goals": 1, "active_goals": 0, "completed_goals": 1, "failed_goals": 0,
      "success_rate": 100, "total_staked": "100.00", "total_refunded": "50.00",
      "total_forfeited": "0.00", "net_amount": "-50.00"
    }
    """
    return AnalyticsResponse(**await get_analytics(connection, user_id))


@router.get("/{goal_id}", response_model=GoalDetailResponse)
async def get_goal_endpoint(
    goal_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> GoalDetailResponse:
    try:
        row = await get_goal(connection, user_id, goal_id)
    except LookupError as exc:
        raise _error(404, exc) from exc

    return GoalDetailResponse(**row)


@router.patch("/{goal_id}", response_model=GoalResponse)
async def update_goal_endpoint(
    goal_id: UUID,
    payload: GoalUpdateRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> GoalResponse:
    """Edit an active goal. Status changes only happen through settlement."""
    patch_data = payload.model_dump(exclude_unset=True)
    if not patch_data:
        raise _error(422, GoalValidationError("At least one field must be provided"))

    try:
        row = await update_goal(connection, user_id, goal_id, patch_data)
    except LookupError as exc:
        raise _error(404, exc) from exc
    except GoalStateError as exc:
        raise _error(409, exc) from exc
    except ValueError as exc:
        raise _error(422, exc) from exc

    return GoalResponse(**row)


@router.post("/{goal_id}/checkin", response_model=CheckInResponse, status_code=status.HTTP_201_CREATED)
async def check_in_endpoint(
    goal_id: UUID,
    payload: CheckInRequest | None = None,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> CheckInResponse:
    """Mark today's progress. One check-in per goal per UTC day."""
    notes = payload.notes if payload else None

    try:
        row = await check_in(connection, user_id, goal_id, notes)
    except GoalNotFoundError as exc:
        raise _error(404, exc) from exc
    except GoalStateError as exc:
        raise _error(409, exc) from exc

    return CheckInResponse(**row)


@router.get("/{goal_id}/progress", response_model=GoalProgressResponse)
async def goal_progress_endpoint(
    goal_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> GoalProgressResponse:
    try:
        progress = await get_goal_progress(connection, user_id, goal_id)
    except LookupError as exc:
        raise _error(404, exc) from exc

    return GoalProgressResponse(**progress)


@router.post("/{goal_id}/settle", response_model=SettleGoalResponse)
async def settle_goal_endpoint(
    goal_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> SettleGoalResponse:
    """
    Settle one of the caller's goals now instead of waiting for the hourly sweep.

    `settled` is false when the goal is not due yet or was already settled.
    """
    try:
        result = await settle_goal(connection, goal_id, user_id=user_id)
    except LookupError as exc:
        raise _error(404, exc) from exc

    if result is None:
        return SettleGoalResponse(settled=False, result=None)

    return SettleGoalResponse(
        settled=True,
        result=SettlementResultResponse(**result.to_dict()),
    )
