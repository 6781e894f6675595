from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from psycopg import AsyncConnection
from pydantic import BaseModel, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.ledger_service import list_transactions

router = APIRouter(tags=["transactions"])

TransactionType = Literal["deposit", "refund", "forfeit"]


def _money(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class LedgerEntryResponse(BaseModel):
    id: UUID
    user_id: UUID
    goal_id: UUID
    amount: Decimal
    type: TransactionType
    status: str
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return _money(value)


class LedgerListResponse(BaseModel):
    items: list[LedgerEntryResponse]
    limit: int
    offset: int
    total: int


@router.get("/transactions", response_model=LedgerListResponse)
async def list_ledger_entries(
    goal_id: UUID | None = Query(default=None),
    type_filter: TransactionType | None = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> LedgerListResponse:
    """Read-only view of the caller's ledger. Entries are never edited or deleted."""
    try:
        page = await list_transactions(
            connection,
            user_id,
            goal_id=goal_id,
            transaction_type=type_filter,
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=422, detail={"kind": "validation_error", "message": str(exc)}
        ) from exc

    return LedgerListResponse(
        items=[LedgerEntryResponse.model_validate(row) for row in page["items"]],
        limit=page["limit"],
        offset=page["offset"],
        total=page["total"],
    )
