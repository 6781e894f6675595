"""Append-only ledger of stake deposits, refunds and forfeits.

Rows are only ever inserted. Corrections, if ever needed, are new
compensating rows; this module has no update or delete helper.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

TransactionType = Literal["deposit", "refund", "forfeit"]
VALID_TYPES: set[str] = {"deposit", "refund", "forfeit"}
MONEY_QUANT = Decimal("0.01")

TRANSACTION_COLUMNS = "id, user_id, goal_id, amount, type, status, created_at"


def quantize_amount(value: Decimal) -> Decimal:
    """Normalize money values to NUMERIC(12,2) precision."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _normalize_amount(value: Decimal | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return quantize_amount(Decimal(str(value)))


async def append_transaction(
    connection: AsyncConnection,
    *,
    user_id: UUID,
    goal_id: UUID,
    amount: Decimal,
    transaction_type: TransactionType,
) -> dict[str, Any]:
    """
    Insert one ledger row.

    Callers that pair this with another write (goal creation, settlement)
    must run both inside the same `connection.transaction()` block.
    """
    if transaction_type not in VALID_TYPES:
        raise ValueError("transaction type must be one of: deposit, refund, forfeit")

    normalized_amount = _normalize_amount(amount)
    if normalized_amount < Decimal("0.00"):
        raise ValueError("Ledger amounts must be >= 0")

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            INSERT INTO transactions (user_id, goal_id, amount, type, status)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {TRANSACTION_COLUMNS}
            """,
            (user_id, goal_id, normalized_amount, transaction_type, "completed"),
        )
        row = await cursor.fetchone()

    return {**row, "amount": _normalize_amount(row["amount"])}


async def list_transactions(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    goal_id: UUID | None = None,
    transaction_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    """Return one page of the user's ledger, newest first."""
    filters = ["user_id = %s"]
    params: list[Any] = [user_id]

    if goal_id is not None:
        filters.append("goal_id = %s")
        params.append(goal_id)

    if transaction_type is not None:
        if transaction_type not in VALID_TYPES:
            raise ValueError("type must be one of: deposit, refund, forfeit")
        filters.append("type = %s")
        params.append(transaction_type)

    where_clause = " AND ".join(filters)

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"SELECT COUNT(*) AS total FROM transactions WHERE {where_clause}",
            tuple(params),
        )
        count_row = await cursor.fetchone()

        await cursor.execute(
            f"""
            SELECT {TRANSACTION_COLUMNS}
            FROM transactions
            WHERE {where_clause}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (*params, limit, offset),
        )
        rows = await cursor.fetchall()

    return {
        "items": [{**row, "amount": _normalize_amount(row["amount"])} for row in rows],
        "limit": limit,
        "offset": offset,
        "total": count_row["total"],
    }


def sum_by_type(transactions: list[dict[str, Any]], transaction_type: TransactionType) -> Decimal:
    """Additive total of one transaction type over already-loaded rows."""
    total = sum(
        (_normalize_amount(row["amount"]) for row in transactions if row["type"] == transaction_type),
        Decimal("0.00"),
    )
    return quantize_amount(total)
