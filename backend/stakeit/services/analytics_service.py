from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from .ledger_service import quantize_amount, sum_by_type
from .progress_math import rounded_percentage

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any


def summarize_goals(goals: list[dict[str, Any]], transactions: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Roll up one user's goals and ledger rows.

    Totals are purely additive over existing rows; net_amount is what came
    back minus what was put in, so it is <= 0 for every user.
    """
    total_goals = len(goals)
    active_goals = sum(1 for goal in goals if goal["status"] == "active")
    completed_goals = sum(1 for goal in goals if goal["status"] == "completed")
    failed_goals = sum(1 for goal in goals if goal["status"] == "failed")

    total_staked = quantize_amount(
        sum((Decimal(str(goal["stake_amount"])) for goal in goals), Decimal("0.00"))
    )
    total_refunded = sum_by_type(transactions, "refund")
    total_forfeited = sum_by_type(transactions, "forfeit")

    return {
        "total_goals": total_goals,
        "active_goals": active_goals,
        "completed_goals": completed_goals,
        "failed_goals": failed_goals,
        "success_rate": rounded_percentage(completed_goals, total_goals),
        "total_staked": total_staked,
        "total_refunded": total_refunded,
        "total_forfeited": total_forfeited,
        "net_amount": quantize_amount(total_refunded - total_staked),
    }


async def get_analytics(connection: AsyncConnection, user_id: UUID) -> dict[str, Any]:
    """Read-only analytics summary for one user."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, status, stake_amount
            FROM goals
            WHERE user_id = %s
            """,
            (user_id,),
        )
        goals = await cursor.fetchall()

        await cursor.execute(
            """
            SELECT goal_id, type, amount
            FROM transactions
            WHERE user_id = %s
            """,
            (user_id,),
        )
        transactions = await cursor.fetchall()

    return summarize_goals(goals, transactions)
