"""Settlement of expired goals into a terminal status plus one refund or forfeit."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

from .errors import GoalNotFoundError
from .ledger_service import append_transaction, quantize_amount
from .progress_math import as_utc, compute_total_days, rounded_percentage

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)

SettledStatus = Literal["completed", "failed"]

# Status and refund thresholds are separate product rules: a 70-99% goal is
# "completed" but only earns half the stake back.
COMPLETED_THRESHOLD_PCT = 70
FULL_REFUND_THRESHOLD_PCT = 100
PARTIAL_REFUND_THRESHOLD_PCT = 70
PARTIAL_REFUND_RATIO = Decimal("0.5")


@dataclass(frozen=True)
class SettlementResult:
    goal_id: UUID
    success_rate: int
    status: SettledStatus
    refund_amount: Decimal
    total_days: int
    completed_days: int
    stake_amount: Decimal

    @property
    def transaction_type(self) -> Literal["refund", "forfeit"]:
        return "refund" if self.refund_amount > Decimal("0.00") else "forfeit"

    @property
    def ledger_amount(self) -> Decimal:
        """Refund amount when positive, otherwise the whole stake is forfeited."""
        if self.transaction_type == "refund":
            return self.refund_amount
        return self.stake_amount

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("stake_amount")
        return data


def _now() -> datetime:
    """Wrapper for deterministic tests."""
    return datetime.now(timezone.utc)


def calculate_success_rate(completed_days: int, total_days: int) -> int:
    return rounded_percentage(completed_days, total_days)


def determine_goal_status(success_rate: int) -> SettledStatus:
    if success_rate >= COMPLETED_THRESHOLD_PCT:
        return "completed"
    return "failed"


def calculate_refund_amount(stake_amount: Decimal, success_rate: int) -> Decimal:
    stake = quantize_amount(Decimal(str(stake_amount)))
    if success_rate >= FULL_REFUND_THRESHOLD_PCT:
        return stake
    if success_rate >= PARTIAL_REFUND_THRESHOLD_PCT:
        return quantize_amount(stake * PARTIAL_REFUND_RATIO)
    return Decimal("0.00")


def evaluate_settlement(
    *,
    goal_id: UUID,
    start_date: datetime,
    end_date: datetime,
    stake_amount: Decimal,
    completed_days: int,
) -> SettlementResult:
    """Pure settlement decision for one goal; no store access."""
    total_days = compute_total_days(start_date, end_date)
    success_rate = calculate_success_rate(completed_days, total_days)

    return SettlementResult(
        goal_id=goal_id,
        success_rate=success_rate,
        status=determine_goal_status(success_rate),
        refund_amount=calculate_refund_amount(stake_amount, success_rate),
        total_days=total_days,
        completed_days=completed_days,
        stake_amount=quantize_amount(Decimal(str(stake_amount))),
    )


async def settle_goal(
    connection: AsyncConnection,
    goal_id: UUID,
    now: datetime | None = None,
    *,
    user_id: UUID | None = None,
) -> SettlementResult | None:
    """
    Settle one goal if it is still active and its end date has passed.

    Returns None when there is nothing to do (not yet due, or already
    settled by a concurrent run). The status change and the ledger row are
    committed together or not at all. Pass `user_id` to scope the lookup to
    an owner; a miss then raises `GoalNotFoundError`.
    """
    now = as_utc(now or _now())

    lookup_sql = """
        SELECT id, user_id, start_date, end_date, stake_amount, status
        FROM goals
        WHERE id = %s
    """
    params: tuple[Any, ...] = (goal_id,)
    if user_id is not None:
        lookup_sql += " AND user_id = %s"
        params = (goal_id, user_id)
    lookup_sql += " FOR UPDATE"

    async with connection.transaction():
        async with connection.cursor() as cursor:
            await cursor.execute(lookup_sql, params)
            goal = await cursor.fetchone()

            if goal is None:
                raise GoalNotFoundError()

            # Re-verify under the row lock; another sweep may have won the race.
            if goal["status"] != "active":
                return None

            if as_utc(goal["end_date"]) > now:
                return None

            await cursor.execute(
                """
                SELECT COUNT(*) AS completed_days
                FROM progress_logs
                WHERE goal_id = %s
                """,
                (goal_id,),
            )
            count_row = await cursor.fetchone()

            result = evaluate_settlement(
                goal_id=goal["id"],
                start_date=goal["start_date"],
                end_date=goal["end_date"],
                stake_amount=goal["stake_amount"],
                completed_days=int(count_row["completed_days"] or 0),
            )

            await cursor.execute(
                """
                UPDATE goals
                SET status = %s
                WHERE id = %s
                  AND status = 'active'
                RETURNING id
                """,
                (result.status, goal_id),
            )
            if await cursor.fetchone() is None:
                return None

        await append_transaction(
            connection,
            user_id=goal["user_id"],
            goal_id=goal["id"],
            amount=result.ledger_amount,
            transaction_type=result.transaction_type,
        )

    logger.info(
        "Settled goal %s as %s (success_rate=%s%%, %s=%s)",
        goal_id,
        result.status,
        result.success_rate,
        result.transaction_type,
        result.ledger_amount,
    )
    return result


async def find_due_goal_ids(connection: AsyncConnection, now: datetime) -> list[UUID]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id
            FROM goals
            WHERE status = 'active'
              AND end_date <= %s
            ORDER BY end_date ASC
            """,
            (now,),
        )
        rows = await cursor.fetchall()

    return [row["id"] for row in rows]


async def run_settlement_sweep(
    connection: AsyncConnection,
    now: datetime | None = None,
) -> list[SettlementResult]:
    """
    Settle every active goal whose end date is at or before `now`.

    Each goal runs in its own store transaction. A failure is logged and
    the goal stays active for the next sweep; the batch carries on.
    """
    now = as_utc(now or _now())
    goal_ids = await find_due_goal_ids(connection, now)

    results: list[SettlementResult] = []
    for goal_id in goal_ids:
        try:
            result = await settle_goal(connection, goal_id, now)
        except Exception:
            logger.exception("Error settling goal %s; it stays active for the next sweep", goal_id)
            continue

        if result is not None:
            results.append(result)

    if goal_ids:
        logger.info("Settlement sweep settled %d of %d due goals", len(results), len(goal_ids))
    return results
