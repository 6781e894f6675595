"""Service layer for staked goals: creation with deposit, reads, edits and progress."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

from .errors import GoalExpiredError, GoalNotActiveError, GoalNotFoundError, GoalValidationError
from .ledger_service import TRANSACTION_COLUMNS, append_transaction, quantize_amount
from .progress_math import as_utc, compute_days_remaining, compute_total_days, rounded_percentage

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

GoalStatus = Literal["active", "completed", "failed", "cancelled"]
VALID_STATUSES: set[str] = {"active", "completed", "failed", "cancelled"}
EDITABLE_FIELDS = ("title", "description", "category", "tags", "end_date")

GOAL_COLUMNS = (
    "id, user_id, title, description, category, tags, start_date, end_date, "
    "stake_amount, status, created_at, updated_at"
)
CHECKIN_COLUMNS = "id, goal_id, date, checked_in, notes, created_at"


def _now() -> datetime:
    """Wrapper for deterministic tests."""
    return datetime.now(timezone.utc)


def normalize_tags(value: str | Iterable[str] | None) -> list[str]:
    """Accept a comma-separated string or a list; trim, drop blanks, dedupe in order."""
    if value is None:
        return []

    raw = value.split(",") if isinstance(value, str) else list(value)

    tags: list[str] = []
    for item in raw:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def _validate_end_date(end_date: datetime, start_date: datetime, now: datetime) -> datetime:
    end_date = as_utc(end_date)
    if end_date <= as_utc(now):
        raise GoalValidationError("End date must be in the future")
    if end_date <= as_utc(start_date):
        raise GoalValidationError("End date must be after the start date")
    return end_date


def _validate_new_goal(data: dict[str, Any], now: datetime) -> dict[str, Any]:
    """
    Validate a create payload.

    Rules:
    - title is required (after trimming)
    - stake_amount > 0
    - end_date strictly in the future; start_date is always `now`
    """
    title = _clean_text(data.get("title"))
    if not title:
        raise GoalValidationError("Title is required")

    if data.get("end_date") is None:
        raise GoalValidationError("End date is required")

    if data.get("stake_amount") is None:
        raise GoalValidationError("Stake amount is required")

    stake_amount = quantize_amount(Decimal(str(data["stake_amount"])))
    if stake_amount <= Decimal("0.00"):
        raise GoalValidationError("Stake amount must be greater than 0")

    start_date = as_utc(now)
    end_date = _validate_end_date(data["end_date"], start_date, now)

    return {
        "title": title,
        "description": _clean_text(data.get("description")),
        "category": _clean_text(data.get("category")),
        "tags": normalize_tags(data.get("tags")),
        "start_date": start_date,
        "end_date": end_date,
        "stake_amount": stake_amount,
    }


def compute_goal_progress(goal_row: dict[str, Any], completed_days: int, now: datetime) -> dict[str, Any]:
    """Attach day counts and percentage to one goal row."""
    total_days = compute_total_days(goal_row["start_date"], goal_row["end_date"])
    return {
        **goal_row,
        "stake_amount": quantize_amount(Decimal(str(goal_row["stake_amount"]))),
        "tags": list(goal_row.get("tags") or []),
        "total_days": total_days,
        "completed_days": completed_days,
        "progress_percentage": rounded_percentage(completed_days, total_days),
        "days_remaining": compute_days_remaining(goal_row["end_date"], now),
    }


async def fetch_goal_row(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
) -> dict[str, Any] | None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {GOAL_COLUMNS}
            FROM goals
            WHERE id = %s
              AND user_id = %s
            """,
            (goal_id, user_id),
        )
        return await cursor.fetchone()


async def _fetch_checkins(connection: AsyncConnection, goal_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {CHECKIN_COLUMNS}
            FROM progress_logs
            WHERE goal_id = %s
            ORDER BY date DESC
            """,
            (goal_id,),
        )
        return await cursor.fetchall()


async def _fetch_goal_transactions(connection: AsyncConnection, goal_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {TRANSACTION_COLUMNS}
            FROM transactions
            WHERE goal_id = %s
            ORDER BY created_at DESC
            """,
            (goal_id,),
        )
        rows = await cursor.fetchall()

    return [{**row, "amount": quantize_amount(Decimal(str(row["amount"])))} for row in rows]


async def create_goal(
    connection: AsyncConnection,
    user_id: UUID,
    data: dict[str, Any],
) -> dict[str, Any]:
    """Create one active goal and its stake deposit in a single store transaction."""
    now = _now()
    normalized = _validate_new_goal(data, now)

    async with connection.transaction():
        async with connection.cursor() as cursor:
            await cursor.execute(
                f"""
                INSERT INTO goals (user_id, title, description, category, tags, start_date, end_date, stake_amount, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {GOAL_COLUMNS}
                """,
                (
                    user_id,
                    normalized["title"],
                    normalized["description"],
                    normalized["category"],
                    normalized["tags"],
                    normalized["start_date"],
                    normalized["end_date"],
                    normalized["stake_amount"],
                    "active",
                ),
            )
            row = await cursor.fetchone()

        deposit = await append_transaction(
            connection,
            user_id=user_id,
            goal_id=row["id"],
            amount=normalized["stake_amount"],
            transaction_type="deposit",
        )

    return {
        **compute_goal_progress(row, 0, now),
        "checkins": [],
        "transactions": [deposit],
    }


async def list_goals(
    connection: AsyncConnection,
    user_id: UUID,
    status: str = "all",
    category: str | None = None,
) -> list[dict[str, Any]]:
    """List the user's goals newest first, optionally filtered by status and category."""
    query_status = status.strip().lower()
    if query_status != "all" and query_status not in VALID_STATUSES:
        raise GoalValidationError("status must be one of: active, completed, failed, cancelled, all")

    sql = f"""
    SELECT {GOAL_COLUMNS},
           (SELECT COUNT(*) FROM progress_logs WHERE progress_logs.goal_id = goals.id) AS completed_days
    FROM goals
    WHERE user_id = %s
    """
    params: list[Any] = [user_id]

    if query_status != "all":
        sql += " AND status = %s"
        params.append(query_status)

    if category:
        sql += " AND category = %s"
        params.append(category.strip())

    sql += " ORDER BY created_at DESC"

    async with connection.cursor() as cursor:
        await cursor.execute(sql, tuple(params))
        rows = await cursor.fetchall()

    now = _now()
    goals = []
    for row in rows:
        completed_days = int(row.pop("completed_days") or 0)
        goals.append(compute_goal_progress(row, completed_days, now))
    return goals


async def get_goal(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
) -> dict[str, Any]:
    """Fetch one owner-scoped goal with its check-ins and ledger rows."""
    row = await fetch_goal_row(connection, user_id, goal_id)
    if row is None:
        raise GoalNotFoundError()

    checkins = await _fetch_checkins(connection, goal_id)
    transactions = await _fetch_goal_transactions(connection, goal_id)

    return {
        **compute_goal_progress(row, len(checkins), _now()),
        "checkins": checkins,
        "transactions": transactions,
    }


async def get_goal_progress(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
) -> dict[str, Any]:
    """Progress statistics for one goal: day counts, percentage and check-in history."""
    row = await fetch_goal_row(connection, user_id, goal_id)
    if row is None:
        raise GoalNotFoundError()

    checkins = await _fetch_checkins(connection, goal_id)
    progress = compute_goal_progress(row, len(checkins), _now())

    return {
        "total_days": progress["total_days"],
        "completed_days": progress["completed_days"],
        "progress_percentage": progress["progress_percentage"],
        "days_remaining": progress["days_remaining"],
        "checkins": checkins,
    }


async def update_goal(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
    patch: dict[str, Any],
) -> dict[str, Any]:
    """Edit descriptive fields or the deadline of an active goal. Status is never patched here."""
    unknown = set(patch) - set(EDITABLE_FIELDS)
    if unknown:
        raise GoalValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    existing = await fetch_goal_row(connection, user_id, goal_id)
    if existing is None:
        raise GoalNotFoundError()

    if existing["status"] != "active":
        raise GoalNotActiveError("Only active goals can be edited")

    now = _now()

    # Past its end date the goal belongs to the sweeper, even before it runs.
    if as_utc(now) > as_utc(existing["end_date"]):
        raise GoalExpiredError("Cannot edit a goal that has already ended")

    title = existing["title"]
    if "title" in patch:
        title = _clean_text(patch["title"])
        if not title:
            raise GoalValidationError("Title is required")

    end_date = existing["end_date"]
    if "end_date" in patch:
        if patch["end_date"] is None:
            raise GoalValidationError("End date is required")
        end_date = _validate_end_date(patch["end_date"], existing["start_date"], now)

    description = _clean_text(patch["description"]) if "description" in patch else existing["description"]
    category = _clean_text(patch["category"]) if "category" in patch else existing["category"]
    tags = normalize_tags(patch["tags"]) if "tags" in patch else list(existing["tags"] or [])

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE goals
            SET title = %s,
                description = %s,
                category = %s,
                tags = %s,
                end_date = %s
            WHERE id = %s
              AND user_id = %s
              AND status = 'active'
              AND end_date >= %s
            RETURNING {GOAL_COLUMNS}
            """,
            (title, description, category, tags, end_date, goal_id, user_id, now),
        )
        row = await cursor.fetchone()

    if row is None:
        # Settled or expired between the read above and this write.
        raise GoalNotActiveError("Only active goals can be edited")

    checkins = await _fetch_checkins(connection, goal_id)
    return compute_goal_progress(row, len(checkins), now)


async def list_categories(connection: AsyncConnection, user_id: UUID) -> list[str]:
    """Distinct, non-empty categories the user has assigned to goals."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT DISTINCT category
            FROM goals
            WHERE user_id = %s
              AND category IS NOT NULL
              AND category <> ''
            ORDER BY category ASC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()

    return [row["category"] for row in rows]
