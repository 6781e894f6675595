"""Daily check-ins: at most one per goal per UTC calendar day, only while a goal is live."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from psycopg.errors import UniqueViolation

from .errors import AlreadyCheckedInError, GoalExpiredError, GoalNotActiveError, GoalNotFoundError
from .goals_service import CHECKIN_COLUMNS
from .progress_math import as_utc, utc_day

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)


def _now() -> datetime:
    """Wrapper for deterministic tests."""
    return datetime.now(timezone.utc)


def _clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    trimmed = notes.strip()
    return trimmed or None


async def check_in(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
    notes: str | None = None,
) -> dict[str, Any]:
    """
    Record today's check-in for one goal.

    The goal row is read `FOR SHARE` in the same store transaction as the
    insert, so a concurrent settlement (which takes `FOR UPDATE`) cannot
    slip between the status check and the write. Duplicate days are
    rejected by the (goal_id, date) unique constraint rather than by a
    read-before-write.
    """
    now = _now()
    today = utc_day(now)

    try:
        async with connection.transaction():
            async with connection.cursor() as cursor:
                await cursor.execute(
                    """
                    SELECT id, user_id, status, end_date
                    FROM goals
                    WHERE id = %s
                      AND user_id = %s
                    FOR SHARE
                    """,
                    (goal_id, user_id),
                )
                goal = await cursor.fetchone()

                if goal is None:
                    raise GoalNotFoundError()

                if goal["status"] != "active":
                    raise GoalNotActiveError()

                # Still "active" until the sweeper runs, but the window has closed.
                if as_utc(now) > as_utc(goal["end_date"]):
                    raise GoalExpiredError()

                await cursor.execute(
                    f"""
                    INSERT INTO progress_logs (goal_id, date, checked_in, notes)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {CHECKIN_COLUMNS}
                    """,
                    (goal_id, today, True, _clean_notes(notes)),
                )
                row = await cursor.fetchone()
    except UniqueViolation as exc:
        raise AlreadyCheckedInError() from exc

    logger.debug("Goal %s checked in for %s", goal_id, today.isoformat())
    return row
