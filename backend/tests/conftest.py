from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from psycopg.errors import UniqueViolation


class FakeStoreCursor:
    """Interprets the handful of SQL statements the services issue against an in-memory store."""

    def __init__(self, connection: "FakeStoreConnection"):
        self.connection = connection
        self._rows: list[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query, params=None):
        params = tuple(params or ())
        normalized = " ".join(query.split())
        store = self.connection
        self.connection.executed.append(normalized)
        self._rows = []

        if normalized.startswith("INSERT INTO goals"):
            user_id, title, description, category, tags, start_date, end_date, stake_amount, status = params
            row = store.add_goal(
                user_id=user_id,
                title=title,
                description=description,
                category=category,
                tags=list(tags),
                start_date=start_date,
                end_date=end_date,
                stake_amount=stake_amount,
                status=status,
            )
            self._rows = [row]
            return

        if normalized.startswith("INSERT INTO transactions"):
            user_id, goal_id, amount, transaction_type, status = params
            if goal_id in store.ledger_failures:
                raise RuntimeError("ledger unavailable")
            settlement_types = {"refund", "forfeit"}
            for existing in store.transactions:
                if existing["goal_id"] != goal_id:
                    continue
                if existing["type"] == transaction_type == "deposit" or (
                    existing["type"] in settlement_types and transaction_type in settlement_types
                ):
                    raise UniqueViolation("duplicate ledger entry for goal")
            row = {
                "id": uuid4(),
                "user_id": user_id,
                "goal_id": goal_id,
                "amount": Decimal(str(amount)),
                "type": transaction_type,
                "status": status,
                "created_at": store.next_timestamp(),
            }
            store.transactions.append(row)
            self._rows = [row]
            return

        if normalized.startswith("INSERT INTO progress_logs"):
            goal_id, day, checked_in, notes = params
            if any(log["goal_id"] == goal_id and log["date"] == day for log in store.progress_logs):
                raise UniqueViolation('duplicate key value violates unique constraint "progress_logs_goal_date_key"')
            row = {
                "id": uuid4(),
                "goal_id": goal_id,
                "date": day,
                "checked_in": checked_in,
                "notes": notes,
                "created_at": store.next_timestamp(),
            }
            store.progress_logs.append(row)
            self._rows = [row]
            return

        if normalized.endswith("FOR SHARE") or normalized.endswith("FOR UPDATE"):
            goal_id = params[0]
            owner = params[1] if len(params) > 1 else None
            row = store.goals.get(goal_id)
            if row and (owner is None or row["user_id"] == owner):
                self._rows = [row]
            return

        if "AS completed_days FROM goals WHERE user_id = %s" in normalized:
            user_id = params[0]
            rest = list(params[1:])
            status = rest.pop(0) if "AND status = %s" in normalized else None
            category = rest.pop(0) if "AND category = %s" in normalized else None
            rows = [
                {**row, "completed_days": store.count_checkins(row["id"])}
                for row in store.goals.values()
                if row["user_id"] == user_id
                and (status is None or row["status"] == status)
                and (category is None or row["category"] == category)
            ]
            rows.sort(key=lambda row: row["created_at"], reverse=True)
            self._rows = rows
            return

        if normalized.startswith("SELECT COUNT(*) AS completed_days FROM progress_logs"):
            self._rows = [{"completed_days": store.count_checkins(params[0])}]
            return

        if normalized.startswith("SELECT id, goal_id, date, checked_in, notes, created_at FROM progress_logs"):
            rows = [log for log in store.progress_logs if log["goal_id"] == params[0]]
            rows.sort(key=lambda log: log["date"], reverse=True)
            self._rows = rows
            return

        if normalized.startswith("SELECT id, user_id, title") and "FROM goals WHERE id = %s AND user_id = %s" in normalized:
            goal_id, user_id = params
            row = store.goals.get(goal_id)
            if row and row["user_id"] == user_id:
                self._rows = [row]
            return

        if normalized.startswith("SELECT id FROM goals WHERE status = 'active' AND end_date <= %s"):
            now = params[0]
            rows = [row for row in store.goals.values() if row["status"] == "active" and row["end_date"] <= now]
            rows.sort(key=lambda row: row["end_date"])
            self._rows = [{"id": row["id"]} for row in rows]
            return

        if normalized.startswith("UPDATE goals SET status = %s"):
            status, goal_id = params
            row = store.goals.get(goal_id)
            if row and row["status"] == "active":
                row["status"] = status
                row["updated_at"] = store.next_timestamp()
                self._rows = [{"id": goal_id}]
            return

        if normalized.startswith("UPDATE goals SET title = %s"):
            title, description, category, tags, end_date, goal_id, user_id, now = params
            row = store.goals.get(goal_id)
            if row is None or row["user_id"] != user_id or row["status"] != "active":
                return
            if row["end_date"] < now:
                return
            row.update(
                {
                    "title": title,
                    "description": description,
                    "category": category,
                    "tags": list(tags),
                    "end_date": end_date,
                    "updated_at": store.next_timestamp(),
                }
            )
            self._rows = [row]
            return

        if normalized.startswith("SELECT DISTINCT category FROM goals"):
            categories = sorted(
                {row["category"] for row in store.goals.values() if row["user_id"] == params[0] and row["category"]}
            )
            self._rows = [{"category": category} for category in categories]
            return

        if normalized.startswith("SELECT id, status, stake_amount FROM goals WHERE user_id = %s"):
            self._rows = [row for row in store.goals.values() if row["user_id"] == params[0]]
            return

        if normalized.startswith("SELECT goal_id, type, amount FROM transactions WHERE user_id = %s"):
            self._rows = [row for row in store.transactions if row["user_id"] == params[0]]
            return

        if normalized.startswith("SELECT id, user_id, goal_id, amount, type, status, created_at FROM transactions WHERE goal_id = %s"):
            rows = [row for row in store.transactions if row["goal_id"] == params[0]]
            self._rows = sorted(rows, key=lambda row: row["created_at"], reverse=True)
            return

        if "FROM transactions WHERE user_id = %s" in normalized:
            rows = store.filter_ledger(normalized, params)
            if normalized.startswith("SELECT COUNT(*) AS total"):
                self._rows = [{"total": len(rows)}]
                return
            limit, offset = params[-2:]
            rows.sort(key=lambda row: row["created_at"], reverse=True)
            self._rows = rows[offset:offset + limit]
            return

        raise AssertionError(f"Unhandled query: {normalized}")

    async def fetchone(self):
        if not self._rows:
            return None
        return dict(self._rows[0])

    async def fetchall(self):
        return [dict(row) for row in self._rows]


class FakeStoreConnection:
    def __init__(self):
        self.goals: dict[UUID, dict] = {}
        self.progress_logs: list[dict] = []
        self.transactions: list[dict] = []
        self.ledger_failures: set[UUID] = set()
        self.executed: list[str] = []
        self.rollbacks = 0
        self._tick = 0

    def next_timestamp(self) -> datetime:
        self._tick += 1
        return datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc) + timedelta(seconds=self._tick)

    def cursor(self):
        return FakeStoreCursor(self)

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy((self.goals, self.progress_logs, self.transactions))
        try:
            yield self
        except BaseException:
            self.goals, self.progress_logs, self.transactions = snapshot
            self.rollbacks += 1
            raise

    def add_goal(
        self,
        *,
        user_id: UUID,
        start_date: datetime,
        end_date: datetime,
        stake_amount: Decimal | str = "100.00",
        status: str = "active",
        title: str = "Daily run",
        description: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
    ) -> dict:
        now = self.next_timestamp()
        row = {
            "id": uuid4(),
            "user_id": user_id,
            "title": title,
            "description": description,
            "category": category,
            "tags": list(tags or []),
            "start_date": start_date,
            "end_date": end_date,
            "stake_amount": Decimal(str(stake_amount)),
            "status": status,
            "created_at": now,
            "updated_at": now,
        }
        self.goals[row["id"]] = row
        return row

    def add_checkins(self, goal_id: UUID, days: int, first_day: date = date(2026, 3, 1)) -> None:
        for offset in range(days):
            self.progress_logs.append(
                {
                    "id": uuid4(),
                    "goal_id": goal_id,
                    "date": first_day + timedelta(days=offset),
                    "checked_in": True,
                    "notes": None,
                    "created_at": self.next_timestamp(),
                }
            )

    def count_checkins(self, goal_id: UUID) -> int:
        return sum(1 for log in self.progress_logs if log["goal_id"] == goal_id)

    def ledger_for(self, goal_id: UUID) -> list[dict]:
        return [row for row in self.transactions if row["goal_id"] == goal_id]

    def filter_ledger(self, normalized: str, params: tuple) -> list[dict]:
        rest = list(params[1:])
        goal_id = rest.pop(0) if "AND goal_id = %s" in normalized else None
        transaction_type = rest.pop(0) if "AND type = %s" in normalized else None
        return [
            row
            for row in self.transactions
            if row["user_id"] == params[0]
            and (goal_id is None or row["goal_id"] == goal_id)
            and (transaction_type is None or row["type"] == transaction_type)
        ]


@pytest.fixture
def store() -> FakeStoreConnection:
    return FakeStoreConnection()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()
