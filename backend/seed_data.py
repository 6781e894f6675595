"""Seed a handful of staked goals (with a first check-in) for a dev user via the API."""

import os
import sys
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import psycopg
from psycopg.rows import dict_row

DATABASE_URL = os.environ.get("DATABASE_URL", "")
JWT_SECRET = os.environ.get("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
API_BASE = os.environ.get("API_BASE", "http://localhost:8000")
DEV_EMAIL = "devuser@stakeit.local"

SAMPLE_GOALS = [
    {"title": "Run every morning", "category": "fitness", "tags": "running, health", "days": 14, "stake": "50.00"},
    {"title": "Read 20 pages a day", "category": "learning", "tags": "books", "days": 30, "stake": "25.00"},
    {"title": "No sugar", "category": "health", "tags": "diet,health", "days": 7, "stake": "100.00"},
    {"title": "Practice guitar", "category": "music", "tags": None, "days": 21, "stake": "40.00"},
    {"title": "Meditate 10 minutes", "category": "wellbeing", "tags": "mindfulness", "days": 10, "stake": "15.00"},
]


def main():
    if not DATABASE_URL:
        print("ERROR: DATABASE_URL env var is not set")
        sys.exit(1)

    # Step 1: Find or create the dev user
    print("Connecting to database...")
    with psycopg.connect(DATABASE_URL, row_factory=dict_row) as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO users (name, email)
                VALUES ('Dev User', %s)
                ON CONFLICT (email) DO UPDATE SET name = EXCLUDED.name
                RETURNING id
                """,
                (DEV_EMAIL,),
            )
            user_id = str(cur.fetchone()["id"])
            print(f"  Dev user ID: {user_id}")

    # Step 2: Generate JWT
    token = jwt.encode(
        {"sub": user_id, "type": "access", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )
    print("  Generated JWT token")

    # Step 3: POST goals and a first check-in via API
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    success = 0
    errors = 0
    now = datetime.now(timezone.utc)

    for goal in SAMPLE_GOALS:
        payload = {
            "title": goal["title"],
            "category": goal["category"],
            "tags": goal["tags"],
            "end_date": (now + timedelta(days=goal["days"])).isoformat(),
            "stake_amount": goal["stake"],
        }

        resp = httpx.post(f"{API_BASE}/goals", json=payload, headers=headers)
        if resp.status_code != 201:
            errors += 1
            print(f"  FAIL ({resp.status_code}): {resp.text}")
            continue

        goal_id = resp.json()["id"]
        checkin = httpx.post(
            f"{API_BASE}/goals/{goal_id}/checkin",
            json={"notes": "Seeded first day"},
            headers=headers,
        )
        success += 1
        print(f"  OK: {goal['title']:22s} ${goal['stake']:>7s}  {goal['days']:>3d} days  check-in {checkin.status_code}")

    print(f"\nDone! {success} created, {errors} errors.")


if __name__ == "__main__":
    main()
