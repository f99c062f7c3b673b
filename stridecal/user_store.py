from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from stridecal.errors import AthleteAlreadyLinkedError, UserStoreError
from stridecal.models import UserRecord


logger = logging.getLogger(__name__)

USER_COLUMNS = [
    "google_user_id",
    "email",
    "strava_athlete_id",
    "strava_access_token",
    "strava_refresh_token",
    "google_access_token",
    "google_refresh_token",
    "selected_calendar_id",
]

TOKEN_COLUMNS = [
    "strava_access_token",
    "strava_refresh_token",
    "google_access_token",
    "google_refresh_token",
]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(**{column: str(row[column] or "") for column in USER_COLUMNS})


class UserStore:
    def __init__(self, db_path: str, delivery_retention: int = 1000) -> None:
        self.db_path = Path(db_path)
        self.delivery_retention = max(1, int(delivery_retention))
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS users (
            google_user_id TEXT PRIMARY KEY,
            email TEXT NOT NULL DEFAULT '',
            strava_athlete_id TEXT NOT NULL DEFAULT '',
            strava_access_token TEXT NOT NULL DEFAULT '',
            strava_refresh_token TEXT NOT NULL DEFAULT '',
            google_access_token TEXT NOT NULL DEFAULT '',
            google_refresh_token TEXT NOT NULL DEFAULT '',
            selected_calendar_id TEXT NOT NULL DEFAULT '',
            updated_at TEXT NOT NULL
        );

        DROP INDEX IF EXISTS idx_users_strava_athlete;

        CREATE UNIQUE INDEX IF NOT EXISTS uq_users_strava_athlete
            ON users(strava_athlete_id) WHERE strava_athlete_id != '';

        CREATE TABLE IF NOT EXISTS webhook_deliveries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            received_at TEXT NOT NULL,
            aspect_type TEXT NOT NULL,
            object_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            outcome TEXT NOT NULL,
            message TEXT
        );
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    def _fetch_one(self, where: str, value: str) -> UserRecord | None:
        try:
            with self._lock:
                with self._connect() as conn:
                    row = conn.execute(
                        f"SELECT {', '.join(USER_COLUMNS)} FROM users WHERE {where} = ? LIMIT 1",
                        (value,),
                    ).fetchone()
        except sqlite3.Error as exc:
            raise UserStoreError(f"Failed to read user by {where}: {exc}") from exc
        return _row_to_user(row) if row else None

    def get_by_google_id(self, google_user_id: str) -> UserRecord | None:
        return self._fetch_one("google_user_id", str(google_user_id))

    def get_by_strava_athlete_id(self, athlete_id: str | int) -> UserRecord | None:
        athlete_id = str(athlete_id).strip()
        if not athlete_id:
            return None
        return self._fetch_one("strava_athlete_id", athlete_id)

    def save(self, user: UserRecord) -> UserRecord:
        values = [getattr(user, column) or "" for column in USER_COLUMNS]
        updates = ", ".join(f"{column} = excluded.{column}" for column in USER_COLUMNS[1:])
        try:
            with self._lock:
                with self._connect() as conn:
                    conn.execute(
                        f"""
                        INSERT INTO users({', '.join(USER_COLUMNS)}, updated_at)
                        VALUES ({', '.join('?' for _ in USER_COLUMNS)}, ?)
                        ON CONFLICT(google_user_id) DO UPDATE SET
                            {updates},
                            updated_at = excluded.updated_at
                        """,
                        (*values, _utc_now()),
                    )
                    conn.commit()
        except sqlite3.IntegrityError as exc:
            raise AthleteAlreadyLinkedError(
                f"Strava athlete {user.strava_athlete_id} is linked to another user"
            ) from exc
        except sqlite3.Error as exc:
            raise UserStoreError(f"Failed to save user {user.google_user_id}: {exc}") from exc
        logger.debug("Saved user %s", user.google_user_id)
        return user

    def save_tokens(self, google_user_id: str, **tokens: str) -> None:
        """Update only the credential columns of an existing user."""
        unknown = set(tokens) - set(TOKEN_COLUMNS)
        if unknown:
            raise ValueError(f"Not token columns: {sorted(unknown)}")
        if not tokens:
            return
        assignments = ", ".join(f"{column} = ?" for column in tokens)
        try:
            with self._lock:
                with self._connect() as conn:
                    conn.execute(
                        f"UPDATE users SET {assignments}, updated_at = ? WHERE google_user_id = ?",
                        (*tokens.values(), _utc_now(), str(google_user_id)),
                    )
                    conn.commit()
        except sqlite3.Error as exc:
            raise UserStoreError(f"Failed to save tokens for user {google_user_id}: {exc}") from exc
        logger.debug("Saved rotated tokens for user %s", google_user_id)

    def record_delivery(
        self,
        *,
        aspect_type: str,
        object_id: str,
        owner_id: str,
        outcome: str,
        message: str = "",
    ) -> None:
        try:
            with self._lock:
                with self._connect() as conn:
                    conn.execute(
                        """
                        INSERT INTO webhook_deliveries(received_at, aspect_type, object_id, owner_id, outcome, message)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (_utc_now(), str(aspect_type), str(object_id), str(owner_id), str(outcome), str(message)),
                    )
                    conn.execute(
                        """
                        DELETE FROM webhook_deliveries
                        WHERE id NOT IN (
                            SELECT id FROM webhook_deliveries ORDER BY id DESC LIMIT ?
                        )
                        """,
                        (self.delivery_retention,),
                    )
                    conn.commit()
        except sqlite3.Error as exc:
            raise UserStoreError(f"Failed to record webhook delivery: {exc}") from exc

    def recent_deliveries(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, received_at, aspect_type, object_id, owner_id, outcome, message
                    FROM webhook_deliveries
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (max(1, int(limit)),),
                ).fetchall()
        return [dict(row) for row in rows]
