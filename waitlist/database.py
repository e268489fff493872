"""SQLite-backed persistence for waitlist users and their survey responses."""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import resolve_database_path
from .models import QuestionId, Response, User, UserWithResponses


class StoreError(RuntimeError):
    """Raised when the database cannot complete an operation."""


class DuplicateEmailError(ValueError):
    """Raised when an email address is already registered."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed width so that string comparison in SQL matches chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return uuid.uuid4().hex


class Database:
    """Simple wrapper around SQLite for persisting waitlist signups."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT NOT NULL PRIMARY KEY,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS responses (
                    id TEXT NOT NULL PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE RESTRICT ON UPDATE CASCADE,
                    question_id TEXT NOT NULL,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS analytics (
                    id TEXT NOT NULL PRIMARY KEY,
                    metric TEXT NOT NULL,
                    value INTEGER NOT NULL,
                    date TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS users_email_key ON users(email);
                CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
                CREATE INDEX IF NOT EXISTS idx_responses_user_id ON responses(user_id);
                CREATE INDEX IF NOT EXISTS idx_responses_question_id ON responses(question_id);
                """
            )

    # ------------------------------------------------------------------
    # Signups
    # ------------------------------------------------------------------
    def create_signup(
        self,
        email: str,
        answers: Sequence[Tuple[QuestionId, str]],
        *,
        created_at: Optional[datetime] = None,
    ) -> Tuple[User, List[Response]]:
        """Insert a user and their answers as a single transaction.

        Either the user and every response are committed, or nothing is.
        Raises :class:`DuplicateEmailError` when the email is already taken.
        """

        timestamp = created_at or _current_timestamp()
        serialized = _serialize_datetime(timestamp)
        user = User(id=_generate_id(), email=email, created_at=timestamp, updated_at=timestamp)
        responses = [
            Response(
                id=_generate_id(),
                user_id=user.id,
                question_id=question.value,
                question=question.text,
                answer=answer,
                created_at=timestamp,
            )
            for question, answer in answers
        ]

        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO users (id, email, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (user.id, email, serialized, serialized),
                )
                conn.executemany(
                    """
                    INSERT INTO responses (id, user_id, question_id, question, answer, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            response.id,
                            response.user_id,
                            response.question_id,
                            response.question,
                            response.answer,
                            serialized,
                        )
                        for response in responses
                    ],
                )
        except sqlite3.IntegrityError as exc:
            if "users.email" in str(exc) or "users_email_key" in str(exc):
                raise DuplicateEmailError("Email already registered") from exc
            raise StoreError("Failed to persist signup") from exc
        except sqlite3.DatabaseError as exc:
            raise StoreError("Failed to persist signup") from exc
        finally:
            conn.close()

        return user, responses

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetchone("SELECT * FROM users WHERE email = ?", (email,))
        if row is None:
            return None
        return self._row_to_user(row)

    def delete_user(self, user_id: str) -> bool:
        """Delete a user that has no responses.

        Users that still own responses are protected by the foreign key and
        raise :class:`StoreError`.
        """

        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        except sqlite3.IntegrityError as exc:
            raise StoreError("User still has recorded responses") from exc
        finally:
            conn.close()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Read paths used by analytics
    # ------------------------------------------------------------------
    def count_users(self, *, since: Optional[datetime] = None) -> int:
        if since is None:
            row = self._fetchone("SELECT COUNT(*) AS total FROM users")
        else:
            row = self._fetchone(
                "SELECT COUNT(*) AS total FROM users WHERE created_at >= ?",
                (_serialize_datetime(since),),
            )
        return int(row["total"]) if row is not None else 0

    def list_signup_times(self, *, since: Optional[datetime] = None) -> List[datetime]:
        """Return creation timestamps in ascending order."""

        if since is None:
            rows = self._fetchall("SELECT created_at FROM users ORDER BY created_at ASC")
        else:
            rows = self._fetchall(
                "SELECT created_at FROM users WHERE created_at >= ? ORDER BY created_at ASC",
                (_serialize_datetime(since),),
            )
        return [_parse_datetime(str(row["created_at"])) for row in rows]

    def answer_distribution(self, question_id: QuestionId) -> Dict[str, int]:
        """Count responses per distinct answer for one question."""

        rows = self._fetchall(
            """
            SELECT answer, COUNT(*) AS total
              FROM responses
             WHERE question_id = ?
             GROUP BY answer
             ORDER BY total DESC, answer ASC
            """,
            (question_id.value,),
        )
        return {str(row["answer"]): int(row["total"]) for row in rows}

    def count_responses(self, question_id: QuestionId) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS total FROM responses WHERE question_id = ?",
            (question_id.value,),
        )
        return int(row["total"]) if row is not None else 0

    def list_emails(self) -> List[str]:
        rows = self._fetchall("SELECT email FROM users ORDER BY created_at ASC")
        return [str(row["email"]) for row in rows]

    def list_recent_users(self, limit: int = 50) -> List[UserWithResponses]:
        """Return the most recent users with their responses, newest first."""

        user_rows = self._fetchall(
            "SELECT * FROM users ORDER BY created_at DESC LIMIT ?",
            (limit,),
        )
        users = [self._row_to_user(row) for row in user_rows]
        if not users:
            return []

        placeholders = ", ".join("?" for _ in users)
        response_rows = self._fetchall(
            f"SELECT * FROM responses WHERE user_id IN ({placeholders}) ORDER BY created_at ASC",
            [user.id for user in users],
        )
        grouped: Dict[str, List[Response]] = {user.id: [] for user in users}
        for row in response_rows:
            response = self._row_to_response(row)
            grouped.setdefault(response.user_id, []).append(response)

        return [UserWithResponses(user=user, responses=grouped.get(user.id, [])) for user in users]

    def list_responses_for_user(self, user_id: str) -> List[Response]:
        rows = self._fetchall(
            "SELECT * FROM responses WHERE user_id = ? ORDER BY created_at ASC",
            (user_id,),
        )
        return [self._row_to_response(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetchone(self, query: str, params: Iterable[object] = ()) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, tuple(params)).fetchone()
        except sqlite3.DatabaseError as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _fetchall(self, query: str, params: Iterable[object] = ()) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, tuple(params)).fetchall()
        except sqlite3.DatabaseError as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_response(self, row: sqlite3.Row) -> Response:
        return Response(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            question_id=str(row["question_id"]),
            question=str(row["question"]),
            answer=str(row["answer"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "DuplicateEmailError", "StoreError", "resolve_database_path"]
