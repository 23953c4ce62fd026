from __future__ import annotations

from typing import Any, Dict, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from curvaqz.logging import get_logger
from curvaqz.storage.errors import ConstraintViolation, StoreError
from curvaqz.storage.models import Session, StoredQuiz, User, utcnow

REQUIRED_TABLES = ("sessions", "users", "quizzes")


class PostgresStore:
    """Postgres-backed session, user and stored-quiz persistence."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the tables exist before serving requests."""

        with self._connect() as conn:
            missing_tables = []
            for table in REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Run scripts/bootstrap_schema.py first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1")

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _session_from_row(row: Dict[str, Any]) -> Session:
        return Session(
            id=str(row["id"]),
            user_id=str(row["user_id"]) if row.get("user_id") is not None else None,
            created_at=row["created_at"],
            last_seen_at=row["last_seen_at"],
            revoked=bool(row.get("revoked")),
        )

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            display_name=row.get("display_name"),
            provider=row.get("provider"),
            provider_sub=row.get("provider_sub"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # sessions
    def get_session(self, session_id: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = %s", (session_id,)
            ).fetchone()
        if not row:
            return None
        return self._session_from_row(row)

    def create_session(self, session_id: str, user_id: Optional[str] = None) -> Session:
        sess = Session.new(session_id, user_id=user_id)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sessions (id, user_id, created_at, last_seen_at, revoked)
                    VALUES (%s, %s, %s, %s, 0)
                    """,
                    (sess.id, sess.user_id, sess.created_at, sess.last_seen_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "session already exists", {"session_id": session_id}
            )
        return sess

    def touch_session(self, session_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE sessions SET last_seen_at = GREATEST(last_seen_at, %s) WHERE id = %s",
                (utcnow(), session_id),
            )

    def link_session_to_user(self, session_id: str, user_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE sessions
                SET user_id = %s, last_seen_at = GREATEST(last_seen_at, %s)
                WHERE id = %s
                """,
                (user_id, utcnow(), session_id),
            )

    def revoke_session(self, session_id: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE sessions SET revoked = 1 WHERE id = %s", (session_id,))

    # users
    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def upsert_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        provider: Optional[str] = None,
        provider_sub: Optional[str] = None,
    ) -> User:
        now = utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, display_name, provider, provider_sub, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    display_name = COALESCE(EXCLUDED.display_name, users.display_name),
                    provider = COALESCE(EXCLUDED.provider, users.provider),
                    provider_sub = COALESCE(EXCLUDED.provider_sub, users.provider_sub),
                    updated_at = EXCLUDED.updated_at
                """,
                (user_id, display_name, provider, provider_sub, now, now),
            )
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        if not row:
            self.logger.error("upsert_user_missing_row", user_id=user_id)
            raise StoreError("Failed to upsert user", {"user_id": user_id})
        return self._user_from_row(row)

    # quizzes
    def get_quiz(self, quiz_id: str) -> Optional[StoredQuiz]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM quizzes WHERE id = %s", (quiz_id,)).fetchone()
        if not row:
            return None
        return StoredQuiz(
            id=str(row["id"]),
            source=row["source"],
            payload=row.get("payload"),
            session_id=row.get("session_id"),
            created_at=row["created_at"],
        )

    def save_quiz(self, quiz: StoredQuiz) -> StoredQuiz:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO quizzes (id, session_id, source, payload, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (quiz.id, quiz.session_id, quiz.source, quiz.payload, quiz.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("quiz already exists", {"quiz_id": quiz.id})
        return quiz


__all__ = ["PostgresStore", "REQUIRED_TABLES"]
