"""Capability interfaces shared by the memory and postgres/redis backends.

Services depend on these protocols rather than on driver handles so the
in-memory implementations can be swapped in for tests and local runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from curvaqz.storage.models import Session, StoredQuiz, User


class SessionRepository(Protocol):
    def get_session(self, session_id: str) -> Optional[Session]: ...

    def create_session(
        self, session_id: str, user_id: Optional[str] = None
    ) -> Session: ...

    def touch_session(self, session_id: str) -> None: ...

    def link_session_to_user(self, session_id: str, user_id: str) -> None: ...

    def revoke_session(self, session_id: str) -> None: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def upsert_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        provider: Optional[str] = None,
        provider_sub: Optional[str] = None,
    ) -> User: ...

    def get_quiz(self, quiz_id: str) -> Optional[StoredQuiz]: ...

    def save_quiz(self, quiz: StoredQuiz) -> StoredQuiz: ...

    def verify_connection(self) -> None: ...


class KeyValueCache(Protocol):
    """String key/value cache with per-entry expiry."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...


def later_of(stored: datetime, now: datetime) -> datetime:
    """Keep ``last_seen_at`` from moving backwards under clock skew."""
    return stored if stored > now else now


__all__ = ["KeyValueCache", "SessionRepository", "later_of"]
