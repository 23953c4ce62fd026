from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Dict, Optional, Tuple

from curvaqz.storage.common import later_of
from curvaqz.storage.errors import ConstraintViolation, StoreError
from curvaqz.storage.models import Session, StoredQuiz, User, utcnow


class MemoryStore:
    """In-process session/user/quiz store for tests and local development."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Session] = {}
        self.users: Dict[str, User] = {}
        self.quizzes: Dict[str, StoredQuiz] = {}
        # RLock so helpers can call each other while holding it
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    # sessions
    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            # copies keep callers from mutating stored rows
            return replace(sess) if sess else None

    def create_session(self, session_id: str, user_id: Optional[str] = None) -> Session:
        with self._data_lock:
            if session_id in self.sessions:
                raise ConstraintViolation(
                    "session already exists", {"session_id": session_id}
                )
            sess = Session.new(session_id, user_id=user_id)
            self.sessions[session_id] = sess
            return replace(sess)

    def touch_session(self, session_id: str) -> None:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return
            sess.last_seen_at = later_of(sess.last_seen_at, utcnow())

    def link_session_to_user(self, session_id: str, user_id: str) -> None:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return
            sess.user_id = user_id
            sess.last_seen_at = later_of(sess.last_seen_at, utcnow())

    def revoke_session(self, session_id: str) -> None:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if sess:
                sess.revoked = True

    # users
    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def upsert_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        provider: Optional[str] = None,
        provider_sub: Optional[str] = None,
    ) -> User:
        now = utcnow()
        with self._data_lock:
            existing = self.users.get(user_id)
            if existing is None:
                self.users[user_id] = User(
                    id=user_id,
                    display_name=display_name,
                    provider=provider,
                    provider_sub=provider_sub,
                    created_at=now,
                    updated_at=now,
                )
            else:
                if display_name is not None:
                    existing.display_name = display_name
                if provider is not None:
                    existing.provider = provider
                if provider_sub is not None:
                    existing.provider_sub = provider_sub
                existing.updated_at = now
            user = self.get_user(user_id)
        if user is None:
            raise StoreError("Failed to upsert user", {"user_id": user_id})
        return user

    # quizzes
    def get_quiz(self, quiz_id: str) -> Optional[StoredQuiz]:
        with self._data_lock:
            quiz = self.quizzes.get(quiz_id)
            return replace(quiz) if quiz else None

    def save_quiz(self, quiz: StoredQuiz) -> StoredQuiz:
        with self._data_lock:
            if quiz.id in self.quizzes:
                raise ConstraintViolation("quiz already exists", {"quiz_id": quiz.id})
            self.quizzes[quiz.id] = replace(quiz)
            return replace(quiz)


class MemoryCache:
    """Dictionary-backed stand-in for Redis with per-key expiry."""

    def __init__(self, clock=time.monotonic) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["MemoryCache", "MemoryStore"]
