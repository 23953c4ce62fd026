from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """Return 128 random bits as unpadded base64url."""
    raw = secrets.token_bytes(16)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@dataclass
class User:
    id: str
    display_name: Optional[str] = None
    provider: Optional[str] = None
    provider_sub: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    id: str
    user_id: Optional[str]
    created_at: datetime
    last_seen_at: datetime
    revoked: bool = False

    @property
    def is_active(self) -> bool:
        return not self.revoked

    @classmethod
    def new(cls, session_id: str, user_id: Optional[str] = None) -> "Session":
        now = utcnow()
        return cls(
            id=session_id,
            user_id=user_id,
            created_at=now,
            last_seen_at=now,
            revoked=False,
        )


@dataclass
class StoredQuiz:
    id: str
    source: str
    payload: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


__all__ = ["Session", "StoredQuiz", "User", "new_session_id", "utcnow"]
