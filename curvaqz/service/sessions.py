"""Per-request session policy.

``SessionGateway`` turns the ``cq_session`` cookie into an active session,
minting a replacement when the policy allows it, and issues the access
token that accompanies it. Routes choose the policy; the gateway owns the
decision table and never touches revoked sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Response

from curvaqz.logging import get_logger
from curvaqz.service.errors import AuthenticationError, BadRequestError
from curvaqz.service.tokens import AccessClaims, TokenIssuer
from curvaqz.storage.common import SessionRepository
from curvaqz.storage.errors import ConstraintViolation
from curvaqz.storage.models import Session, new_session_id

SESSION_COOKIE = "cq_session"
ACCESS_TOKEN_COOKIE = "cq_access"
SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 30
ACCESS_TOKEN_MAX_AGE_SECONDS = 60 * 60

# Attempts at drawing an unused identifier before giving up
_MAX_ID_ATTEMPTS = 3


@dataclass(frozen=True)
class SessionPolicy:
    create_if_missing: bool
    replace_revoked: bool


BOOTSTRAP_POLICY = SessionPolicy(create_if_missing=True, replace_revoked=True)
REFRESH_POLICY = SessionPolicy(create_if_missing=False, replace_revoked=False)
QUIZ_READ_POLICY = SessionPolicy(create_if_missing=True, replace_revoked=False)


@dataclass
class SessionResult:
    session: Session
    token: str
    expires_at_ms: int
    created: bool = False


@dataclass
class AuthContext:
    session_id: str
    user_id: Optional[str]
    expires_at_ms: int
    claims: AccessClaims


class SessionGateway:
    def __init__(self, store: SessionRepository, issuer: TokenIssuer) -> None:
        self.store = store
        self.issuer = issuer
        self.logger = get_logger(__name__)

    def _create_session(self, user_id: Optional[str] = None) -> Session:
        for _ in range(_MAX_ID_ATTEMPTS):
            try:
                sess = self.store.create_session(new_session_id(), user_id=user_id)
            except ConstraintViolation:
                self.logger.warning("session_id_collision")
                continue
            self.logger.info("session_created", session_id=sess.id)
            return sess
        raise ConstraintViolation("could not allocate session id")

    def ensure_session(
        self,
        session_id: Optional[str],
        *,
        create_if_missing: bool,
        replace_revoked: bool,
    ) -> SessionResult:
        """Resolve ``session_id`` to an active session and issue a token for it.

        Raises:
            BadRequestError: no cookie and creation is not allowed.
            AuthenticationError: unknown or revoked id that may not be replaced.
            TokenConfigurationError: the signing secret is missing.
        """
        created = False
        if not session_id:
            if not create_if_missing:
                raise BadRequestError("Missing session")
            session = self._create_session()
            created = True
        else:
            existing = self.store.get_session(session_id)
            if existing is None:
                if not create_if_missing:
                    raise AuthenticationError("Invalid session")
                session = self._create_session()
                created = True
            elif existing.revoked:
                if not replace_revoked:
                    raise AuthenticationError("Invalid session")
                self.logger.info("session_replaced", revoked_session_id=existing.id)
                session = self._create_session()
                created = True
            else:
                self.store.touch_session(existing.id)
                session = self.store.get_session(existing.id) or existing

        issued = self.issuer.issue(session.id, session.user_id)
        return SessionResult(
            session=session,
            token=issued.token,
            expires_at_ms=issued.expires_at_ms,
            created=created,
        )

    def ensure_with_policy(
        self, session_id: Optional[str], policy: SessionPolicy
    ) -> SessionResult:
        return self.ensure_session(
            session_id,
            create_if_missing=policy.create_if_missing,
            replace_revoked=policy.replace_revoked,
        )

    def bootstrap(self, session_id: Optional[str]) -> SessionResult:
        return self.ensure_with_policy(session_id, BOOTSTRAP_POLICY)

    def refresh(self, session_id: Optional[str]) -> SessionResult:
        return self.ensure_with_policy(session_id, REFRESH_POLICY)

    def authenticate(self, token: Optional[str]) -> AuthContext:
        if not token:
            raise AuthenticationError("Missing access token")
        claims = self.issuer.verify(token)
        session = self.store.get_session(claims.sid)
        if session is None or session.revoked:
            raise AuthenticationError("Invalid session")
        return AuthContext(
            session_id=session.id,
            user_id=session.user_id,
            expires_at_ms=claims.exp * 1000,
            claims=claims,
        )

    def link_user(
        self,
        session_id: Optional[str],
        user_id: str,
        *,
        display_name: Optional[str] = None,
        provider: Optional[str] = None,
        provider_sub: Optional[str] = None,
    ) -> SessionResult:
        """Attach a user to the current session and re-issue its token with ``sub``."""
        current = self.refresh(session_id)
        user = self.store.upsert_user(
            user_id,
            display_name=display_name,
            provider=provider,
            provider_sub=provider_sub,
        )
        self.store.link_session_to_user(current.session.id, user.id)
        session = self.store.get_session(current.session.id)
        if session is None:
            raise AuthenticationError("Invalid session")
        self.logger.info("session_linked", session_id=session.id, user_id=user.id)
        issued = self.issuer.issue(session.id, session.user_id)
        return SessionResult(
            session=session, token=issued.token, expires_at_ms=issued.expires_at_ms
        )

    def revoke(self, session_id: Optional[str]) -> None:
        if not session_id:
            raise BadRequestError("Missing session")
        self.store.revoke_session(session_id)
        self.logger.info("session_revoked", session_id=session_id)


def apply_auth_cookies(
    response: Response, session_id: str, token: str, *, secure: bool
) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=SESSION_MAX_AGE_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        max_age=ACCESS_TOKEN_MAX_AGE_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )


def clear_auth_cookies(response: Response, *, secure: bool) -> None:
    for name in (SESSION_COOKIE, ACCESS_TOKEN_COOKIE):
        response.delete_cookie(
            name, path="/", secure=secure, httponly=True, samesite="lax"
        )


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "AuthContext",
    "BOOTSTRAP_POLICY",
    "QUIZ_READ_POLICY",
    "REFRESH_POLICY",
    "SESSION_COOKIE",
    "SessionGateway",
    "SessionPolicy",
    "SessionResult",
    "apply_auth_cookies",
    "clear_auth_cookies",
]
