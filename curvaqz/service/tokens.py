from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

from curvaqz.config import DEFAULT_JWT_ISSUER
from curvaqz.logging import get_logger
from curvaqz.service.errors import AuthenticationError, ServerError

logger = get_logger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 60 * 60
_HEADER = {"alg": "HS256", "typ": "JWT"}


class InvalidTokenError(AuthenticationError):
    """Access token failed structural, signature or claim checks."""


class TokenConfigurationError(ServerError):
    """Signing secret missing; tokens cannot be issued or verified."""

    def __init__(self) -> None:
        super().__init__("Failed to issue token", detail="Auth secret is not configured")


@dataclass
class AccessClaims:
    sid: str
    iss: str
    iat: int
    exp: int
    sub: Optional[str] = None
    aud: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class IssuedToken:
    token: str
    exp: int

    @property
    def expires_at_ms(self) -> int:
        return self.exp * 1000


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _signature(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def sign_token(claims: AccessClaims, secret: str) -> str:
    """Serialize ``claims`` as a compact HS256 JWT."""
    if not secret:
        raise TokenConfigurationError()
    header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
    payload_enc = _encode_segment(
        json.dumps(claims.to_payload(), separators=(",", ":")).encode()
    )
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_signature(signing_input, secret)}"


def verify_token(
    token: str,
    secret: str,
    *,
    issuer: Optional[str] = None,
    audience: Optional[str] = None,
    now: Optional[float] = None,
) -> AccessClaims:
    """Check signature, algorithm and claims; raise InvalidTokenError otherwise."""
    if not secret:
        raise TokenConfigurationError()
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
    except (AttributeError, ValueError):
        raise InvalidTokenError("Invalid token")

    try:
        header = json.loads(_decode_segment(header_b64))
    except (ValueError, TypeError):
        logger.warning("jwt_header_decode_failed")
        raise InvalidTokenError("Invalid token")
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        logger.warning(
            "jwt_invalid_algorithm",
            alg=header.get("alg") if isinstance(header, dict) else None,
        )
        raise InvalidTokenError("Invalid token")

    signing_input = f"{header_b64}.{payload_b64}"
    # header values arrive latin-1 decoded, so compare bytes rather than str
    expected = _signature(signing_input, secret).encode("ascii")
    if not hmac.compare_digest(expected, sig_b64.encode("utf-8", "surrogateescape")):
        raise InvalidTokenError("Invalid token")

    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, TypeError) as exc:
        logger.warning("jwt_payload_decode_failed", error=str(exc))
        raise InvalidTokenError("Invalid token")
    if not isinstance(payload, dict):
        raise InvalidTokenError("Invalid token")

    sid = payload.get("sid")
    exp = payload.get("exp")
    iat = payload.get("iat")
    if not isinstance(sid, str) or not sid:
        raise InvalidTokenError("Invalid token")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise InvalidTokenError("Invalid token")
    current = time.time() if now is None else now
    if exp <= current:
        raise InvalidTokenError("Token expired")
    if issuer is not None and payload.get("iss") != issuer:
        raise InvalidTokenError("Invalid token")
    if audience is not None:
        aud = payload.get("aud")
        valid_aud = aud == audience if isinstance(aud, str) else (
            isinstance(aud, list) and audience in aud
        )
        if not valid_aud:
            raise InvalidTokenError("Invalid token")

    sub = payload.get("sub")
    return AccessClaims(
        sid=sid,
        sub=sub if isinstance(sub, str) else None,
        iss=str(payload.get("iss") or ""),
        aud=payload.get("aud") if isinstance(payload.get("aud"), str) else None,
        iat=int(iat) if isinstance(iat, (int, float)) else 0,
        exp=int(exp),
    )


class TokenIssuer:
    """Issues and verifies access tokens bound to a session identity."""

    def __init__(
        self,
        secret: Optional[str],
        *,
        issuer: str = DEFAULT_JWT_ISSUER,
        audience: Optional[str] = None,
        ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
        clock=time.time,
    ) -> None:
        self.secret = secret
        self.issuer = issuer or DEFAULT_JWT_ISSUER
        self.audience = audience
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def issue(self, session_id: str, user_id: Optional[str] = None) -> IssuedToken:
        if not self.secret:
            logger.error("token_issue_failed", reason="missing_secret")
            raise TokenConfigurationError()
        iat = int(self._clock())
        claims = AccessClaims(
            sid=session_id,
            sub=user_id,
            iss=self.issuer,
            aud=self.audience,
            iat=iat,
            exp=iat + self.ttl_seconds,
        )
        return IssuedToken(token=sign_token(claims, self.secret), exp=claims.exp)

    def verify(self, token: str) -> AccessClaims:
        if not self.secret:
            raise TokenConfigurationError()
        return verify_token(
            token,
            self.secret,
            issuer=self.issuer,
            audience=self.audience,
            now=self._clock(),
        )


__all__ = [
    "ACCESS_TOKEN_TTL_SECONDS",
    "AccessClaims",
    "InvalidTokenError",
    "IssuedToken",
    "TokenConfigurationError",
    "TokenIssuer",
    "sign_token",
    "verify_token",
]
