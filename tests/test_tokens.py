import base64
import json

import pytest

from curvaqz.service.tokens import (
    ACCESS_TOKEN_TTL_SECONDS,
    AccessClaims,
    InvalidTokenError,
    TokenConfigurationError,
    TokenIssuer,
    sign_token,
    verify_token,
)

SECRET = "unit-test-secret"


def _decode_part(segment: str) -> dict:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


def _claims(**overrides) -> AccessClaims:
    values = {"sid": "sess-1", "iss": "curvaqz", "iat": 1_000, "exp": 1_000 + 3600}
    values.update(overrides)
    return AccessClaims(**values)


def test_sign_token_produces_hs256_jwt():
    token = sign_token(_claims(sub="user-1"), SECRET)
    header_b64, payload_b64, signature = token.split(".")

    assert _decode_part(header_b64) == {"alg": "HS256", "typ": "JWT"}
    payload = _decode_part(payload_b64)
    assert payload == {"sid": "sess-1", "sub": "user-1", "iss": "curvaqz", "iat": 1000, "exp": 4600}
    assert "=" not in token
    assert signature


def test_sign_token_omits_absent_optional_claims():
    payload = _decode_part(sign_token(_claims(), SECRET).split(".")[1])
    assert "sub" not in payload
    assert "aud" not in payload


def test_sign_token_requires_secret():
    with pytest.raises(TokenConfigurationError):
        sign_token(_claims(), "")


def test_verify_round_trip_checks_issuer_and_audience():
    token = sign_token(_claims(aud="web"), SECRET)
    claims = verify_token(token, SECRET, issuer="curvaqz", audience="web", now=2_000)
    assert claims.sid == "sess-1"
    assert claims.aud == "web"
    assert claims.exp - claims.iat == 3600


def test_verify_rejects_tampered_signature():
    token = sign_token(_claims(), SECRET)
    header, payload, signature = token.split(".")
    forged_payload = base64.urlsafe_b64encode(
        json.dumps({"sid": "other", "iss": "curvaqz", "iat": 1000, "exp": 9_999_999_999}).encode()
    ).decode().rstrip("=")

    with pytest.raises(InvalidTokenError):
        verify_token(f"{header}.{forged_payload}.{signature}", SECRET, now=2_000)
    with pytest.raises(InvalidTokenError):
        verify_token(token, "another-secret", now=2_000)


def test_verify_rejects_non_hs256_header():
    token = sign_token(_claims(), SECRET)
    _, payload, signature = token.split(".")
    none_header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")

    with pytest.raises(InvalidTokenError):
        verify_token(f"{none_header}.{payload}.{signature}", SECRET, now=2_000)


def test_verify_rejects_expired_token():
    token = sign_token(_claims(), SECRET)
    with pytest.raises(InvalidTokenError):
        verify_token(token, SECRET, now=4_600)


def test_verify_rejects_wrong_issuer_or_audience():
    token = sign_token(_claims(aud="web"), SECRET)
    with pytest.raises(InvalidTokenError):
        verify_token(token, SECRET, issuer="someone-else", now=2_000)
    with pytest.raises(InvalidTokenError):
        verify_token(token, SECRET, audience="mobile", now=2_000)


@pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c.d", "!!!.???.***"])
def test_verify_rejects_malformed_tokens(garbage):
    with pytest.raises(InvalidTokenError):
        verify_token(garbage, SECRET, now=2_000)


def test_issuer_sets_one_hour_expiry_and_subject():
    issuer = TokenIssuer(SECRET, clock=lambda: 5_000)
    issued = issuer.issue("sess-9", "user-9")

    assert issued.exp == 5_000 + ACCESS_TOKEN_TTL_SECONDS
    assert issued.expires_at_ms == issued.exp * 1000
    claims = issuer.verify(issued.token)
    assert claims.sid == "sess-9"
    assert claims.sub == "user-9"
    assert claims.iss == "curvaqz"
    assert claims.exp == claims.iat + 3600


def test_issuer_carries_configured_audience():
    issuer = TokenIssuer(SECRET, issuer="quiz-app", audience="web", clock=lambda: 5_000)
    payload = _decode_part(issuer.issue("sess-1").token.split(".")[1])
    assert payload["iss"] == "quiz-app"
    assert payload["aud"] == "web"
    assert "sub" not in payload


def test_issuer_without_secret_fails_loudly():
    issuer = TokenIssuer(None)
    assert not issuer.configured
    with pytest.raises(TokenConfigurationError) as excinfo:
        issuer.issue("sess-1")
    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Failed to issue token"
    assert excinfo.value.detail == "Auth secret is not configured"


@pytest.mark.parametrize("signature", ["é", "ÿÿÿÿ", "sig\udcff"])
def test_verify_rejects_non_ascii_signature(signature):
    header, payload, _ = sign_token(_claims(), SECRET).split(".")
    with pytest.raises(InvalidTokenError):
        verify_token(f"{header}.{payload}.{signature}", SECRET, now=2_000)
