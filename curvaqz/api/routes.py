from __future__ import annotations

from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Header, Path, Query, Request, Response

from curvaqz.api.schemas import (
    CreateQuizRequest,
    FixtureListResponse,
    LeagueListResponse,
    QuizResponse,
    RevokeResponse,
    SessionInfoResponse,
    SessionResponse,
    TeamListResponse,
)
from curvaqz.logging import get_logger
from curvaqz.service.errors import BadRequestError, NotFoundError, ServerError, UpstreamError
from curvaqz.service.quiz_api import QuizParams
from curvaqz.service.quiz_payload import QuizMetadata, StoredQuizPayload, revive_stored_payload
from curvaqz.service.runtime import get_runtime
from curvaqz.service.sessions import (
    ACCESS_TOKEN_COOKIE,
    QUIZ_READ_POLICY,
    SESSION_COOKIE,
    SessionResult,
    apply_auth_cookies,
    clear_auth_cookies,
)
from curvaqz.storage.models import StoredQuiz

logger = get_logger(__name__)

router = APIRouter()


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https"


def _session_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE) or None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _session_response(result: SessionResult) -> SessionResponse:
    return SessionResponse(
        session_id=result.session.id,
        user_id=result.session.user_id,
        token=result.token,
        expires_at=result.expires_at_ms,
    )


@router.post("/session/bootstrap", response_model=SessionResponse, tags=["session"])
async def bootstrap_session(request: Request, response: Response):
    runtime = get_runtime()
    result = runtime.sessions.bootstrap(_session_cookie(request))
    apply_auth_cookies(response, result.session.id, result.token, secure=_is_secure(request))
    return _session_response(result)


@router.post("/session/refresh", response_model=SessionResponse, tags=["session"])
async def refresh_session(request: Request, response: Response):
    runtime = get_runtime()
    result = runtime.sessions.refresh(_session_cookie(request))
    apply_auth_cookies(response, result.session.id, result.token, secure=_is_secure(request))
    return _session_response(result)


@router.get("/session/me", response_model=SessionInfoResponse, tags=["session"])
async def current_session(
    request: Request,
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    token = _bearer_token(authorization) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    auth = runtime.sessions.authenticate(token)
    return SessionInfoResponse(
        session_id=auth.session_id,
        user_id=auth.user_id,
        expires_at=auth.expires_at_ms,
    )


@router.post("/session/revoke", response_model=RevokeResponse, tags=["session"])
async def revoke_session(request: Request, response: Response):
    runtime = get_runtime()
    session_id = _session_cookie(request)
    runtime.sessions.revoke(session_id)
    clear_auth_cookies(response, secure=_is_secure(request))
    return RevokeResponse(session_id=session_id, revoked=True)


@router.get("/quiz/{quiz_id}", response_model=QuizResponse, tags=["quiz"])
async def get_quiz(
    request: Request,
    response: Response,
    quiz_id: str = Path(..., max_length=128),
):
    quiz_id = quiz_id.strip()
    if not quiz_id:
        raise BadRequestError("Missing quiz id")

    runtime = get_runtime()
    result = runtime.sessions.ensure_with_policy(_session_cookie(request), QUIZ_READ_POLICY)
    apply_auth_cookies(response, result.session.id, result.token, secure=_is_secure(request))

    quiz = runtime.store.get_quiz(quiz_id)
    if quiz is None:
        raise NotFoundError("Quiz not found")
    if not quiz.payload:
        raise NotFoundError("Quiz payload unavailable")

    stored = revive_stored_payload(quiz.payload)
    if stored is None:
        logger.error("quiz_get_invalid_payload", quiz_id=quiz_id)
        raise ServerError("Quiz data invalid")

    return QuizResponse(
        quiz_id=stored.quiz_id,
        session_id=result.session.id,
        source=stored.source,
        metadata=stored.metadata,
        questions=stored.questions,
    )


@router.post("/quiz", response_model=QuizResponse, status_code=201, tags=["quiz"])
async def create_quiz(body: CreateQuizRequest, request: Request, response: Response):
    runtime = get_runtime()
    result = runtime.sessions.ensure_with_policy(_session_cookie(request), QUIZ_READ_POLICY)
    apply_auth_cookies(response, result.session.id, result.token, secure=_is_secure(request))

    params = QuizParams(
        length=body.length,
        nb_answers=body.nb_answers,
        distinct=body.distinct,
        shuffle=body.shuffle,
        lang=body.lang,
    )
    if body.fixture_id is not None:
        source = "fixture"
        generated = await runtime.quiz_api.get_quiz_by_fixture(body.fixture_id, params)
    else:
        source = "latest"
        generated = await runtime.quiz_api.get_quiz_by_latest_fixture(body.league_id, params)
    if not generated.questions:
        raise UpstreamError("Quiz API returned no questions", detail={"source": source})

    payload = StoredQuizPayload(
        quiz_id=str(uuid4()),
        source=source,
        metadata=QuizMetadata(fixture=generated.fixture, league=generated.league),
        questions=generated.questions,
    )
    runtime.store.save_quiz(
        StoredQuiz(
            id=payload.quiz_id,
            source=source,
            payload=payload.to_json(),
            session_id=result.session.id,
        )
    )
    logger.info(
        "quiz_created",
        quiz_id=payload.quiz_id,
        source=source,
        questions=len(payload.questions),
    )
    return QuizResponse(
        quiz_id=payload.quiz_id,
        session_id=result.session.id,
        source=payload.source,
        metadata=payload.metadata,
        questions=payload.questions,
    )


@router.get("/leagues", response_model=LeagueListResponse, tags=["catalog"])
async def list_leagues():
    runtime = get_runtime()
    return LeagueListResponse(items=await runtime.quiz_api.get_leagues())


@router.get("/leagues/{league_id}/teams", response_model=TeamListResponse, tags=["catalog"])
async def list_teams(league_id: int = Path(..., ge=1)):
    runtime = get_runtime()
    return TeamListResponse(items=await runtime.quiz_api.get_teams(league_id))


@router.get(
    "/leagues/{league_id}/fixtures", response_model=FixtureListResponse, tags=["catalog"]
)
async def list_fixtures(
    league_id: int = Path(..., ge=1),
    team: Optional[int] = Query(None, ge=1),
    last50: bool = Query(False),
):
    runtime = get_runtime()
    if last50:
        items = await runtime.quiz_api.get_fixtures_50(league_id, team)
    else:
        items = await runtime.quiz_api.get_fixtures(league_id, team)
    return FixtureListResponse(items=items)
