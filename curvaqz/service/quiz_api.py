from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from curvaqz.config import DEFAULT_QUIZ_API_BASE
from curvaqz.logging import get_logger
from curvaqz.service.cache_aside import CacheAsideClient
from curvaqz.service.errors import BadRequestError, UpstreamError
from curvaqz.service.quiz_payload import (
    FixtureSummary,
    LeagueSummary,
    NormalizedQuiz,
    TeamSummary,
    normalize_fixtures,
    normalize_leagues,
    normalize_quiz_response,
    normalize_teams,
)

logger = get_logger(__name__)

SUPPORTED_LANGUAGES = ("fr", "en", "es", "de")
LEAGUES_CACHE_KEY = "qz:leagues"

Identifier = Union[str, int]
QueryValue = Union[str, int, bool, None]


def teams_cache_key(league_id: Identifier) -> str:
    return f"qz:teams:{league_id}"


def to_numeric_flag(value: Union[bool, int, None]) -> Optional[int]:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        return value
    return None


class QuizApiError(UpstreamError):
    """Non-2xx answer from the upstream quiz API."""

    def __init__(self, path: str, status: int, body: str, reason: str = "") -> None:
        self.path = path
        self.status = status
        self.body = body
        super().__init__(
            f'Quiz API "{path}" failed ({status}): {body or reason}',
            detail={"path": path, "status": status},
        )


@dataclass
class QuizParams:
    """Optional knobs shared by the ``quiz`` and ``last`` endpoints."""

    length: Optional[int] = None
    nb_answers: Optional[int] = None
    distinct: Union[bool, int, None] = None
    shuffle: Union[bool, int, None] = None
    lang: Optional[str] = None

    def __post_init__(self) -> None:
        if self.lang is not None and self.lang not in SUPPORTED_LANGUAGES:
            raise BadRequestError(
                "Unsupported quiz language",
                detail={"lang": self.lang, "supported": list(SUPPORTED_LANGUAGES)},
            )

    def to_query(self) -> Dict[str, QueryValue]:
        return {
            "length": self.length,
            "nbAnswers": self.nb_answers,
            "distinct": to_numeric_flag(self.distinct),
            "shuffle": to_numeric_flag(self.shuffle),
            "lang": self.lang,
        }


def build_query(params: Dict[str, QueryValue]) -> Dict[str, str]:
    """Drop ``None`` values and render the rest as query-string text."""
    query: Dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = to_numeric_flag(value)
        query[key] = str(value)
    return query


class QuizApiClient:
    """Client for the upstream sports-data/quiz API.

    Leagues and teams are read through ``cache_aside`` when one is given;
    fixtures and quizzes always go to origin. Raw JSON is what gets cached,
    and every method returns the canonical models from ``quiz_payload``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        *,
        cache_aside: Optional[CacheAsideClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ) -> None:
        self.base_url = base_url or DEFAULT_QUIZ_API_BASE
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        self.auth_token = auth_token
        self.cache_aside = cache_aside
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Basic {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, path: str, params: Optional[Dict[str, QueryValue]] = None) -> Any:
        query = build_query(params or {})
        try:
            response = await self._client.get(path, params=query or None)
        except httpx.TimeoutException as exc:
            logger.error("quiz_api_timeout", path=path, error=str(exc))
            raise UpstreamError("Quiz API timed out", detail={"path": path}) from exc
        except httpx.HTTPError as exc:
            logger.error("quiz_api_unreachable", path=path, error=str(exc))
            raise UpstreamError("Quiz API unreachable", detail={"path": path}) from exc

        if not response.is_success:
            body = response.text
            logger.warning(
                "quiz_api_error",
                path=path,
                status_code=response.status_code,
                body=body[:200],
            )
            raise QuizApiError(path, response.status_code, body, response.reason_phrase)
        try:
            return response.json()
        except ValueError as exc:
            logger.error("quiz_api_invalid_json", path=path, error=str(exc))
            raise UpstreamError("Quiz API returned invalid JSON", detail={"path": path}) from exc

    async def _cached(self, key: str, path: str, params: Optional[Dict[str, QueryValue]] = None) -> Any:
        async def fetcher() -> Any:
            return await self.request(path, params)

        if self.cache_aside is None:
            return await fetcher()
        return await self.cache_aside.fetch_with_cache(key, fetcher)

    async def get_leagues(self) -> List[LeagueSummary]:
        raw = await self._cached(LEAGUES_CACHE_KEY, "leagues")
        return normalize_leagues(raw)

    async def get_teams(self, league_id: Identifier) -> List[TeamSummary]:
        raw = await self._cached(teams_cache_key(league_id), "teams", {"league": league_id})
        return normalize_teams(raw)

    async def get_fixtures(
        self, league_id: Identifier, team_id: Optional[Identifier] = None
    ) -> List[FixtureSummary]:
        raw = await self.request("fixtures", {"league": league_id, "team": team_id})
        return normalize_fixtures(raw)

    async def get_fixtures_50(
        self, league_id: Identifier, team_id: Optional[Identifier] = None
    ) -> List[FixtureSummary]:
        raw = await self.request("fixtures_50", {"league": league_id, "team": team_id})
        return normalize_fixtures(raw)

    async def get_quiz_by_fixture(
        self, fixture_id: Identifier, params: Optional[QuizParams] = None
    ) -> NormalizedQuiz:
        query: Dict[str, QueryValue] = {"fixture": fixture_id}
        query.update((params or QuizParams()).to_query())
        raw = await self.request("quiz", query)
        return normalize_quiz_response(raw)

    async def get_quiz_by_latest_fixture(
        self, league_id: Identifier, params: Optional[QuizParams] = None
    ) -> NormalizedQuiz:
        query: Dict[str, QueryValue] = {"league": league_id}
        query.update((params or QuizParams()).to_query())
        raw = await self.request("last", query)
        return normalize_quiz_response(raw)


__all__ = [
    "LEAGUES_CACHE_KEY",
    "QuizApiClient",
    "QuizApiError",
    "QuizParams",
    "SUPPORTED_LANGUAGES",
    "build_query",
    "teams_cache_key",
    "to_numeric_flag",
]
