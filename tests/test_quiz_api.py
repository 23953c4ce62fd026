import httpx
import pytest

from curvaqz.service.cache_aside import CacheAsideClient
from curvaqz.service.errors import BadRequestError, UpstreamError
from curvaqz.service.quiz_api import (
    QuizApiClient,
    QuizApiError,
    QuizParams,
    build_query,
    teams_cache_key,
    to_numeric_flag,
)
from curvaqz.storage.memory import MemoryCache

BASE = "https://quiz.test/api/quiz/"


class Upstream:
    """Routes requests by path and records every call."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.rsplit("/", 1)[-1]
        handler = self.responses.get(path)
        if handler is None:
            return httpx.Response(404, text="no route")
        if callable(handler):
            return handler(request)
        return httpx.Response(200, json=handler)

    def transport(self):
        return httpx.MockTransport(self)


def _client(upstream, *, cache=None, auth="dGVzdDp0ZXN0"):
    cache_aside = CacheAsideClient(cache) if cache is not None else None
    return QuizApiClient(BASE, auth, cache_aside=cache_aside, transport=upstream.transport())


def test_numeric_flags_and_query_building():
    assert to_numeric_flag(True) == 1
    assert to_numeric_flag(False) == 0
    assert to_numeric_flag(3) == 3
    assert to_numeric_flag(None) is None
    assert build_query({"a": None, "b": True, "c": 0, "d": "x"}) == {"b": "1", "c": "0", "d": "x"}


def test_quiz_params_reject_unknown_language():
    with pytest.raises(BadRequestError):
        QuizParams(lang="it")


@pytest.mark.asyncio
async def test_leagues_are_fetched_once_then_served_from_cache():
    upstream = Upstream({"leagues": [{"id": 1, "name": "League 1"}]})
    client = _client(upstream, cache=MemoryCache())

    first = await client.get_leagues()
    second = await client.get_leagues()
    await client.aclose()

    assert len(upstream.requests) == 1
    assert [league.model_dump(exclude_none=True) for league in first] == [{"id": 1, "name": "League 1"}]
    assert second == first
    request = upstream.requests[0]
    assert request.url.path == "/api/quiz/leagues"
    assert not request.url.query
    assert request.headers["Authorization"] == "Basic dGVzdDp0ZXN0"


@pytest.mark.asyncio
async def test_teams_cached_per_league():
    teams = [{"team": {"id": "7", "name": "Team A"}, "venue": {"id": 10, "name": "Venue"}}]
    upstream = Upstream({"teams": teams})
    cache = MemoryCache()
    client = _client(upstream, cache=cache)

    await client.get_teams(1)
    await client.get_teams(2)
    assert len(upstream.requests) == 2

    again = await client.get_teams(1)
    await client.aclose()

    assert len(upstream.requests) == 2
    assert again[0].id == 7
    assert again[0].venue == "Venue"
    assert upstream.requests[0].url.params["league"] == "1"
    assert await cache.get(teams_cache_key(1)) is not None
    assert teams_cache_key(2) == "qz:teams:2"


@pytest.mark.asyncio
async def test_without_cache_every_call_goes_to_origin():
    upstream = Upstream({"leagues": []})
    client = _client(upstream, auth=None)

    await client.get_leagues()
    await client.get_leagues()
    await client.aclose()

    assert len(upstream.requests) == 2
    assert "Authorization" not in upstream.requests[0].headers


@pytest.mark.asyncio
async def test_fixtures_are_never_cached_and_omit_missing_team():
    fixtures = [{"fixture": {"id": 99, "date": "2024-05-01T18:00:00Z"}, "teams": {"home": {"name": "A"}, "away": {"name": "B"}}}]
    upstream = Upstream({"fixtures": fixtures, "fixtures_50": fixtures})
    client = _client(upstream, cache=MemoryCache())

    await client.get_fixtures(39)
    await client.get_fixtures(39)
    last50 = await client.get_fixtures_50(39, 33)
    await client.aclose()

    assert len(upstream.requests) == 3
    assert dict(upstream.requests[0].url.params) == {"league": "39"}
    assert dict(upstream.requests[2].url.params) == {"league": "39", "team": "33"}
    assert last50[0].home_team == "A"
    assert last50[0].id == 99


@pytest.mark.asyncio
async def test_quiz_by_fixture_query_parameters():
    quiz = {
        "0": {"question": "Who won?", "answers": [{"type": "OK", "txt": "A"}, {"type": "BAD", "txt": "B"}]},
        "fixture": {"fixture": {"id": 5}, "teams": {"home": {"name": "A"}, "away": {"name": "B"}}},
    }
    upstream = Upstream({"quiz": quiz})
    client = _client(upstream)

    result = await client.get_quiz_by_fixture(
        5, QuizParams(length=10, nb_answers=4, distinct=True, shuffle=False, lang="fr")
    )
    await client.aclose()

    params = dict(upstream.requests[0].url.params)
    assert params == {
        "fixture": "5",
        "length": "10",
        "nbAnswers": "4",
        "distinct": "1",
        "shuffle": "0",
        "lang": "fr",
    }
    assert result.questions[0].prompt == "Who won?"
    assert result.fixture.id == 5


@pytest.mark.asyncio
async def test_quiz_by_latest_fixture_uses_league_param():
    upstream = Upstream({"last": {}})
    client = _client(upstream)

    result = await client.get_quiz_by_latest_fixture("61")
    await client.aclose()

    assert dict(upstream.requests[0].url.params) == {"league": "61"}
    assert upstream.requests[0].url.path.endswith("/last")
    assert result.questions == []


@pytest.mark.asyncio
async def test_non_2xx_raises_with_status_and_body():
    upstream = Upstream({"leagues": lambda request: httpx.Response(503, text="maintenance")})
    client = _client(upstream)

    with pytest.raises(QuizApiError) as excinfo:
        await client.get_leagues()
    await client.aclose()

    err = excinfo.value
    assert err.status == 503
    assert err.body == "maintenance"
    assert err.path == "leagues"
    assert str(err) == 'Quiz API "leagues" failed (503): maintenance'
    assert err.status_code == 502


@pytest.mark.asyncio
async def test_empty_error_body_falls_back_to_reason_phrase():
    upstream = Upstream({"teams": lambda request: httpx.Response(404)})
    client = _client(upstream)

    with pytest.raises(QuizApiError) as excinfo:
        await client.get_teams(3)
    await client.aclose()

    assert str(excinfo.value) == 'Quiz API "teams" failed (404): Not Found'


@pytest.mark.asyncio
async def test_upstream_errors_are_not_cached():
    calls = {"n": 0}

    def flaky(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json=[{"id": 2, "name": "League 2"}])

    cache = MemoryCache()
    client = _client(Upstream({"leagues": flaky}), cache=cache)

    with pytest.raises(QuizApiError):
        await client.get_leagues()
    leagues = await client.get_leagues()
    await client.aclose()

    assert leagues[0].name == "League 2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_transport_failure_maps_to_upstream_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = QuizApiClient(BASE, transport=httpx.MockTransport(refuse))
    with pytest.raises(UpstreamError) as excinfo:
        await client.get_leagues()
    await client.aclose()
    assert excinfo.value.status_code == 502
