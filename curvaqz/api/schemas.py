from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from curvaqz.service.quiz_payload import (
    FixtureSummary,
    LeagueSummary,
    Question,
    QuizMetadata,
    QuizSource,
    TeamSummary,
)

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "not_found",
    "validation_error",
    "conflict",
    "bad_gateway",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error payload returned for every non-2xx response."""

    error: str
    code: str = Field(..., description="Stable error code")
    detail: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionResponse(CamelModel):
    session_id: str = Field(alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    token: str
    expires_at: int = Field(alias="expiresAt", description="Token expiry, epoch milliseconds")


class SessionInfoResponse(CamelModel):
    session_id: str = Field(alias="sessionId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    expires_at: int = Field(alias="expiresAt")


class RevokeResponse(CamelModel):
    session_id: str = Field(alias="sessionId")
    revoked: bool = True


class QuizResponse(CamelModel):
    quiz_id: str = Field(alias="quizId")
    session_id: str = Field(alias="sessionId")
    source: QuizSource
    metadata: QuizMetadata
    questions: List[Question]


class CreateQuizRequest(CamelModel):
    """Generate from ``fixtureId``, or from the latest fixture of ``leagueId``."""

    fixture_id: Optional[int] = Field(default=None, alias="fixtureId", ge=1)
    league_id: Optional[int] = Field(default=None, alias="leagueId", ge=1)
    length: Optional[int] = Field(default=None, ge=1, le=50)
    nb_answers: Optional[int] = Field(default=None, alias="nbAnswers", ge=2, le=10)
    distinct: Optional[bool] = None
    shuffle: Optional[bool] = None
    lang: Optional[Literal["fr", "en", "es", "de"]] = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "CreateQuizRequest":
        if (self.fixture_id is None) == (self.league_id is None):
            raise ValueError("provide exactly one of fixtureId or leagueId")
        return self


class LeagueListResponse(BaseModel):
    items: List[LeagueSummary]


class TeamListResponse(BaseModel):
    items: List[TeamSummary]


class FixtureListResponse(BaseModel):
    items: List[FixtureSummary]


__all__ = [
    "CreateQuizRequest",
    "ErrorBody",
    "FixtureListResponse",
    "LeagueListResponse",
    "QuizResponse",
    "RevokeResponse",
    "SessionInfoResponse",
    "SessionResponse",
    "TeamListResponse",
]
