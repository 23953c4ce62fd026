"""Canonical shapes for upstream quiz data.

The upstream API is loose about its payloads: identifiers arrive as numbers
or digit strings, questions are keyed ``"0"``, ``"1"``... next to an optional
``fixture`` entry, and fixtures come either flat (``home_team``) or nested
(``teams.home.name``, ``fixture.date``). Everything is mapped here, once,
into the pydantic models below so the rest of the service only ever sees
integer ids, ``Question``/``Answer`` pairs and ``FixtureSummary`` records.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from curvaqz.logging import get_logger

logger = get_logger(__name__)

QuizSource = Literal["fixture", "latest"]

_FINISHED_STATUSES = {"FT", "AET", "PEN"}


class Answer(BaseModel):
    text: str = Field(min_length=1)
    correct: bool


class Question(BaseModel):
    prompt: str = Field(min_length=1)
    answers: List[Answer] = Field(min_length=1)


class FixtureSummary(BaseModel):
    id: Optional[int] = None
    date: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    score: Optional[str] = None
    status: Optional[str] = None


class LeagueSummary(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    country: Optional[str] = None
    logo: Optional[str] = None


class TeamSummary(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    code: Optional[str] = None
    country: Optional[str] = None
    logo: Optional[str] = None
    venue: Optional[str] = None


class QuizMetadata(BaseModel):
    fixture: Optional[FixtureSummary] = None
    league: Optional[LeagueSummary] = None


class NormalizedQuiz(BaseModel):
    questions: List[Question]
    fixture: Optional[FixtureSummary] = None
    league: Optional[LeagueSummary] = None


class StoredQuizPayload(BaseModel):
    """Quiz document persisted in ``quizzes.payload``."""

    model_config = ConfigDict(populate_by_name=True)

    quiz_id: str = Field(alias="quizId", min_length=1)
    source: QuizSource
    metadata: QuizMetadata = Field(default_factory=QuizMetadata)
    questions: List[Question] = Field(min_length=1)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        text = _text(value)
        if text:
            return text
    return None


def _get(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def normalize_answer(raw: Any, correct_text: Optional[str] = None) -> Optional[Answer]:
    if isinstance(raw, str):
        text = _text(raw)
        if not text:
            return None
        return Answer(text=text, correct=correct_text is not None and text == correct_text)
    if not isinstance(raw, dict):
        return None
    text = _first_text(raw.get("txt"), raw.get("text"))
    if not text:
        return None
    if "type" in raw:
        correct = str(raw.get("type")).upper() == "OK"
    elif "isCorrect" in raw:
        correct = bool(raw.get("isCorrect"))
    elif "correct" in raw:
        correct = bool(raw.get("correct"))
    else:
        correct = correct_text is not None and text == correct_text
    return Answer(text=text, correct=correct)


def normalize_question(raw: Any) -> Optional[Question]:
    if not isinstance(raw, dict):
        return None
    prompt = _first_text(raw.get("question"), raw.get("prompt"))
    if not prompt:
        return None

    correct_text = _first_text(raw.get("correct_answer"), raw.get("correctAnswer"))
    options = raw.get("answers")
    if options is None:
        options = raw.get("options")
    answers: List[Answer] = []
    if isinstance(options, list):
        for option in options:
            answer = normalize_answer(option, correct_text)
            if answer:
                answers.append(answer)
    else:
        incorrect = raw.get("incorrect_answers") or raw.get("incorrectAnswers") or []
        if correct_text:
            answers.append(Answer(text=correct_text, correct=True))
        for option in incorrect if isinstance(incorrect, list) else []:
            text = _text(option)
            if text:
                answers.append(Answer(text=text, correct=False))
    if not answers:
        return None
    return Question(prompt=prompt, answers=answers)


def _score(raw: dict) -> Optional[str]:
    flat = raw.get("score")
    if isinstance(flat, str):
        return _text(flat)
    home = _get(raw, "goals", "home")
    away = _get(raw, "goals", "away")
    if home is None or away is None:
        home = _get(raw, "score", "fulltime", "home")
        away = _get(raw, "score", "fulltime", "away")
    if home is None or away is None:
        return None
    return f"{home}-{away}"


def _status(raw: dict) -> Optional[str]:
    flat = raw.get("status")
    if isinstance(flat, str):
        return _text(flat)
    status = flat if isinstance(flat, dict) else _get(raw, "fixture", "status")
    if not isinstance(status, dict):
        return None
    short = _text(status.get("short"))
    if short and short.upper() in _FINISHED_STATUSES:
        return "finished"
    return _first_text(status.get("long"), short)


def normalize_fixture(raw: Any) -> Optional[FixtureSummary]:
    """Collapse flat or nested fixture payloads into a ``FixtureSummary``."""
    if not isinstance(raw, dict):
        return None
    summary = FixtureSummary(
        id=coerce_id(raw.get("id")) or coerce_id(_get(raw, "fixture", "id")),
        date=_first_text(raw.get("date"), _get(raw, "fixture", "date")),
        home_team=_first_text(raw.get("home_team"), _get(raw, "teams", "home", "name")),
        away_team=_first_text(raw.get("away_team"), _get(raw, "teams", "away", "name")),
        score=_score(raw),
        status=_status(raw),
    )
    if summary.id is None and not summary.home_team and not summary.away_team:
        return None
    return summary


def normalize_league(raw: Any) -> Optional[LeagueSummary]:
    if not isinstance(raw, dict):
        return None
    nested = raw.get("league") if isinstance(raw.get("league"), dict) else raw
    league = LeagueSummary(
        id=coerce_id(nested.get("id")),
        name=_text(nested.get("name")),
        country=_first_text(nested.get("country"), _get(raw, "country", "name")),
        logo=_text(nested.get("logo")),
    )
    if league.id is None and not league.name:
        return None
    return league


def normalize_team(raw: Any) -> Optional[TeamSummary]:
    if not isinstance(raw, dict):
        return None
    info = raw.get("team") if isinstance(raw.get("team"), dict) else raw
    team = TeamSummary(
        id=coerce_id(info.get("id")),
        name=_text(info.get("name")),
        code=_text(info.get("code")),
        country=_text(info.get("country")),
        logo=_text(info.get("logo")),
        venue=_text(_get(raw, "venue", "name")),
    )
    if team.id is None and not team.name:
        return None
    return team


def _collect(items: Any, normalizer) -> List[Any]:
    if isinstance(items, dict):
        # some endpoints wrap their list in {"response": [...]}
        items = items.get("response", items.get("data", []))
    if not isinstance(items, list):
        return []
    results = []
    for item in items:
        normalized = normalizer(item)
        if normalized is not None:
            results.append(normalized)
    return results


def normalize_leagues(raw: Any) -> List[LeagueSummary]:
    return _collect(raw, normalize_league)


def normalize_teams(raw: Any) -> List[TeamSummary]:
    return _collect(raw, normalize_team)


def normalize_fixtures(raw: Any) -> List[FixtureSummary]:
    return _collect(raw, normalize_fixture)


def _question_items(raw: Any) -> Iterable[Any]:
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, dict):
        return []
    if isinstance(raw.get("questions"), list):
        return raw["questions"]
    numbered = sorted(
        ((int(key), value) for key, value in raw.items() if str(key).isdigit()),
        key=lambda pair: pair[0],
    )
    return [value for _, value in numbered]


def normalize_quiz_response(raw: Any) -> NormalizedQuiz:
    """Map a ``quiz``/``last`` response into questions plus fixture context."""
    questions: List[Question] = []
    skipped = 0
    for item in _question_items(raw):
        question = normalize_question(item)
        if question is None:
            skipped += 1
            continue
        questions.append(question)
    if skipped:
        logger.warning("quiz_questions_skipped", skipped=skipped, kept=len(questions))

    fixture_raw = raw.get("fixture") if isinstance(raw, dict) else None
    league_raw = None
    if isinstance(fixture_raw, dict):
        league_raw = fixture_raw.get("league")
    if league_raw is None and isinstance(raw, dict):
        league_raw = raw.get("league")
    return NormalizedQuiz(
        questions=questions,
        fixture=normalize_fixture(fixture_raw),
        league=normalize_league({"league": league_raw}) if isinstance(league_raw, dict) else None,
    )


def revive_stored_payload(raw: Any) -> Optional[StoredQuizPayload]:
    """Parse a stored quiz document; ``None`` if it is not a valid payload."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
    if not isinstance(raw, dict):
        return None
    try:
        return StoredQuizPayload.model_validate(raw)
    except ValidationError:
        return None


__all__ = [
    "Answer",
    "FixtureSummary",
    "LeagueSummary",
    "NormalizedQuiz",
    "Question",
    "QuizMetadata",
    "QuizSource",
    "StoredQuizPayload",
    "TeamSummary",
    "coerce_id",
    "normalize_fixture",
    "normalize_fixtures",
    "normalize_league",
    "normalize_leagues",
    "normalize_question",
    "normalize_quiz_response",
    "normalize_team",
    "normalize_teams",
    "revive_stored_payload",
]
