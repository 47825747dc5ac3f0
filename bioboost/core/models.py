"""Domain models for the quiz attempt engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from bioboost.constants.quiz_constants import DEFAULT_PASSING_SCORE, MAX_ATTEMPTS, TRUE_FALSE_OPTIONS


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "mcq"
    TRUE_FALSE = "tf"


def format_cooldown(seconds: int) -> str:
    """Format a remaining cooldown as ``m:ss`` for display."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


@dataclass(slots=True)
class Quiz:
    """Teacher-owned quiz header."""

    id: str
    teacher_id: str
    title: str
    description: str = ""
    passing_score: int = DEFAULT_PASSING_SCORE
    is_published: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Quiz":
        return cls(
            id=str(row["id"]),
            teacher_id=str(row["teacher_id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            passing_score=_passing_score(row.get("passing_score")),
            is_published=bool(row.get("is_published")),
            created_at=_parse_timestamp(row.get("created_at")),
        )


@dataclass(slots=True)
class QuizQuestion:
    """A single question belonging to exactly one quiz."""

    id: str
    quiz_id: str
    question: str
    type: QuestionType
    answer: str
    options: list[str] = field(default_factory=list)
    explanation: str | None = None
    order: int = 0

    @property
    def choices(self) -> list[str]:
        """Options presented to the learner; true/false uses the boolean literals."""
        if self.type is QuestionType.TRUE_FALSE:
            return list(TRUE_FALSE_OPTIONS)
        return list(self.options)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "QuizQuestion":
        return cls(
            id=str(row["id"]),
            quiz_id=str(row["quiz_id"]),
            question=row.get("question") or "",
            type=QuestionType(row.get("type") or QuestionType.MULTIPLE_CHOICE.value),
            answer=row.get("answer") or "",
            options=list(row.get("options") or []),
            explanation=row.get("explanation") or None,
            order=int(row.get("order") or 0),
        )


@dataclass(slots=True, frozen=True)
class AttemptRecord:
    """Immutable record of one submitted attempt."""

    id: str
    quiz_id: str
    student_id: str
    answers: dict[str, str]
    score: int
    passed: bool
    submitted_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AttemptRecord":
        submitted_at = _parse_timestamp(row.get("submitted_at"))
        if submitted_at is None:
            raise ValueError("Attempt record is missing its submission timestamp.")
        return cls(
            id=str(row.get("id", "")),
            quiz_id=str(row.get("quiz_id", "")),
            student_id=str(row.get("student_id", "")),
            answers=dict(row.get("answers") or {}),
            score=int(row.get("score") or 0),
            passed=bool(row.get("passed")),
            submitted_at=submitted_at,
        )


@dataclass(slots=True, frozen=True)
class Eligibility:
    """Derived attempt eligibility for one learner on one quiz."""

    attempt_count: int
    cooldown_remaining: int
    max_attempts: int = MAX_ATTEMPTS
    degraded: bool = False  # True when the history read failed and we failed open

    @property
    def is_eligible(self) -> bool:
        return self.attempt_count < self.max_attempts or self.cooldown_remaining == 0

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)

    @property
    def cooldown_label(self) -> str:
        return format_cooldown(self.cooldown_remaining)


@dataclass(slots=True)
class PresentedAttempt:
    """Questions in the order presented for one attempt."""

    quiz: Quiz
    questions: list[QuizQuestion]
    eligibility: Eligibility

    @property
    def question_ids(self) -> list[str]:
        return [question.id for question in self.questions]


@dataclass(slots=True, frozen=True)
class QuestionReview:
    """Post-submission review row shown with the score."""

    question_id: str
    question: str
    submitted: str | None
    answer: str
    is_correct: bool
    explanation: str | None = None


@dataclass(slots=True)
class AttemptOutcome:
    """Result of scoring a submitted attempt."""

    score: int
    passed: bool
    total_questions: int
    recorded: bool = True
    warning: str | None = None
    record: AttemptRecord | None = None
    eligibility: Eligibility | None = None
    review: list[QuestionReview] = field(default_factory=list)


@dataclass(slots=True)
class ProgressRecord:
    """Per-learner activity counters persisted on the local device."""

    quizzes: int = 0
    games: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"quizzes": self.quizzes, "games": self.games}


@dataclass(slots=True)
class UserProfile:
    id: str
    role: UserRole | None = None
    teacher_verified: bool = False
    username: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UserProfile":
        role = row.get("role")
        return cls(
            id=str(row["id"]),
            role=UserRole(role) if role else None,
            teacher_verified=bool(row.get("teacher_verified")),
            username=row.get("username") or None,
        )


@dataclass(slots=True)
class AuthSession:
    """Session issued by the auth provider on credential exchange."""

    access_token: str
    user_id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None

    @property
    def username(self) -> str | None:
        return self.user_metadata.get("username")


@dataclass(slots=True, frozen=True)
class ProfileChange:
    """Real-time update of one profile field."""

    user_id: str
    field: str
    new_value: Any


def _passing_score(value: Any) -> int:
    return DEFAULT_PASSING_SCORE if value is None else int(value)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    # Naive timestamps from the store are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
