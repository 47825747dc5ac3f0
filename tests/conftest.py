"""Shared fixtures: a controllable clock and an in-memory backend."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random

import pytest

from bioboost.core.attempt_engine import QuizAttemptEngine
from bioboost.core.models import QuestionType, Quiz, QuizQuestion, UserRole
from bioboost.core.quiz_manager import QuizManager
from bioboost.core.services.auth_provider import InMemoryAuthProvider
from bioboost.core.services.data_store import InMemoryDataStore
from bioboost.core.services.progress_store import ProgressStore
from bioboost.core.services.quiz_authoring import QuizAuthoringService

TEACHER_ID = "teacher-1"
LEARNER_ID = "learner-1"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDataStore:
    return InMemoryDataStore(clock=clock)


@pytest.fixture
def progress() -> ProgressStore:
    return ProgressStore(path=None)


@pytest.fixture
def engine(store: InMemoryDataStore, progress: ProgressStore, clock: FakeClock) -> QuizAttemptEngine:
    return QuizAttemptEngine(store, progress, clock=clock, rng=random.Random(7))


@pytest.fixture
def authoring(store: InMemoryDataStore) -> QuizAuthoringService:
    return QuizAuthoringService(store)


@pytest.fixture
def manager(
    store: InMemoryDataStore,
    progress: ProgressStore,
    engine: QuizAttemptEngine,
    authoring: QuizAuthoringService,
) -> QuizManager:
    return QuizManager(store, progress, engine=engine, authoring=authoring)


@pytest.fixture
def auth(store: InMemoryDataStore, clock: FakeClock) -> InMemoryAuthProvider:
    return InMemoryAuthProvider(store, clock=clock)


@pytest.fixture
def make_quiz(authoring: QuizAuthoringService):
    """Factory for a quiz of ``count`` two-option questions; answer ``right-<n>`` is correct."""

    async def factory(
        count: int = 10,
        passing_score: int = 7,
        publish: bool = True,
        teacher_id: str = TEACHER_ID,
    ) -> tuple[Quiz, list[QuizQuestion]]:
        quiz = await authoring.create_quiz(teacher_id, UserRole.TEACHER, "Krebs cycle", passing_score=passing_score)
        questions = []
        for index in range(1, count + 1):
            questions.append(
                await authoring.add_question(
                    teacher_id,
                    quiz.id,
                    f"Question {index}",
                    QuestionType.MULTIPLE_CHOICE,
                    f"right-{index}",
                    [f"right-{index}", f"wrong-{index}"],
                    explanation=f"Because of step {index}.",
                )
            )
        if publish:
            quiz = await authoring.set_published(teacher_id, quiz.id, True)
        return quiz, questions

    return factory


def answers_with(questions: list[QuizQuestion], correct: int) -> dict[str, str]:
    """Answer the first ``correct`` questions right and the rest wrong."""
    answers = {}
    for index, question in enumerate(questions):
        right = question.answer
        wrong = next(option for option in question.options if option != right)
        answers[question.id] = right if index < correct else wrong
    return answers
