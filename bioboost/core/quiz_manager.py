"""Facade over the engine and services used by the API layer.

Every public coroutine returns an ``ActionResult``; ``QuizEngineError``
subclasses never escape this boundary.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
from typing import TypeVar

from bioboost.core.attempt_engine import QuizAttemptEngine
from bioboost.core.errors import (
    AttemptNotInProgress,
    AttemptsExhausted,
    PermissionDenied,
    PersistenceError,
    QuizEngineError,
    SubmissionInProgress,
    ValidationError,
)
from bioboost.core.models import (
    AttemptOutcome,
    AttemptRecord,
    Eligibility,
    PresentedAttempt,
    ProgressRecord,
    QuestionType,
    Quiz,
    QuizQuestion,
    UserRole,
)
from bioboost.core.results import ActionResult
from bioboost.core.services.attempt_session import AttemptSession, AttemptState
from bioboost.core.services.data_store import DataStoreGateway
from bioboost.core.services.progress_store import ProgressStore
from bioboost.core.services.quiz_authoring import QuizAuthoringService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QuizManager:
    """Facade for quiz services: authoring, attempt engine, sessions and progress."""

    def __init__(
        self,
        store: DataStoreGateway,
        progress: ProgressStore,
        engine: QuizAttemptEngine | None = None,
        authoring: QuizAuthoringService | None = None,
    ) -> None:
        self._store = store
        self._progress = progress
        self._engine = engine or QuizAttemptEngine(store, progress)
        self._authoring = authoring or QuizAuthoringService(store)
        self._sessions: dict[tuple[str, str], AttemptSession] = {}

    @property
    def engine(self) -> QuizAttemptEngine:
        return self._engine

    @property
    def store(self) -> DataStoreGateway:
        return self._store

    # --- Quiz listing & authoring delegation ---

    async def list_quizzes(self, user_id: str, role: UserRole | None) -> ActionResult[list[Quiz]]:
        return await self._guard(self._authoring.list_quizzes_for(user_id, role))

    async def preview_quiz(self, teacher_id: str, quiz_id: str) -> ActionResult[tuple[Quiz, list[QuizQuestion]]]:
        async def preview() -> tuple[Quiz, list[QuizQuestion]]:
            quiz, questions = await self._authoring.load_quiz_with_questions(quiz_id)
            if quiz.teacher_id != teacher_id:
                raise PermissionDenied("Only the owning teacher can preview this quiz.")
            return quiz, questions

        return await self._guard(preview())

    async def create_quiz(
        self,
        teacher_id: str,
        role: UserRole | None,
        title: str,
        description: str = "",
        passing_score: int | None = None,
    ) -> ActionResult[Quiz]:
        kwargs = {} if passing_score is None else {"passing_score": passing_score}
        return await self._guard(self._authoring.create_quiz(teacher_id, role, title, description, **kwargs))

    async def update_quiz(
        self,
        teacher_id: str,
        quiz_id: str,
        title: str | None = None,
        description: str | None = None,
        passing_score: int | None = None,
    ) -> ActionResult[Quiz]:
        return await self._guard(
            self._authoring.update_quiz(teacher_id, quiz_id, title, description, passing_score)
        )

    async def set_published(self, teacher_id: str, quiz_id: str, is_published: bool) -> ActionResult[Quiz]:
        return await self._guard(self._authoring.set_published(teacher_id, quiz_id, is_published))

    async def delete_quiz(self, teacher_id: str, quiz_id: str) -> ActionResult[None]:
        result = await self._guard(self._authoring.delete_quiz(teacher_id, quiz_id))
        if result.ok:
            for key in [key for key in self._sessions if key[1] == quiz_id]:
                del self._sessions[key]
        return result

    async def add_question(
        self,
        teacher_id: str,
        quiz_id: str,
        question: str,
        question_type: QuestionType | str,
        answer: str,
        options: list[str] | None = None,
        explanation: str | None = None,
    ) -> ActionResult[QuizQuestion]:
        return await self._guard(
            self._authoring.add_question(teacher_id, quiz_id, question, question_type, answer, options, explanation)
        )

    async def update_question(
        self,
        teacher_id: str,
        quiz_id: str,
        question_id: str,
        question: str,
        question_type: QuestionType | str,
        answer: str,
        options: list[str] | None = None,
        explanation: str | None = None,
    ) -> ActionResult[QuizQuestion]:
        return await self._guard(
            self._authoring.update_question(
                teacher_id, quiz_id, question_id, question, question_type, answer, options, explanation
            )
        )

    async def delete_question(self, teacher_id: str, quiz_id: str, question_id: str) -> ActionResult[None]:
        return await self._guard(self._authoring.delete_question(teacher_id, quiz_id, question_id))

    # --- Attempt flow ---

    def get_session(self, learner_id: str, quiz_id: str) -> AttemptSession:
        key = (learner_id, quiz_id)
        session = self._sessions.get(key)
        if session is None:
            session = AttemptSession(learner_id, quiz_id)
            self._sessions[key] = session
        return session

    async def check_eligibility(self, learner_id: str, quiz_id: str) -> ActionResult[Eligibility]:
        result = await self._guard(self._engine.compute_eligibility(learner_id, quiz_id))
        if result.ok and result.value is not None:
            self.get_session(learner_id, quiz_id).refresh_eligibility(result.value)
        return result

    async def begin_attempt(self, learner_id: str, quiz_id: str) -> ActionResult[PresentedAttempt]:
        session = self.get_session(learner_id, quiz_id)
        if session.state is AttemptState.IN_PROGRESS and session.presented is not None:
            # Question order stays frozen while the attempt is open.
            return ActionResult.success(session.presented)
        return await self._start(session, lambda: self._engine.begin_attempt(learner_id, quiz_id))

    async def retake(self, learner_id: str, quiz_id: str) -> ActionResult[PresentedAttempt]:
        session = self.get_session(learner_id, quiz_id)
        if session.busy:
            return ActionResult.failure(SubmissionInProgress())
        session.discard()
        return await self._start(session, lambda: self._engine.retake(learner_id, quiz_id))

    def record_answer(self, learner_id: str, quiz_id: str, question_id: str, value: str) -> ActionResult[dict[str, str]]:
        session = self.get_session(learner_id, quiz_id)
        if session.state is not AttemptState.IN_PROGRESS:
            return ActionResult.failure(AttemptNotInProgress())
        try:
            session.record_answer(question_id, value)
        except ValueError as exc:
            return ActionResult.failure(ValidationError(str(exc)))
        return ActionResult.success(session.get_answers())

    async def submit_attempt(
        self,
        learner_id: str,
        quiz_id: str,
        answers: dict[str, str] | None = None,
    ) -> ActionResult[AttemptOutcome]:
        session = self.get_session(learner_id, quiz_id)
        if session.state is not AttemptState.IN_PROGRESS:
            return ActionResult.failure(AttemptNotInProgress("There is no open attempt to submit."))
        if session.busy:
            return ActionResult.failure(SubmissionInProgress())

        if answers:
            for question_id, value in answers.items():
                recorded = self.record_answer(learner_id, quiz_id, question_id, value)
                if not recorded.ok:
                    return ActionResult.failure(recorded.error)

        session.mark_busy()
        try:
            result = await self._guard(
                self._engine.submit_attempt(learner_id, quiz_id, session.get_answers())
            )
        finally:
            session.mark_idle()

        if result.ok and result.value is not None:
            if session.state is AttemptState.IN_PROGRESS:
                session.finish(result.value)
            elif result.value.eligibility is not None:
                # The attempt was stored; the session moved on while it was pending.
                session.refresh_eligibility(result.value.eligibility)
        else:
            # Answers stay in the session so the learner can submit later.
            logger.info("Submission of %s on quiz %s rejected: %s", learner_id, quiz_id, result.message)
        return result

    def leave_quiz(self, learner_id: str, quiz_id: str) -> ActionResult[None]:
        session = self._sessions.get((learner_id, quiz_id))
        if session is None:
            return ActionResult.success()
        if session.busy:
            return ActionResult.failure(SubmissionInProgress())
        session.discard()
        return ActionResult.success()

    async def attempt_history(self, learner_id: str, quiz_id: str) -> ActionResult[list[AttemptRecord]]:
        return await self._guard(self._engine.attempt_history(learner_id, quiz_id))

    # --- Progress ---

    def get_progress(self, learner_id: str) -> dict[str, object]:
        record = self._progress.get(learner_id)
        return {
            **record.to_dict(),
            "total_percent": self._progress.total_percent(learner_id),
            "level": self._progress.level(learner_id),
        }

    def complete_game(self, learner_id: str) -> ActionResult[ProgressRecord]:
        try:
            return ActionResult.success(self._progress.mark_game_completed(learner_id))
        except OSError as exc:
            logger.error("Could not store game progress for %s: %s", learner_id, exc)
            return ActionResult.failure(PersistenceError("store progress", str(exc)))

    # --- Internals ---

    async def _start(
        self,
        session: AttemptSession,
        action: Callable[[], Awaitable[PresentedAttempt]],
    ) -> ActionResult[PresentedAttempt]:
        if session.busy:
            return ActionResult.failure(SubmissionInProgress())
        session.mark_busy()
        try:
            result = await self._guard(action())
        finally:
            session.mark_idle()
        if result.ok and result.value is not None:
            session.start(result.value)
        elif isinstance(result.error, AttemptsExhausted):
            session.refresh_eligibility(
                Eligibility(
                    attempt_count=self._engine.max_attempts,
                    cooldown_remaining=result.error.cooldown_remaining,
                    max_attempts=self._engine.max_attempts,
                )
            )
        return result

    @staticmethod
    async def _guard(action: Awaitable[T]) -> ActionResult[T]:
        try:
            return ActionResult.success(await action)
        except QuizEngineError as exc:
            return ActionResult.failure(exc)
