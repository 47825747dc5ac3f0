"""Quiz attempt engine: eligibility, shuffling, scoring and attempt records.

Eligibility is derived on every call from the learner's stored attempt
history plus the wall clock:

* fewer than ``MAX_ATTEMPTS`` records -> eligible, no cooldown;
* otherwise the cooldown is ``COOLDOWN_SECONDS`` minus the whole seconds
  elapsed since the most recent submission, clamped to ``[0, COOLDOWN_SECONDS]``.

Known soft-enforcement gaps:

* a failed history read fails open (zero attempts, zero cooldown, flagged as
  ``Eligibility.degraded``);
* the attempt cap is checked right before each write, not atomically, so two
  concurrent submissions from different clients may both land;
* a failed attempt write still returns the computed score with
  ``recorded=False``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timezone
import logging
import math
import random

from bioboost.constants.quiz_constants import COOLDOWN_SECONDS, MAX_ATTEMPTS
from bioboost.core.errors import (
    AttemptsExhausted,
    PersistenceError,
    QuizNotFound,
    QuizNotPublished,
    SubmissionInProgress,
)
from bioboost.core.models import (
    AttemptOutcome,
    AttemptRecord,
    Eligibility,
    PresentedAttempt,
    QuestionReview,
    Quiz,
    QuizQuestion,
)
from bioboost.core.services.data_store import DataStoreGateway
from bioboost.core.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)

RECORD_WARNING = "Your score could not be saved; this attempt may not be recorded."


def score_answers(questions: list[QuizQuestion], answers: Mapping[str, object]) -> int:
    """Count questions whose submitted value exactly equals the stored answer."""
    return sum(1 for question in questions if answers.get(question.id) == question.answer)


def is_passing(score: int, passing_score: int) -> bool:
    return score >= passing_score


def cooldown_remaining(
    last_submitted_at: datetime,
    now: datetime,
    cooldown_seconds: int = COOLDOWN_SECONDS,
) -> int:
    elapsed = math.floor((now - last_submitted_at).total_seconds())
    # A submission stamped in the future (clock skew) counts as just now.
    elapsed = max(0, elapsed)
    return max(0, cooldown_seconds - elapsed)


class QuizAttemptEngine:
    """Governs attempts of learners on published quizzes."""

    def __init__(
        self,
        store: DataStoreGateway,
        progress: ProgressStore | None = None,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        cooldown_seconds: int = COOLDOWN_SECONDS,
    ) -> None:
        self._store = store
        self._progress = progress
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self._max_attempts = max_attempts
        self._cooldown_seconds = cooldown_seconds
        self._pending_submissions: set[tuple[str, str]] = set()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def cooldown_seconds(self) -> int:
        return self._cooldown_seconds

    def now(self) -> datetime:
        return self._clock()

    async def compute_eligibility(
        self,
        learner_id: str,
        quiz_id: str,
        now: datetime | None = None,
    ) -> Eligibility:
        """Derive attempt count and cooldown from the stored history."""
        now = now or self._clock()
        try:
            attempts = await self._store.list_attempts(quiz_id, learner_id)
        except PersistenceError as exc:
            logger.warning(
                "Could not load attempts of %s on quiz %s, allowing the attempt: %s",
                learner_id,
                quiz_id,
                exc.message,
            )
            return Eligibility(0, 0, max_attempts=self._max_attempts, degraded=True)
        return self._eligibility_from_history(attempts, now)

    async def begin_attempt(
        self,
        learner_id: str,
        quiz_id: str,
        now: datetime | None = None,
    ) -> PresentedAttempt:
        """Gate, load and shuffle the questions of a new attempt."""
        now = now or self._clock()
        quiz = await self._load_published_quiz(quiz_id)
        eligibility = await self._require_eligible(learner_id, quiz_id, now)
        questions = await self._store.list_questions(quiz_id)
        shuffled = self.shuffle(questions)
        logger.info(
            "Learner %s began attempt %d on quiz %s",
            learner_id,
            eligibility.attempt_count + 1,
            quiz_id,
        )
        return PresentedAttempt(quiz=quiz, questions=shuffled, eligibility=eligibility)

    async def retake(
        self,
        learner_id: str,
        quiz_id: str,
        now: datetime | None = None,
    ) -> PresentedAttempt:
        return await self.begin_attempt(learner_id, quiz_id, now=now)

    async def submit_attempt(
        self,
        learner_id: str,
        quiz_id: str,
        answers: Mapping[str, object],
        now: datetime | None = None,
    ) -> AttemptOutcome:
        """Re-check eligibility, score, record the attempt and report progress."""
        key = (learner_id, quiz_id)
        if key in self._pending_submissions:
            raise SubmissionInProgress()
        self._pending_submissions.add(key)
        try:
            return await self._submit(learner_id, quiz_id, dict(answers), now or self._clock())
        finally:
            self._pending_submissions.discard(key)

    def is_submitting(self, learner_id: str, quiz_id: str) -> bool:
        return (learner_id, quiz_id) in self._pending_submissions

    async def attempt_history(self, learner_id: str, quiz_id: str) -> list[AttemptRecord]:
        """Full attempt records, newest first, for history display."""
        return await self._store.list_attempts(quiz_id, learner_id)

    def shuffle(self, questions: list[QuizQuestion]) -> list[QuizQuestion]:
        shuffled = list(questions)
        self._rng.shuffle(shuffled)
        logger.debug("Shuffled question order: %s", [question.id for question in shuffled])
        return shuffled

    # --- Internals ---

    async def _submit(
        self,
        learner_id: str,
        quiz_id: str,
        answers: dict[str, object],
        now: datetime,
    ) -> AttemptOutcome:
        quiz = await self._load_published_quiz(quiz_id)
        await self._require_eligible(learner_id, quiz_id, now)
        questions = await self._store.list_questions(quiz_id)

        score = score_answers(questions, answers)
        passed = is_passing(score, quiz.passing_score)
        outcome = AttemptOutcome(
            score=score,
            passed=passed,
            total_questions=len(questions),
            review=[_review_row(question, answers) for question in questions],
        )
        logger.info(
            "Learner %s scored %d/%d on quiz %s (%s)",
            learner_id,
            score,
            len(questions),
            quiz_id,
            "passed" if passed else "failed",
        )

        if passed:
            self._notify_progress(learner_id)

        try:
            outcome.record = await self._store.insert_attempt(
                {
                    "quiz_id": quiz_id,
                    "student_id": learner_id,
                    "answers": answers,
                    "score": score,
                    "passed": passed,
                }
            )
        except PersistenceError as exc:
            logger.warning("Attempt of %s on quiz %s was not recorded: %s", learner_id, quiz_id, exc.message)
            outcome.recorded = False
            outcome.warning = RECORD_WARNING

        outcome.eligibility = await self.compute_eligibility(learner_id, quiz_id, now=self._clock())
        return outcome

    def _notify_progress(self, learner_id: str) -> None:
        if self._progress is None:
            return
        try:
            self._progress.mark_quiz_passed(learner_id)
        except OSError as exc:
            logger.error("Could not store quiz progress for %s: %s", learner_id, exc)

    async def _load_published_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self._store.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFound(quiz_id)
        if not quiz.is_published:
            raise QuizNotPublished(quiz_id)
        return quiz

    async def _require_eligible(self, learner_id: str, quiz_id: str, now: datetime) -> Eligibility:
        eligibility = await self.compute_eligibility(learner_id, quiz_id, now=now)
        if not eligibility.is_eligible:
            logger.info(
                "Learner %s is locked out of quiz %s for %ss",
                learner_id,
                quiz_id,
                eligibility.cooldown_remaining,
            )
            raise AttemptsExhausted(eligibility.cooldown_remaining, max_attempts=self._max_attempts)
        return eligibility

    def _eligibility_from_history(self, attempts: list[AttemptRecord], now: datetime) -> Eligibility:
        attempt_count = len(attempts)
        remaining = 0
        if attempt_count >= self._max_attempts:
            last_submitted_at = max(attempt.submitted_at for attempt in attempts)
            remaining = cooldown_remaining(last_submitted_at, now, self._cooldown_seconds)
        return Eligibility(attempt_count, remaining, max_attempts=self._max_attempts)


def _review_row(question: QuizQuestion, answers: Mapping[str, object]) -> QuestionReview:
    submitted = answers.get(question.id)
    return QuestionReview(
        question_id=question.id,
        question=question.question,
        submitted=None if submitted is None else str(submitted),
        answer=question.answer,
        is_correct=submitted == question.answer,
        explanation=question.explanation,
    )
