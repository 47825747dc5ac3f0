from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import random

import pytest

from bioboost.core.attempt_engine import (
    RECORD_WARNING,
    QuizAttemptEngine,
    cooldown_remaining,
    is_passing,
    score_answers,
)
from bioboost.core.errors import AttemptsExhausted, QuizNotFound, QuizNotPublished, SubmissionInProgress
from bioboost.core.models import UserRole
from bioboost.core.services.data_store import InMemoryDataStore
from bioboost.core.services.quiz_authoring import QuizAuthoringService

from conftest import LEARNER_ID, answers_with

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


async def _record_attempts(store, clock, quiz_id: str, count: int, gap_seconds: int = 10) -> None:
    for _ in range(count):
        await store.insert_attempt(
            {"quiz_id": quiz_id, "student_id": LEARNER_ID, "answers": {}, "score": 0, "passed": False}
        )
        clock.advance(gap_seconds)


def test_cooldown_boundaries():
    assert cooldown_remaining(T0, T0 + timedelta(seconds=299)) == 1
    assert cooldown_remaining(T0, T0 + timedelta(seconds=300)) == 0
    assert cooldown_remaining(T0, T0 + timedelta(seconds=299, milliseconds=999)) == 1
    assert cooldown_remaining(T0, T0 + timedelta(hours=2)) == 0


def test_cooldown_clamps_future_timestamps():
    assert cooldown_remaining(T0 + timedelta(seconds=30), T0) == 300


def test_scoring_is_exact_match():
    assert is_passing(7, 7)
    assert not is_passing(6, 7)


async def test_missing_answers_count_as_wrong(make_quiz):
    _, questions = await make_quiz(count=4, passing_score=2)
    assert score_answers(questions, {}) == 0
    assert score_answers(questions, {questions[0].id: questions[0].answer.upper()}) == 0
    assert score_answers(questions, {questions[0].id: questions[0].answer}) == 1


async def test_fresh_learner_is_eligible(engine, make_quiz):
    quiz, _ = await make_quiz()
    eligibility = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    assert eligibility.attempt_count == 0
    assert eligibility.cooldown_remaining == 0
    assert eligibility.is_eligible
    assert eligibility.attempts_left == 3


async def test_two_attempts_still_eligible_and_shuffled_set_is_complete(engine, store, clock, make_quiz):
    quiz, questions = await make_quiz()
    await _record_attempts(store, clock, quiz.id, 2)

    presented = await engine.begin_attempt(LEARNER_ID, quiz.id)

    assert presented.eligibility.attempt_count == 2
    assert len(presented.questions) == 10
    assert sorted(presented.question_ids) == sorted(question.id for question in questions)


async def test_shuffle_is_driven_by_the_injected_rng(store, make_quiz, clock):
    quiz, questions = await make_quiz()
    first = QuizAttemptEngine(store, clock=clock, rng=random.Random(42))
    second = QuizAttemptEngine(store, clock=clock, rng=random.Random(42))

    order_one = (await first.begin_attempt(LEARNER_ID, quiz.id)).question_ids
    order_two = (await second.begin_attempt(LEARNER_ID, quiz.id)).question_ids

    assert order_one == order_two
    # The stored order itself is untouched.
    assert [q.id for q in await store.list_questions(quiz.id)] == [q.id for q in questions]


async def test_three_attempts_lock_with_remaining_cooldown(engine, store, clock, make_quiz):
    quiz, _ = await make_quiz()
    await _record_attempts(store, clock, quiz.id, 3, gap_seconds=0)
    clock.advance(120)

    eligibility = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    assert eligibility.attempt_count == 3
    assert eligibility.cooldown_remaining == 180
    assert eligibility.cooldown_label == "3:00"
    assert not eligibility.is_eligible

    with pytest.raises(AttemptsExhausted) as exc_info:
        await engine.begin_attempt(LEARNER_ID, quiz.id)
    assert exc_info.value.cooldown_remaining == 180


async def test_cooldown_uses_the_most_recent_submission(engine, store, clock, make_quiz):
    quiz, _ = await make_quiz()
    await _record_attempts(store, clock, quiz.id, 4, gap_seconds=100)
    # Last attempt was stored 100 seconds ago.
    eligibility = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    assert eligibility.cooldown_remaining == 200


async def test_lock_lifts_after_cooldown(engine, store, clock, make_quiz):
    quiz, _ = await make_quiz()
    await _record_attempts(store, clock, quiz.id, 3, gap_seconds=0)

    clock.advance(299)
    assert (await engine.compute_eligibility(LEARNER_ID, quiz.id)).cooldown_remaining == 1
    clock.advance(1)
    eligibility = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    assert eligibility.cooldown_remaining == 0
    assert eligibility.is_eligible
    presented = await engine.retake(LEARNER_ID, quiz.id)
    assert presented.eligibility.attempt_count == 3


async def test_eligibility_is_idempotent(engine, store, clock, make_quiz):
    quiz, _ = await make_quiz()
    await _record_attempts(store, clock, quiz.id, 3, gap_seconds=0)
    first = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    second = await engine.compute_eligibility(LEARNER_ID, quiz.id)
    assert first == second
    assert len(await store.list_attempts(quiz.id, LEARNER_ID)) == 3


async def test_passing_submission_records_attempt_and_progress(engine, progress, store, make_quiz):
    quiz, questions = await make_quiz()

    outcome = await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 8))

    assert outcome.score == 8
    assert outcome.total_questions == 10
    assert outcome.passed
    assert outcome.recorded
    assert outcome.record is not None and outcome.record.passed
    assert progress.get(LEARNER_ID).quizzes == 1
    assert outcome.eligibility.attempt_count == 1
    history = await store.list_attempts(quiz.id, LEARNER_ID)
    assert [record.score for record in history] == [8]


async def test_failing_submission_leaves_progress_untouched(engine, progress, make_quiz):
    quiz, questions = await make_quiz()
    outcome = await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 6))
    assert outcome.score == 6
    assert not outcome.passed
    assert progress.get(LEARNER_ID).quizzes == 0


async def test_review_rows_reveal_answers_and_explanations(engine, make_quiz):
    quiz, questions = await make_quiz(count=2, passing_score=1)
    answers = {questions[0].id: questions[0].answer}

    outcome = await engine.submit_attempt(LEARNER_ID, quiz.id, answers)

    rows = {row.question_id: row for row in outcome.review}
    assert rows[questions[0].id].is_correct
    assert rows[questions[1].id].submitted is None
    assert not rows[questions[1].id].is_correct
    assert rows[questions[1].id].answer == questions[1].answer
    assert rows[questions[1].id].explanation == "Because of step 2."


async def test_submission_is_rejected_once_attempts_are_exhausted(engine, store, clock, make_quiz):
    quiz, questions = await make_quiz()
    for _ in range(3):
        await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 2))

    with pytest.raises(AttemptsExhausted):
        await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 10))
    assert len(await store.list_attempts(quiz.id, LEARNER_ID)) == 3


async def test_third_submission_reports_lock(engine, make_quiz):
    quiz, questions = await make_quiz()
    outcome = None
    for _ in range(3):
        outcome = await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 1))
    assert outcome.eligibility.attempt_count == 3
    assert outcome.eligibility.cooldown_remaining == 300
    assert not outcome.eligibility.is_eligible


async def test_history_read_failure_fails_open(engine, store, make_quiz, caplog):
    quiz, _ = await make_quiz()
    store.fail_reads = True

    eligibility = await engine.compute_eligibility(LEARNER_ID, quiz.id)

    assert eligibility.is_eligible
    assert eligibility.degraded
    assert eligibility.attempt_count == 0
    assert "allowing the attempt" in caplog.text


async def test_write_failure_still_returns_score(engine, store, progress, make_quiz):
    quiz, questions = await make_quiz()
    store.fail_writes = True

    outcome = await engine.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 9))

    assert outcome.score == 9
    assert outcome.passed
    assert not outcome.recorded
    assert outcome.warning == RECORD_WARNING
    assert outcome.record is None
    assert progress.get(LEARNER_ID).quizzes == 1
    store.fail_writes = False
    assert await store.list_attempts(quiz.id, LEARNER_ID) == []


async def test_unknown_and_unpublished_quizzes_are_rejected(engine, make_quiz):
    draft, questions = await make_quiz(publish=False)

    with pytest.raises(QuizNotPublished):
        await engine.begin_attempt(LEARNER_ID, draft.id)
    with pytest.raises(QuizNotPublished):
        await engine.submit_attempt(LEARNER_ID, draft.id, answers_with(questions, 10))
    with pytest.raises(QuizNotFound):
        await engine.begin_attempt(LEARNER_ID, "missing")


class _GatedStore(InMemoryDataStore):
    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.gate = asyncio.Event()

    async def insert_attempt(self, payload):
        await self.gate.wait()
        return await super().insert_attempt(payload)


async def test_concurrent_submission_is_rejected(clock):
    store = _GatedStore(clock)
    engine = QuizAttemptEngine(store, clock=clock, rng=random.Random(1))
    authoring = QuizAuthoringService(store)
    quiz = await authoring.create_quiz("teacher", UserRole.TEACHER, "Gate", passing_score=1)
    question = await authoring.add_question("teacher", quiz.id, "Q", "tf", "true")
    await authoring.set_published("teacher", quiz.id, True)

    first = asyncio.create_task(engine.submit_attempt(LEARNER_ID, quiz.id, {question.id: "true"}))
    await asyncio.sleep(0)
    assert engine.is_submitting(LEARNER_ID, quiz.id)

    with pytest.raises(SubmissionInProgress):
        await engine.submit_attempt(LEARNER_ID, quiz.id, {question.id: "true"})

    store.gate.set()
    outcome = await first
    assert outcome.passed
    assert not engine.is_submitting(LEARNER_ID, quiz.id)
    assert len(await store.list_attempts(quiz.id, LEARNER_ID)) == 1


async def test_each_begin_draws_a_fresh_order(engine, make_quiz):
    quiz, questions = await make_quiz()

    first = (await engine.begin_attempt(LEARNER_ID, quiz.id)).question_ids
    second = (await engine.begin_attempt(LEARNER_ID, quiz.id)).question_ids

    assert first != second
    assert sorted(first) == sorted(second) == sorted(question.id for question in questions)
