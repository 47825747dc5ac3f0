from __future__ import annotations

import asyncio
import random

from bioboost.core.attempt_engine import QuizAttemptEngine
from bioboost.core.errors import (
    AttemptNotInProgress,
    AttemptsExhausted,
    PermissionDenied,
    QuizNotPublished,
    SubmissionInProgress,
    ValidationError,
)
from bioboost.core.models import UserRole
from bioboost.core.quiz_manager import QuizManager
from bioboost.core.services.attempt_session import AttemptState
from bioboost.core.services.data_store import InMemoryDataStore
from bioboost.core.services.progress_store import ProgressStore
from bioboost.core.services.quiz_authoring import QuizAuthoringService

from conftest import LEARNER_ID, TEACHER_ID, answers_with


async def test_full_attempt_flow(manager, make_quiz, progress):
    quiz, questions = await make_quiz()

    begun = await manager.begin_attempt(LEARNER_ID, quiz.id)
    assert begun.ok
    for question_id, value in answers_with(questions, 8).items():
        assert manager.record_answer(LEARNER_ID, quiz.id, question_id, value).ok

    submitted = await manager.submit_attempt(LEARNER_ID, quiz.id)

    assert submitted.ok
    assert submitted.value.score == 8
    assert submitted.value.passed
    assert manager.get_session(LEARNER_ID, quiz.id).state is AttemptState.ELIGIBLE
    assert manager.get_progress(LEARNER_ID) == {
        "quizzes": 1,
        "games": 0,
        "total_percent": 60,
        "level": "Intermediate",
    }


async def test_question_order_is_frozen_while_in_progress(manager, make_quiz):
    quiz, _ = await make_quiz()
    first = await manager.begin_attempt(LEARNER_ID, quiz.id)
    second = await manager.begin_attempt(LEARNER_ID, quiz.id)
    assert first.value.question_ids == second.value.question_ids


async def test_answers_require_an_open_attempt(manager, make_quiz):
    quiz, questions = await make_quiz()
    result = manager.record_answer(LEARNER_ID, quiz.id, questions[0].id, questions[0].answer)
    assert isinstance(result.error, AttemptNotInProgress)

    submitted = await manager.submit_attempt(LEARNER_ID, quiz.id)
    assert isinstance(submitted.error, AttemptNotInProgress)

    await manager.begin_attempt(LEARNER_ID, quiz.id)
    invalid = manager.record_answer(LEARNER_ID, quiz.id, questions[0].id, "not an option")
    assert isinstance(invalid.error, ValidationError)


async def test_submit_accepts_answers_inline(manager, make_quiz):
    quiz, questions = await make_quiz()
    await manager.begin_attempt(LEARNER_ID, quiz.id)
    result = await manager.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 10))
    assert result.value.score == 10


async def test_exhausted_attempts_lock_the_session(manager, make_quiz, clock):
    quiz, questions = await make_quiz()
    for _ in range(3):
        await manager.begin_attempt(LEARNER_ID, quiz.id)
        await manager.submit_attempt(LEARNER_ID, quiz.id, answers_with(questions, 0))
    session = manager.get_session(LEARNER_ID, quiz.id)
    assert session.state is AttemptState.LOCKED

    clock.advance(60)
    retake = await manager.retake(LEARNER_ID, quiz.id)
    assert not retake.ok
    assert isinstance(retake.error, AttemptsExhausted)
    assert retake.error.cooldown_remaining == 240
    assert session.state is AttemptState.LOCKED
    assert session.eligibility.cooldown_remaining == 240

    clock.advance(240)
    eligibility = await manager.check_eligibility(LEARNER_ID, quiz.id)
    assert eligibility.value.is_eligible
    assert session.state is AttemptState.ELIGIBLE
    assert (await manager.retake(LEARNER_ID, quiz.id)).ok


async def test_rejected_submission_keeps_answers(manager, make_quiz, store):
    quiz, questions = await make_quiz()
    await manager.begin_attempt(LEARNER_ID, quiz.id)
    manager.record_answer(LEARNER_ID, quiz.id, questions[0].id, questions[0].answer)

    store.fail_reads = True
    result = await manager.submit_attempt(LEARNER_ID, quiz.id)
    store.fail_reads = False

    assert not result.ok
    session = manager.get_session(LEARNER_ID, quiz.id)
    assert session.state is AttemptState.IN_PROGRESS
    assert session.get_answers() == {questions[0].id: questions[0].answer}
    assert not session.busy


async def test_leaving_discards_the_attempt(manager, make_quiz, store):
    quiz, questions = await make_quiz()
    await manager.begin_attempt(LEARNER_ID, quiz.id)
    manager.record_answer(LEARNER_ID, quiz.id, questions[0].id, questions[0].answer)

    manager.leave_quiz(LEARNER_ID, quiz.id)

    assert manager.get_session(LEARNER_ID, quiz.id).state is AttemptState.NOT_STARTED
    assert (await manager.attempt_history(LEARNER_ID, quiz.id)).value == []


async def test_unpublished_quiz_is_a_failure_result(manager, make_quiz):
    quiz, _ = await make_quiz(publish=False)
    result = await manager.begin_attempt(LEARNER_ID, quiz.id)
    assert isinstance(result.error, QuizNotPublished)

    preview = await manager.preview_quiz(TEACHER_ID, quiz.id)
    assert preview.ok
    assert len(preview.value[1]) == 10
    other = await manager.preview_quiz("teacher-2", quiz.id)
    assert isinstance(other.error, PermissionDenied)


async def test_authoring_through_the_facade(manager):
    denied = await manager.create_quiz(LEARNER_ID, UserRole.STUDENT, "Nope")
    assert isinstance(denied.error, PermissionDenied)

    created = await manager.create_quiz(TEACHER_ID, UserRole.TEACHER, "Krebs", passing_score=1)
    quiz_id = created.value.id
    added = await manager.add_question(TEACHER_ID, quiz_id, "Is it cyclic?", "tf", "True")
    assert added.value.answer == "true"
    assert (await manager.set_published(TEACHER_ID, quiz_id, True)).value.is_published

    listed = await manager.list_quizzes(LEARNER_ID, UserRole.STUDENT)
    assert [quiz.id for quiz in listed.value] == [quiz_id]

    await manager.begin_attempt(LEARNER_ID, quiz_id)
    assert (await manager.delete_quiz(TEACHER_ID, quiz_id)).ok
    assert manager.get_session(LEARNER_ID, quiz_id).state is AttemptState.NOT_STARTED


async def test_complete_game_updates_progress(manager):
    result = manager.complete_game(LEARNER_ID)
    assert result.ok
    assert manager.get_progress(LEARNER_ID)["level"] == "Intermediate"


class _GatedStore(InMemoryDataStore):
    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.gate = asyncio.Event()

    async def insert_attempt(self, payload):
        await self.gate.wait()
        return await super().insert_attempt(payload)


async def _gated_manager(clock):
    store = _GatedStore(clock)
    engine = QuizAttemptEngine(store, clock=clock, rng=random.Random(3))
    authoring = QuizAuthoringService(store)
    manager = QuizManager(store, ProgressStore(path=None), engine=engine, authoring=authoring)
    quiz = await authoring.create_quiz(TEACHER_ID, UserRole.TEACHER, "Gate", passing_score=1)
    question = await authoring.add_question(TEACHER_ID, quiz.id, "Q", "tf", "true")
    await authoring.set_published(TEACHER_ID, quiz.id, True)
    assert (await manager.begin_attempt(LEARNER_ID, quiz.id)).ok
    assert manager.record_answer(LEARNER_ID, quiz.id, question.id, "true").ok
    return manager, store, quiz, question


async def test_leaving_during_a_pending_submission_is_refused(clock):
    manager, store, quiz, _ = await _gated_manager(clock)

    pending = asyncio.create_task(manager.submit_attempt(LEARNER_ID, quiz.id))
    await asyncio.sleep(0)

    left = manager.leave_quiz(LEARNER_ID, quiz.id)
    assert not left.ok
    assert isinstance(left.error, SubmissionInProgress)

    store.gate.set()
    submitted = await pending
    assert submitted.ok
    assert manager.get_session(LEARNER_ID, quiz.id).state is AttemptState.ELIGIBLE
    assert len(await store.list_attempts(quiz.id, LEARNER_ID)) == 1


async def test_retake_during_a_pending_submission_keeps_the_answers(clock):
    manager, store, quiz, question = await _gated_manager(clock)

    pending = asyncio.create_task(manager.submit_attempt(LEARNER_ID, quiz.id))
    await asyncio.sleep(0)

    retaken = await manager.retake(LEARNER_ID, quiz.id)
    assert not retaken.ok
    assert isinstance(retaken.error, SubmissionInProgress)
    assert manager.get_session(LEARNER_ID, quiz.id).get_answers() == {question.id: "true"}

    store.gate.set()
    submitted = await pending
    assert submitted.ok
    assert submitted.value.score == 1


async def test_submission_completes_after_the_session_was_discarded(clock):
    manager, store, quiz, _ = await _gated_manager(clock)

    pending = asyncio.create_task(manager.submit_attempt(LEARNER_ID, quiz.id))
    await asyncio.sleep(0)
    manager.get_session(LEARNER_ID, quiz.id).discard()

    store.gate.set()
    submitted = await pending

    assert submitted.ok
    session = manager.get_session(LEARNER_ID, quiz.id)
    assert session.state is AttemptState.NOT_STARTED
    assert session.eligibility.attempt_count == 1
    assert len(await store.list_attempts(quiz.id, LEARNER_ID)) == 1
