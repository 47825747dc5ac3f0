"""Teacher-side quiz and question management."""

from __future__ import annotations

import logging
from typing import Any

from bioboost.constants.quiz_constants import (
    DEFAULT_PASSING_SCORE,
    MIN_MCQ_OPTIONS,
    MIN_PASSING_SCORE,
    TRUE_FALSE_OPTIONS,
)
from bioboost.core.errors import PermissionDenied, QuizNotFound, ValidationError
from bioboost.core.models import QuestionType, Quiz, QuizQuestion, UserRole
from bioboost.core.services.data_store import DataStoreGateway

logger = logging.getLogger(__name__)


class QuizAuthoringService:
    """Creates, edits, publishes and deletes quizzes owned by a teacher."""

    def __init__(self, store: DataStoreGateway) -> None:
        self._store = store

    # --- Listing ---

    async def list_quizzes_for(self, user_id: str, role: UserRole | None) -> list[Quiz]:
        """Teachers see their own quizzes, everyone else sees published ones."""
        if role is UserRole.TEACHER:
            return await self._store.list_quizzes(teacher_id=user_id)
        return await self._store.list_quizzes(published_only=True)

    async def load_quiz_with_questions(self, quiz_id: str) -> tuple[Quiz, list[QuizQuestion]]:
        quiz = await self._require_quiz(quiz_id)
        questions = await self._store.list_questions(quiz_id)
        return quiz, questions

    # --- Quiz CRUD ---

    async def create_quiz(
        self,
        teacher_id: str,
        role: UserRole | None,
        title: str,
        description: str = "",
        passing_score: int = DEFAULT_PASSING_SCORE,
    ) -> Quiz:
        self._require_teacher(role)
        payload = {
            "teacher_id": teacher_id,
            "title": self._validate_title(title),
            "description": (description or "").strip(),
            "passing_score": self._validate_passing_score(passing_score),
            "is_published": False,
        }
        quiz = await self._store.insert_quiz(payload)
        logger.info("Teacher %s created quiz %s", teacher_id, quiz.id)
        return quiz

    async def update_quiz(
        self,
        teacher_id: str,
        quiz_id: str,
        title: str | None = None,
        description: str | None = None,
        passing_score: int | None = None,
    ) -> Quiz:
        await self._require_owned_quiz(teacher_id, quiz_id)
        updates: dict[str, Any] = {}
        if title is not None:
            updates["title"] = self._validate_title(title)
        if description is not None:
            updates["description"] = description.strip()
        if passing_score is not None:
            updates["passing_score"] = self._validate_passing_score(passing_score)
        if not updates:
            raise ValidationError("Nothing to update.")
        updated = await self._store.update_quiz(quiz_id, updates)
        if updated is None:
            raise QuizNotFound(quiz_id)
        logger.info("Teacher %s updated quiz %s", teacher_id, quiz_id)
        return updated

    async def set_published(self, teacher_id: str, quiz_id: str, is_published: bool) -> Quiz:
        await self._require_owned_quiz(teacher_id, quiz_id)
        updated = await self._store.update_quiz(quiz_id, {"is_published": bool(is_published)})
        if updated is None:
            raise QuizNotFound(quiz_id)
        logger.info("Quiz %s is now %s", quiz_id, "published" if is_published else "a draft")
        return updated

    async def delete_quiz(self, teacher_id: str, quiz_id: str) -> None:
        await self._require_owned_quiz(teacher_id, quiz_id)
        await self._store.delete_quiz(quiz_id)
        logger.info("Teacher %s deleted quiz %s", teacher_id, quiz_id)

    # --- Question CRUD ---

    async def add_question(
        self,
        teacher_id: str,
        quiz_id: str,
        question: str,
        question_type: QuestionType | str,
        answer: str,
        options: list[str] | None = None,
        explanation: str | None = None,
    ) -> QuizQuestion:
        await self._require_owned_quiz(teacher_id, quiz_id)
        payload = self._prepare_question(question, question_type, answer, options, explanation)
        existing = await self._store.list_questions(quiz_id)
        payload["quiz_id"] = quiz_id
        payload["order"] = len(existing) + 1
        created = await self._store.insert_question(payload)
        logger.info("Added question %s to quiz %s", created.id, quiz_id)
        return created

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
    ) -> QuizQuestion:
        await self._require_owned_quiz(teacher_id, quiz_id)
        await self._require_question(quiz_id, question_id)
        updates = self._prepare_question(question, question_type, answer, options, explanation)
        updated = await self._store.update_question(question_id, updates)
        if updated is None:
            raise ValidationError(f"Question '{question_id}' does not exist.")
        return updated

    async def delete_question(self, teacher_id: str, quiz_id: str, question_id: str) -> None:
        await self._require_owned_quiz(teacher_id, quiz_id)
        await self._require_question(quiz_id, question_id)
        await self._store.delete_question(question_id)

    # --- Validation ---

    @staticmethod
    def validate_question(
        question: str,
        question_type: QuestionType | str,
        answer: str,
        options: list[str] | None = None,
    ) -> tuple[str, QuestionType, str, list[str] | None]:
        """Return the normalized ``(question, type, answer, options)`` or raise."""
        cleaned_question = (question or "").strip()
        if not cleaned_question:
            raise ValidationError("Question text must not be empty.")
        try:
            normalized_type = QuestionType(question_type)
        except ValueError as exc:
            raise ValidationError(f"Unknown question type '{question_type}'.") from exc
        if answer is None or not str(answer).strip():
            raise ValidationError("Each question needs a correct answer.")
        answer = str(answer)

        if normalized_type is QuestionType.TRUE_FALSE:
            answer = answer.strip().lower()
            if answer not in TRUE_FALSE_OPTIONS:
                raise ValidationError("True/false answers must be 'true' or 'false'.")
            return cleaned_question, normalized_type, answer, None

        cleaned_options = [option.strip() for option in (options or [])]
        if any(not option for option in cleaned_options):
            raise ValidationError("Option text cannot be empty.")
        if len(cleaned_options) < MIN_MCQ_OPTIONS:
            raise ValidationError(f"Multiple-choice questions need at least {MIN_MCQ_OPTIONS} options.")
        if len(set(cleaned_options)) != len(cleaned_options):
            raise ValidationError("Options must be distinct.")
        if answer not in cleaned_options:
            raise ValidationError("The correct answer must match one of the options exactly.")
        return cleaned_question, normalized_type, answer, cleaned_options

    def _prepare_question(
        self,
        question: str,
        question_type: QuestionType | str,
        answer: str,
        options: list[str] | None,
        explanation: str | None,
    ) -> dict[str, Any]:
        text, normalized_type, normalized_answer, cleaned_options = self.validate_question(
            question, question_type, answer, options
        )
        return {
            "question": text,
            "type": normalized_type.value,
            "options": cleaned_options,
            "answer": normalized_answer,
            "explanation": (explanation or "").strip() or None,
        }

    @staticmethod
    def _validate_title(title: str) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Quiz title must not be empty.")
        return cleaned

    @staticmethod
    def _validate_passing_score(passing_score: int) -> int:
        if not isinstance(passing_score, int) or isinstance(passing_score, bool):
            raise ValidationError("Passing score must be a whole number of correct answers.")
        if passing_score < MIN_PASSING_SCORE:
            raise ValidationError(f"Passing score must be at least {MIN_PASSING_SCORE}.")
        return passing_score

    # --- Access checks ---

    @staticmethod
    def _require_teacher(role: UserRole | None) -> None:
        if role is not UserRole.TEACHER:
            raise PermissionDenied("Only teachers can manage quizzes.")

    async def _require_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self._store.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFound(quiz_id)
        return quiz

    async def _require_owned_quiz(self, teacher_id: str, quiz_id: str) -> Quiz:
        quiz = await self._require_quiz(quiz_id)
        if quiz.teacher_id != teacher_id:
            raise PermissionDenied("Only the owning teacher can change this quiz.")
        return quiz

    async def _require_question(self, quiz_id: str, question_id: str) -> None:
        questions = await self._store.list_questions(quiz_id)
        if not any(question.id == question_id for question in questions):
            raise ValidationError(f"Question '{question_id}' does not belong to quiz '{quiz_id}'.")
