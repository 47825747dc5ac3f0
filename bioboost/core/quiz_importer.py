"""Utilities for importing quizzes from a human-friendly text file.

File format: an optional header followed by question blocks separated by
blank lines or '---':

    TITLE: The Krebs Cycle
    PASSING: 7

    Q: Question text (supports markdown). Additional lines until the
       next marker are treated as part of the question.
    TYPE: MCQ|TF       (optional, defaults to MCQ)
    A: First option text
    B: Second option text
    ...                (up to F)
    ANSWER: B          (option letter for MCQ, TRUE/FALSE for TF)
    EXPLANATION: Shown after submission (optional)

Example:

    Q: Which enzyme condenses acetyl-CoA with oxaloacetate?
    A: Citrate synthase
    B: Aconitase
    ANSWER: A
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from bioboost.constants.quiz_constants import DEFAULT_PASSING_SCORE
from bioboost.core.errors import QuizEngineError, ValidationError
from bioboost.core.models import QuestionType, Quiz, UserRole
from bioboost.core.services.auth_provider import AuthProvider
from bioboost.core.services.quiz_authoring import QuizAuthoringService

logger = logging.getLogger(__name__)


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


@dataclass(slots=True)
class ImportedQuiz:
    """Container for imported quiz metadata and question payloads."""

    title: str
    passing_score: int = DEFAULT_PASSING_SCORE
    description: str = ""
    questions: list[dict[str, Any]] = field(default_factory=list)
    source_path: Path | None = None


_OPTION_ORDER = ["A", "B", "C", "D", "E", "F"]
_TYPE_ALIASES = {"MCQ": QuestionType.MULTIPLE_CHOICE, "TF": QuestionType.TRUE_FALSE}


def load_quiz_from_file(file_path: Path) -> ImportedQuiz:
    text = file_path.read_text(encoding="utf-8")
    imported = parse_quiz_text(text)
    imported.source_path = file_path
    return imported


def parse_quiz_text(text: str) -> ImportedQuiz:
    header: dict[str, str] = {}
    questions: list[dict[str, Any]] = []
    for index, block in enumerate(_split_blocks(text), start=1):
        if _is_header(block):
            if questions:
                raise QuizImportError("TITLE/PASSING must come before the first question.")
            header.update(_parse_header(block))
            continue
        try:
            questions.append(_parse_block(block))
        except QuizImportError as exc:
            raise QuizImportError(f"Block {index}: {exc}") from exc

    if not questions:
        raise QuizImportError("Quiz file did not contain any questions.")

    title = header.get("TITLE", "").strip()
    if not title:
        raise QuizImportError("Quiz title missing (TITLE: ...)")
    passing_score = DEFAULT_PASSING_SCORE
    if "PASSING" in header:
        try:
            passing_score = int(header["PASSING"])
        except ValueError as exc:
            raise QuizImportError("PASSING must be a whole number of correct answers.") from exc
    if not 1 <= passing_score <= len(questions):
        raise QuizImportError(f"PASSING must be between 1 and {len(questions)}.")

    return ImportedQuiz(
        title=title,
        passing_score=passing_score,
        description=header.get("DESCRIPTION", "").strip(),
        questions=questions,
    )


async def seed_quiz(
    auth: AuthProvider,
    authoring: QuizAuthoringService,
    imported: ImportedQuiz,
    teacher_email: str,
    teacher_password: str,
) -> Quiz:
    """Register (or sign in) the seed teacher and publish ``imported`` under their account."""
    try:
        session = await auth.sign_up(teacher_email, teacher_password, username="teacher", role=UserRole.TEACHER)
    except QuizEngineError:
        session = None
    if session is None:
        session = await auth.sign_in_with_password(teacher_email, teacher_password)

    quiz = await authoring.create_quiz(
        session.user_id,
        UserRole.TEACHER,
        imported.title,
        imported.description,
        passing_score=imported.passing_score,
    )
    for question in imported.questions:
        try:
            await authoring.add_question(session.user_id, quiz.id, **question)
        except ValidationError as exc:
            raise QuizImportError(f"Question '{question['question'][:40]}' rejected: {exc.message}") from exc
    quiz = await authoring.set_published(session.user_id, quiz.id, True)
    logger.info("Seeded quiz '%s' with %d questions", quiz.title, len(imported.questions))
    return quiz


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped.startswith("#"):
            continue
        if stripped == "---" or not stripped:
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        current_block.append(raw_line)
    if current_block:
        blocks.append("\n".join(current_block).strip())
    return [block for block in blocks if block]


def _is_header(block: str) -> bool:
    first = block.splitlines()[0].strip().upper()
    return first.startswith(("TITLE:", "PASSING:", "DESCRIPTION:"))


def _parse_header(block: str) -> dict[str, str]:
    header: dict[str, str] = {}
    for raw_line in block.splitlines():
        key, sep, value = raw_line.strip().partition(":")
        key = key.strip().upper()
        if not sep or key not in {"TITLE", "PASSING", "DESCRIPTION"}:
            raise QuizImportError(f"Unknown header line: '{raw_line.strip()}'.")
        header[key] = value.strip()
    return header


def _parse_block(block: str) -> dict[str, Any]:
    question_lines: list[str] = []
    explanation_lines: list[str] = []
    options: dict[str, str] = {}
    answer_marker: str | None = None
    question_type = QuestionType.MULTIPLE_CHOICE
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("TYPE:"):
            raw_type = line.split(":", 1)[1].strip().upper()
            if raw_type not in _TYPE_ALIASES:
                raise QuizImportError("TYPE must be MCQ or TF.")
            question_type = _TYPE_ALIASES[raw_type]
            current_section = None
            continue

        if upper.startswith("ANSWER:"):
            answer_marker = line.split(":", 1)[1].strip()
            current_section = None
            continue

        if upper.startswith("EXPLANATION:"):
            explanation_lines = [line.split(":", 1)[1].strip()]
            current_section = "EXPLANATION"
            continue

        if len(line) > 2 and line[0].upper() in _OPTION_ORDER and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section == "EXPLANATION":
            explanation_lines.append(line)
        elif current_section in _OPTION_ORDER:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuizImportError(f"Encountered text outside of a known section: '{line}'.")

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")
    if not answer_marker:
        raise QuizImportError("ANSWER is required.")

    explanation = "\n".join(explanation_lines).strip() or None
    if question_type is QuestionType.TRUE_FALSE:
        if options:
            raise QuizImportError("True/false questions cannot list options.")
        answer = answer_marker.lower()
        if answer not in {"true", "false"}:
            raise QuizImportError("ANSWER must be TRUE or FALSE for TF questions.")
        return {
            "question": question_text,
            "question_type": question_type,
            "answer": answer,
            "options": None,
            "explanation": explanation,
        }

    letters = [letter for letter in _OPTION_ORDER if letter in options]
    if letters != _OPTION_ORDER[: len(letters)]:
        raise QuizImportError("Options must be lettered consecutively starting at A.")
    if len(letters) < 2:
        raise QuizImportError("Multiple-choice questions need at least two options (A, B).")
    option_list = [options[letter].strip() for letter in letters]
    if any(not option for option in option_list):
        raise QuizImportError("Option text cannot be empty.")
    answer_letter = answer_marker.upper()
    if answer_letter not in letters:
        raise QuizImportError(f"ANSWER must be one of {', '.join(letters)}.")

    return {
        "question": question_text,
        "question_type": question_type,
        "answer": option_list[letters.index(answer_letter)],
        "options": option_list,
        "explanation": explanation,
    }
