from __future__ import annotations

from pathlib import Path

import pytest

from bioboost.core.models import QuestionType, UserRole
from bioboost.core.quiz_importer import QuizImportError, load_quiz_from_file, parse_quiz_text, seed_quiz
from bioboost.core.services.quiz_authoring import QuizAuthoringService

SEED_FILE = Path(__file__).resolve().parents[1] / "bioboost" / "data" / "krebs_cycle_quiz.txt"


def test_bundled_krebs_quiz_parses():
    imported = load_quiz_from_file(SEED_FILE)
    assert imported.title == "The Krebs Cycle"
    assert imported.passing_score == 7
    assert len(imported.questions) == 10
    assert imported.source_path == SEED_FILE

    first = imported.questions[0]
    assert first["question_type"] is QuestionType.MULTIPLE_CHOICE
    assert first["answer"] == "3"
    assert first["options"] == ["1", "2", "3", "4"]

    true_false = imported.questions[1]
    assert true_false["question_type"] is QuestionType.TRUE_FALSE
    assert true_false["answer"] == "true"
    assert true_false["options"] is None


def test_multiline_question_and_explanation():
    imported = parse_quiz_text(
        "TITLE: Enzymes\n"
        "PASSING: 1\n"
        "\n"
        "Q: Which enzyme\n"
        "   starts the cycle?\n"
        "A: Citrate synthase\n"
        "B: Fumarase\n"
        "ANSWER: a\n"
        "EXPLANATION: It condenses acetyl-CoA\n"
        "with oxaloacetate.\n"
    )
    question = imported.questions[0]
    assert question["question"] == "Which enzyme\nstarts the cycle?"
    assert question["answer"] == "Citrate synthase"
    assert question["explanation"] == "It condenses acetyl-CoA\nwith oxaloacetate."


def test_passing_defaults_and_is_bounded():
    text = "TITLE: T\n\nQ: One?\nTYPE: TF\nANSWER: false\n"
    with pytest.raises(QuizImportError):
        parse_quiz_text(text)  # default passing score 7 exceeds one question
    assert parse_quiz_text("TITLE: T\nPASSING: 1\n\nQ: One?\nTYPE: TF\nANSWER: false\n").passing_score == 1


@pytest.mark.parametrize(
    "block",
    [
        "Q: Missing answer\nA: x\nB: y",
        "Q: Bad type\nTYPE: ESSAY\nANSWER: A",
        "Q: Letter out of range\nA: x\nB: y\nANSWER: C",
        "Q: Gap in letters\nA: x\nC: y\nANSWER: A",
        "Q: One option\nA: x\nANSWER: A",
        "Q: TF with options\nTYPE: TF\nA: x\nANSWER: TRUE",
        "Q: TF bad answer\nTYPE: TF\nANSWER: maybe",
        "stray text\nQ: Where?\nA: x\nB: y\nANSWER: A",
    ],
)
def test_malformed_blocks_are_rejected(block):
    with pytest.raises(QuizImportError):
        parse_quiz_text(f"TITLE: T\nPASSING: 1\n\n{block}\n")


def test_title_and_questions_are_required():
    with pytest.raises(QuizImportError):
        parse_quiz_text("TITLE: Empty\n")
    with pytest.raises(QuizImportError):
        parse_quiz_text("Q: No title\nTYPE: TF\nANSWER: true\n")


async def test_seed_quiz_publishes_under_a_teacher(auth, store):
    imported = load_quiz_from_file(SEED_FILE)
    authoring = QuizAuthoringService(store)

    quiz = await seed_quiz(auth, authoring, imported, "teacher@bioboost.local", "krebs-cycle")

    assert quiz.is_published
    assert len(await store.list_questions(quiz.id)) == 10
    profile = await store.get_profile(quiz.teacher_id)
    assert profile.role is UserRole.TEACHER

    again = await seed_quiz(auth, authoring, imported, "teacher@bioboost.local", "krebs-cycle")
    assert again.teacher_id == quiz.teacher_id
