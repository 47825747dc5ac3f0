"""FastAPI server exposing the learner and teacher endpoints."""

from __future__ import annotations

from threading import Thread
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from pydantic import BaseModel, Field
import uvicorn

from bioboost.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from bioboost.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from bioboost.core.errors import (
    AttemptNotInProgress,
    AttemptsExhausted,
    AuthError,
    PermissionDenied,
    PersistenceError,
    QuizEngineError,
    QuizNotFound,
    QuizNotPublished,
    SubmissionInProgress,
    ValidationError,
)
from bioboost.core.markdown_renderer import renderer
from bioboost.core.models import (
    AttemptOutcome,
    AttemptRecord,
    AuthSession,
    Eligibility,
    PresentedAttempt,
    QuestionType,
    Quiz,
    QuizQuestion,
    UserRole,
)
from bioboost.core.quiz_manager import QuizManager
from bioboost.core.results import ActionResult
from bioboost.core.services.auth_provider import AuthProvider
from bioboost.core.services.session_context import SessionContext

_STATUS_BY_ERROR: list[tuple[type[QuizEngineError], int]] = [
    (AttemptsExhausted, 423),
    (ValidationError, 422),
    (QuizNotFound, 404),
    (QuizNotPublished, 403),
    (PermissionDenied, 403),
    (SubmissionInProgress, 409),
    (AttemptNotInProgress, 409),
    (PersistenceError, 503),
    (AuthError, 401),
]


class RegisterPayload(BaseModel):
    email: str
    password: str
    username: str | None = None
    role: UserRole = UserRole.STUDENT


class LoginPayload(BaseModel):
    email: str
    password: str


class QuizPayload(BaseModel):
    title: str
    description: str = ""
    passing_score: int | None = None


class QuizUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    passing_score: int | None = None


class PublishPayload(BaseModel):
    is_published: bool = True


class QuestionPayload(BaseModel):
    question: str
    type: QuestionType
    answer: str
    options: list[str] | None = None
    explanation: str | None = None


class AnswerPayload(BaseModel):
    question_id: str
    value: str


class SubmitPayload(BaseModel):
    answers: dict[str, str] = Field(default_factory=dict)


def _error_status(error: QuizEngineError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 400


def _unwrap(result: ActionResult[Any]) -> Any:
    if not result.ok and result.error is not None:
        raise HTTPException(status_code=_error_status(result.error), detail=result.error.to_payload())
    return result.value


def _session_payload(session: AuthSession, context: SessionContext) -> dict[str, object]:
    return {
        "access_token": session.access_token,
        "user_id": session.user_id,
        "email": session.email,
        "username": context.username,
        "role": context.role.value if context.role else None,
    }


def _quiz_payload(quiz: Quiz) -> dict[str, object]:
    return {
        "id": quiz.id,
        "teacher_id": quiz.teacher_id,
        "title": quiz.title,
        "description": quiz.description,
        "passing_score": quiz.passing_score,
        "is_published": quiz.is_published,
        "created_at": quiz.created_at.isoformat() if quiz.created_at else None,
    }


def _learner_question_payload(question: QuizQuestion, position: int) -> dict[str, object]:
    # Answers and explanations are only revealed in the submission review.
    return {
        "id": question.id,
        "position": position,
        "type": question.type.value,
        "question": question.question,
        "question_html": renderer.render_fragment(question.question),
        "choices": question.choices,
        "choices_html": [renderer.render_inline(choice) for choice in question.choices],
    }


def _teacher_question_payload(question: QuizQuestion) -> dict[str, object]:
    return {
        "id": question.id,
        "quiz_id": question.quiz_id,
        "order": question.order,
        "type": question.type.value,
        "question": question.question,
        "options": question.options,
        "answer": question.answer,
        "explanation": question.explanation,
    }


def _eligibility_payload(eligibility: Eligibility) -> dict[str, object]:
    return {
        "attempt_count": eligibility.attempt_count,
        "max_attempts": eligibility.max_attempts,
        "attempts_left": eligibility.attempts_left,
        "cooldown_remaining": eligibility.cooldown_remaining,
        "cooldown_label": eligibility.cooldown_label,
        "is_eligible": eligibility.is_eligible,
        "degraded": eligibility.degraded,
    }


def _presented_payload(presented: PresentedAttempt) -> dict[str, object]:
    return {
        "quiz": _quiz_payload(presented.quiz),
        "questions": [
            _learner_question_payload(question, position)
            for position, question in enumerate(presented.questions, start=1)
        ],
        "eligibility": _eligibility_payload(presented.eligibility),
    }


def _outcome_payload(outcome: AttemptOutcome) -> dict[str, object]:
    return {
        "score": outcome.score,
        "total_questions": outcome.total_questions,
        "passed": outcome.passed,
        "recorded": outcome.recorded,
        "warning": outcome.warning,
        "eligibility": _eligibility_payload(outcome.eligibility) if outcome.eligibility else None,
        "review": [
            {
                "question_id": row.question_id,
                "question_html": renderer.render_fragment(row.question),
                "submitted": row.submitted,
                "answer": row.answer,
                "is_correct": row.is_correct,
                "explanation_html": renderer.render_fragment(row.explanation) if row.explanation else None,
            }
            for row in outcome.review
        ],
    }


def _record_payload(record: AttemptRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "score": record.score,
        "passed": record.passed,
        "submitted_at": record.submitted_at.isoformat(),
    }


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def create_api_app(quiz_manager: QuizManager, auth: AuthProvider) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager and auth provider."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)
    contexts: dict[str, SessionContext] = {}

    async def current_context(authorization: str | None = Header(default=None)) -> SessionContext:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail={"code": "auth_error", "detail": "Sign in first."})
        session = await auth.session_for_token(token)
        if session is None:
            stale = contexts.pop(token, None)
            if stale is not None:
                stale.close()
            raise HTTPException(status_code=401, detail={"code": "auth_error", "detail": "Session expired."})
        context = contexts.get(token)
        if context is None or not context.is_authenticated:
            context = SessionContext(auth, quiz_manager.store)
            await context.bind(session)
            context.loading = False
            contexts[token] = context
        return context

    def learner_id(context: SessionContext) -> str:
        return str(context.user_id)

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}

    # --- Auth ---

    @app.post("/auth/register", status_code=201)
    async def register(
        payload: RegisterPayload,
        response: Response,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        context = SessionContext(auth, manager.store)
        session = _unwrap(
            await context.register(payload.email, payload.password, username=payload.username, role=payload.role)
        )
        if session is None:
            response.status_code = 202
            return {"access_token": None, "detail": "Check your email to confirm the account."}
        context.loading = False
        contexts[session.access_token] = context
        return _session_payload(session, context)

    @app.post("/auth/login")
    async def login(
        payload: LoginPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        context = SessionContext(auth, manager.store)
        session = _unwrap(await context.login(payload.email, payload.password))
        context.loading = False
        contexts[session.access_token] = context
        return _session_payload(session, context)

    @app.post("/auth/logout", status_code=204)
    async def logout(context: SessionContext = Depends(current_context)) -> Response:
        token = context.session.access_token if context.session else None
        _unwrap(await context.logout())
        context.close()
        if token is not None:
            contexts.pop(token, None)
        return Response(status_code=204)

    @app.get("/me")
    def me(context: SessionContext = Depends(current_context)) -> dict[str, object]:
        return {
            "user_id": context.user_id,
            "email": context.session.email if context.session else None,
            "username": context.username,
            "display_name": context.display_name,
            "role": context.role.value if context.role else None,
            "teacher_verified": context.teacher_verified,
        }

    # --- Progress ---

    @app.get("/progress")
    def get_progress(
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        return manager.get_progress(learner_id(context))

    @app.post("/games/complete")
    def complete_game(
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        _unwrap(manager.complete_game(learner_id(context)))
        return manager.get_progress(learner_id(context))

    # --- Quizzes & authoring ---

    @app.get("/quizzes")
    async def list_quizzes(
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        quizzes = _unwrap(await manager.list_quizzes(learner_id(context), context.role))
        return [_quiz_payload(quiz) for quiz in quizzes]

    @app.post("/quizzes", status_code=201)
    async def create_quiz(
        payload: QuizPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = _unwrap(
            await manager.create_quiz(
                learner_id(context),
                context.role,
                payload.title,
                payload.description,
                passing_score=payload.passing_score,
            )
        )
        return _quiz_payload(quiz)

    @app.get("/quizzes/{quiz_id}")
    async def preview_quiz(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz, questions = _unwrap(await manager.preview_quiz(learner_id(context), quiz_id))
        return {
            "quiz": _quiz_payload(quiz),
            "questions": [_teacher_question_payload(question) for question in questions],
        }

    @app.patch("/quizzes/{quiz_id}")
    async def update_quiz(
        quiz_id: str,
        payload: QuizUpdatePayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = _unwrap(
            await manager.update_quiz(
                learner_id(context),
                quiz_id,
                title=payload.title,
                description=payload.description,
                passing_score=payload.passing_score,
            )
        )
        return _quiz_payload(quiz)

    @app.delete("/quizzes/{quiz_id}", status_code=204)
    async def delete_quiz(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> Response:
        _unwrap(await manager.delete_quiz(learner_id(context), quiz_id))
        return Response(status_code=204)

    @app.post("/quizzes/{quiz_id}/publish")
    async def publish_quiz(
        quiz_id: str,
        payload: PublishPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        quiz = _unwrap(await manager.set_published(learner_id(context), quiz_id, payload.is_published))
        return _quiz_payload(quiz)

    @app.post("/quizzes/{quiz_id}/questions", status_code=201)
    async def add_question(
        quiz_id: str,
        payload: QuestionPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        question = _unwrap(
            await manager.add_question(
                learner_id(context),
                quiz_id,
                payload.question,
                payload.type,
                payload.answer,
                payload.options,
                payload.explanation,
            )
        )
        return _teacher_question_payload(question)

    @app.put("/quizzes/{quiz_id}/questions/{question_id}")
    async def update_question(
        quiz_id: str,
        question_id: str,
        payload: QuestionPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        question = _unwrap(
            await manager.update_question(
                learner_id(context),
                quiz_id,
                question_id,
                payload.question,
                payload.type,
                payload.answer,
                payload.options,
                payload.explanation,
            )
        )
        return _teacher_question_payload(question)

    @app.delete("/quizzes/{quiz_id}/questions/{question_id}", status_code=204)
    async def delete_question(
        quiz_id: str,
        question_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> Response:
        _unwrap(await manager.delete_question(learner_id(context), quiz_id, question_id))
        return Response(status_code=204)

    # --- Attempts ---

    @app.get("/quizzes/{quiz_id}/eligibility")
    async def get_eligibility(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        eligibility = _unwrap(await manager.check_eligibility(learner_id(context), quiz_id))
        payload = _eligibility_payload(eligibility)
        payload["state"] = manager.get_session(learner_id(context), quiz_id).state.value
        return payload

    @app.post("/quizzes/{quiz_id}/attempts", status_code=201)
    async def begin_attempt(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        presented = _unwrap(await manager.begin_attempt(learner_id(context), quiz_id))
        return _presented_payload(presented)

    @app.delete("/quizzes/{quiz_id}/attempts", status_code=204)
    def leave_quiz(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> Response:
        _unwrap(manager.leave_quiz(learner_id(context), quiz_id))
        return Response(status_code=204)

    @app.post("/quizzes/{quiz_id}/answers")
    def record_answer(
        quiz_id: str,
        payload: AnswerPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        answers = _unwrap(manager.record_answer(learner_id(context), quiz_id, payload.question_id, payload.value))
        return {"answered": sorted(answers), "answers": answers}

    @app.post("/quizzes/{quiz_id}/submit")
    async def submit_attempt(
        quiz_id: str,
        payload: SubmitPayload,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        outcome = _unwrap(await manager.submit_attempt(learner_id(context), quiz_id, payload.answers))
        return _outcome_payload(outcome)

    @app.post("/quizzes/{quiz_id}/retake", status_code=201)
    async def retake(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        presented = _unwrap(await manager.retake(learner_id(context), quiz_id))
        return _presented_payload(presented)

    @app.get("/quizzes/{quiz_id}/history")
    async def attempt_history(
        quiz_id: str,
        context: SessionContext = Depends(current_context),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        records = _unwrap(await manager.attempt_history(learner_id(context), quiz_id))
        return [_record_payload(record) for record in records]

    return app


def start_api_server(
    quiz_manager: QuizManager,
    auth: AuthProvider,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(quiz_manager, auth)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="BioBoostApiServer", daemon=True)
    thread.start()
    return thread
