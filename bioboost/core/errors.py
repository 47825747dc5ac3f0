"""Error taxonomy shared by the engine, services and API layers."""

from __future__ import annotations

from bioboost.core.models import format_cooldown


class QuizEngineError(Exception):
    """Base class for every recoverable BioBoost failure."""

    code: str = "quiz_engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, object]:
        return {"code": self.code, "detail": self.message}


class AttemptsExhausted(QuizEngineError):
    """The learner used every attempt and the cooldown has not elapsed yet."""

    code = "attempts_exhausted"

    def __init__(self, cooldown_remaining: int, max_attempts: int | None = None) -> None:
        self.cooldown_remaining = cooldown_remaining
        self.cooldown_label = format_cooldown(cooldown_remaining)
        attempts = f"{max_attempts} attempts" if max_attempts else "all attempts"
        super().__init__(
            f"You already used {attempts}. Please wait {self.cooldown_label} before trying again."
        )

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["cooldown_remaining"] = self.cooldown_remaining
        payload["cooldown_label"] = self.cooldown_label
        return payload


class PersistenceError(QuizEngineError):
    """A read or write against the data store failed."""

    code = "persistence_error"

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ValidationError(QuizEngineError):
    """Quiz or question data was rejected at authoring time."""

    code = "validation_error"


class QuizNotFound(QuizEngineError):
    code = "quiz_not_found"

    def __init__(self, quiz_id: str) -> None:
        self.quiz_id = quiz_id
        super().__init__(f"Quiz '{quiz_id}' does not exist.")


class QuizNotPublished(QuizEngineError):
    code = "quiz_not_published"

    def __init__(self, quiz_id: str) -> None:
        self.quiz_id = quiz_id
        super().__init__(f"Quiz '{quiz_id}' is not published.")


class PermissionDenied(QuizEngineError):
    code = "permission_denied"


class SubmissionInProgress(QuizEngineError):
    """A submission for the same learner and quiz is still pending."""

    code = "submission_in_progress"

    def __init__(self) -> None:
        super().__init__("A submission for this quiz is already being processed.")


class AuthError(QuizEngineError):
    code = "auth_error"


class ConfigurationError(QuizEngineError):
    code = "configuration_error"


class AttemptNotInProgress(QuizEngineError):
    code = "attempt_not_in_progress"

    def __init__(self, message: str = "Start the quiz before answering questions.") -> None:
        super().__init__(message)
