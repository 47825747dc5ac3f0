"""Per learner x quiz view session tracking the attempt state machine."""

from __future__ import annotations

from enum import Enum

from bioboost.core.models import AttemptOutcome, Eligibility, PresentedAttempt, QuizQuestion


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    ELIGIBLE = "eligible"
    LOCKED = "locked"


class AttemptSession:
    """Holds the frozen question order and in-progress answers of one attempt.

    ``SUBMITTED`` is transient: ``finish`` moves straight on to ``ELIGIBLE``
    or ``LOCKED`` depending on the eligibility reported with the outcome.
    Unlocking is never signalled; ``refresh_eligibility`` observes it.
    """

    def __init__(self, learner_id: str, quiz_id: str) -> None:
        self.learner_id = learner_id
        self.quiz_id = quiz_id
        self._state = AttemptState.NOT_STARTED
        self._presented: PresentedAttempt | None = None
        self._answers: dict[str, str] = {}
        self._current_index: int = 0
        self._busy: bool = False
        self._last_outcome: AttemptOutcome | None = None
        self._eligibility: Eligibility | None = None

    # --- State ---

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def busy(self) -> bool:
        """True while an engine call for this session is pending."""
        return self._busy

    @property
    def eligibility(self) -> Eligibility | None:
        return self._eligibility

    @property
    def last_outcome(self) -> AttemptOutcome | None:
        return self._last_outcome

    @property
    def questions(self) -> list[QuizQuestion]:
        return list(self._presented.questions) if self._presented else []

    @property
    def presented(self) -> PresentedAttempt | None:
        return self._presented

    def mark_busy(self) -> None:
        if self._busy:
            raise RuntimeError("An action for this quiz is already running.")
        self._busy = True

    def mark_idle(self) -> None:
        self._busy = False

    # --- Transitions ---

    def start(self, presented: PresentedAttempt) -> None:
        if self._state is AttemptState.IN_PROGRESS:
            raise RuntimeError("An attempt is already in progress.")
        self._presented = presented
        self._answers = {}
        self._current_index = 0
        self._last_outcome = None
        self._eligibility = presented.eligibility
        self._state = AttemptState.IN_PROGRESS

    def finish(self, outcome: AttemptOutcome) -> None:
        if self._state is not AttemptState.IN_PROGRESS:
            raise RuntimeError("No attempt is in progress.")
        self._last_outcome = outcome
        self._state = AttemptState.SUBMITTED
        if outcome.eligibility is not None:
            self.refresh_eligibility(outcome.eligibility)

    def refresh_eligibility(self, eligibility: Eligibility) -> None:
        self._eligibility = eligibility
        if self._state is AttemptState.IN_PROGRESS:
            return
        if self._state is AttemptState.NOT_STARTED:
            if not eligibility.is_eligible:
                self._state = AttemptState.LOCKED
            return
        self._state = AttemptState.ELIGIBLE if eligibility.is_eligible else AttemptState.LOCKED

    def discard(self) -> None:
        """Navigate away: drop unsaved answers, nothing is written."""
        self._answers = {}
        self._current_index = 0
        if self._state is AttemptState.IN_PROGRESS:
            self._presented = None
            self._state = AttemptState.NOT_STARTED if self._last_outcome is None else AttemptState.ELIGIBLE

    # --- Answers ---

    def record_answer(self, question_id: str, value: str) -> None:
        if self._state is not AttemptState.IN_PROGRESS or self._presented is None:
            raise RuntimeError("No attempt is in progress.")
        question = next((q for q in self._presented.questions if q.id == question_id), None)
        if question is None:
            raise ValueError(f"Question '{question_id}' is not part of this attempt.")
        if value not in question.choices:
            raise ValueError(f"'{value}' is not an option of question '{question_id}'.")
        self._answers[question_id] = value

    def get_answers(self) -> dict[str, str]:
        return dict(self._answers)

    def has_answered(self, question_id: str) -> bool:
        return question_id in self._answers

    # --- Navigation ---

    @property
    def current_index(self) -> int:
        return self._current_index

    def current_question(self) -> QuizQuestion | None:
        if self._presented is None or not self._presented.questions:
            return None
        return self._presented.questions[self._current_index]

    def move_next(self) -> QuizQuestion | None:
        if self._presented and self._current_index < len(self._presented.questions) - 1:
            self._current_index += 1
        return self.current_question()

    def move_previous(self) -> QuizQuestion | None:
        if self._current_index > 0:
            self._current_index -= 1
        return self.current_question()

    def progress_fraction(self) -> float:
        if self._presented is None or not self._presented.questions:
            return 0.0
        return (self._current_index + 1) / len(self._presented.questions)
