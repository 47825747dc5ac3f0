"""Data store gateway used by the engine and authoring services.

The hosted backend exposes relational tables (``quizzes``, ``quiz_questions``,
``quiz_responses``, ``profiles``) with filter/order/insert/update/delete
operations plus a per-record change feed. ``DataStoreGateway`` is the seam the
rest of the package talks to; ``InMemoryDataStore`` backs tests and local
development, ``PostgrestDataStore`` talks to the hosted REST endpoint.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from copy import deepcopy
from datetime import datetime, timezone
from itertools import count
import logging
from typing import Any
from uuid import uuid4

import httpx

from bioboost.constants.network_constants import REQUEST_TIMEOUT_SECONDS
from bioboost.core.errors import PersistenceError
from bioboost.core.models import AttemptRecord, ProfileChange, Quiz, QuizQuestion, UserProfile

logger = logging.getLogger(__name__)

ProfileCallback = Callable[[ProfileChange], None]

QUIZZES = "quizzes"
QUESTIONS = "quiz_questions"
RESPONSES = "quiz_responses"
PROFILES = "profiles"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """Handle returned by change-feed subscriptions."""

    def __init__(self, on_unsubscribe: Callable[[], None] | None = None) -> None:
        self._on_unsubscribe = on_unsubscribe
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_unsubscribe is not None:
            self._on_unsubscribe()


class DataStoreGateway(ABC):
    """Abstract async gateway over the hosted record collections."""

    # --- Quizzes ---

    @abstractmethod
    async def list_quizzes(self, teacher_id: str | None = None, published_only: bool = False) -> list[Quiz]:
        """Return quizzes newest first, optionally filtered by owner or publication."""

    @abstractmethod
    async def get_quiz(self, quiz_id: str) -> Quiz | None: ...

    @abstractmethod
    async def insert_quiz(self, payload: dict[str, Any]) -> Quiz: ...

    @abstractmethod
    async def update_quiz(self, quiz_id: str, updates: dict[str, Any]) -> Quiz | None: ...

    @abstractmethod
    async def delete_quiz(self, quiz_id: str) -> None:
        """Delete a quiz together with its questions."""

    # --- Questions ---

    @abstractmethod
    async def list_questions(self, quiz_id: str) -> list[QuizQuestion]:
        """Return the questions of a quiz ordered by display index."""

    @abstractmethod
    async def insert_question(self, payload: dict[str, Any]) -> QuizQuestion: ...

    @abstractmethod
    async def update_question(self, question_id: str, updates: dict[str, Any]) -> QuizQuestion | None: ...

    @abstractmethod
    async def delete_question(self, question_id: str) -> None: ...

    # --- Attempt records (append-only) ---

    @abstractmethod
    async def list_attempts(self, quiz_id: str, student_id: str) -> list[AttemptRecord]:
        """Return a learner's attempt records for a quiz, newest submission first."""

    @abstractmethod
    async def insert_attempt(self, payload: dict[str, Any]) -> AttemptRecord:
        """Insert an attempt; the store assigns ``id`` and ``submitted_at``."""

    # --- Profiles ---

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def upsert_profile(self, payload: dict[str, Any]) -> UserProfile: ...

    @abstractmethod
    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> UserProfile | None: ...

    @abstractmethod
    def subscribe_profile(self, user_id: str, callback: ProfileCallback) -> Subscription:
        """Deliver ``ProfileChange`` events for one profile row."""

    async def aclose(self) -> None:
        return None


class InMemoryDataStore(DataStoreGateway):
    """Process-local tables with server-side ids, timestamps and change feed."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now
        self._tables: dict[str, dict[str, dict[str, Any]]] = {
            QUIZZES: {},
            QUESTIONS: {},
            RESPONSES: {},
            PROFILES: {},
        }
        self._sequence = count(1)
        self._profile_subscribers: dict[str, list[ProfileCallback]] = {}
        self.fail_reads: bool = False
        self.fail_writes: bool = False

    # --- Quizzes ---

    async def list_quizzes(self, teacher_id: str | None = None, published_only: bool = False) -> list[Quiz]:
        rows = self._select(QUIZZES, "list quizzes")
        if teacher_id is not None:
            rows = [row for row in rows if row["teacher_id"] == teacher_id]
        if published_only:
            rows = [row for row in rows if row.get("is_published")]
        rows.sort(key=lambda row: (row["created_at"], row["_seq"]), reverse=True)
        return [Quiz.from_row(row) for row in rows]

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        row = self._get(QUIZZES, quiz_id, "fetch quiz")
        return Quiz.from_row(row) if row else None

    async def insert_quiz(self, payload: dict[str, Any]) -> Quiz:
        row = self._insert(QUIZZES, payload, "insert quiz", timestamp_field="created_at")
        return Quiz.from_row(row)

    async def update_quiz(self, quiz_id: str, updates: dict[str, Any]) -> Quiz | None:
        row = self._update(QUIZZES, quiz_id, updates, "update quiz")
        return Quiz.from_row(row) if row else None

    async def delete_quiz(self, quiz_id: str) -> None:
        self._check_writable("delete quiz")
        questions = self._tables[QUESTIONS]
        for question_id in [qid for qid, row in questions.items() if row["quiz_id"] == quiz_id]:
            del questions[question_id]
        self._tables[QUIZZES].pop(quiz_id, None)

    # --- Questions ---

    async def list_questions(self, quiz_id: str) -> list[QuizQuestion]:
        rows = [row for row in self._select(QUESTIONS, "list questions") if row["quiz_id"] == quiz_id]
        rows.sort(key=lambda row: (row.get("order") or 0, row["_seq"]))
        return [QuizQuestion.from_row(row) for row in rows]

    async def insert_question(self, payload: dict[str, Any]) -> QuizQuestion:
        row = self._insert(QUESTIONS, payload, "insert question", timestamp_field="created_at")
        return QuizQuestion.from_row(row)

    async def update_question(self, question_id: str, updates: dict[str, Any]) -> QuizQuestion | None:
        row = self._update(QUESTIONS, question_id, updates, "update question")
        return QuizQuestion.from_row(row) if row else None

    async def delete_question(self, question_id: str) -> None:
        self._check_writable("delete question")
        self._tables[QUESTIONS].pop(question_id, None)

    # --- Attempt records ---

    async def list_attempts(self, quiz_id: str, student_id: str) -> list[AttemptRecord]:
        rows = [
            row
            for row in self._select(RESPONSES, "list attempts")
            if row["quiz_id"] == quiz_id and row["student_id"] == student_id
        ]
        rows.sort(key=lambda row: (row["submitted_at"], row["_seq"]), reverse=True)
        return [AttemptRecord.from_row(row) for row in rows]

    async def insert_attempt(self, payload: dict[str, Any]) -> AttemptRecord:
        row = self._insert(RESPONSES, payload, "insert attempt", timestamp_field="submitted_at")
        return AttemptRecord.from_row(row)

    # --- Profiles ---

    async def get_profile(self, user_id: str) -> UserProfile | None:
        row = self._get(PROFILES, user_id, "fetch profile")
        return UserProfile.from_row(row) if row else None

    async def upsert_profile(self, payload: dict[str, Any]) -> UserProfile:
        self._check_writable("upsert profile")
        user_id = str(payload["id"])
        if user_id in self._tables[PROFILES]:
            updates = {key: value for key, value in payload.items() if key != "id"}
            row = self._update(PROFILES, user_id, updates, "upsert profile")
        else:
            row = self._insert(PROFILES, payload, "upsert profile")
        return UserProfile.from_row(row)

    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> UserProfile | None:
        row = self._update(PROFILES, user_id, updates, "update profile")
        return UserProfile.from_row(row) if row else None

    def subscribe_profile(self, user_id: str, callback: ProfileCallback) -> Subscription:
        subscribers = self._profile_subscribers.setdefault(user_id, [])
        subscribers.append(callback)

        def remove() -> None:
            if callback in subscribers:
                subscribers.remove(callback)

        return Subscription(remove)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._profile_subscribers.get(user_id, []))

    # --- Internals ---

    def _check_readable(self, operation: str) -> None:
        if self.fail_reads:
            raise PersistenceError(operation, "data store unavailable")

    def _check_writable(self, operation: str) -> None:
        if self.fail_writes:
            raise PersistenceError(operation, "data store unavailable")

    def _select(self, table: str, operation: str) -> list[dict[str, Any]]:
        self._check_readable(operation)
        return [deepcopy(row) for row in self._tables[table].values()]

    def _get(self, table: str, record_id: str, operation: str) -> dict[str, Any] | None:
        self._check_readable(operation)
        row = self._tables[table].get(str(record_id))
        return deepcopy(row) if row else None

    def _insert(
        self,
        table: str,
        payload: dict[str, Any],
        operation: str,
        timestamp_field: str | None = None,
    ) -> dict[str, Any]:
        self._check_writable(operation)
        row = deepcopy(payload)
        row["id"] = str(row.get("id") or uuid4().hex)
        row["_seq"] = next(self._sequence)
        if timestamp_field is not None:
            row[timestamp_field] = self._clock()
        self._tables[table][row["id"]] = row
        return deepcopy(row)

    def _update(
        self,
        table: str,
        record_id: str,
        updates: dict[str, Any],
        operation: str,
    ) -> dict[str, Any] | None:
        self._check_writable(operation)
        row = self._tables[table].get(str(record_id))
        if row is None:
            return None
        changed = {key: value for key, value in updates.items() if row.get(key) != value}
        row.update(deepcopy(updates))
        if table == PROFILES and changed:
            self._emit_profile_changes(str(record_id), changed)
        return deepcopy(row)

    def _emit_profile_changes(self, user_id: str, changed: dict[str, Any]) -> None:
        for callback in list(self._profile_subscribers.get(user_id, [])):
            for field_name, value in changed.items():
                callback(ProfileChange(user_id=user_id, field=field_name, new_value=value))


class PostgrestDataStore(DataStoreGateway):
    """Gateway over the hosted backend's REST interface (``/rest/v1``)."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._anon_key = anon_key
        self._access_token: str | None = None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            timeout=timeout,
        )

    def set_access_token(self, token: str | None) -> None:
        """Send row-level requests on behalf of the signed-in user."""
        self._access_token = token

    # --- Quizzes ---

    async def list_quizzes(self, teacher_id: str | None = None, published_only: bool = False) -> list[Quiz]:
        params = {"select": "*", "order": "created_at.desc"}
        if teacher_id is not None:
            params["teacher_id"] = f"eq.{teacher_id}"
        if published_only:
            params["is_published"] = "eq.true"
        rows = await self._request("list quizzes", "GET", QUIZZES, params=params)
        return _build_rows(Quiz, rows)

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        rows = await self._request("fetch quiz", "GET", QUIZZES, params={"select": "*", "id": f"eq.{quiz_id}"})
        return _first_row(Quiz, rows)

    async def insert_quiz(self, payload: dict[str, Any]) -> Quiz:
        rows = await self._request("insert quiz", "POST", QUIZZES, json=[payload], returning=True)
        return _stored_row(Quiz, rows)

    async def update_quiz(self, quiz_id: str, updates: dict[str, Any]) -> Quiz | None:
        rows = await self._request(
            "update quiz", "PATCH", QUIZZES, params={"id": f"eq.{quiz_id}"}, json=updates, returning=True
        )
        return _first_row(Quiz, rows)

    async def delete_quiz(self, quiz_id: str) -> None:
        await self._request("delete quiz questions", "DELETE", QUESTIONS, params={"quiz_id": f"eq.{quiz_id}"})
        await self._request("delete quiz", "DELETE", QUIZZES, params={"id": f"eq.{quiz_id}"})

    # --- Questions ---

    async def list_questions(self, quiz_id: str) -> list[QuizQuestion]:
        rows = await self._request(
            "list questions",
            "GET",
            QUESTIONS,
            params={"select": "*", "quiz_id": f"eq.{quiz_id}", "order": "order.asc"},
        )
        return _build_rows(QuizQuestion, rows)

    async def insert_question(self, payload: dict[str, Any]) -> QuizQuestion:
        rows = await self._request("insert question", "POST", QUESTIONS, json=[payload], returning=True)
        return _stored_row(QuizQuestion, rows)

    async def update_question(self, question_id: str, updates: dict[str, Any]) -> QuizQuestion | None:
        rows = await self._request(
            "update question", "PATCH", QUESTIONS, params={"id": f"eq.{question_id}"}, json=updates, returning=True
        )
        return _first_row(QuizQuestion, rows)

    async def delete_question(self, question_id: str) -> None:
        await self._request("delete question", "DELETE", QUESTIONS, params={"id": f"eq.{question_id}"})

    # --- Attempt records ---

    async def list_attempts(self, quiz_id: str, student_id: str) -> list[AttemptRecord]:
        rows = await self._request(
            "list attempts",
            "GET",
            RESPONSES,
            params={
                "select": "*",
                "quiz_id": f"eq.{quiz_id}",
                "student_id": f"eq.{student_id}",
                "order": "submitted_at.desc",
            },
        )
        return _build_rows(AttemptRecord, rows)

    async def insert_attempt(self, payload: dict[str, Any]) -> AttemptRecord:
        rows = await self._request("insert attempt", "POST", RESPONSES, json=[payload], returning=True)
        return _stored_row(AttemptRecord, rows)

    # --- Profiles ---

    async def get_profile(self, user_id: str) -> UserProfile | None:
        rows = await self._request(
            "fetch profile",
            "GET",
            PROFILES,
            params={"select": "id,role,teacher_verified,username", "id": f"eq.{user_id}"},
        )
        return _first_row(UserProfile, rows)

    async def upsert_profile(self, payload: dict[str, Any]) -> UserProfile:
        rows = await self._request(
            "upsert profile",
            "POST",
            PROFILES,
            json=[payload],
            returning=True,
            extra_prefer="resolution=merge-duplicates",
        )
        return _stored_row(UserProfile, rows)

    async def update_profile(self, user_id: str, updates: dict[str, Any]) -> UserProfile | None:
        rows = await self._request(
            "update profile", "PATCH", PROFILES, params={"id": f"eq.{user_id}"}, json=updates, returning=True
        )
        return _first_row(UserProfile, rows)

    def subscribe_profile(self, user_id: str, callback: ProfileCallback) -> Subscription:
        # Realtime channels are not available over REST; profile changes arrive
        # through SessionContext.apply_profile_change from an external listener.
        logger.debug("REST gateway has no change feed; profile %s not subscribed", user_id)
        return Subscription()

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Internals ---

    def _headers(self, returning: bool, extra_prefer: str | None) -> dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
        }
        prefer = []
        if returning:
            prefer.append("return=representation")
        if extra_prefer:
            prefer.append(extra_prefer)
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        returning: bool = False,
        extra_prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        try:
            response = await self._client.request(
                method,
                f"/{table}",
                params=params,
                json=json,
                headers=self._headers(returning, extra_prefer),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(operation, f"HTTP {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise PersistenceError(operation, str(exc)) from exc

        if not response.content:
            return []
        try:
            body = response.json()
        except ValueError as exc:
            raise PersistenceError(operation, f"unreadable response body: {exc}") from exc
        return body if isinstance(body, list) else [body]


def _build_rows(model: Any, rows: list[dict[str, Any]]) -> list[Any]:
    """Convert REST rows into records; malformed rows count as a failed read."""
    try:
        return [model.from_row(row) for row in rows]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"read {model.__name__}", f"malformed row: {exc}") from exc


def _first_row(model: Any, rows: list[dict[str, Any]]) -> Any:
    return _build_rows(model, rows[:1])[0] if rows else None


def _stored_row(model: Any, rows: list[dict[str, Any]]) -> Any:
    if not rows:
        raise PersistenceError(f"write {model.__name__}", "no row returned")
    return _build_rows(model, rows[:1])[0]
