"""Auth provider issuing sessions and emitting session-change events."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import inspect
import logging
import secrets
from typing import Any
from uuid import uuid4

import httpx

from bioboost.constants.network_constants import REQUEST_TIMEOUT_SECONDS
from bioboost.core.errors import AuthError, PersistenceError
from bioboost.core.models import AuthSession, UserRole
from bioboost.core.services.data_store import DataStoreGateway, Subscription

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"

AuthCallback = Callable[[str, AuthSession | None], Awaitable[None] | None]

_SESSION_LIFETIME = timedelta(hours=1)
_PBKDF2_ROUNDS = 120_000


class AuthProvider(ABC):
    """Async credential exchange plus a session-change notification stream."""

    def __init__(self) -> None:
        self._listeners: list[AuthCallback] = []

    @abstractmethod
    async def sign_up(self, email: str, password: str, username: str | None = None,
                      role: UserRole = UserRole.STUDENT) -> AuthSession | None:
        """Register a user; returns a session when sign-up signs the user in."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession: ...

    @abstractmethod
    async def sign_out(self) -> None: ...

    @abstractmethod
    async def get_session(self) -> AuthSession | None: ...

    async def session_for_token(self, access_token: str) -> AuthSession | None:
        """Resolve a bearer token into its session, if still valid."""
        session = await self.get_session()
        if session is not None and hmac.compare_digest(session.access_token, access_token):
            return session
        return None

    async def sign_out_token(self, access_token: str) -> None:
        session = await self.get_session()
        if session is not None and hmac.compare_digest(session.access_token, access_token):
            await self.sign_out()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(remove)

    async def _notify(self, event: str, session: AuthSession | None) -> None:
        logger.info("Auth state changed: %s", event)
        for callback in list(self._listeners):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result

    async def aclose(self) -> None:
        return None


@dataclass(slots=True)
class _StoredUser:
    user_id: str
    email: str
    salt: bytes
    password_hash: bytes
    metadata: dict[str, Any]


class InMemoryAuthProvider(AuthProvider):
    """Local provider used for development and tests.

    Sessions are kept per access token so the HTTP layer can serve several
    learners at once; ``get_session`` reports the most recent sign-in, which
    mirrors a single browser tab.
    """

    def __init__(self, store: DataStoreGateway, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__()
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._users: dict[str, _StoredUser] = {}
        self._sessions: dict[str, AuthSession] = {}
        self._current: AuthSession | None = None

    async def sign_up(self, email: str, password: str, username: str | None = None,
                      role: UserRole = UserRole.STUDENT) -> AuthSession | None:
        normalized = _normalize_email(email)
        if not normalized or "@" not in normalized:
            raise AuthError("A valid email address is required.")
        if len(password) < 6:
            raise AuthError("Password should be at least 6 characters.")
        if normalized in self._users:
            raise AuthError("User already registered.")

        salt = secrets.token_bytes(16)
        user = _StoredUser(
            user_id=uuid4().hex,
            email=normalized,
            salt=salt,
            password_hash=_hash_password(password, salt),
            metadata={"username": username} if username else {},
        )
        self._users[normalized] = user
        try:
            await self._store.upsert_profile(
                {"id": user.user_id, "role": role.value, "teacher_verified": False, "username": username}
            )
        except PersistenceError as exc:
            logger.error("Could not create profile for %s: %s", normalized, exc)
        return await self._open_session(user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        user = self._users.get(_normalize_email(email))
        if user is None or not hmac.compare_digest(user.password_hash, _hash_password(password, user.salt)):
            raise AuthError("Invalid login credentials")
        return await self._open_session(user)

    async def sign_out(self) -> None:
        if self._current is not None:
            self._sessions.pop(self._current.access_token, None)
        self._current = None
        await self._notify(SIGNED_OUT, None)

    async def sign_out_token(self, access_token: str) -> None:
        session = self._sessions.pop(access_token, None)
        if session is not None and self._current is session:
            self._current = None
            await self._notify(SIGNED_OUT, None)

    async def get_session(self) -> AuthSession | None:
        if self._current is not None and not self._is_live(self._current):
            self._current = None
        return self._current

    async def session_for_token(self, access_token: str) -> AuthSession | None:
        session = self._sessions.get(access_token)
        if session is None or not self._is_live(session):
            return None
        return session

    async def _open_session(self, user: _StoredUser) -> AuthSession:
        session = AuthSession(
            access_token=secrets.token_urlsafe(32),
            user_id=user.user_id,
            email=user.email,
            user_metadata=dict(user.metadata),
            expires_at=self._clock() + _SESSION_LIFETIME,
        )
        self._sessions[session.access_token] = session
        self._current = session
        await self._notify(SIGNED_IN, session)
        return session

    def _is_live(self, session: AuthSession) -> bool:
        return session.expires_at is None or session.expires_at > self._clock()


class SupabaseAuthProvider(AuthProvider):
    """Provider backed by the hosted auth REST endpoint (``/auth/v1``)."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__()
        self._anon_key = anon_key
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/") + "/auth/v1", timeout=timeout)
        self._current: AuthSession | None = None

    async def sign_up(self, email: str, password: str, username: str | None = None,
                      role: UserRole = UserRole.STUDENT) -> AuthSession | None:
        body = await self._post(
            "/signup",
            {"email": email, "password": password, "data": {"username": username, "role": role.value}},
        )
        if not body.get("access_token"):
            # Email confirmation pending; no session yet.
            return None
        return await self._adopt(body)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        body = await self._post("/token?grant_type=password", {"email": email, "password": password})
        return await self._adopt(body)

    async def sign_out(self) -> None:
        if self._current is not None:
            try:
                await self._client.post("/logout", headers=self._headers(self._current.access_token))
            except httpx.HTTPError as exc:
                logger.warning("Sign-out request failed: %s", exc)
        self._current = None
        await self._notify(SIGNED_OUT, None)

    async def get_session(self) -> AuthSession | None:
        return self._current

    async def session_for_token(self, access_token: str) -> AuthSession | None:
        if self._current is not None and hmac.compare_digest(self._current.access_token, access_token):
            return self._current
        try:
            response = await self._client.get("/user", headers=self._headers(access_token))
        except httpx.HTTPError as exc:
            logger.warning("Token lookup failed: %s", exc)
            return None
        if response.status_code != 200:
            return None
        user = response.json()
        return AuthSession(
            access_token=access_token,
            user_id=str(user["id"]),
            email=user.get("email", ""),
            user_metadata=dict(user.get("user_metadata") or {}),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._anon_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise AuthError(f"Auth service unreachable: {exc}") from exc
        body = response.json() if response.content else {}
        if response.status_code >= 400:
            message = body.get("error_description") or body.get("msg") or body.get("message") or "Login failed"
            raise AuthError(message)
        return body

    async def _adopt(self, body: dict[str, Any]) -> AuthSession:
        user = body.get("user") or {}
        expires_in = body.get("expires_in")
        session = AuthSession(
            access_token=body["access_token"],
            user_id=str(user.get("id", "")),
            email=user.get("email", ""),
            user_metadata=dict(user.get("user_metadata") or {}),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None,
        )
        self._current = session
        await self._notify(SIGNED_IN, session)
        return session


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ROUNDS)
