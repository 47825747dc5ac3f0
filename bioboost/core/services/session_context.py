"""Explicit auth/profile state for one signed-in client."""

from __future__ import annotations

import logging

from bioboost.core.errors import AuthError, PersistenceError
from bioboost.core.models import AuthSession, ProfileChange, UserRole
from bioboost.core.results import ActionResult
from bioboost.core.services.auth_provider import AuthProvider
from bioboost.core.services.data_store import DataStoreGateway, Subscription

logger = logging.getLogger(__name__)

_DEFAULT_USERNAME = "student"


class SessionContext:
    """Holds the current session plus the profile attributes derived from it.

    State only changes through ``bind`` (driven by the auth provider's change
    notifications once ``start`` ran) and ``apply_profile_change`` (driven by
    the profile change feed).
    """

    def __init__(self, auth: AuthProvider, store: DataStoreGateway) -> None:
        self._auth = auth
        self._store = store
        self.session: AuthSession | None = None
        self.role: UserRole | None = None
        self.teacher_verified: bool = False
        self.loading: bool = True
        self._profile_username: str | None = None
        self._auth_subscription: Subscription | None = None
        self._profile_subscription: Subscription | None = None
        self._started = False

    # --- Derived attributes ---

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def username(self) -> str:
        if self.session is None:
            return _DEFAULT_USERNAME
        return self.session.username or self._profile_username or _DEFAULT_USERNAME

    @property
    def display_name(self) -> str:
        return self.username or "Set username"

    @property
    def is_teacher(self) -> bool:
        return self.role is UserRole.TEACHER

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load the initial session and follow the auth change stream."""
        if self._started:
            return
        self._started = True
        self.loading = True
        try:
            session = await self._auth.get_session()
        except AuthError as exc:
            logger.warning("Initial session lookup failed: %s", exc.message)
            session = None
        try:
            await self.bind(session)
        finally:
            self.loading = False
        self._auth_subscription = self._auth.on_auth_state_change(self.handle_auth_change)

    async def handle_auth_change(self, event: str, session: AuthSession | None) -> None:
        logger.info("Session context received %s", event)
        self.loading = True
        try:
            await self.bind(session)
        finally:
            self.loading = False

    async def bind(self, session: AuthSession | None) -> None:
        self.session = session
        if session is None:
            self._clear_profile()
            return
        await self._load_profile(session.user_id)
        self._subscribe_profile(session.user_id)

    def close(self) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        self._remove_profile_subscription()
        self._started = False

    # --- Real-time profile updates ---

    def apply_profile_change(self, change: ProfileChange) -> None:
        """Fold one ``{field, new_value}`` update; last write wins per field."""
        if change.user_id != self.user_id:
            return
        logger.debug("Folding profile change %s=%r", change.field, change.new_value)
        if change.field == "role":
            self.role = UserRole(change.new_value) if change.new_value else None
        elif change.field == "teacher_verified":
            self.teacher_verified = bool(change.new_value)
        elif change.field == "username":
            self._profile_username = change.new_value or None
        else:
            logger.debug("Ignoring profile change for field %s", change.field)

    # --- Credential actions ---

    async def register(
        self,
        email: str,
        password: str,
        username: str | None = None,
        role: UserRole = UserRole.STUDENT,
    ) -> ActionResult[AuthSession]:
        try:
            session = await self._auth.sign_up(email, password, username=username, role=role)
        except AuthError as exc:
            return ActionResult.failure(exc)
        if session is not None and self._auth_subscription is None:
            await self.bind(session)
        return ActionResult.success(session)

    async def login(self, email: str, password: str) -> ActionResult[AuthSession]:
        try:
            session = await self._auth.sign_in_with_password(email, password)
        except AuthError as exc:
            return ActionResult.failure(exc)
        if self._auth_subscription is None:
            await self.bind(session)
        return ActionResult.success(session)

    async def logout(self) -> ActionResult[None]:
        token = self.session.access_token if self.session else None
        try:
            if token is not None:
                await self._auth.sign_out_token(token)
            else:
                await self._auth.sign_out()
        except AuthError as exc:
            return ActionResult.failure(exc)
        await self.bind(None)
        return ActionResult.success()

    # --- Internals ---

    async def _load_profile(self, user_id: str) -> None:
        try:
            profile = await self._store.get_profile(user_id)
        except PersistenceError as exc:
            logger.error("Error fetching profile: %s", exc.message)
            profile = None
        if profile is None:
            self.role = None
            self.teacher_verified = False
            self._profile_username = None
            return
        self.role = profile.role
        self.teacher_verified = profile.teacher_verified
        self._profile_username = profile.username

    def _subscribe_profile(self, user_id: str) -> None:
        self._remove_profile_subscription()
        self._profile_subscription = self._store.subscribe_profile(user_id, self.apply_profile_change)

    def _remove_profile_subscription(self) -> None:
        if self._profile_subscription is not None:
            self._profile_subscription.unsubscribe()
            self._profile_subscription = None

    def _clear_profile(self) -> None:
        self.role = None
        self.teacher_verified = False
        self._profile_username = None
        self._remove_profile_subscription()
