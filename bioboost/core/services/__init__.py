"""Services behind the quiz manager: storage, auth, sessions, progress and authoring."""

from .attempt_session import AttemptSession, AttemptState
from .auth_provider import AuthProvider, InMemoryAuthProvider, SupabaseAuthProvider
from .data_store import DataStoreGateway, InMemoryDataStore, PostgrestDataStore, Subscription
from .progress_store import ProgressStore
from .quiz_authoring import QuizAuthoringService
from .session_context import SessionContext

__all__ = [
    "AttemptSession",
    "AttemptState",
    "AuthProvider",
    "DataStoreGateway",
    "InMemoryAuthProvider",
    "InMemoryDataStore",
    "PostgrestDataStore",
    "ProgressStore",
    "QuizAuthoringService",
    "SessionContext",
    "Subscription",
    "SupabaseAuthProvider",
]
