"""Application entry point for the BioBoost quiz service."""

from __future__ import annotations

import asyncio
import socket
import sys

from bioboost.config import BACKEND_SUPABASE, Settings, settings
from bioboost.core.errors import ConfigurationError, QuizEngineError
from bioboost.core.quiz_importer import QuizImportError, load_quiz_from_file, seed_quiz
from bioboost.core.quiz_manager import QuizManager
from bioboost.core.services.auth_provider import AuthProvider, InMemoryAuthProvider, SupabaseAuthProvider
from bioboost.core.services.data_store import DataStoreGateway, InMemoryDataStore, PostgrestDataStore
from bioboost.core.services.progress_store import ProgressStore
from bioboost.core.services.quiz_authoring import QuizAuthoringService
from bioboost.server.api_server import start_api_server
from bioboost.utils.logging_config import configure_logging


def _determine_learner_url(port: int) -> str:
    """Best-effort determination of the local IP for the learner-facing URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def build_services(config: Settings) -> tuple[QuizManager, AuthProvider, DataStoreGateway]:
    store: DataStoreGateway
    auth: AuthProvider
    if config.data_backend == BACKEND_SUPABASE:
        url, key = config.supabase_url or "", config.supabase_anon_key or ""
        store = PostgrestDataStore(url, key)
        auth = SupabaseAuthProvider(url, key)
    else:
        store = InMemoryDataStore()
        auth = InMemoryAuthProvider(store)
    progress = ProgressStore(config.progress_path)
    return QuizManager(store, progress), auth, store


async def _seed(config: Settings, auth: AuthProvider, store: DataStoreGateway) -> None:
    if config.seed_quiz_path is None or not config.seed_quiz_path.exists():
        return
    imported = load_quiz_from_file(config.seed_quiz_path)
    await seed_quiz(
        auth,
        QuizAuthoringService(store),
        imported,
        config.seed_teacher_email,
        config.seed_teacher_password,
    )


def main() -> None:
    """Initialize logging, build the backend and serve the API until interrupted."""
    logger = configure_logging(settings.log_level)
    logger.info("Starting BioBoost quiz service...")

    try:
        settings.validate()
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc.message)
        sys.exit(2)

    quiz_manager, auth, store = build_services(settings)
    if settings.data_backend != BACKEND_SUPABASE:
        try:
            asyncio.run(_seed(settings, auth, store))
        except (QuizImportError, QuizEngineError) as exc:
            logger.error("Could not seed the demo quiz: %s", exc)

    thread = start_api_server(
        quiz_manager=quiz_manager,
        auth=auth,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
    logger.info("Learner API available at %s", _determine_learner_url(settings.port))
    try:
        thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
