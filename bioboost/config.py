"""Environment-driven runtime settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from bioboost.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from bioboost.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

BACKEND_MEMORY = "memory"
BACKEND_SUPABASE = "supabase"

_DEFAULT_SEED_PATH = Path(__file__).resolve().parent / "data" / "krebs_cycle_quiz.txt"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Runtime settings read from ``BIOBOOST_*`` environment variables."""

    def __init__(self) -> None:
        # Server
        self.host: str = os.getenv("BIOBOOST_HOST", DEFAULT_HOST)
        self.port: int = int(os.getenv("BIOBOOST_PORT", str(DEFAULT_PORT)))
        self.debug: bool = _env_bool("BIOBOOST_DEBUG")
        self.log_level: str = os.getenv("BIOBOOST_LOG_LEVEL", "DEBUG" if self.debug else "INFO").upper()

        # Data backend
        self.data_backend: str = os.getenv("BIOBOOST_DATA_BACKEND", BACKEND_MEMORY).strip().lower()
        self.supabase_url: str | None = os.getenv("SUPABASE_URL") or None
        self.supabase_anon_key: str | None = os.getenv("SUPABASE_ANON_KEY") or None

        # Local device storage
        self.progress_path: Path = Path(
            os.getenv("BIOBOOST_PROGRESS_PATH", str(Path.home() / ".bioboost" / "progress.json"))
        )

        # Seeding for the in-memory backend
        seed = os.getenv("BIOBOOST_SEED_QUIZ_PATH", str(_DEFAULT_SEED_PATH))
        self.seed_quiz_path: Path | None = Path(seed) if seed else None
        self.seed_teacher_email: str = os.getenv("BIOBOOST_SEED_TEACHER_EMAIL", "teacher@bioboost.local")
        self.seed_teacher_password: str = os.getenv("BIOBOOST_SEED_TEACHER_PASSWORD", "krebs-cycle")

        if self.data_backend == BACKEND_SUPABASE and not (self.supabase_url and self.supabase_anon_key):
            logger.warning("Missing SUPABASE_URL or SUPABASE_ANON_KEY for the supabase backend")

    def validate(self) -> None:
        """Raise ``ConfigurationError`` when the selected backend cannot be built."""
        if self.data_backend not in {BACKEND_MEMORY, BACKEND_SUPABASE}:
            raise ConfigurationError(f"Unknown data backend '{self.data_backend}'.")
        if self.data_backend == BACKEND_SUPABASE and not (self.supabase_url and self.supabase_anon_key):
            raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the supabase backend.")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Port {self.port} is out of range.")


settings = Settings()
