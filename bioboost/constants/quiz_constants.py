"""Quiz-related constants shared across the engine and API layers."""

MAX_ATTEMPTS: int = 3
COOLDOWN_SECONDS: int = 5 * 60
DEFAULT_PASSING_SCORE: int = 7
MIN_PASSING_SCORE: int = 1
MIN_MCQ_OPTIONS: int = 2
TRUE_FALSE_OPTIONS: tuple[str, str] = ("true", "false")
