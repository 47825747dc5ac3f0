"""Weights and thresholds used to derive overall learner progress."""

QUIZ_WEIGHT: int = 60
GAME_WEIGHT: int = 40
MAX_PERCENT: int = 100

INTERMEDIATE_THRESHOLD: int = 40
MASTER_THRESHOLD: int = 80

LEVEL_BEGINNER: str = "Beginner"
LEVEL_INTERMEDIATE: str = "Intermediate"
LEVEL_MASTER: str = "Master"

PROGRESS_KINDS: tuple[str, str] = ("quizzes", "games")
