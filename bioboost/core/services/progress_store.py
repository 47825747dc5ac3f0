"""Local progress counters with derived percentage and level."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock

from bioboost.constants.progress_constants import (
    GAME_WEIGHT,
    INTERMEDIATE_THRESHOLD,
    LEVEL_BEGINNER,
    LEVEL_INTERMEDIATE,
    LEVEL_MASTER,
    MASTER_THRESHOLD,
    MAX_PERCENT,
    PROGRESS_KINDS,
    QUIZ_WEIGHT,
)
from bioboost.core.models import ProgressRecord

logger = logging.getLogger(__name__)


class ProgressStore:
    """Per-learner ``{quizzes, games}`` counters persisted as a JSON document.

    Pass ``path=None`` to keep progress in memory only.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._lock = Lock()
        self._records: dict[str, ProgressRecord] = self._load()

    def get(self, learner_id: str) -> ProgressRecord:
        with self._lock:
            record = self._records.get(learner_id, ProgressRecord())
            return ProgressRecord(quizzes=record.quizzes, games=record.games)

    def update_progress(self, learner_id: str, kind: str, value: int) -> ProgressRecord:
        if kind not in PROGRESS_KINDS:
            raise ValueError(f"Unknown progress kind '{kind}'.")
        if value < 0:
            raise ValueError("Progress counters cannot be negative.")
        with self._lock:
            record = self._records.setdefault(learner_id, ProgressRecord())
            if getattr(record, kind) == value:
                return ProgressRecord(quizzes=record.quizzes, games=record.games)
            setattr(record, kind, value)
            self._save()
            return ProgressRecord(quizzes=record.quizzes, games=record.games)

    def mark_quiz_passed(self, learner_id: str) -> ProgressRecord:
        return self.update_progress(learner_id, "quizzes", 1)

    def mark_game_completed(self, learner_id: str) -> ProgressRecord:
        return self.update_progress(learner_id, "games", 1)

    def total_percent(self, learner_id: str) -> int:
        record = self.get(learner_id)
        quizzes_percent = min(record.quizzes, 1) * QUIZ_WEIGHT
        games_percent = min(record.games, 1) * GAME_WEIGHT
        return min(quizzes_percent + games_percent, MAX_PERCENT)

    def level(self, learner_id: str) -> str:
        total = self.total_percent(learner_id)
        if total < INTERMEDIATE_THRESHOLD:
            return LEVEL_BEGINNER
        if total < MASTER_THRESHOLD:
            return LEVEL_INTERMEDIATE
        return LEVEL_MASTER

    def _load(self) -> dict[str, ProgressRecord]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable progress file %s: %s", self._path, exc)
            return {}
        records: dict[str, ProgressRecord] = {}
        for learner_id, counters in document.items():
            if not isinstance(counters, dict):
                continue
            records[learner_id] = ProgressRecord(
                quizzes=int(counters.get("quizzes", 0)),
                games=int(counters.get("games", 0)),
            )
        return records

    def _save(self) -> None:
        if self._path is None:
            return
        document = {learner_id: record.to_dict() for learner_id, record in self._records.items()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(document, indent=2), encoding="utf-8")
