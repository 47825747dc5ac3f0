"""Typed success/failure results returned across the facade boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from bioboost.core.errors import QuizEngineError

T = TypeVar("T")


@dataclass(slots=True)
class ActionResult(Generic[T]):
    """Outcome of a user action: either ``value`` or ``error`` is set."""

    ok: bool
    value: T | None = None
    error: QuizEngineError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "ActionResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: QuizEngineError) -> "ActionResult[T]":
        return cls(ok=False, error=error)

    @property
    def message(self) -> str | None:
        return self.error.message if self.error is not None else None
