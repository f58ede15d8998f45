"""Exception types raised by the intake flow engine."""

from __future__ import annotations

from typing import Optional


class IntakeFlowError(Exception):
    """Base class for all intake flow errors."""


class ValidationError(IntakeFlowError):
    """A condition dialog row is incomplete and cannot be persisted."""

    def __init__(self, message: str, *, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index
        self.message = message


class PersistenceError(IntakeFlowError):
    """A question store call failed."""


class ShapeError(IntakeFlowError):
    """A stored ``conditional_display`` matches neither known record shape."""


class UnknownQuestionError(IntakeFlowError, LookupError):
    """An editor operation referenced a question that is not loaded."""

    def __init__(self, question_id: str) -> None:
        super().__init__(f"Unknown question: {question_id}")
        self.question_id = question_id


__all__ = [
    "IntakeFlowError",
    "PersistenceError",
    "ShapeError",
    "UnknownQuestionError",
    "ValidationError",
]
