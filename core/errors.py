"""Error taxonomy for the persistence engine.

Validation errors are raised before any write is attempted. Store failures
surface as BackendError. Custom-field write failures are not raised at all:
they travel back as FieldWriteFailure values inside a Result.
"""

from dataclasses import dataclass
from typing import Optional


class EngineError(RuntimeError):
    pass


class BackendError(EngineError):
    """Backing store or transport failure carrying the upstream message."""


class NotFoundError(EngineError):
    def __init__(self, message: str, task_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class ValidationError(EngineError, ValueError):
    pass


class SelfReferenceError(ValidationError):
    def __init__(self, task_id: str) -> None:
        super().__init__("Cannot create relationship to self")
        self.task_id = task_id


class CycleError(ValidationError):
    def __init__(self, from_task_id: str, to_task_id: str) -> None:
        super().__init__("Cannot create relationship: would create circular dependency")
        self.from_task_id = from_task_id
        self.to_task_id = to_task_id


@dataclass(frozen=True)
class FieldWriteFailure:
    task_id: str
    field_name: str
    reason: str

    def __str__(self) -> str:
        return f"{self.task_id}: {self.field_name} - {self.reason}"


__all__ = [
    "EngineError",
    "BackendError",
    "NotFoundError",
    "ValidationError",
    "SelfReferenceError",
    "CycleError",
    "FieldWriteFailure",
]
