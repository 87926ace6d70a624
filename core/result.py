"""Explicit success/failure container for best-effort operations.

Secondary reads (comments) and custom-field writes must not abort the caller.
Instead of each call site inventing its own empty fallback, they return a
Result whose ``value`` already holds the documented default when ``ok`` is
False, and whose ``error`` says what went wrong.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Any = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(True, value, None)

    @classmethod
    def failure(cls, error: Any, default: Optional[T] = None) -> "Result[T]":
        return cls(False, default, error)

    @classmethod
    def best_effort(cls, fn: Callable[[], T], default: T) -> "Result[T]":
        """Run ``fn``; on any Exception return a failure carrying ``default``."""
        try:
            return cls.success(fn())
        except Exception as exc:
            return cls.failure(exc, default)

    def unwrap_or(self, default: T) -> T:
        if self.ok and self.value is not None:
            return self.value
        return default


__all__ = ["Result"]
