"""
Ok/Err results for best-effort lookups.

The override feed and the release API can fail for reasons that never
abort a resolution (offline, rate limited, malformed payload). They return
``Ok(value)`` or ``Err(reason)``; the caller logs the reason and falls back.
"""

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, func: Callable[[T], U]) -> "Ok[U]":
        return Ok(func(self.value))

    def and_then(self, func: Callable[[T], "Result[U, E]"]) -> "Result[U, E]":
        return func(self.value)


@dataclass(frozen=True)
class Err(Generic[E]):
    """A failed lookup; ``error`` is a human-readable reason."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ValueError(f"unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, func: Callable) -> "Err[E]":
        return self

    def and_then(self, func: Callable) -> "Err[E]":
        return self


Result = Union[Ok[T], Err[E]]
