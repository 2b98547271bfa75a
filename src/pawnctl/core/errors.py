"""
Shared exception types.

``DependencyError`` is the layer-boundary wrapper: whenever a failure
crosses from one component into another it is re-raised with the
offending dependency's identity, so a failure deep in the graph still
names the package that caused it.
"""

from __future__ import annotations

from typing import Any


class PawnctlError(Exception):
    """Base class for all pawnctl errors."""


class DependencyError(PawnctlError):
    """
    Raised when a single dependency cannot be resolved.

    Attributes:
        dependency: Human-readable dependency identity.
        message: Human-readable error message.
    """

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        self.message = message
        super().__init__(f"Dependency '{dependency}': {message}")

    @classmethod
    def wrap(cls, dependency: Any, error: BaseException) -> "DependencyError":
        """Wrap ``error`` with the identity of ``dependency``."""
        if isinstance(error, DependencyError) and error.dependency == str(dependency):
            return error
        return cls(str(dependency), str(error))


class OperationCancelled(PawnctlError):
    """Raised when a deadline expires or the caller cancels."""
