"""
Deadline / cancellation token.

Passed down to every operation that performs network or git I/O. A
``Deadline()`` with no limit never expires unless ``cancel()`` is called.
"""

from __future__ import annotations

import time
from typing import Optional

from .errors import OperationCancelled


class Deadline:
    """A monotonic deadline with an explicit cancel switch."""

    def __init__(self, seconds: Optional[float] = None):
        self._expires_at = time.monotonic() + seconds if seconds is not None else None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def expired(self) -> bool:
        if self._cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded."""
        if self._cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def timeout(self, cap: float) -> float:
        """Timeout to hand to a blocking call, never above ``cap``."""
        left = self.remaining()
        return cap if left is None else min(cap, left)

    def check(self, what: str = "operation") -> None:
        """
        Raise if the deadline has passed.

        Raises:
            OperationCancelled: If expired or cancelled.
        """
        if self.expired:
            raise OperationCancelled(f"{what} cancelled: deadline exceeded")
