"""
Deadlines for datastore calls.

A Deadline is created once for an outer operation (for example the vector
search) and narrowed with child() for nested calls (each hydration read), so
a nested call never outlives the operation that issued it.
"""
import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from services.errors import OperationTimeoutError

T = TypeVar("T")


class Deadline:
    """
    Absolute point in (monotonic) time by which an operation must finish.
    """

    def __init__(self, expires_at: float, label: str = "operation"):
        self.expires_at = expires_at
        self.label = label

    @classmethod
    def after(cls, seconds: float, label: str = "operation") -> "Deadline":
        """
        Returns a deadline that expires `seconds` from now.
        """
        return cls(time.monotonic() + seconds, label)

    def remaining(self) -> float:
        """
        Seconds left before expiry, never negative.
        """
        return max(0.0, self.expires_at - time.monotonic())

    def remaining_ms(self) -> int:
        # statement_timeout = 0 disables the limit in PostgreSQL
        return max(1, int(self.remaining() * 1000))

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def child(self, seconds: float, label: Optional[str] = None) -> "Deadline":
        """
        Returns a deadline `seconds` from now, clipped to this one.
        """
        return Deadline(
            min(self.expires_at, time.monotonic() + seconds),
            label or self.label,
        )

    def __repr__(self) -> str:
        return f"Deadline(label={self.label!r}, remaining={self.remaining():.3f}s)"


async def run_with_deadline(awaitable: Awaitable[T], deadline: Deadline) -> T:
    """
    Awaits `awaitable`, cancelling it when the deadline passes.

    Raises:
        OperationTimeoutError: If the deadline expires first.
    """
    if deadline.expired:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationTimeoutError(f"{deadline.label} timed out")
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline.remaining())
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(f"{deadline.label} timed out") from exc
