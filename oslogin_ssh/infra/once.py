"""Compute-once cell for lazily resolved async values."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class Once(Generic[T]):
    """Async value computed at most once successfully.

    Concurrent first callers queue on the lock; only the first one runs the
    factory, the rest read the cached value. A factory that raises leaves the
    cell unresolved, so the next caller tries again.

    Example:
        >>> cell: Once[str] = Once()
        >>> host = await cell.get(lookup_host)
    """

    __slots__ = ("_lock", "_resolved", "_value")

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._resolved = False
        self._value: T | None = None

    @classmethod
    def of(cls, value: T) -> Once[T]:
        """Build a cell that is already resolved."""
        cell = cls()
        cell._value = value
        cell._resolved = True
        return cell

    @property
    def resolved(self) -> bool:
        return self._resolved

    async def get(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._resolved:
            return self._value  # type: ignore[return-value]
        async with self._lock:
            if not self._resolved:
                self._value = await factory()
                self._resolved = True
        return self._value  # type: ignore[return-value]
