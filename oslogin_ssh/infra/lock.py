"""Process-wide serialization of key registrations.

OS Login's key-set mutation is not safe under concurrent writers, so every
registration issued from this process funnels through one named lock.
"""

from __future__ import annotations

import asyncio
import contextlib
import weakref
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

T = TypeVar("T")

DEFAULT_TOKEN = "key"

_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


def named_lock(token: str) -> asyncio.Lock:
    """Return the lock registered under ``token`` for the running loop.

    asyncio locks bind to the first loop that waits on them, so each loop
    gets its own registry.
    """
    registry = _locks.setdefault(asyncio.get_running_loop(), {})
    lock = registry.get(token)
    if lock is None:
        lock = registry[token] = asyncio.Lock()
    return lock


class RegistrationSerializer:
    """Mutual exclusion for identity-provider writes.

    Instances built with the same token share one lock per event loop.
    ``isolated()`` returns an instance with a private lock, which keeps
    tests from interfering with each other.

    Waiters are woken in arrival order (asyncio.Lock is FIFO), and the lock
    is released whether ``fn`` returns, raises or is cancelled.
    """

    __slots__ = ("_log", "_private", "token")

    def __init__(self, token: str = DEFAULT_TOKEN, *, lock: asyncio.Lock | None = None) -> None:
        self.token = token
        self._private = lock
        self._log = logger.bind(component="lock", token=token)

    @property
    def _lock(self) -> asyncio.Lock:
        return self._private if self._private is not None else named_lock(self.token)

    @classmethod
    def isolated(cls, token: str = DEFAULT_TOKEN) -> RegistrationSerializer:
        return cls(token, lock=asyncio.Lock())

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def with_lock(
        self, fn: Callable[..., Awaitable[T]], *args: object, **kwargs: object,
    ) -> T:
        if self._lock.locked():
            self._log.debug("Waiting for registration lock")
        async with self._lock:
            self._log.trace("Registration lock acquired")
            write = asyncio.ensure_future(fn(*args, **kwargs))
            try:
                return await asyncio.shield(write)
            except asyncio.CancelledError:
                # The provider call keeps running in its thread; the lock is
                # held until it settles so no second write can overlap it.
                self._log.debug("Cancelled during registration, draining in-flight write")
                with contextlib.suppress(Exception):
                    await write
                raise
            finally:
                self._log.trace("Registration lock released")


REGISTRATION_LOCK = RegistrationSerializer(DEFAULT_TOKEN)
