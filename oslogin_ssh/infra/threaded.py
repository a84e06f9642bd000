"""Dispatch of blocking client calls to a dedicated thread pool."""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

R = TypeVar("R")


class ThreadPoolRunner:
    """Runs sync Google API calls off the event loop.

    The call keeps running in its worker thread if the awaiting task is
    cancelled; only the await is abandoned.
    """

    def __init__(self, workers: int, *, name: str = "gcp-io") -> None:
        self.workers = workers
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)

    async def run(self, fn: Callable[..., R], *args: object, **kwargs: object) -> R:
        loop = asyncio.get_running_loop()
        if kwargs:
            return await loop.run_in_executor(self._executor, lambda: fn(*args, **kwargs))
        return await loop.run_in_executor(self._executor, fn, *args)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
