from __future__ import annotations

import asyncio

import pytest

from oslogin_ssh import REGISTRATION_LOCK, RegistrationSerializer
from oslogin_ssh.infra.lock import named_lock


class TestNamedLock:
    async def test_same_token_shares_lock(self):
        assert RegistrationSerializer("shared-token")._lock is named_lock("shared-token")
        assert RegistrationSerializer("shared-token")._lock is RegistrationSerializer("shared-token")._lock

    def test_default_token(self):
        assert REGISTRATION_LOCK.token == "key"

    async def test_isolated_has_private_lock(self):
        assert RegistrationSerializer.isolated()._lock is not named_lock("key")

    def test_each_loop_gets_its_own_lock(self):
        async def current() -> asyncio.Lock:
            return named_lock("key")

        assert asyncio.run(current()) is not asyncio.run(current())

    def test_default_lock_survives_contention_across_loops(self):
        async def contended_batch() -> list[int]:
            order: list[int] = []

            async def write(i: int) -> None:
                await asyncio.sleep(0.01)
                order.append(i)

            await asyncio.gather(*(REGISTRATION_LOCK.with_lock(write, i) for i in range(3)))
            return order

        assert asyncio.run(contended_batch()) == [0, 1, 2]
        assert asyncio.run(contended_batch()) == [0, 1, 2]


class TestWithLock:
    async def test_returns_result(self, serializer: RegistrationSerializer):
        async def work(a: int, *, b: int) -> int:
            return a + b

        assert await serializer.with_lock(work, 1, b=2) == 3

    async def test_mutual_exclusion(self, serializer: RegistrationSerializer):
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(serializer.with_lock(work) for _ in range(8)))
        assert peak == 1

    async def test_fifo_order(self, serializer: RegistrationSerializer):
        order: list[int] = []

        async def work(i: int) -> None:
            await asyncio.sleep(0.001)
            order.append(i)

        tasks = []
        for i in range(5):
            tasks.append(asyncio.create_task(serializer.with_lock(work, i)))
            await asyncio.sleep(0)
        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3, 4]

    async def test_failure_propagates_and_releases(self, serializer: RegistrationSerializer):
        async def boom() -> None:
            raise ValueError("upstream 500")

        with pytest.raises(ValueError, match="upstream 500"):
            await serializer.with_lock(boom)
        assert not serializer.locked

        async def ok() -> str:
            return "ok"

        assert await serializer.with_lock(ok) == "ok"

    async def test_cancelled_holder_drains_before_release(self, serializer: RegistrationSerializer):
        finished = asyncio.Event()
        overlapped = False

        async def slow_write() -> None:
            await asyncio.sleep(0.05)
            finished.set()

        async def next_write() -> None:
            nonlocal overlapped
            overlapped = not finished.is_set()

        holder = asyncio.create_task(serializer.with_lock(slow_write))
        await asyncio.sleep(0.01)
        waiter = asyncio.create_task(serializer.with_lock(next_write))
        holder.cancel()

        with pytest.raises(asyncio.CancelledError):
            await holder
        await waiter
        assert finished.is_set()
        assert not overlapped
        assert not serializer.locked
