"""
Tests for the keyed lock and single-flight primitives.
"""

import asyncio
import pytest

from teamledger.concurrency import KeyedLock, SingleFlight


class TestKeyedLock:
    """One lock per key, dropped when idle."""

    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        """Holders of one key run one at a time."""
        locks = KeyedLock()
        active, peak = 0, 0

        async def worker():
            nonlocal active, peak
            async with locks.hold(("team", "key")):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        """Different keys never wait on each other."""
        locks = KeyedLock()
        entered = asyncio.Event()

        async def first():
            async with locks.hold("a"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def second():
            async with locks.hold("b"):
                entered.set()

        await asyncio.gather(first(), second())
        assert entered.is_set()

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        """Nothing lingers once every holder is done."""
        locks = KeyedLock()
        async with locks.hold("a"):
            assert locks.locked("a")
            assert len(locks) == 1
        assert not locks.locked("a")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        """An exception inside the block releases the lock."""
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("a"):
                raise RuntimeError("boom")
        assert len(locks) == 0


class TestSingleFlight:
    """Concurrent calls for one key share a result."""

    @pytest.mark.asyncio
    async def test_followers_share_leader_result(self):
        """The function runs once for overlapping callers."""
        flights = SingleFlight()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return calls

        results = await asyncio.gather(*(flights.do("item", work) for _ in range(3)))
        assert results == [1, 1, 1]
        assert not flights.in_flight("item")

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self):
        """Once finished, the next call starts a new flight."""
        flights = SingleFlight()
        calls = []

        async def work():
            calls.append(1)
            return len(calls)

        assert await flights.do("item", work) == 1
        assert await flights.do("item", work) == 2

    @pytest.mark.asyncio
    async def test_errors_reach_every_caller(self):
        """A failing leader fails its followers too, then clears the key."""
        flights = SingleFlight()

        async def work():
            await asyncio.sleep(0.01)
            raise ValueError("nope")

        results = await asyncio.gather(
            flights.do("item", work),
            flights.do("item", work),
            return_exceptions=True,
        )
        assert all(isinstance(r, ValueError) for r in results)
        assert not flights.in_flight("item")

    @pytest.mark.asyncio
    async def test_cancelled_follower_does_not_cancel_leader(self):
        """Followers wait through a shield."""
        flights = SingleFlight()
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "done"

        leader = asyncio.ensure_future(flights.do("item", work))
        await asyncio.sleep(0)
        follower = asyncio.ensure_future(flights.do("item", work))
        await asyncio.sleep(0)
        follower.cancel()
        release.set()

        assert await leader == "done"
        assert follower.cancelled()
