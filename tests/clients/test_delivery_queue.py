"""Tests for the shared delivery queue."""

from __future__ import annotations

import asyncio

import pytest

from feed_courier.clients import DeliveryQueue


class TestDeliveryQueue:
    """FIFO ordering, spacing and error isolation."""

    @pytest.mark.asyncio
    async def test_runs_jobs_in_submission_order(self):
        """Jobs run one at a time in the order they were submitted."""

        queue = DeliveryQueue(0)
        order: list[int] = []

        def make_job(number: int):
            async def job() -> int:
                order.append(number)
                await asyncio.sleep(0)
                return number

            return job

        results = await asyncio.gather(*(queue.submit(make_job(number)) for number in range(5)))

        assert order == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_waits_for_minimum_interval_between_jobs(self, sleeper):
        """The drain task waits out the remainder of the interval before each later job."""

        queue = DeliveryQueue(10, sleep=sleeper)

        async def job() -> None:
            return None

        await asyncio.gather(*(queue.submit(job) for _ in range(3)))

        assert len(sleeper.calls) == 2
        assert all(9 < delay <= 10 for delay in sleeper.calls)

    @pytest.mark.asyncio
    async def test_real_spacing_between_starts(self):
        """Consecutive job starts are at least the interval apart."""

        queue = DeliveryQueue(0.05)
        loop = asyncio.get_running_loop()
        starts: list[float] = []

        async def job() -> None:
            starts.append(loop.time())

        await asyncio.gather(*(queue.submit(job) for _ in range(3)))

        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    @pytest.mark.asyncio
    async def test_failure_is_delivered_to_its_submitter_only(self):
        """A failing job raises for its caller and the next job still runs."""

        queue = DeliveryQueue(0)

        async def boom() -> None:
            raise RuntimeError("boom")

        async def fine() -> str:
            return "ok"

        first, second = await asyncio.gather(queue.submit(boom), queue.submit(fine), return_exceptions=True)

        assert isinstance(first, RuntimeError)
        assert second == "ok"

    @pytest.mark.asyncio
    async def test_join_waits_for_drain(self):
        """``join`` returns once every pending job has run."""

        queue = DeliveryQueue(0)
        done: list[int] = []

        async def job() -> None:
            await asyncio.sleep(0)
            done.append(1)

        tasks = [asyncio.create_task(queue.submit(job)) for _ in range(3)]
        await asyncio.sleep(0)
        await queue.join()

        assert done == [1, 1, 1]
        assert queue.pending == 0
        assert not queue.is_draining
        await asyncio.gather(*tasks)
