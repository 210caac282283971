"""
Tests for the match queue: FIFO serialization, status reporting and reset.
"""

import asyncio

import pytest

from jobmatch.services.match.errors import MatchQueueResetError
from jobmatch.services.match.queue import MatchQueue


class TestSerializedQueue:
    """Enabled queue: one run at a time, in arrival order."""

    def test_runs_in_arrival_order(self):
        async def scenario():
            queue = MatchQueue(enabled=True)
            order = []
            running = [0]
            peak = [0]

            def make_work(name):
                async def work():
                    running[0] += 1
                    peak[0] = max(peak[0], running[0])
                    order.append(f"start {name}")
                    await asyncio.sleep(0.01)
                    order.append(f"end {name}")
                    running[0] -= 1
                    return name
                return work

            results = await asyncio.gather(*(queue.run(make_work(n)) for n in ("a", "b", "c")))
            return results, order, peak[0]

        results, order, peak = asyncio.run(scenario())
        assert results == ["a", "b", "c"]
        assert order == ["start a", "end a", "start b", "end b", "start c", "end c"]
        assert peak == 1

    def test_queue_positions_reported(self):
        async def scenario():
            queue = MatchQueue(enabled=True)
            release = asyncio.Event()
            positions = []

            async def blocker():
                await release.wait()

            async def quick():
                return None

            first = asyncio.create_task(queue.run(blocker, on_queue_position=positions.append))
            await asyncio.sleep(0)
            second = asyncio.create_task(queue.run(quick, on_queue_position=positions.append))
            await asyncio.sleep(0)
            third = asyncio.create_task(queue.run(quick, on_queue_position=positions.append))
            await asyncio.sleep(0)
            status = queue.status()
            release.set()
            await asyncio.gather(first, second, third)
            return positions, status, queue.status()

        positions, status, after = asyncio.run(scenario())
        assert positions == [0, 1, 2]
        assert status.is_enabled
        assert status.pending == 1
        assert status.size == 2
        assert status.position == 3
        assert (after.pending, after.size, after.position) == (0, 0, 0)

    def test_failing_work_releases_slot(self):
        async def scenario():
            queue = MatchQueue(enabled=True)

            async def boom():
                raise RuntimeError("boom")

            async def ok():
                return "ok"

            outcomes = await asyncio.gather(queue.run(boom), queue.run(ok), return_exceptions=True)
            return outcomes, queue.status()

        outcomes, status = asyncio.run(scenario())
        assert isinstance(outcomes[0], RuntimeError)
        assert outcomes[1] == "ok"
        assert status.pending == 0


class TestReset:
    def test_reset_rejects_waiters_only(self):
        async def scenario():
            queue = MatchQueue(enabled=True)
            release = asyncio.Event()

            async def blocker():
                await release.wait()
                return "finished"

            async def never():
                return "should not run"

            running = asyncio.create_task(queue.run(blocker))
            await asyncio.sleep(0)
            waiting = [asyncio.create_task(queue.run(never)) for _ in range(2)]
            await asyncio.sleep(0)
            dropped = queue.reset()
            release.set()
            first = await running
            rejected = await asyncio.gather(*waiting, return_exceptions=True)
            return dropped, first, rejected

        dropped, first, rejected = asyncio.run(scenario())
        assert dropped == 2
        assert first == "finished"
        assert all(isinstance(r, MatchQueueResetError) for r in rejected)

    def test_reset_empty_queue(self):
        assert MatchQueue(enabled=True).reset() == 0


class TestDisabledQueue:
    def test_runs_concurrently(self):
        async def scenario():
            queue = MatchQueue(enabled=False)
            running = [0]
            peak = [0]
            positions = []

            async def work():
                running[0] += 1
                peak[0] = max(peak[0], running[0])
                await asyncio.sleep(0.01)
                running[0] -= 1

            await asyncio.gather(*(queue.run(work, on_queue_position=positions.append) for _ in range(3)))
            return peak[0], positions

        peak, positions = asyncio.run(scenario())
        assert peak == 3
        assert positions == [0, 0, 0]

    def test_status_counts_running_work(self):
        async def scenario():
            queue = MatchQueue()
            release = asyncio.Event()

            async def work():
                await release.wait()

            task = asyncio.create_task(queue.run(work))
            await asyncio.sleep(0)
            status = queue.status()
            release.set()
            await task
            return status

        status = asyncio.run(scenario())
        assert not status.is_enabled
        assert status.pending == 1
        assert status.size == 0

    @pytest.mark.parametrize("enabled", [True, False])
    def test_set_enabled(self, enabled):
        queue = MatchQueue(enabled=not enabled)
        queue.set_enabled(enabled)
        assert queue.is_enabled is enabled
