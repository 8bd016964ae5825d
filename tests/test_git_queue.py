"""Tests for per-repository git operation serialization."""

import asyncio

import pytest

from grove.workspace.git_queue import GitOperationQueue


@pytest.fixture
def queue():
    return GitOperationQueue()


class TestOrdering:
    async def test_same_repo_runs_in_order(self, queue, tmp_path):
        events: list[str] = []

        def op(name: str, delay: float):
            async def _run():
                events.append(f"start {name}")
                await asyncio.sleep(delay)
                events.append(f"end {name}")
                return name

            return _run

        results = await asyncio.gather(
            queue.shared(tmp_path, op("a", 0.05)),
            queue.shared(tmp_path, op("b", 0.0)),
            queue.shared(tmp_path, op("c", 0.01)),
        )
        assert results == ["a", "b", "c"]
        assert events == ["start a", "end a", "start b", "end b", "start c", "end c"]

    async def test_different_repos_overlap(self, queue, tmp_path):
        gate = asyncio.Event()
        started: list[str] = []

        async def waits_for_gate():
            started.append("a")
            await gate.wait()

        async def opens_gate():
            started.append("b")
            gate.set()

        await asyncio.wait_for(
            asyncio.gather(
                queue.shared(tmp_path / "one", waits_for_gate),
                queue.shared(tmp_path / "two", opens_gate),
            ),
            timeout=2,
        )
        assert sorted(started) == ["a", "b"]

    async def test_symlinked_path_shares_key(self, queue, tmp_path):
        real = tmp_path / "repo"
        real.mkdir()
        (tmp_path / "alias").symlink_to(real)
        assert queue.key_for(tmp_path / "alias") == queue.key_for(real)


class TestFailureIsolation:
    async def test_failure_does_not_block_successors(self, queue, tmp_path):
        async def boom():
            raise RuntimeError("lock error")

        async def fine():
            return "ok"

        first = asyncio.create_task(queue.shared(tmp_path, boom))
        second = asyncio.create_task(queue.shared(tmp_path, fine))

        with pytest.raises(RuntimeError, match="lock error"):
            await first
        assert await second == "ok"

    async def test_cancelled_waiter_keeps_chain(self, queue, tmp_path):
        release = asyncio.Event()
        order: list[str] = []

        async def slow():
            await release.wait()
            order.append("slow")

        async def never():
            order.append("never")

        async def last():
            order.append("last")

        t1 = asyncio.create_task(queue.shared(tmp_path, slow))
        await asyncio.sleep(0)
        t2 = asyncio.create_task(queue.shared(tmp_path, never))
        await asyncio.sleep(0)
        t3 = asyncio.create_task(queue.shared(tmp_path, last))
        await asyncio.sleep(0)

        t2.cancel()
        await asyncio.sleep(0.01)
        assert order == []  # last still waits for slow

        release.set()
        await asyncio.gather(t1, t3)
        with pytest.raises(asyncio.CancelledError):
            await t2
        assert order == ["slow", "last"]


class TestBookkeeping:
    async def test_busy_while_running_and_idle_after(self, queue, tmp_path):
        release = asyncio.Event()

        async def hold():
            await release.wait()

        task = asyncio.create_task(queue.shared(tmp_path, hold))
        await asyncio.sleep(0)
        assert queue.is_busy(tmp_path)
        assert queue.active_keys == [queue.key_for(tmp_path)]

        release.set()
        await task
        assert not queue.is_busy(tmp_path)
        assert queue.active_keys == []

    async def test_local_bypasses_chain(self, queue, tmp_path):
        release = asyncio.Event()

        async def hold():
            await release.wait()

        async def query():
            return "answer"

        task = asyncio.create_task(queue.shared(tmp_path, hold))
        await asyncio.sleep(0)
        assert await asyncio.wait_for(queue.local(query), timeout=1) == "answer"
        release.set()
        await task
