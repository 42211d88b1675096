"""Tests for repo_fanout/engine/parallel_executor.py."""

import asyncio

import pytest

from repo_fanout.engine.parallel_executor import ParallelExecutor


class TestParallelExecutor:
    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError, match="max_workers"):
            ParallelExecutor(max_workers=0)

    @pytest.mark.asyncio
    async def test_processes_every_item(self):
        executor = ParallelExecutor(max_workers=3)

        async def double(n: int) -> int:
            return n * 2

        results = await executor.map([1, 2, 3, 4], double)

        assert sorted(r.result for r in results) == [2, 4, 6, 8]
        assert all(r.success for r in results)
        assert {r.key for r in results} == {"1", "2", "3", "4"}

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        executor = ParallelExecutor(max_workers=2)
        active = 0
        peak = 0

        async def track(_: int) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await executor.map(list(range(8)), track)

        assert peak == 2

    @pytest.mark.asyncio
    async def test_failure_is_captured_not_raised(self):
        executor = ParallelExecutor(max_workers=4)

        async def maybe_fail(name: str) -> str:
            if name == "bad":
                raise RuntimeError("boom")
            return name.upper()

        results = await executor.map(["good", "bad", "fine"], maybe_fail, key=lambda n: f"repo-{n}")

        by_key = {r.key: r for r in results}
        assert by_key["repo-bad"].success is False
        assert isinstance(by_key["repo-bad"].error, RuntimeError)
        assert by_key["repo-good"].result == "GOOD"
        assert by_key["repo-fine"].success is True

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def never(_: int) -> None:
            raise AssertionError("not called")

        assert await ParallelExecutor().map([], never) == []
