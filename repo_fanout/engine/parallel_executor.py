"""
Bounded parallel execution over a repository set.

A stage hands the executor one coroutine per repository. At most
``max_workers`` of them run at once; the pool size is the only concurrency
control exposed to the operator. There are no dependencies between items:
stage ordering is enforced by running stages as separate invocations.

Error Handling:
    - A failing item never stops the others
    - Each failure is captured in its TaskResult instead of being raised
    - Cancellation (Ctrl-C) is not captured and stops the whole batch

Example:
    >>> executor = ParallelExecutor(max_workers=4)
    >>> results = await executor.map(repos, process_repo, key=lambda r: r.name)
    >>> failures = [r for r in results if not r.success]
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

log = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass
class TaskResult(Generic[ResultT]):
    """Result of processing one item.

    Attributes:
        key: Identifier of the item (the repository name for stages).
        success: True if the coroutine returned without raising.
        result: Return value of the coroutine (if successful).
        error: Exception raised by the coroutine (if unsuccessful).
        execution_time: Wall-clock seconds spent, including time waiting
            on rate limiters.
    """

    key: str
    success: bool
    result: ResultT | None = None
    error: Exception | None = None
    execution_time: float = 0.0


class ParallelExecutor:
    """Run one coroutine per item with a concurrency limit.

    Attributes:
        max_workers: Maximum number of items processed concurrently.
    """

    def __init__(self, max_workers: int = 10) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers

    async def map(
        self,
        items: Sequence[ItemT],
        func: Callable[[ItemT], Awaitable[ResultT]],
        key: Callable[[ItemT], str] = str,
    ) -> list[TaskResult[ResultT]]:
        """Process every item, at most ``max_workers`` at a time.

        Args:
            items: Items to process. Each is processed exactly once.
            func: Coroutine function applied to each item.
            key: Names an item in results and logs.

        Returns:
            One TaskResult per item, in completion order.
        """
        semaphore = asyncio.Semaphore(self.max_workers)
        results: list[TaskResult[ResultT]] = []

        async def _run(item: ItemT) -> None:
            async with semaphore:
                results.append(await self._execute(key(item), func, item))

        log.info("parallel_execution_started", total=len(items), max_workers=self.max_workers)
        await asyncio.gather(*(_run(item) for item in items))
        log.info(
            "parallel_execution_complete",
            total=len(items),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    async def _execute(
        self,
        item_key: str,
        func: Callable[[Any], Awaitable[ResultT]],
        item: Any,
    ) -> TaskResult[ResultT]:
        start_time = time.monotonic()
        try:
            value = await func(item)
        except Exception as e:
            log.error("task_failed", key=item_key, error=str(e), exc_info=True)
            return TaskResult(
                key=item_key,
                success=False,
                error=e,
                execution_time=time.monotonic() - start_time,
            )

        return TaskResult(
            key=item_key,
            success=True,
            result=value,
            execution_time=time.monotonic() - start_time,
        )
