from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

import anyio
from anyio import to_thread

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from anyio import CancelScope

LOG = logging.getLogger("cloud_proxy.tasks")

T = TypeVar("T")


async def run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    """Run a blocking SDK call in a worker thread."""
    return await to_thread.run_sync(partial(func, *args, **kwargs))


class TaskFailure(Exception):
    """First failure of a bounded task group."""

    def __init__(self, index: int, error: Exception):
        super().__init__(f"task {index} failed: {error}")
        self.index = index
        self.error = error


async def run_bounded(
    jobs: Sequence[Callable[[], Awaitable[T]]],
    concurrency: int,
) -> list[T]:
    """Run ``jobs`` with at most ``concurrency`` of them in flight.

    Jobs are dispatched in batches: up to ``concurrency`` are started, all of
    them are awaited, then the next batch is started. The first failing job
    cancels its batch and stops further dispatch; once every dispatched job has
    returned a :class:`TaskFailure` is raised for it. Errors raised after that
    first one are discarded.

    Returns:
        The job results, in the order of ``jobs`` (not completion order).
    """
    if concurrency < 1:
        msg = f"concurrency must be at least 1, got {concurrency}"
        raise ConfigurationError(msg)

    results: list[Any] = [None] * len(jobs)
    failure: TaskFailure | None = None

    async def worker(index: int, scope: CancelScope) -> None:
        nonlocal failure
        try:
            results[index] = await jobs[index]()
        except Exception as error:
            if failure is None:
                failure = TaskFailure(index, error)
                scope.cancel()
            else:
                LOG.debug("discarding error from task %d: %s", index, error)

    for start in range(0, len(jobs), concurrency):
        async with anyio.create_task_group() as group:
            for index in range(start, min(start + concurrency, len(jobs))):
                group.start_soon(worker, index, group.cancel_scope)
        if failure is not None:
            raise failure

    return results
