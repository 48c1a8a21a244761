"""Order-preserving bounded parallel map over a thread pool.

Used by the importer to parse several statement files at once. Each mapper
call is one unit of work; nothing is cancelled mid-call. At most
``concurrency`` calls run at a time and only that many items are pulled from
the input ahead of completion, so large inputs are not pre-materialized.

Errors: by default the first mapper error propagates once in-flight calls
finish and not-yet-started work is cancelled. With ``stop_on_error=False``
every item runs and failures are raised together as an ``ExceptionGroup``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

MAX_CONCURRENCY = 32


def clamp_concurrency(requested: int | None, n_items: int, *, default: int = 4) -> int:
    """Resolve a worker count: ``requested`` or ``default``, capped by items and limit."""

    n = default if requested is None or requested < 1 else requested
    return max(1, min(n, n_items or 1, MAX_CONCURRENCY))


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper``; results come back in input order."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    pending: dict[Future[OutT], int] = {}

    def _top_up(pool: ThreadPoolExecutor) -> bool:
        try:
            idx, item = next(it)
        except StopIteration:
            return False
        pending[pool.submit(mapper, item)] = idx
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for _ in range(concurrency):
            if not _top_up(pool):
                break

        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            for _ in done:
                if not _top_up(pool):
                    break

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in sorted(results)]


__all__ = ["MAX_CONCURRENCY", "clamp_concurrency", "p_map"]
