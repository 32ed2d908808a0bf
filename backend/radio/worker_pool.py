from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from radio.errors import PipelineCancelled

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class TaskResult(Generic[R]):
    index: int
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_bounded(
    items: Sequence[T],
    fn: Callable[[T], R],
    *,
    concurrency: int,
    fail_fast: bool = False,
    cancel_event: threading.Event | None = None,
    name: str = "pool",
) -> list[TaskResult[R]]:
    """
    Run `fn` over `items` with at most `concurrency` calls in flight.

    Returns one slot per item, in item order. With `fail_fast`, the first
    failure stops further submissions, waits for in-flight calls and is
    raised. Without it every item runs and failures stay in their slot.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")
    results: list[TaskResult[R]] = [TaskResult(index=i) for i in range(len(items))]
    if not items:
        return results

    first_error: BaseException | None = None
    pending: dict[Future, int] = {}
    next_index = 0

    def _stop_submitting() -> bool:
        if fail_fast and first_error is not None:
            return True
        return cancel_event is not None and cancel_event.is_set()

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=name) as executor:
        while next_index < len(items) or pending:
            while next_index < len(items) and len(pending) < concurrency and not _stop_submitting():
                pending[executor.submit(fn, items[next_index])] = next_index
                next_index += 1
            if not pending:
                break
            done, _ = wait(set(pending.keys()), return_when=FIRST_COMPLETED)
            for future in done:
                index = pending.pop(future)
                try:
                    results[index].value = future.result()
                except Exception as exc:
                    results[index].error = exc
                    print(f"[{name}] task_failed index={index} error={exc}")
                    if first_error is None:
                        first_error = exc

    if cancel_event is not None and cancel_event.is_set() and next_index < len(items):
        raise PipelineCancelled(f"{name} cancelled after {next_index}/{len(items)} tasks")
    if fail_fast and first_error is not None:
        raise first_error
    return results
