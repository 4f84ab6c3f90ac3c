"""
Fork-join helpers for the two parallel regions of the engine (distance rows
and neighbor sets) and for batch evaluations that run one task per thread.

Work is split into contiguous index blocks; each task only writes to its
own block. Tasks never raise into joblib: every outcome is collected first
and the first failure is re-raised as a ComputeWorkerError afterwards.
"""

from joblib import Parallel, delayed
from typing import Any, Callable, List, Optional, Tuple

from hubness_modules.errors import ComputeWorkerError

# --- Type Aliases ---
Block = Tuple[int, int]  # [start, end)
Outcome = Tuple[Any, Optional[BaseException]]


def partition_range(n: int, num_workers: int) -> List[Block]:
    """
    Splits range(n) into contiguous blocks, one per worker.
    Every block has n // num_workers items; the last one also takes the remainder.
    """
    if n <= 0:
        return []
    num_workers = max(1, min(num_workers, n))
    chunk = n // num_workers
    blocks: List[Block] = []
    for w in range(num_workers):
        start = w * chunk
        end = n if w == num_workers - 1 else start + chunk
        blocks.append((start, end))
    return blocks


def _guarded(task: Callable[[], Any]) -> Outcome:
    try:
        return task(), None
    except Exception as exc:
        return None, exc


def run_tasks(tasks: List[Callable[[], Any]], num_threads: int = 1,
              labels: Optional[List[str]] = None) -> List[Any]:
    """
    Runs the zero-argument callables and returns their results in order.

    With num_threads > 1 the tasks run on a joblib threading pool. All tasks
    are joined before any failure is reported, then the first failure is
    raised as ComputeWorkerError with the original exception chained.
    """
    if num_threads <= 1 or len(tasks) <= 1:
        outcomes = [_guarded(task) for task in tasks]
    else:
        outcomes = Parallel(n_jobs=num_threads, backend='threading')(
            delayed(_guarded)(task) for task in tasks
        )

    failures = [(idx, exc) for idx, (_, exc) in enumerate(outcomes) if exc is not None]
    if failures:
        idx, exc = failures[0]
        label = labels[idx] if labels is not None else f"task {idx}"
        raise ComputeWorkerError(
            f"Worker for {label} failed: {exc}",
            failed_tasks=[labels[i] if labels is not None else i for i, _ in failures],
        ) from exc

    return [result for result, _ in outcomes]


def run_blocks(block_func: Callable[[int, int], Any], n: int, num_threads: int = 1) -> List[Any]:
    """Runs block_func(start, end) over the contiguous partition of range(n)."""
    blocks = partition_range(n, num_threads)
    tasks = [lambda s=start, e=end: block_func(s, e) for start, end in blocks]
    labels = [f"block [{start}, {end})" for start, end in blocks]
    return run_tasks(tasks, num_threads, labels)
