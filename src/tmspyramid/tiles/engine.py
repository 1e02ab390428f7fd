"""In-process execution engine: parallel map, shuffle by partition, broadcast."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")
K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True)
class Broadcast(Generic[T]):
    """Read-only handle to a value shared with every worker."""

    value: T


def coerce_jobs(jobs: int, item_count: int) -> int:
    """Normalize a requested worker count; 0 means one per CPU."""
    jobs = int(jobs)
    if jobs < 0:
        raise ValueError("jobs must be >= 0")
    if item_count <= 0:
        return 1
    if jobs == 0:
        cpu_count = os.cpu_count() or 1
        return max(1, min(cpu_count, item_count))
    return min(jobs, item_count)


class LocalEngine:
    """Run pipeline stages on a thread pool inside the current process."""

    def __init__(self, jobs: int = 0) -> None:
        if int(jobs) < 0:
            raise ValueError("jobs must be >= 0")
        self.jobs = int(jobs)

    def broadcast(self, value: T) -> Broadcast[T]:
        return Broadcast(value)

    def parallel_map(self, items: Iterable[T], func: Callable[[T], R]) -> list[R]:
        """Apply ``func`` to every item; results keep the input order.

        The first failing item's exception propagates once the pool drains.
        """
        work = list(items)
        workers = coerce_jobs(self.jobs, len(work))
        if workers == 1 or len(work) <= 1:
            return [func(item) for item in work]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(func, item) for item in work]
            return [future.result() for future in futures]

    def group_by_partition(
        self,
        items: Iterable[T],
        key_fn: Callable[[T], K],
        partition_fn: Callable[[K], int],
        num_partitions: int,
    ) -> list[dict[K, list[T]]]:
        """Route items to partitions by key and group items sharing a key."""
        partitions: list[dict[K, list[T]]] = [{} for _ in range(num_partitions)]
        for item in items:
            key = key_fn(item)
            index = partition_fn(key)
            if not 0 <= index < num_partitions:
                raise ValueError(f"Partition index {index} out of range for key {key!r}")
            partitions[index].setdefault(key, []).append(item)
        return partitions

