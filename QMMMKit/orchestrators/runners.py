"""
Parallel execution utilities for QMMMKit package.

All parallelism is fork-join: a loop body only writes to the slot owned by
its index, and results are reduced after every worker has finished.
"""

import concurrent.futures
import math
import multiprocessing
from typing import Any, Callable, List, Optional, Tuple

class WorkerPool:
    """
    Reusable thread pool shared by the whole run.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or multiprocessing.cpu_count()
        self.executor = None

    def __enter__(self):
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.executor:
            self.executor.shutdown(wait=True)
            self.executor = None

    def map(self, func: Callable, tasks: List[Any]) -> List[Any]:
        """Apply func to every task; results in task order, errors re-raised."""
        if not self.executor:
            raise RuntimeError("WorkerPool not initialized. Use with context manager.")
        futures = [self.executor.submit(func, task) for task in tasks]
        # Barrier: wait for all before surfacing the first failure
        concurrent.futures.wait(futures)
        return [future.result() for future in futures]

def parallel_for(func: Callable[[int], Any], n: int,
                 pool: Optional[WorkerPool] = None) -> List[Any]:
    """
    Run func(i) for i in range(n), in the pool when one is available.

    Args:
        func: Loop body writing only to the slot owned by its index
        n: Number of iterations
        pool: Optional active WorkerPool

    Returns:
        Results in index order
    """
    if pool is None or pool.executor is None or pool.max_workers <= 1 or n <= 1:
        return [func(i) for i in range(n)]
    return pool.map(func, list(range(n)))

def thread_policy(n_beads: int, replica_mode: bool, n_cpus_qm: int = 1,
                  max_threads: Optional[int] = None) -> Tuple[int, int]:
    """
    Split the machine between replica-level and engine-level threads.

    Args:
        n_beads: Number of replicas
        replica_mode: True for PIMC or force-bias NEB runs
        n_cpus_qm: Threads requested by the external engine
        max_threads: Available threads (defaults to the CPU count)

    Returns:
        (replica_threads, engine_threads)
    """
    procs = max_threads or multiprocessing.cpu_count()
    engine_threads = max(1, min(n_cpus_qm, procs))
    if n_beads > 1 and replica_mode:
        replica_threads = max(1, math.floor(procs / engine_threads))
    else:
        replica_threads = procs
    return replica_threads, engine_threads
