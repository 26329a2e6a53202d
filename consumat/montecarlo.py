from __future__ import annotations

import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from .config import MarketConfig
from .market import simulate
from .network import SocialGraph
from .statistics import MonteCarloStatistics, Statistics
from .targeting import TargetingStrategy

logger = logging.getLogger("consumat.montecarlo")

BACKENDS = ("serial", "thread", "process", "mpi")


class MonteCarloError(RuntimeError):
    """Raised when a Monte-Carlo batch has no usable repetitions (or any failure in strict mode)."""


def default_workers() -> int:
    cores = os.cpu_count() or 1
    return cores - 1 if cores > 2 else cores


class MonteCarloRunner:
    """Runs independent repetitions of a market and merges them in repetition order.

    Repetition r always uses seed r of the seed table, so the merged result does
    not depend on the backend or on the number of workers.
    """

    def __init__(self, graph: SocialGraph, config: MarketConfig, workers: Optional[int] = None,
                 backend: str = "process", strict: bool = False):
        if backend not in BACKENDS:
            raise ValueError(f"unknown backend '{backend}' (choose from {', '.join(BACKENDS)})")
        if workers is not None and workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.graph = graph
        self.config = config
        self.workers = workers if workers is not None else default_workers()
        self.backend = backend
        self.strict = strict

    def _executor(self, workers: int) -> Executor:
        if self.backend == "thread":
            return ThreadPoolExecutor(max_workers=workers)
        if self.backend == "mpi":
            from mpi4py.futures import MPIPoolExecutor
            return MPIPoolExecutor(max_workers=workers)
        return ProcessPoolExecutor(max_workers=workers)

    def _failed(self, rep: int, exc: BaseException, failed: List[int]) -> None:
        failed.append(rep)
        logger.error("repetition %d failed: %s", rep, exc, exc_info=(type(exc), exc, exc.__traceback__))

    def run(self, targeting: Optional[TargetingStrategy] = None, num_seeds: int = 0,
            repetitions: Optional[int] = None) -> MonteCarloStatistics:
        n = self.config.monte_carlos if repetitions is None else int(repetitions)
        if n < 1:
            raise ValueError(f"need at least one repetition, got {n}")
        results: Dict[int, Statistics] = {}
        failed: List[int] = []

        if self.backend == "serial" or self.workers == 1 or n == 1:
            for rep in range(n):
                try:
                    results[rep] = simulate(self.graph, self.config, rep, targeting, num_seeds)
                except Exception as e:
                    self._failed(rep, e, failed)
                    if self.strict:
                        break
        else:
            workers = min(self.workers, n)
            logger.info("running %d repetitions on %d %s workers", n, workers, self.backend)
            with self._executor(workers) as ex:
                futures = {ex.submit(simulate, self.graph, self.config, rep, targeting, num_seeds): rep
                           for rep in range(n)}
                for fut in as_completed(futures):
                    rep = futures[fut]
                    try:
                        results[rep] = fut.result()
                    except Exception as e:
                        self._failed(rep, e, failed)

        if failed and self.strict:
            raise MonteCarloError(f"repetitions {sorted(failed)} failed")
        if not results:
            raise MonteCarloError(f"all {n} repetitions failed")
        if failed:
            logger.warning("aggregating %d of %d repetitions (failed: %s)", len(results), n, sorted(failed))
        runs = [results[r] for r in sorted(results)]
        return MonteCarloStatistics(runs, failed, requested=n)
