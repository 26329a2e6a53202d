from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import MarketConfig
from .montecarlo import MonteCarloRunner
from .network import METRIC_NAMES, SocialGraph
from .statistics import CampaignResult
from .targeting import RandomTargeting, TargetingStrategy, WeightedTargeting, decode_weights, max_seeds

logger = logging.getLogger("consumat.optimization")

# classic greedy presets: degree, two-step, clustering, balanced
WEIGHT_PRESETS: Dict[str, Tuple[float, ...]] = {
    "degree": (1.0, 0.0, 0.0),
    "two_step": (0.0, 1.0, 0.0),
    "clustering": (0.0, 0.0, 1.0),
    "balanced": (0.33, 0.33, 0.33),
}


class TargetingProblem:
    """Seed-targeting objective for external evolutionary solvers.

    Variables are the metric weights followed by the number of seeds. Each
    evaluation reruns the whole Monte-Carlo batch with the fixed seed table, so
    equal vectors give equal results.
    """

    def __init__(self, graph: SocialGraph, config: MarketConfig, runner: Optional[MonteCarloRunner] = None,
                 num_metrics: int = 3, random_targeting: bool = False):
        if not config.optimize:
            raise ValueError("seed targeting needs a configuration with optimize=true")
        if not 1 <= num_metrics <= len(METRIC_NAMES):
            raise ValueError(f"num_metrics must be in 1..{len(METRIC_NAMES)}, got {num_metrics}")
        self.graph = graph
        self.config = config
        self.runner = runner if runner is not None else MonteCarloRunner(graph, config)
        self.num_metrics = num_metrics
        self.random_targeting = random_targeting
        self.evaluations = 0
        self.last_batch = None

    @property
    def num_variables(self) -> int:
        return self.num_metrics + 1

    @property
    def num_objectives(self) -> int:
        return 2 if self.config.multiobjective else 1

    @property
    def max_seeds(self) -> int:
        return max_seeds(self.graph.num_nodes, self.config.targets_ratio)

    @property
    def lower_bounds(self) -> List[float]:
        return [0.0] * self.num_metrics + [1.0]

    @property
    def upper_bounds(self) -> List[float]:
        return [1.0] * self.num_metrics + [float(self.max_seeds)]

    def strategy(self, weights: np.ndarray) -> TargetingStrategy:
        return RandomTargeting() if self.random_targeting else WeightedTargeting(weights)

    def evaluate(self, vector: Sequence[float]) -> CampaignResult:
        weights, seeds = decode_weights(vector, self.graph.num_nodes, self.config.targets_ratio)
        if weights.size != self.num_metrics:
            raise ValueError(f"expected {self.num_metrics} weights plus a seed count, got {list(vector)}")
        mc = self.runner.run(self.strategy(weights), seeds)
        self.evaluations += 1
        self.last_batch = mc
        result = CampaignResult(mc.campaign_benefit(), mc.campaign_cost())
        logger.debug("eval %d %s seeds=%d -> benefit=%.4f cost=%.4f", self.evaluations, weights.tolist(),
                     seeds, result.benefit, result.cost)
        return result

    def objectives(self, vector: Sequence[float]) -> Tuple[float, ...]:
        """Minimisation form: (-benefit, cost), or (-(benefit - cost),) for one objective."""
        return self.as_objectives(self.evaluate(vector))

    def as_objectives(self, r: CampaignResult) -> Tuple[float, ...]:
        if self.config.multiobjective:
            return (-r.benefit, r.cost)
        return (-r.combined,)


# ---------------- Pareto helpers ----------------
def _dominates(a: Sequence[float], b: Sequence[float]) -> bool:
    return (a[0] > b[0] and a[1] <= b[1]) or (a[0] >= b[0] and a[1] < b[1])

def non_dominated_fronts(points: Sequence[Sequence[float]]) -> List[List[int]]:
    """Fast non-dominated sorting of (benefit, cost) points: benefit up, cost down."""
    n = len(points)
    dominated: List[List[int]] = [[] for _ in range(n)]
    count = [0] * n
    fronts: List[List[int]] = [[]]
    for p in range(n):
        for q in range(n):
            if p == q:
                continue
            if _dominates(points[p], points[q]):
                dominated[p].append(q)
            elif _dominates(points[q], points[p]):
                count[p] += 1
        if count[p] == 0:
            fronts[0].append(p)
    while fronts[-1]:
        nxt = []
        for p in fronts[-1]:
            for q in dominated[p]:
                count[q] -= 1
                if count[q] == 0:
                    nxt.append(q)
        fronts.append(sorted(nxt))
    return fronts[:-1]


# ---------------- Sweeps ----------------
def seed_sweep(problem: TargetingProblem, presets: Optional[Dict[str, Sequence[float]]] = None,
               max_count: Optional[int] = None) -> pd.DataFrame:
    """Benefit and cost for every preset and every seed count 1..max_count."""
    presets = WEIGHT_PRESETS if presets is None else presets
    top = problem.max_seeds if max_count is None else min(int(max_count), problem.max_seeds)
    rows = []
    for name, weights in presets.items():
        for seeds in range(1, top + 1):
            r = problem.evaluate(list(weights) + [seeds])
            rows.append({"preset": name, "seeds": seeds, "benefit": r.benefit, "cost": r.cost})
        logger.info("sweep preset %s done (%d seed counts)", name, top)
    return pd.DataFrame(rows, columns=["preset", "seeds", "benefit", "cost"])

def pareto_rows(frame: pd.DataFrame) -> pd.DataFrame:
    """Rows of the first non-dominated front within each preset."""
    keep = []
    for _, grp in frame.groupby("preset", sort=False):
        front = non_dominated_fronts(grp[["benefit", "cost"]].to_numpy().tolist())
        if front:
            keep.extend(grp.index[i] for i in sorted(front[0]))
    return frame.loc[keep].reset_index(drop=True)
