from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .network import METRIC_NAMES, SocialGraph
from .randomizer import Randomizer

logger = logging.getLogger("consumat.targeting")


class TargetingStrategy:
    """Picks the seed customers of a campaign."""

    name = "base"

    def select(self, graph: SocialGraph, rng: Randomizer, k: int) -> List[int]:
        raise NotImplementedError

    @staticmethod
    def _check_count(graph: SocialGraph, k: int) -> int:
        k = int(k)
        if k < 0 or k > graph.num_nodes:
            raise ValueError(f"cannot select {k} seeds in a network of {graph.num_nodes} nodes")
        return k


class WeightedTargeting(TargetingStrategy):
    """Top-k customers by a weighted sum of normalized network metrics.

    Metrics come in METRIC_NAMES order (degree, two-step, inverted clustering,
    optionally betweenness). Ties keep ascending identifier order.
    """

    name = "weighted"

    def __init__(self, weights: Sequence[float]):
        w = np.asarray(weights, dtype=float)
        if w.ndim != 1 or not 1 <= w.size <= len(METRIC_NAMES):
            raise ValueError(f"expected 1..{len(METRIC_NAMES)} metric weights, got {list(weights)}")
        if not np.all(np.isfinite(w)):
            raise ValueError(f"metric weights must be finite, got {list(weights)}")
        self.weights = w

    def scores(self, graph: SocialGraph) -> np.ndarray:
        return graph.metric_matrix(self.weights.size) @ self.weights

    def select(self, graph: SocialGraph, rng: Randomizer, k: int) -> List[int]:
        k = self._check_count(graph, k)
        scores = self.scores(graph)
        ids = np.arange(graph.num_nodes)
        # last key is primary: descending score, then ascending id
        order = np.lexsort((ids, -scores))
        return [int(i) for i in order[:k]]

    def __repr__(self):
        return f"WeightedTargeting({self.weights.tolist()})"


class RandomTargeting(TargetingStrategy):
    name = "random"

    def select(self, graph: SocialGraph, rng: Randomizer, k: int) -> List[int]:
        k = self._check_count(graph, k)
        return rng.sample(graph.num_nodes, k)

    def __repr__(self):
        return "RandomTargeting()"


def max_seeds(num_nodes: int, targets_ratio: float) -> int:
    return max(1, int(np.floor(num_nodes * targets_ratio)))

def decode_weights(vector: Sequence[float], num_nodes: int, targets_ratio: float) -> Tuple[np.ndarray, int]:
    """Split `[w_1, ..., w_k, numSeeds]` into metric weights and a clamped seed count."""
    v = np.asarray(vector, dtype=float)
    if v.ndim != 1 or not 2 <= v.size <= len(METRIC_NAMES) + 1:
        raise ValueError(f"weight vector needs 1..{len(METRIC_NAMES)} weights plus a seed count, got {list(vector)}")
    if not np.all(np.isfinite(v)):
        raise ValueError(f"weight vector must be finite, got {list(vector)}")
    seeds = int(v[-1])
    seeds = min(max(seeds, 1), max_seeds(num_nodes, targets_ratio))
    return v[:-1].copy(), seeds
