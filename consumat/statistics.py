from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger("consumat.statistics")

HEURISTIC_NAMES = ("repetition", "deliberation", "imitation", "social_comparison")


# ---------------- Indicators ----------------
def gini(purchases: Sequence[int], num_products: int) -> float:
    """Market-share Gini: sum of |count(po) - count(pt)| over unordered pairs / (m * purchasers)."""
    purchases = np.asarray(purchases, dtype=np.int64)
    total = purchases.size
    if total == 0 or num_products < 1:
        return 0.0
    counts = np.bincount(purchases, minlength=num_products).astype(float)
    diffs = np.abs(counts[:, None] - counts[None, :])
    return float(np.triu(diffs, k=1).sum() / (num_products * total))

def turbulence(past: Sequence[int], nxt: Sequence[int]) -> float:
    """Fraction of customers whose purchase differs between two snapshots."""
    past = np.asarray(past); nxt = np.asarray(nxt)
    if past.shape != nxt.shape:
        raise ValueError(f"snapshot shapes differ: {past.shape} vs {nxt.shape}")
    if past.size == 0:
        return 0.0
    return float(np.count_nonzero(past != nxt) / past.size)


# ---------------- Campaign ----------------
@dataclass
class CampaignResult:
    benefit: float = 0.0
    cost: float = 0.0

    @property
    def combined(self) -> float:
        return self.benefit - self.cost

    def accrue(self, adopters: int, num_seeds: int, discount: float, seed_cost: float) -> None:
        self.benefit += adopters * discount
        self.cost += num_seeds * seed_cost * discount


# ---------------- Per-run statistics ----------------
class Statistics:
    """Series recorded once per consumption event of one simulation run.

    Product selection counts include seed customers, so each column sums to the
    number of customers.
    """

    def __init__(self, num_customers: int, num_products: int, steps: int, stationality: int,
                 campaign: bool = False):
        if stationality < 1:
            raise ValueError(f"stationality must be >= 1, got {stationality}")
        size = steps // stationality
        self.num_customers, self.num_products, self.capacity = num_customers, num_products, size
        self.recorded = 0
        self._gini = np.zeros(size)
        self._turbulence = np.zeros(size)
        self._active = np.zeros(size)
        self._selection = np.zeros((num_products, size), dtype=np.int64)
        self._buy_prob = np.zeros((num_products, size))
        self._heuristics = np.zeros((len(HEURISTIC_NAMES), size))
        self._awareness = np.zeros((num_products, size))
        self._choices = np.zeros((num_customers, size), dtype=np.int64)
        self.execution_time = 0.0
        self.campaign: Optional[CampaignResult] = CampaignResult() if campaign else None

    def record(self, past: np.ndarray, nxt: np.ndarray, heuristic_usage: np.ndarray,
               mean_active: float, awareness: np.ndarray) -> int:
        t = self.recorded
        if t >= self.capacity:
            raise IndexError(f"statistics full ({self.capacity} events)")
        counts = np.bincount(nxt, minlength=self.num_products)
        self._gini[t] = gini(nxt, self.num_products)
        self._turbulence[t] = turbulence(past, nxt)
        self._selection[:, t] = counts
        self._buy_prob[:, t] = counts / float(self.num_customers)
        total = float(np.sum(heuristic_usage))
        if total > 0:
            self._heuristics[:, t] = np.asarray(heuristic_usage, dtype=float) / total
        self._active[t] = mean_active
        self._awareness[:, t] = np.asarray(awareness, dtype=float).mean(axis=0)
        self._choices[:, t] = nxt
        self.recorded += 1
        return t

    # ---- series (recorded part only) ----
    @property
    def gini(self) -> np.ndarray:
        return self._gini[:self.recorded]

    @property
    def turbulence(self) -> np.ndarray:
        return self._turbulence[:self.recorded]

    @property
    def mean_active_customers(self) -> np.ndarray:
        return self._active[:self.recorded]

    @property
    def product_selection(self) -> np.ndarray:
        return self._selection[:, :self.recorded]

    @property
    def buy_probability(self) -> np.ndarray:
        return self._buy_prob[:, :self.recorded]

    @property
    def heuristic_usage(self) -> np.ndarray:
        return self._heuristics[:, :self.recorded]

    @property
    def awareness_ratio(self) -> np.ndarray:
        return self._awareness[:, :self.recorded]

    @property
    def consumer_choices(self) -> np.ndarray:
        return self._choices[:, :self.recorded]

    # ---- aggregations ----
    def aggregated_gini(self) -> float:
        return float(self.gini.sum())

    def aggregated_turbulence(self) -> float:
        return float(self.turbulence.sum())

    def aggregated_active_customers(self) -> float:
        return float(self.mean_active_customers.sum())

    def last_product_selection(self) -> np.ndarray:
        return self.product_selection[:, -1] if self.recorded else np.zeros(self.num_products, dtype=np.int64)

    def last_buy_probability(self) -> np.ndarray:
        return self.buy_probability[:, -1] if self.recorded else np.zeros(self.num_products)

    def mean_heuristic_usage(self) -> np.ndarray:
        return self.heuristic_usage.mean(axis=1) if self.recorded else np.zeros(len(HEURISTIC_NAMES))

    def last_awareness_ratio(self) -> np.ndarray:
        return self.awareness_ratio[:, -1] if self.recorded else np.zeros(self.num_products)

    def columns(self) -> List[str]:
        cols = ["event", "gini", "turbulence", "mean_active"]
        for p in range(self.num_products):
            cols += [f"sales_{p}", f"share_{p}", f"aware_{p}"]
        return cols + [f"h_{name}" for name in HEURISTIC_NAMES]

    def row(self, t: int) -> Dict[str, object]:
        """Flat record of consumption event t, keyed like `columns()`."""
        if not 0 <= t < self.recorded:
            raise IndexError(f"event {t} not recorded ({self.recorded} events)")
        row: Dict[str, object] = {"event": t, "gini": float(self._gini[t]),
                                  "turbulence": float(self._turbulence[t]), "mean_active": float(self._active[t])}
        for p in range(self.num_products):
            row[f"sales_{p}"] = int(self._selection[p, t])
            row[f"share_{p}"] = float(self._buy_prob[p, t])
            row[f"aware_{p}"] = float(self._awareness[p, t])
        for h, name in enumerate(HEURISTIC_NAMES):
            row[f"h_{name}"] = float(self._heuristics[h, t])
        return row

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([self.row(t) for t in range(self.recorded)], columns=self.columns())


# ---------------- Monte-Carlo aggregation ----------------
class MonteCarloStatistics:
    def __init__(self, runs: Sequence[Statistics], failed: Optional[List[int]] = None, requested: Optional[int] = None):
        self.runs: List[Statistics] = list(runs)
        self.failed: List[int] = sorted(failed or [])
        self.requested = requested if requested is not None else len(self.runs) + len(self.failed)

    @property
    def completed(self) -> int:
        return len(self.runs)

    def _campaigns(self) -> List[CampaignResult]:
        out = [r.campaign for r in self.runs if r.campaign is not None]
        if len(out) != len(self.runs):
            raise ValueError("campaign figures are only available for optimization runs")
        return out

    def _mean(self, values: List[float]) -> float:
        if not values:
            return 0.0
        return float(sum(values) / len(values))

    def campaign_benefit(self) -> float:
        return self._mean([c.benefit for c in self._campaigns()])

    def campaign_cost(self) -> float:
        return self._mean([c.cost for c in self._campaigns()])

    def benefit_minus_cost(self) -> float:
        return self._mean([c.combined for c in self._campaigns()])

    def mean_execution_time(self) -> float:
        return self._mean([r.execution_time for r in self.runs])

    def mean_gini(self) -> np.ndarray:
        return np.mean([r.gini for r in self.runs], axis=0) if self.runs else np.zeros(0)

    def summary(self) -> Dict[str, float]:
        out = {"requested": self.requested, "completed": self.completed, "failed": len(self.failed),
               "execution_time": self.mean_execution_time()}
        if self.runs and self.runs[0].campaign is not None:
            out.update(benefit=self.campaign_benefit(), cost=self.campaign_cost(),
                       combined=self.benefit_minus_cost())
        return out
