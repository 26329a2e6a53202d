from __future__ import annotations

import logging
import time
from enum import IntEnum
from typing import Dict, List, Optional, Sequence

import numpy as np

from .agents import Customer, CustomerParameters, Product, Visibility, build_products, product_arrays
from .config import MarketConfig
from .network import SocialGraph
from .randomizer import Randomizer
from .statistics import Statistics
from .targeting import TargetingStrategy

logger = logging.getLogger("consumat.market")

CLOSE_FRIEND_THRESHOLD = 0.1
B2 = 4.0
EXTRA_AWARENESS_PROB = 0.4
ADOPTION_DISCOUNT = 0.9
SEED_COST = 1.0 / 8.0


class Heuristic(IntEnum):
    REPETITION = 0
    DELIBERATION = 1
    IMITATION = 2
    SOCIAL_COMPARISON = 3


def roulette(rng: Randomizer, candidates: np.ndarray, exponents: np.ndarray, fallback: int) -> int:
    """Softmax roulette over `candidates` (index order); `fallback` when nothing is picked."""
    u = rng.next_double()
    if candidates.size == 0:
        return int(fallback)
    w = np.exp(exponents - exponents.max())
    w = w / w.sum()
    acc = 0.0
    for product, weight in zip(candidates, w):
        acc += weight
        if acc >= u:
            return int(product)
    return int(fallback)


# ---------------- Population ----------------
class Population:
    """Customers of one run in struct-of-arrays form.

    Row i of every array belongs to customer i; `customer(i)` returns a detached
    snapshot of that row. Seeds are marked here, through `mark_seed`.
    """

    def __init__(self, contacts: Sequence[np.ndarray], purchases, preferences, awareness,
                 params: Sequence[CustomerParameters], is_seed=None):
        self.contacts: List[np.ndarray] = [np.asarray(c, dtype=np.int64) for c in contacts]
        self.purchases = np.asarray(purchases, dtype=np.int64).copy()
        self.preferences = np.asarray(preferences, dtype=float).copy()
        self.awareness = np.asarray(awareness, dtype=bool).copy()
        n = len(self.contacts)
        if self.preferences.ndim != 2 or self.preferences.shape != self.awareness.shape:
            raise ValueError(f"preferences {self.preferences.shape} and awareness {self.awareness.shape} "
                             "must be matrices of equal shape")
        if self.preferences.shape[0] != n or self.purchases.shape != (n,) or len(params) != n:
            raise ValueError(f"population arrays disagree on the number of customers ({n})")
        m = self.preferences.shape[1]
        if n and (self.purchases.min() < 0 or self.purchases.max() >= m):
            raise ValueError(f"purchases must index one of the {m} products")
        for i, c in enumerate(self.contacts):
            if c.size and (c.min() < 0 or c.max() >= n or np.any(c == i)):
                raise ValueError(f"customer {i} has an invalid contact list")
        self.params = list(params)
        self.social_preference = np.array([p.social_preference for p in params], dtype=float)
        self.u_min = np.array([p.u_min for p in params], dtype=float)
        self.uncertainty_threshold = np.array([p.uncertainty_threshold for p in params], dtype=float)
        self.speak_probability = np.array([p.speak_probability for p in params], dtype=float)
        self.decay_probability = np.array([p.decay_probability for p in params], dtype=float)
        self.is_seed = np.zeros(n, dtype=bool) if is_seed is None else np.asarray(is_seed, dtype=bool).copy()

    def __len__(self) -> int:
        return len(self.contacts)

    @property
    def num_products(self) -> int:
        return self.preferences.shape[1]

    @property
    def seeds(self) -> List[int]:
        return np.flatnonzero(self.is_seed).tolist()

    def mark_seed(self, i: int, product: int) -> None:
        if not 0 <= product < self.num_products:
            raise ValueError(f"invalid campaign product {product}")
        self.is_seed[i] = True
        self.purchases[i] = product
        self.awareness[i, product] = True

    def customer(self, i: int) -> Customer:
        return Customer(identifier=i, contacts=tuple(self.contacts[i].tolist()), purchase=int(self.purchases[i]),
                        preferences=self.preferences[i].copy(), awareness=self.awareness[i].copy(),
                        params=self.params[i], is_seed=bool(self.is_seed[i]))


# ---------------- Market ----------------
class Market:
    """Consumat market on a social network: setup, diffusion, consumption and NPV."""

    def __init__(self, graph: SocialGraph, config: MarketConfig):
        self.graph = graph
        self.config = config
        self.alpha = config.alpha
        self.b1 = config.alpha / 2.0
        self.b2 = B2
        self.num_products = config.total_products
        self.campaign_product: Optional[int] = config.num_products if config.optimize else None
        self._degree = np.bincount(graph.edge_src, minlength=graph.num_nodes).astype(float)

        self.repetition = 0
        self.rng: Optional[Randomizer] = None
        self.products: Sequence[Product] = ()
        self.quality = np.zeros(0)
        self.visibility = np.zeros(0, dtype=np.int64)
        self.population: Optional[Population] = None
        self.statistics: Optional[Statistics] = None
        self.utilities: Optional[np.ndarray] = None
        self.uncertainties: Optional[np.ndarray] = None
        self.current_step = 0
        self.num_seeds = 0
        self.run_logger = None

        self._decide = {
            Heuristic.DELIBERATION: self.deliberate,
            Heuristic.IMITATION: self.imitate,
            Heuristic.SOCIAL_COMPARISON: self.compare,
        }

    # ---------------- setup ----------------
    def _shared_parameters(self) -> CustomerParameters:
        c = self.config
        return CustomerParameters(social_preference=c.social_preference, u_min=c.u_min,
                                  uncertainty_threshold=c.uncertainty_threshold,
                                  speak_probability=c.awareness_speak, decay_probability=c.awareness_decay)

    def setup(self, repetition: int = 0, rng: Optional[Randomizer] = None) -> None:
        cfg = self.config
        self.repetition = repetition
        self.rng = rng if rng is not None else Randomizer.for_repetition(repetition, cfg.root_seed)
        rng = self.rng
        m, n = self.num_products, self.graph.num_nodes
        choices = cfg.num_products

        self.products = build_products(m, cfg.visibility, rng)
        self.quality, self.visibility = product_arrays(self.products)

        purchases = np.zeros(n, dtype=np.int64)
        preferences = np.zeros((n, m))
        awareness = np.zeros((n, m), dtype=bool)
        shared = self._shared_parameters()
        params = []
        for c in range(n):
            purchases[c] = rng.next_int(choices)
            params.append(CustomerParameters.random(rng) if cfg.random_model else shared)
            for p in range(m):
                preferences[c, p] = rng.next_double()
                if not cfg.extended_model or p == purchases[c]:
                    awareness[c, p] = True
                elif rng.next_double() < EXTRA_AWARENESS_PROB:
                    awareness[c, rng.next_int(choices)] = True
            if self.campaign_product is not None:
                awareness[c, self.campaign_product] = False

        contacts = [self.graph.neighbor_array(c) for c in range(n)]
        self.population = Population(contacts, purchases, preferences, awareness, params)
        self.statistics = Statistics(n, m, cfg.days, cfg.stationality, campaign=cfg.optimize)
        self.utilities = self.uncertainties = None
        self.current_step = 0
        self.run_logger = None
        self.num_seeds = 0

    def seed_campaign(self, targeting: TargetingStrategy, k: int) -> List[int]:
        if self.population is None:
            raise RuntimeError("market is not set up")
        if self.campaign_product is None:
            raise ValueError("seed targeting needs an optimization run (optimize=true)")
        if self.current_step != 0:
            raise RuntimeError("seeds are placed before the first step")
        seeds = targeting.select(self.graph, self.rng, k)
        for i in seeds:
            self.population.mark_seed(i, self.campaign_product)
        self.num_seeds = int(self.population.is_seed.sum())
        self.utilities = self.uncertainties = None
        logger.debug("rep %d: %d seeds via %r", self.repetition, self.num_seeds, targeting)
        return seeds

    def customer(self, i: int) -> Customer:
        return self.population.customer(i)

    # ---------------- social influence ----------------
    def same_election(self, c: int, p: int) -> float:
        pop = self.population
        vis = self.products[p].visibility
        if vis is Visibility.LOW:
            mine = pop.preferences[c, p]
            group = [f for f in pop.contacts[c] if abs(mine - pop.preferences[f, p]) <= CLOSE_FRIEND_THRESHOLD]
        elif vis is Visibility.NORMAL:
            group = pop.contacts[c].tolist()
        else:
            group = self.graph.friends_of_friends(c)
        if not group:
            return 0.0
        same = sum(1 for f in group if pop.purchases[f] == p)
        return same / float(len(group))

    def expected_utility(self, c: int, p: int) -> float:
        sp = self.population.social_preference[c]
        fit = 1.0 - abs(self.quality[p] - self.population.preferences[c, p])
        return self.alpha * (sp * fit + (1.0 - sp) * self.same_election(c, p))

    def expected_uncertainty(self, c: int, p: int) -> float:
        sp = self.population.social_preference[c]
        return (1.0 - sp) * (1.0 - self.same_election(c, p))

    def same_election_matrix(self) -> np.ndarray:
        """sameElection for every (customer, product) pair."""
        pop, g = self.population, self.graph
        n, m = len(pop), self.num_products
        share = np.zeros((n, m))
        buys = pop.purchases[:, None] == np.arange(m)[None, :]
        order = list(Visibility)
        for vis in order:
            cols = np.flatnonzero(self.visibility == order.index(vis))
            if cols.size == 0:
                continue
            if vis is Visibility.HIGH:
                src, dst = g.fof_src, g.fof_dst
            else:
                src, dst = g.edge_src, g.edge_dst
            hits = buys[dst][:, cols]
            if vis is Visibility.LOW:
                prefs = pop.preferences[:, cols]
                close = np.abs(prefs[src] - prefs[dst]) <= CLOSE_FRIEND_THRESHOLD
                hits = hits & close
                denom = np.zeros((n, cols.size))
                np.add.at(denom, src, close.astype(float))
            elif vis is Visibility.HIGH:
                denom = np.repeat(g.fof_size[:, None], cols.size, axis=1)
            else:
                denom = np.repeat(self._degree[:, None], cols.size, axis=1)
            counts = np.zeros((n, cols.size))
            np.add.at(counts, src, hits.astype(float))
            share[:, cols] = np.divide(counts, denom, out=np.zeros_like(counts), where=denom > 0)
        return share

    def compute_utilities(self) -> None:
        pop = self.population
        same = self.same_election_matrix()
        sp = pop.social_preference[:, None]
        fit = 1.0 - np.abs(self.quality[None, :] - pop.preferences)
        self.utilities = self.alpha * (sp * fit + (1.0 - sp) * same)
        self.uncertainties = (1.0 - sp) * (1.0 - same)

    # ---------------- decision heuristics ----------------
    def classify(self, c: int) -> Heuristic:
        pop = self.population
        cur = pop.purchases[c]
        satisfied = self.utilities[c, cur] >= pop.u_min[c]
        certain = self.uncertainties[c, cur] <= pop.uncertainty_threshold[c]
        if satisfied and certain:
            return Heuristic.REPETITION
        if certain:
            return Heuristic.DELIBERATION
        if satisfied:
            return Heuristic.IMITATION
        return Heuristic.SOCIAL_COMPARISON

    def contact_purchases(self, c: int) -> np.ndarray:
        pop = self.population
        return np.bincount(pop.purchases[pop.contacts[c]], minlength=self.num_products)

    def deliberate(self, c: int) -> int:
        pop = self.population
        cand = np.flatnonzero(pop.awareness[c])
        return roulette(self.rng, cand, self.b1 * self.utilities[c, cand], pop.purchases[c])

    def imitate(self, c: int) -> int:
        pop = self.population
        cand = np.flatnonzero(pop.awareness[c])
        counts = self.contact_purchases(c)
        return roulette(self.rng, cand, self.b2 * counts[cand].astype(float), pop.purchases[c])

    def compare(self, c: int) -> int:
        pop = self.population
        cand = np.flatnonzero(pop.awareness[c] & (self.contact_purchases(c) > 0))
        return roulette(self.rng, cand, self.b1 * self.utilities[c, cand], pop.purchases[c])

    def consumption_pass(self):
        """One decision round over all customers; returns (heuristic counts, active share)."""
        pop = self.population
        n = len(pop)
        usage = np.zeros(len(Heuristic), dtype=np.int64)
        active = 0
        for c in range(n):
            if pop.is_seed[c]:
                usage[Heuristic.REPETITION] += 1
                continue
            if self.rng.next_double() >= self.config.buy_probability:
                continue
            h = self.classify(c)
            usage[h] += 1
            active += 1
            if h is not Heuristic.REPETITION:
                pop.purchases[c] = self._decide[h](c)
        return usage, (active / float(n) if n else 0.0)

    # ---------------- awareness diffusion ----------------
    def word_of_mouth(self) -> None:
        pop, rng = self.population, self.rng
        aware = pop.awareness
        for c in range(len(pop)):
            contacts = pop.contacts[c]
            if pop.is_seed[c]:
                aware[contacts, self.campaign_product] = True
                continue
            speak = pop.speak_probability[c]
            for p in range(self.num_products):
                if aware[c, p] and rng.next_double() < speak:
                    aware[contacts, p] = True

    def decay_awareness(self) -> None:
        pop, rng = self.population, self.rng
        aware = pop.awareness
        for c in range(len(pop)):
            if pop.is_seed[c]:
                continue
            cur, decay = pop.purchases[c], pop.decay_probability[c]
            for p in range(self.num_products):
                if p != cur and aware[c, p] and rng.next_double() < decay:
                    aware[c, p] = False

    # ---------------- campaign ----------------
    def count_adopters(self, past: np.ndarray) -> int:
        pop, camp = self.population, self.campaign_product
        return int(np.count_nonzero(~pop.is_seed & (past != camp) & (pop.purchases == camp)))

    # ---------------- loop ----------------
    def step(self) -> bool:
        """Advance one raw step; True when it held a consumption event."""
        if self.population is None:
            raise RuntimeError("market is not set up")
        if self.current_step >= self.config.days:
            raise RuntimeError(f"run already finished ({self.config.days} steps)")
        if self.utilities is None:
            self.compute_utilities()
        pop, step = self.population, self.current_step
        past = pop.purchases.copy()
        if self.config.extended_model:
            self.word_of_mouth()
            self.decay_awareness()
        event = step % self.config.stationality == 0 and step != 0
        if event:
            usage, active = self.consumption_pass()
            t = self.statistics.record(past, pop.purchases.copy(), usage, active, pop.awareness)
            if self.run_logger is not None:
                self.run_logger.write(self.statistics.row(t))
            logger.debug("rep %d step %d event %d: gini=%.4f turbulence=%.4f", self.repetition, step, t,
                         self.statistics.gini[t], self.statistics.turbulence[t])
            self.compute_utilities()
        if self.statistics.campaign is not None:
            self.statistics.campaign.accrue(self.count_adopters(past), self.num_seeds,
                                            ADOPTION_DISCOUNT ** step, SEED_COST)
        self.current_step += 1
        return event

    def run(self, repetition: int = 0, targeting: Optional[TargetingStrategy] = None, num_seeds: int = 0,
            rng: Optional[Randomizer] = None, run_logger=None) -> Statistics:
        """Full run; `run_logger` (a reporting.RunLogger) receives one row per consumption event."""
        t0 = time.perf_counter()
        self.setup(repetition, rng)
        self.run_logger = run_logger
        if run_logger is not None:
            run_logger.open(self.statistics.columns())
        if targeting is not None:
            self.seed_campaign(targeting, num_seeds)
        while self.current_step < self.config.days:
            self.step()
        stats = self.statistics
        stats.execution_time = time.perf_counter() - t0
        logger.info("rep %d: %d steps, %d events, %.3fs", repetition, self.config.days, stats.recorded,
                    stats.execution_time)
        return stats

    def describe(self) -> Dict[str, object]:
        cfg = self.config
        return {"customers": self.graph.num_nodes, "products": self.num_products,
                "campaign_product": self.campaign_product, "extended_model": cfg.extended_model,
                "random_model": cfg.random_model, "visibility": [p.visibility.value for p in self.products],
                "quality": [p.quality for p in self.products], "seeds": self.num_seeds}


def simulate(graph: SocialGraph, config: MarketConfig, repetition: int = 0,
             targeting: Optional[TargetingStrategy] = None, num_seeds: int = 0) -> Statistics:
    """One repetition from scratch; the unit of work of a Monte-Carlo batch."""
    return Market(graph, config).run(repetition, targeting, num_seeds)
