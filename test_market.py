"""Tests for the consumption engine: setup, social influence, heuristics, diffusion and runs."""
import numpy as np
import pytest

from consumat.agents import CustomerParameters, VisibilityMode
from consumat.market import (
    ADOPTION_DISCOUNT, SEED_COST, Heuristic, Market, Population, roulette, simulate,
)
from consumat.network import generate_network
from consumat.targeting import WeightedTargeting


class FixedDraw:
    """Stands in for a Randomizer that always returns the same uniform draw."""

    def __init__(self, u):
        self.u = u

    def next_double(self):
        return self.u


def _ready(graph, config, repetition=0):
    market = Market(graph, config)
    market.setup(repetition)
    return market


class TestSetup:
    def test_purchases_valid_and_fully_aware(self, ring10, make_config):
        m = _ready(ring10, make_config(num_products=3))
        pop = m.population
        assert len(pop) == 10
        assert np.all((pop.purchases >= 0) & (pop.purchases < 3))
        assert pop.awareness.all()
        assert np.all((pop.preferences >= 0) & (pop.preferences < 1))

    def test_campaign_product_hidden(self, ring10, make_config):
        """Optimization runs add a campaign product nobody buys or knows at start."""
        m = _ready(ring10, make_config(optimize=True, extended_model=True))
        assert m.num_products == 3 and m.campaign_product == 2
        assert not m.population.awareness[:, 2].any()
        assert np.all(m.population.purchases < 2)

    def test_extended_awareness_includes_purchase(self, ring10, make_config):
        m = _ready(ring10, make_config(num_products=4, extended_model=True))
        pop = m.population
        for c in range(10):
            assert pop.awareness[c, pop.purchases[c]]

    def test_random_model_parameters(self, ring10, make_config):
        m = _ready(ring10, make_config(random_model=True))
        sp = m.population.social_preference
        assert len(set(sp.tolist())) > 1
        assert np.all(m.population.uncertainty_threshold < 0.5)

    def test_customer_snapshot_is_detached(self, ring10, make_config):
        m = _ready(ring10, make_config())
        c = m.customer(4)
        assert c.contacts == (3, 5)
        assert c.purchase == m.population.purchases[4]
        c.awareness[0] = False
        c.preferences[0] = 0.99
        assert m.population.awareness[4, 0]
        assert m.population.preferences[4, 0] != 0.99

    def test_seeding_a_snapshot_leaves_population_consistent(self, ring10, make_config):
        """Marking a customer record as seed never half-updates the population."""
        m = _ready(ring10, make_config(optimize=True, extended_model=True))
        camp = m.campaign_product
        before = m.population.purchases[3]
        view = m.customer(3)
        view.mark_seed(camp)
        assert view.is_seed and view.purchase == camp
        pop = m.population
        assert not pop.is_seed[3]
        assert pop.purchases[3] == before
        assert not pop.awareness[3, camp]
        pop.mark_seed(3, camp)
        seeded = m.customer(3)
        assert seeded.is_seed and seeded.purchase == camp and seeded.aware_of(camp)

    def test_population_invariants(self):
        params = [CustomerParameters(0.5, 0.3, 0.3, 0.3, 0.1)] * 2
        contacts = [np.array([1]), np.array([0])]
        with pytest.raises(ValueError):
            Population(contacts, [0, 1], np.zeros((2, 2)), np.ones((2, 3), dtype=bool), params)
        with pytest.raises(ValueError):
            Population(contacts, [0, 2], np.zeros((2, 2)), np.ones((2, 2), dtype=bool), params)
        with pytest.raises(ValueError):
            Population([np.array([5]), np.array([0])], [0, 1], np.zeros((2, 2)), np.ones((2, 2), dtype=bool), params)


class TestSameElection:
    def test_low_visibility_without_close_friends(self, ring10, make_config):
        """No contact within the preference threshold gives 0.0."""
        m = _ready(ring10, make_config(visibility=VisibilityMode.LOW))
        m.population.preferences[:, 0] = np.tile([0.0, 0.5], 5)
        for c in range(10):
            assert m.same_election(c, 0) == 0.0
        assert np.all(m.same_election_matrix()[:, 0] == 0.0)

    def test_low_visibility_close_friends(self, ring10, make_config):
        m = _ready(ring10, make_config(visibility=VisibilityMode.LOW))
        pop = m.population
        pop.preferences[:, 1] = 0.5
        pop.preferences[1, 1] = 0.9
        pop.purchases[:] = 0
        pop.purchases[9] = 1
        # customer 0: contacts 1 (not close) and 9 (close, buys 1)
        assert m.same_election(0, 1) == 1.0

    def test_normal_visibility(self, ring10, make_config):
        m = _ready(ring10, make_config())
        m.population.purchases[:] = 0
        m.population.purchases[1] = 1
        assert m.same_election(0, 1) == 0.5
        assert m.same_election(5, 0) == 1.0

    def test_high_visibility_uses_friends_of_friends(self, ring10, make_config):
        m = _ready(ring10, make_config(visibility=VisibilityMode.HIGH))
        m.population.purchases[:] = 0
        m.population.purchases[2] = 1
        # friends of friends of 0 are {2, 8}
        assert m.same_election(0, 1) == 0.5
        assert m.same_election(1, 1) == 0.0

    @pytest.mark.parametrize("mode", list(VisibilityMode))
    def test_matrix_matches_pairwise(self, make_config, mode):
        graph = generate_network("watts_strogatz", 25, seed=3, k=4, p=0.3)
        m = _ready(graph, make_config(num_products=4, visibility=mode, random_model=True))
        matrix = m.same_election_matrix()
        for c in range(25):
            for p in range(4):
                assert matrix[c, p] == pytest.approx(m.same_election(c, p), abs=1e-12)
                assert 0.0 <= matrix[c, p] <= 1.0

    def test_utilities_match_pairwise(self, make_config):
        graph = generate_network("erdos_renyi", 15, seed=2, p=0.3)
        m = _ready(graph, make_config(num_products=3, visibility=VisibilityMode.RANDOM, random_model=True))
        m.compute_utilities()
        for c in range(15):
            for p in range(3):
                assert m.utilities[c, p] == pytest.approx(m.expected_utility(c, p), abs=1e-12)
                assert m.uncertainties[c, p] == pytest.approx(m.expected_uncertainty(c, p), abs=1e-12)


class TestRoulette:
    @pytest.mark.parametrize("exponent", [-50.0, 0.0, 3.0, 1e6])
    def test_single_candidate(self, exponent):
        """A lone candidate is always chosen whatever its weight."""
        for u in (0.0, 0.5, 0.999999):
            assert roulette(FixedDraw(u), np.array([2]), np.array([exponent]), fallback=0) == 2

    def test_no_candidates_repeats(self):
        assert roulette(FixedDraw(0.3), np.array([], dtype=int), np.array([]), fallback=4) == 4

    def test_cumulative_walk(self):
        cand, exps = np.array([1, 3]), np.array([0.0, 0.0])
        assert roulette(FixedDraw(0.2), cand, exps, fallback=0) == 1
        assert roulette(FixedDraw(0.7), cand, exps, fallback=0) == 3

    def test_large_exponents(self):
        assert roulette(FixedDraw(0.5), np.array([0, 1]), np.array([4000.0, 0.0]), fallback=1) == 0


class TestHeuristics:
    def _market(self, ring10, make_config):
        m = _ready(ring10, make_config(num_products=3))
        m.compute_utilities()
        return m

    @pytest.mark.parametrize("u,unc,expected", [
        (0.5, 0.1, Heuristic.REPETITION),
        (0.1, 0.1, Heuristic.DELIBERATION),
        (0.5, 0.9, Heuristic.IMITATION),
        (0.1, 0.9, Heuristic.SOCIAL_COMPARISON),
    ])
    def test_classification(self, ring10, make_config, u, unc, expected):
        m = self._market(ring10, make_config)
        m.utilities[:] = u
        m.uncertainties[:] = unc
        assert m.classify(0) is expected

    def test_thresholds_are_inclusive(self, ring10, make_config):
        m = self._market(ring10, make_config)
        m.utilities[:] = 0.3
        m.uncertainties[:] = 0.3
        assert m.classify(0) is Heuristic.REPETITION

    def test_deliberation_single_aware(self, ring10, make_config):
        m = self._market(ring10, make_config)
        m.population.awareness[0] = [False, True, False]
        assert m.deliberate(0) == 1

    def test_imitation_single_aware(self, ring10, make_config):
        m = self._market(ring10, make_config)
        m.population.awareness[0] = [False, False, True]
        assert m.imitate(0) == 2

    def test_social_comparison_needs_contact_purchase(self, ring10, make_config):
        """Only known products bought by a contact are candidates."""
        m = self._market(ring10, make_config)
        pop = m.population
        pop.purchases[:] = 0
        pop.purchases[1] = 2
        pop.purchases[0] = 1
        assert m.compare(0) in (0, 2)
        pop.awareness[0] = [False, True, True]
        assert m.compare(0) == 2
        pop.awareness[0] = [False, True, False]
        assert m.compare(0) == 1

    def test_contact_purchases(self, ring10, make_config):
        m = self._market(ring10, make_config)
        m.population.purchases[:] = 0
        m.population.purchases[9] = 2
        assert m.contact_purchases(0).tolist() == [1, 0, 1]


class TestConsumption:
    def test_no_buyers(self, ring10, make_config):
        m = _ready(ring10, make_config(buy_probability=0.0))
        m.compute_utilities()
        before = m.population.purchases.copy()
        usage, active = m.consumption_pass()
        assert usage.sum() == 0 and active == 0.0
        assert np.array_equal(before, m.population.purchases)

    def test_seeds_count_as_repetition(self, ring10, make_config):
        m = _ready(ring10, make_config(buy_probability=0.0, optimize=True))
        m.seed_campaign(WeightedTargeting([1.0, 0.0, 0.0]), 2)
        m.compute_utilities()
        usage, _ = m.consumption_pass()
        assert usage.tolist() == [2, 0, 0, 0]
        assert m.population.purchases[m.population.is_seed].tolist() == [2, 2]

    def test_everyone_decides(self, ring10, make_config):
        m = _ready(ring10, make_config(buy_probability=1.0))
        m.compute_utilities()
        usage, active = m.consumption_pass()
        assert usage.sum() == 10 and active == 1.0


class TestDiffusion:
    def test_word_of_mouth_spreads(self, ring10, make_config):
        m = _ready(ring10, make_config(num_products=4, extended_model=True, awareness_speak=1.0))
        before = m.population.awareness.copy()
        m.word_of_mouth()
        after = m.population.awareness
        for c in range(10):
            for f in ring10.neighbors(c):
                assert np.all(after[f] >= before[c])

    def test_decay_keeps_only_purchase(self, ring10, make_config):
        m = _ready(ring10, make_config(num_products=4, awareness_decay=1.0))
        m.decay_awareness()
        pop = m.population
        for c in range(10):
            assert pop.awareness[c].tolist() == [p == pop.purchases[c] for p in range(4)]

    def test_seeds_announce_campaign(self, ring10, make_config):
        m = _ready(ring10, make_config(optimize=True, extended_model=True, awareness_speak=0.0))
        seeds = m.seed_campaign(WeightedTargeting([1.0, 0.0, 0.0]), 1)
        m.word_of_mouth()
        for f in ring10.neighbors(seeds[0]):
            assert m.population.awareness[f, m.campaign_product]
        m.decay_awareness()
        assert m.population.awareness[seeds[0], m.campaign_product]


class TestRun:
    def test_event_count_and_columns(self, ring10, make_config):
        stats = Market(ring10, make_config(days=9, stationality=2)).run()
        assert stats.capacity == 4
        assert stats.recorded == 4
        assert np.all(stats.product_selection.sum(axis=0) == 10)
        choices = stats.consumer_choices
        assert np.all((choices >= 0) & (choices < 2))

    def test_deterministic(self, make_config):
        """Same repetition and configuration give identical statistics."""
        graph = generate_network("watts_strogatz", 40, seed=5, k=4, p=0.2)
        cfg = make_config(num_products=3, days=20, stationality=2, random_model=True, extended_model=True,
                          visibility=VisibilityMode.RANDOM, buy_probability=0.6)
        a = simulate(graph, cfg, repetition=2)
        b = simulate(graph, cfg, repetition=2)
        for name in ("gini", "turbulence", "mean_active_customers", "product_selection", "buy_probability",
                     "heuristic_usage", "awareness_ratio", "consumer_choices"):
            assert np.array_equal(getattr(a, name), getattr(b, name)), name
        c = simulate(graph, cfg, repetition=3)
        assert not np.array_equal(a.consumer_choices, c.consumer_choices)

    def test_ring_scenario_locked(self, ring10, make_config):
        """10-customer ring, two products, fixed parameters and seed: pinned purchase and Gini trace."""
        cfg = make_config(num_products=2, alpha=0.5, buy_probability=1.0, stationality=1, days=5,
                          extended_model=False, random_model=False, social_preference=0.5, u_min=0.3,
                          uncertainty_threshold=0.3, root_seed=2024)
        first = Market(ring10, cfg).run(repetition=0)
        second = Market(ring10, cfg).run(repetition=0)
        assert first.recorded == 4
        expected = [
            [0, 0, 0, 0, 0, 1, 1, 1, 1, 0],
            [0, 0, 0, 0, 0, 1, 1, 1, 0, 0],
            [0, 0, 0, 0, 0, 1, 1, 1, 0, 0],
            [0, 0, 0, 0, 0, 1, 1, 1, 0, 0],
        ]
        assert first.consumer_choices.T.tolist() == expected
        assert first.gini.tolist() == pytest.approx([0.1, 0.2, 0.2, 0.2])
        assert first.turbulence[1:].tolist() == pytest.approx([0.1, 0.0, 0.0])
        assert first.product_selection[:, -1].tolist() == [7, 3]
        assert np.array_equal(first.consumer_choices, second.consumer_choices)
        assert np.array_equal(first.gini, second.gini)

    def test_npv_accrual(self, ring10, make_config):
        """Seed cost is numSeeds/8 discounted at 0.9 per step; seeds never leave the campaign."""
        cfg = make_config(optimize=True, extended_model=True, days=10, stationality=2)
        stats = Market(ring10, cfg).run(targeting=WeightedTargeting([1.0, 0.0, 0.0]), num_seeds=3)
        expected_cost = 0.0
        for step in range(10):
            expected_cost += 3 * SEED_COST * ADOPTION_DISCOUNT ** step
        assert stats.campaign.cost == pytest.approx(expected_cost)
        assert stats.campaign.benefit >= 0.0
        seeds = [0, 1, 2]
        assert np.all(stats.consumer_choices[seeds] == 2)

    def test_count_adopters_excludes_seeds_and_holders(self, ring10, make_config):
        m = _ready(ring10, make_config(optimize=True, extended_model=True, days=10, stationality=2))
        camp, pop = m.campaign_product, m.population
        pop.purchases[:] = 0
        pop.mark_seed(0, camp)
        past = pop.purchases.copy()
        past[0] = 0
        past[1] = camp
        pop.purchases[[1, 2, 3]] = camp
        # 0 is a seed, 1 already held the campaign product
        assert m.count_adopters(past) == 2
        assert m.count_adopters(pop.purchases.copy()) == 0

    def test_benefit_uses_pre_consumption_snapshot(self, ring10, make_config):
        """Adopters at an event step are discounted by 0.9**step; cost follows the seed count."""
        m = _ready(ring10, make_config(optimize=True, extended_model=True, days=10, stationality=2))
        camp, pop = m.campaign_product, m.population
        pop.purchases[:] = 0
        pop.mark_seed(0, camp)
        pop.purchases[1] = camp
        m.num_seeds = 1

        def switch_two():
            pop.purchases[[2, 3]] = camp
            return np.zeros(len(Heuristic), dtype=np.int64), 0.0

        m.consumption_pass = switch_two
        m.current_step = 2
        assert m.step() is True
        assert m.statistics.campaign.benefit == pytest.approx(2 * ADOPTION_DISCOUNT ** 2)
        assert m.statistics.campaign.cost == pytest.approx(SEED_COST * ADOPTION_DISCOUNT ** 2)
        assert m.step() is False
        assert m.statistics.campaign.benefit == pytest.approx(2 * ADOPTION_DISCOUNT ** 2)

    def test_no_campaign_outside_optimization(self, ring10, make_config):
        m = Market(ring10, make_config())
        assert m.run().campaign is None
        with pytest.raises(ValueError):
            m.run(targeting=WeightedTargeting([1.0, 0.0, 0.0]), num_seeds=1)

    def test_step_api(self, ring10, make_config):
        m = Market(ring10, make_config(days=3))
        with pytest.raises(RuntimeError):
            m.step()
        m.setup()
        assert m.step() is False
        assert m.step() is True
        assert m.step() is True
        with pytest.raises(RuntimeError):
            m.step()
        assert m.statistics.recorded == 2
