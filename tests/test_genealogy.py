"""Tests for pedigree_sim.genealogy — backward-time genealogy simulation.

Covers:
  - Fixed generation count: generation indices span exactly [0, g]
  - Every individual above generation 0 fathered at least one child
  - Simulation to one founder terminates with a single founder
  - Small concrete scenarios (N=4, g=1 and N=2 to one founder)
  - Request validation (configuration errors, no state created)
  - Verbose tables: shapes, consistency, no effect on the sampled genealogy
  - Gamma-weighted father selection and the inverse-CDF tie rule
  - Cooperative cancellation and progress reporting
"""

import numpy as np
import pytest

from pedigree_sim.genealogy import (
    father_slot_distribution,
    sample_father_slots_uniform,
    sample_father_slots_weighted,
    simulate_genealogy,
    validate_genealogy_request,
)
from pedigree_sim.types import NA, UNTIL_ONE_FOUNDER


def _fathers(population):
    return [indv.father for indv in population]


# ═══════════════════════════════════════════════════════════════════════
# FIXED GENERATION COUNT
# ═══════════════════════════════════════════════════════════════════════

class TestFixedGenerations:
    @pytest.mark.parametrize("n,g", [(2, 1), (5, 3), (20, 10), (100, 4)])
    def test_generation_range(self, n, g):
        res = simulate_genealogy(n, g, rng=np.random.default_rng(1))
        generations = {indv.generation for indv in res.population}
        assert generations == set(range(g + 1))
        assert res.generations == g

    def test_every_father_has_children(self):
        res = simulate_genealogy(30, 8, rng=np.random.default_rng(2))
        for indv in res.population:
            if indv.generation > 0:
                assert indv.children_count >= 1

    def test_everyone_below_top_has_father(self):
        g = 6
        res = simulate_genealogy(25, g, rng=np.random.default_rng(3))
        for indv in res.population:
            if indv.generation < g:
                assert indv.father is not None
                assert res.population[indv.father].generation == indv.generation + 1
            else:
                assert indv.father is None

    def test_founders_equals_top_generation_size(self):
        g = 5
        res = simulate_genealogy(40, g, rng=np.random.default_rng(4))
        sizes = res.generation_sizes()
        assert sizes[g] == res.founders
        assert sizes[0] == 40
        assert sizes.sum() == len(res.population)

    def test_generation_sizes_non_increasing(self):
        res = simulate_genealogy(50, 10, rng=np.random.default_rng(5))
        sizes = res.generation_sizes()
        assert np.all(np.diff(sizes) <= 0)

    def test_fixed_count_ignores_founders(self):
        """A long fixed run continues after a single founder remains."""
        res = simulate_genealogy(2, 60, rng=np.random.default_rng(6))
        assert res.generations == 60
        assert res.population.max_generation == 60

    def test_concrete_four_one(self):
        res = simulate_genealogy(4, 1, selection="uniform",
                                 rng=np.random.default_rng(7))
        assert res.generations == 1
        sizes = res.generation_sizes()
        assert sizes[0] == 4
        assert 1 <= sizes[1] <= 4
        assert res.founders == sizes[1]
        for pid in res.end_generation:
            assert res.population[pid].father is not None

    def test_end_generation_is_first_pids(self):
        res = simulate_genealogy(10, 2, rng=np.random.default_rng(8))
        assert res.end_generation == list(range(10))


# ═══════════════════════════════════════════════════════════════════════
# SIMULATE TO ONE FOUNDER
# ═══════════════════════════════════════════════════════════════════════

class TestUntilOneFounder:
    @pytest.mark.parametrize("seed", range(5))
    def test_two_individuals_converge(self, seed):
        res = simulate_genealogy(2, UNTIL_ONE_FOUNDER,
                                 rng=np.random.default_rng(seed))
        assert res.founders == 1
        assert res.generations >= 1
        assert res.generation_sizes()[-1] == 1

    def test_converges_to_single_root(self):
        res = simulate_genealogy(50, UNTIL_ONE_FOUNDER,
                                 rng=np.random.default_rng(11))
        assert res.founders == 1
        roots = [indv for indv in res.population if indv.father is None]
        assert len(roots) == 1
        assert roots[0].generation == res.generations

    def test_gamma_converges(self):
        res = simulate_genealogy(30, UNTIL_ONE_FOUNDER, selection="gamma",
                                 gamma_shape=1.0, gamma_scale=1.0,
                                 rng=np.random.default_rng(12))
        assert res.founders == 1
        assert not res.cancelled


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

class TestValidation:
    @pytest.mark.parametrize("n", [1, 0, -5])
    def test_population_size(self, n):
        with pytest.raises(ValueError, match="population_size"):
            simulate_genealogy(n, 3)

    @pytest.mark.parametrize("g", [0, -2])
    def test_generations(self, g):
        with pytest.raises(ValueError, match="generations"):
            simulate_genealogy(10, g)

    def test_selection_mode(self):
        with pytest.raises(ValueError, match="selection"):
            simulate_genealogy(10, 3, selection="tournament")

    def test_gamma_parameters(self):
        with pytest.raises(ValueError, match="gamma_shape"):
            validate_genealogy_request(10, 3, "gamma", gamma_shape=0.0)

    def test_gamma_parameters_ignored_in_uniform(self):
        validate_genealogy_request(10, 3, "uniform", gamma_shape=-1.0)


# ═══════════════════════════════════════════════════════════════════════
# VERBOSE TABLES
# ═══════════════════════════════════════════════════════════════════════

class TestVerboseResult:
    def test_tables_do_not_change_genealogy(self):
        for selection in ("uniform", "gamma"):
            plain = simulate_genealogy(30, 12, selection=selection,
                                       rng=np.random.default_rng(21))
            verbose = simulate_genealogy(30, 12, selection=selection,
                                         rng=np.random.default_rng(21),
                                         verbose_result=True)
            assert _fathers(plain.population) == _fathers(verbose.population)
            assert plain.founders == verbose.founders

    def test_tables_absent_by_default(self):
        res = simulate_genealogy(5, 2, rng=np.random.default_rng(0))
        assert res.individual_pids is None
        assert res.father_pids is None
        assert res.father_indices is None

    def test_table_shapes(self):
        res = simulate_genealogy(8, 5, rng=np.random.default_rng(22),
                                 verbose_result=True)
        for table in (res.individual_pids, res.father_pids, res.father_indices):
            assert table.shape == (8, 6)
            assert table.dtype == np.int64

    def test_table_consistency(self):
        res = simulate_genealogy(15, 6, rng=np.random.default_rng(23),
                                 verbose_result=True)
        pop = res.population
        np.testing.assert_array_equal(res.individual_pids[:, 0], res.end_generation)
        assert np.all(res.father_pids[:, -1] == NA)
        assert np.all(res.father_indices[:, -1] == NA)

        for g in range(res.generations):
            for slot in range(15):
                pid = res.individual_pids[slot, g]
                if pid == NA:
                    assert res.father_pids[slot, g] == NA
                    continue
                assert pop[pid].generation == g
                assert res.father_pids[slot, g] == pop[pid].father
                father_slot = res.father_indices[slot, g]
                assert res.individual_pids[father_slot, g + 1] == pop[pid].father

    def test_slots_occupied_match_generation_sizes(self):
        res = simulate_genealogy(12, 4, rng=np.random.default_rng(24),
                                 verbose_result=True)
        occupied = (res.individual_pids != NA).sum(axis=0)
        np.testing.assert_array_equal(occupied, res.generation_sizes())

    def test_individuals_generations(self):
        res = simulate_genealogy(10, 5, rng=np.random.default_rng(25),
                                 individuals_generations_return=2)
        expected = sorted(indv.pid for indv in res.population if indv.generation <= 2)
        assert sorted(res.individuals_generations) == expected

    def test_individuals_generations_disabled(self):
        res = simulate_genealogy(10, 3, rng=np.random.default_rng(26),
                                 individuals_generations_return=-1)
        assert res.individuals_generations == []

    def test_verbose_prints_gamma_stats(self, capsys):
        simulate_genealogy(10, 2, selection="gamma",
                           rng=np.random.default_rng(27), verbose=True)
        out = capsys.readouterr().out
        assert "[generation 1]" in out
        assert "[generation 2]" in out


# ═══════════════════════════════════════════════════════════════════════
# FATHER SLOT SAMPLING
# ═══════════════════════════════════════════════════════════════════════

class TestFatherSlotSampling:
    def test_uniform_in_range(self):
        slots = sample_father_slots_uniform(1000, 7, np.random.default_rng(30))
        assert slots.shape == (1000,)
        assert slots.min() >= 0
        assert slots.max() < 7

    def test_distribution_sorted_descending(self):
        cumprob, perm, weights = father_slot_distribution(
            50, 2.0, 0.5, np.random.default_rng(31),
        )
        assert sorted(perm.tolist()) == list(range(50))
        assert np.all(np.diff(weights[perm]) <= 0)
        assert np.all(np.diff(cumprob) >= 0)
        assert cumprob[-1] == pytest.approx(1.0)

    def test_degenerate_weights_pick_dominant_slot(self):
        probs = np.array([0.0, 0.0, 1.0, 0.0])
        perm = np.argsort(-probs, kind='stable')
        cumprob = np.cumsum(probs[perm])
        u = np.random.default_rng(32).random(1000)
        slots = sample_father_slots_weighted(cumprob, perm, u)
        assert np.all(slots == 2)

    def test_tie_rule_first_cumulative_at_or_above(self):
        cumprob = np.array([0.5, 1.0])
        perm = np.array([3, 1])
        slots = sample_father_slots_weighted(cumprob, perm, np.array([0.0, 0.5, 0.5000001]))
        np.testing.assert_array_equal(slots, [3, 3, 1])

    def test_shortfall_falls_on_last_position(self):
        cumprob = np.array([0.4, 0.7, 0.9999999])
        perm = np.array([0, 1, 2])
        slots = sample_father_slots_weighted(cumprob, perm, np.array([0.99999995]))
        assert slots[0] == 2

    def test_gamma_skew_concentrates_fathers(self):
        """Low shape (high skew) yields fewer distinct fathers than uniform."""
        n, g = 200, 1
        uniform = [
            simulate_genealogy(n, g, rng=np.random.default_rng(s)).founders
            for s in range(10)
        ]
        skewed = [
            simulate_genealogy(n, g, selection="gamma", gamma_shape=0.1,
                               gamma_scale=10.0,
                               rng=np.random.default_rng(s)).founders
            for s in range(10)
        ]
        assert np.mean(skewed) < np.mean(uniform)

    def test_uniform_expected_distinct_fathers(self):
        """E[distinct fathers] = N(1 - (1 - 1/N)^N) ≈ 0.634 N."""
        n = 1000
        res = simulate_genealogy(n, 1, rng=np.random.default_rng(33))
        expected = n * (1 - (1 - 1 / n) ** n)
        assert abs(res.founders - expected) < 0.05 * n


# ═══════════════════════════════════════════════════════════════════════
# CANCELLATION & PROGRESS
# ═══════════════════════════════════════════════════════════════════════

class TestCancellation:
    def test_stop_after_first_generation(self):
        res = simulate_genealogy(20, 10, rng=np.random.default_rng(40),
                                 should_stop=lambda: True)
        assert res.cancelled
        assert res.generations == 1
        assert res.population.max_generation == 1

    def test_stop_at_generation_boundary(self):
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) >= 3

        res = simulate_genealogy(20, UNTIL_ONE_FOUNDER,
                                 rng=np.random.default_rng(41),
                                 should_stop=should_stop)
        assert res.cancelled
        assert res.generations == 3
        # completed generations are fully linked
        for indv in res.population:
            if indv.generation < 3:
                assert indv.father is not None

    def test_not_cancelled(self):
        res = simulate_genealogy(10, 4, rng=np.random.default_rng(42),
                                 should_stop=lambda: False)
        assert not res.cancelled
        assert res.generations == 4

    def test_completed_run_not_cancelled(self):
        res = simulate_genealogy(4, 1, rng=np.random.default_rng(45),
                                 should_stop=lambda: True)
        assert not res.cancelled
        assert res.generations == 1

    def test_no_poll_after_last_generation(self):
        calls = []

        def should_stop():
            calls.append(1)
            return False

        simulate_genealogy(10, 5, rng=np.random.default_rng(46),
                           should_stop=should_stop)
        assert len(calls) == 4

    def test_converged_run_not_cancelled(self):
        calls = []

        def should_stop():
            calls.append(1)
            return False

        res = simulate_genealogy(6, UNTIL_ONE_FOUNDER,
                                 rng=np.random.default_rng(47),
                                 should_stop=should_stop)
        assert not res.cancelled
        assert res.founders == 1
        assert len(calls) == res.generations - 1

    def test_progress_callback_fixed(self):
        calls = []
        simulate_genealogy(10, 5, rng=np.random.default_rng(43),
                           progress_callback=lambda g, n: calls.append((g, n)))
        assert calls == [(g, 5) for g in range(1, 6)]

    def test_progress_callback_until_one_founder(self):
        calls = []
        res = simulate_genealogy(6, UNTIL_ONE_FOUNDER,
                                 rng=np.random.default_rng(44),
                                 progress_callback=lambda g, n: calls.append((g, n)))
        assert calls == [(g, None) for g in range(1, res.generations + 1)]
