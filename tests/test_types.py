"""Tests for pedigree_sim.types — Individual, Pedigree and Population arena."""

import numpy as np
import pytest

from pedigree_sim.types import (
    NA,
    UNRELATED,
    UNTIL_ONE_FOUNDER,
    Individual,
    Pedigree,
    Population,
)


class TestSentinels:
    def test_values(self):
        assert UNRELATED == -1
        assert UNTIL_ONE_FOUNDER == -1
        assert NA == -1


class TestIndividual:
    def test_defaults(self):
        indv = Individual(pid=3, generation=1)
        assert indv.is_founder
        assert not indv.pedigree_is_set
        assert not indv.haplotype_is_set
        assert indv.children_count == 0
        assert not indv.haplotype_mutated

    def test_children_not_shared(self):
        a = Individual(pid=0, generation=0)
        b = Individual(pid=1, generation=0)
        a.children.append(5)
        assert b.children == []

    def test_set_haplotype_copies(self):
        indv = Individual(pid=0, generation=0)
        h = np.array([10, 11, 12])
        indv.set_haplotype(h)
        h[0] = 99
        assert indv.haplotype[0] == 10
        assert indv.haplotype.dtype == np.int64

    def test_set_haplotype_keeps_flag(self):
        indv = Individual(pid=0, generation=0)
        indv.set_haplotype([1, 2])
        assert not indv.haplotype_mutated

    def test_mark_mutated_twice_raises(self):
        indv = Individual(pid=7, generation=0)
        indv.mark_mutated()
        with pytest.raises(RuntimeError, match="already set and mutated"):
            indv.mark_mutated()

    def test_reset_haplotype(self):
        indv = Individual(pid=0, generation=0)
        indv.set_haplotype([1, 2])
        indv.mark_mutated()
        indv.reset_haplotype()
        assert not indv.haplotype_is_set
        assert not indv.haplotype_mutated
        indv.mark_mutated()  # allowed again


class TestPedigree:
    def test_members_and_relations(self):
        ped = Pedigree(pedigree_id=0)
        ped.add_member(4)
        ped.add_member(2)
        ped.add_relation(4, 2)
        assert ped.size == 2
        assert len(ped) == 2
        assert ped.relations == [(4, 2)]
        assert not ped.haplotypes_populated


class TestPopulation:
    def test_pids_dense_and_ordered(self):
        pop = Population()
        pids = [pop.add(0).pid for _ in range(5)]
        assert pids == [0, 1, 2, 3, 4]
        assert len(pop) == 5
        assert [indv.pid for indv in pop] == pids

    def test_getitem_and_contains(self):
        pop = Population()
        pop.add(0)
        assert pop[0].pid == 0
        assert 0 in pop
        assert 1 not in pop
        with pytest.raises(KeyError):
            pop[1]
        with pytest.raises(KeyError):
            pop[-1]

    def test_negative_generation_rejected(self):
        pop = Population()
        with pytest.raises(ValueError, match="generation"):
            pop.add(-1)

    def test_link(self):
        pop = Population()
        child = pop.add(0)
        father = pop.add(1)
        pop.link(child.pid, father.pid)
        assert child.father == father.pid
        assert father.children == [child.pid]
        assert not child.is_founder
        assert father.is_founder

    def test_link_twice_raises(self):
        pop = Population()
        child = pop.add(0)
        f1 = pop.add(1)
        f2 = pop.add(1)
        pop.link(child.pid, f1.pid)
        with pytest.raises(ValueError, match="already has father"):
            pop.link(child.pid, f2.pid)

    def test_link_wrong_generation_raises(self):
        pop = Population()
        child = pop.add(0)
        grandfather = pop.add(2)
        with pytest.raises(ValueError, match="one generation above"):
            pop.link(child.pid, grandfather.pid)

    def test_generations(self):
        pop = Population()
        pop.add(0)
        pop.add(0)
        pop.add(1)
        assert pop.max_generation == 1
        assert pop.generations() == {0: [0, 1], 1: [2]}

    def test_empty_max_generation(self):
        assert Population().max_generation == -1

    def test_pedigree_of_requires_assignment(self):
        pop = Population()
        indv = pop.add(0)
        with pytest.raises(ValueError, match="extract_pedigrees"):
            pop.pedigree_of(indv)
