"""Pedigree extraction and generation-bounded pedigree queries.

A simulated Population is a forest: every individual has at most one
father. extract_pedigrees() flood-fills it into its maximal trees:
  - Each not-yet-assigned individual seeds a new Pedigree
  - A stack traversal follows father and children edges, stamping the
    pedigree id on every node reached for the first time
  - Already-assigned nodes are skipped, which both terminates the walk and
    keeps each member and each father→child relation recorded once
  - The root is the single member without a father

Traversals are iterative: pedigree depth equals the number of simulated
generations, which easily exceeds Python's recursion limit.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np

from pedigree_sim.kinship import meiotic_distances_from
from pedigree_sim.types import Individual, Pedigree, Population


# ═══════════════════════════════════════════════════════════════════════
# EXTRACTION
# ═══════════════════════════════════════════════════════════════════════

def _assign_pedigree(
    population: Population,
    seed: Individual,
    pedigree: Pedigree,
) -> None:
    """Stamp ``pedigree`` on every individual connected to ``seed``."""
    stack = [seed.pid]
    while stack:
        indv = population[stack.pop()]
        if indv.pedigree_is_set:
            continue

        indv.pedigree_id = pedigree.pedigree_id
        pedigree.add_member(indv.pid)

        if indv.father is not None:
            stack.append(indv.father)

        for child_pid in indv.children:
            pedigree.add_relation(indv.pid, child_pid)
            stack.append(child_pid)


def _find_root(population: Population, pedigree: Pedigree) -> int:
    roots = [pid for pid in pedigree.members if population[pid].father is None]
    if len(roots) != 1:
        raise RuntimeError(
            f"Pedigree {pedigree.pedigree_id} has {len(roots)} members without "
            f"a father; expected exactly one root"
        )
    return roots[0]


def extract_pedigrees(population: Population) -> List[Pedigree]:
    """Partition a Population into its maximal father/children trees.

    Sets ``pedigree_id`` on every Individual and stores the pedigrees on
    ``population.pedigrees`` (indexed by pedigree id).

    Args:
        population: Freshly simulated Population (no pedigree assigned yet).

    Returns:
        List of Pedigree, in order of their lowest member pid.

    Raises:
        ValueError: If the population was already partitioned.
        RuntimeError: If a component does not have exactly one root.
    """
    if population.pedigrees:
        raise ValueError(
            f"Population already partitioned into "
            f"{len(population.pedigrees)} pedigrees"
        )

    pedigrees: List[Pedigree] = []
    for indv in population:
        if indv.pedigree_is_set:
            continue
        ped = Pedigree(pedigree_id=len(pedigrees))
        _assign_pedigree(population, indv, ped)
        ped.root = _find_root(population, ped)
        pedigrees.append(ped)

    population.pedigrees = pedigrees
    return pedigrees


# ═══════════════════════════════════════════════════════════════════════
# GENERATION-BOUNDED QUERIES
# ═══════════════════════════════════════════════════════════════════════

def population_size_generation(
    population: Population,
    generation_upper_bound: int = -1,
) -> int:
    """Number of individuals with generation <= bound (-1 = no bound)."""
    if generation_upper_bound == -1:
        return len(population)
    return sum(
        1 for indv in population if indv.generation <= generation_upper_bound
    )


def pedigree_size_generation(
    population: Population,
    pedigree: Pedigree,
    generation_upper_bound: int = -1,
) -> int:
    """Number of pedigree members with generation <= bound (-1 = no bound)."""
    if generation_upper_bound == -1:
        return pedigree.size
    return sum(
        1 for pid in pedigree.members
        if population[pid].generation <= generation_upper_bound
    )


def meioses_generation_distribution(
    population: Population,
    individual: Individual,
    generation_upper_bound: int = -1,
) -> np.ndarray:
    """Tabulate pedigree members by (generation, meioses from ``individual``).

    Args:
        population: Partitioned Population.
        individual: Reference individual.
        generation_upper_bound: Ignore members above this generation
            (-1 = no bound).

    Returns:
        (n_rows, 3) int64 array with columns (generation, meioses, count),
        sorted by generation then meioses.

    Raises:
        ValueError: If ``individual`` has no pedigree.
    """
    pedigree = population.pedigree_of(individual)
    distances = meiotic_distances_from(population, individual)

    tab: Dict[int, Dict[int, int]] = {}
    for pid in pedigree.members:
        generation = population[pid].generation
        if generation_upper_bound != -1 and generation > generation_upper_bound:
            continue
        row = tab.setdefault(generation, {})
        dist = distances[pid]
        row[dist] = row.get(dist, 0) + 1

    rows = [
        (generation, dist, count)
        for generation in sorted(tab)
        for dist, count in sorted(tab[generation].items())
    ]
    if not rows:
        return np.empty((0, 3), dtype=np.int64)
    return np.array(rows, dtype=np.int64)
