"""Meiotic distances and paths between individuals of one pedigree.

Every pedigree is a tree (each individual has at most one father), so two
members are joined by exactly one path. That makes a single traversal from
one endpoint sufficient: the first time it reaches the other endpoint, the
accumulated step count is the number of meioses between them.

Visited flags and distances live in query-local dicts, never on the
Individuals, so read-only queries on different pedigrees don't interfere.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pedigree_sim.types import UNRELATED, Individual, Population


def _require_pedigree(*individuals: Individual) -> None:
    for indv in individuals:
        if not indv.pedigree_is_set:
            raise ValueError(
                f"Individual {indv.pid} has no pedigree; "
                f"run extract_pedigrees() first"
            )


def _neighbours(indv: Individual) -> List[int]:
    if indv.father is None:
        return list(indv.children)
    return [indv.father] + indv.children


# ═══════════════════════════════════════════════════════════════════════
# MEIOTIC DISTANCE
# ═══════════════════════════════════════════════════════════════════════

def meiotic_distance(
    population: Population,
    a: Individual,
    b: Individual,
) -> int:
    """Number of meioses (tree edges) between ``a`` and ``b``.

    Depth-first walk from ``b`` over father and children edges. Each node is
    marked visited before it is pushed, so the walk terminates after at most
    pedigree-size steps.

    Returns:
        Distance >= 0, or UNRELATED (-1) if a and b are in different
        pedigrees.

    Raises:
        ValueError: If either individual has no pedigree.
        RuntimeError: If ``a`` is unreachable inside its own pedigree.
    """
    _require_pedigree(a, b)
    if a.pedigree_id != b.pedigree_id:
        return UNRELATED

    distance: Dict[int, int] = {b.pid: 0}
    stack = [b.pid]
    while stack:
        pid = stack.pop()
        if pid == a.pid:
            return distance[pid]
        step = distance[pid] + 1
        for nb in _neighbours(population[pid]):
            if nb not in distance:
                distance[nb] = step
                stack.append(nb)

    raise RuntimeError(
        f"Individual {a.pid} not reachable from {b.pid} within pedigree "
        f"{a.pedigree_id}"
    )


def meiotic_distances_from(
    population: Population,
    individual: Individual,
) -> Dict[int, int]:
    """Meiotic distance from ``individual`` to every member of its pedigree.

    Returns:
        Dict mapping pid → distance, covering the whole pedigree.

    Raises:
        ValueError: If the individual has no pedigree.
    """
    _require_pedigree(individual)
    distance: Dict[int, int] = {individual.pid: 0}
    stack = [individual.pid]
    while stack:
        pid = stack.pop()
        step = distance[pid] + 1
        for nb in _neighbours(population[pid]):
            if nb not in distance:
                distance[nb] = step
                stack.append(nb)
    return distance


# ═══════════════════════════════════════════════════════════════════════
# PATHS
# ═══════════════════════════════════════════════════════════════════════

def path_to_root(
    population: Population,
    individual: Individual,
) -> List[Individual]:
    """Individuals from the pedigree root down to ``individual`` (inclusive).

    Raises:
        ValueError: If the individual has no pedigree.
        RuntimeError: If the father chain does not end at the pedigree root.
    """
    _require_pedigree(individual)
    pedigree = population.pedigree_of(individual)

    path = [individual]
    current = individual
    while current.father is not None:
        current = population[current.father]
        path.append(current)

    if current.pid != pedigree.root:
        raise RuntimeError(
            f"Could not find path between root {pedigree.root} and "
            f"individual {individual.pid}"
        )

    path.reverse()
    return path


def _common_prefix_length(path_a: List[Individual], path_b: List[Individual]) -> int:
    n = 0
    for x, y in zip(path_a, path_b):
        if x.pid != y.pid:
            break
        n += 1
    return n


def path_between(
    population: Population,
    a: Individual,
    b: Individual,
) -> List[Individual]:
    """Individuals on the tree path joining ``a`` and ``b``.

    Ordered as [lowest common ancestor] + (LCA → a, excluding the LCA)
    + (LCA → b, excluding the LCA), so ``len(path) - 1`` equals the
    meiotic distance.

    Returns:
        List of Individuals; empty if a and b are in different pedigrees.

    Raises:
        ValueError: If either individual has no pedigree.
        RuntimeError: If the two root paths share no ancestor.
    """
    _require_pedigree(a, b)
    if a.pedigree_id != b.pedigree_id:
        return []

    path_a = path_to_root(population, a)
    path_b = path_to_root(population, b)

    lca_index = _common_prefix_length(path_a, path_b)
    if lca_index == 0:
        raise RuntimeError(
            f"Root paths of {a.pid} and {b.pid} share no common ancestor"
        )

    return [path_a[lca_index - 1]] + path_a[lca_index:] + path_b[lca_index:]


def lowest_common_ancestor(
    population: Population,
    a: Individual,
    b: Individual,
) -> Optional[Individual]:
    """Most recent common paternal ancestor, or None if unrelated."""
    path = path_between(population, a, b)
    return path[0] if path else None
