"""Haplotype inheritance down pedigree trees.

Three transmission models, each seeded at the pedigree root and pushed to
every descendant:
  - Unbounded Y-STR model: each locus mutates with its own rate; a mutation
    moves the repeat count by exactly ±1 with equal probability
  - Ladder-bounded Y-STR model: same trigger, but the step is forced upward
    at ladder_min and downward at ladder_max; a mutating locus found outside
    [ladder_min, ladder_max] is a data error
  - Theta-correlated autosomal model: founders draw an unordered allele
    pair from
        P(i, i) = theta·p_i + (1 - theta)·p_i²
        P(i, j) = (1 - theta)·2·p_i·p_j          (i != j)
    A child receives one parental allele chosen uniformly; the second allele
    is drawn from the genotype distribution conditioned on the first. Both
    allele indices then take a boundary-aware ±1 mutation step and the pair
    is stored sorted.

Every transmitted node is flagged (Individual.haplotype_mutated); reaching a
flagged node again means the traversal visited it twice and raises
RuntimeError. A pedigree can be populated once; reset_haplotypes() clears it
for another pass.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import stats as sp_stats

from pedigree_sim.rng import get_pedigree_rng
from pedigree_sim.types import Individual, Pedigree, Population


# Poll should_stop() every this many pedigrees in the all-pedigree loops.
CHECK_ABORT_EVERY = 100

RngSource = Union[np.random.Generator, Dict[str, np.random.Generator]]


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _as_rates(mutation_rates: Sequence[float]) -> np.ndarray:
    rates = np.asarray(mutation_rates, dtype=np.float64)
    if rates.ndim != 1:
        raise ValueError("mutation_rates must be a 1-D sequence")
    if np.any(rates < 0.0) or np.any(rates > 1.0):
        raise ValueError("mutation_rates must be between 0 and 1, both included")
    return rates


def _require_haplotype(individual: Individual, n_loci: int) -> None:
    if not individual.haplotype_is_set:
        raise ValueError(
            f"Haplotype of individual {individual.pid} not set yet, "
            f"so cannot mutate"
        )
    if len(individual.haplotype) != n_loci:
        raise ValueError(
            f"Number of loci in haplotype of individual {individual.pid} "
            f"({len(individual.haplotype)}) must equal number of mutation "
            f"rates ({n_loci})"
        )


def _require_parent_haplotype(individual: Individual) -> None:
    if not individual.haplotype_is_set:
        raise ValueError(
            f"Haplotype of individual {individual.pid} not set yet, "
            f"so cannot pass to children"
        )


def _as_ladder(
    ladder_min: Sequence[int],
    ladder_max: Sequence[int],
    n_loci: int,
) -> Tuple[np.ndarray, np.ndarray]:
    lo = np.asarray(ladder_min, dtype=np.int64)
    hi = np.asarray(ladder_max, dtype=np.int64)
    if len(lo) != n_loci or len(hi) != n_loci:
        raise ValueError(
            f"ladder_min and ladder_max must have {n_loci} loci, "
            f"got {len(lo)} and {len(hi)}"
        )
    if np.any(lo >= hi):
        raise ValueError("ladder_min must be < ladder_max at every locus")
    return lo, hi


def _normalise_allele_dist(allele_dist: Sequence[float]) -> np.ndarray:
    ps = np.asarray(allele_dist, dtype=np.float64)
    if ps.ndim != 1 or len(ps) < 2:
        raise ValueError("allele_dist must be a 1-D sequence of at least 2 alleles")
    if np.any(ps < 0.0) or np.any(ps > 1.0):
        raise ValueError(
            "allele_dist's elements must be between 0 and 1, both included"
        )
    total = ps.sum()
    if total <= 0.0:
        raise ValueError("allele_dist must have a positive sum")
    return ps / total


def _check_theta(theta: float) -> None:
    if not (0.0 <= theta <= 1.0):
        raise ValueError(f"theta must be between 0 and 1, both included, got {theta}")


def _check_mutation_rate(mutation_rate: float) -> None:
    if not (0.0 <= mutation_rate <= 1.0):
        raise ValueError(
            f"mutation_rate must be between 0 and 1, both included, "
            f"got {mutation_rate}"
        )


# ═══════════════════════════════════════════════════════════════════════
# Y-CHROMOSOMAL MUTATION
# ═══════════════════════════════════════════════════════════════════════

def _mutate_unbounded(
    individual: Individual,
    rates: np.ndarray,
    rng: np.random.Generator,
) -> None:
    _require_haplotype(individual, len(rates))
    individual.mark_mutated()

    n_loci = len(rates)
    hit = rng.random(n_loci) < rates
    step = np.where(rng.random(n_loci) < 0.5, -1, 1)
    individual.haplotype[hit] += step[hit]


def _mutate_ladder(
    individual: Individual,
    rates: np.ndarray,
    lo: np.ndarray,
    hi: np.ndarray,
    rng: np.random.Generator,
) -> None:
    _require_haplotype(individual, len(rates))
    if individual.haplotype_mutated:
        raise RuntimeError(
            f"Haplotype of individual {individual.pid} already set and mutated"
        )

    h = individual.haplotype
    n_loci = len(rates)
    hit = rng.random(n_loci) < rates

    outside = hit & ((h < lo) | (h > hi))
    if np.any(outside):
        loc = int(np.flatnonzero(outside)[0])
        raise ValueError(
            f"Haplotype of individual {individual.pid} at locus {loc} "
            f"({h[loc]}) outside ladder [{lo[loc]}, {hi[loc]}]"
        )

    step = np.where(rng.random(n_loci) < 0.5, -1, 1)
    step = np.where(h == lo, 1, np.where(h == hi, -1, step))
    individual.mark_mutated()
    h[hit] += step[hit]


def mutate_haplotype(
    individual: Individual,
    mutation_rates: Sequence[float],
    rng: np.random.Generator,
) -> None:
    """Apply one generation of unbounded ±1 stepwise mutation in place.

    Raises:
        ValueError: If the haplotype is unset or its locus count differs
            from len(mutation_rates).
        RuntimeError: If the individual was already mutated.
    """
    _mutate_unbounded(individual, _as_rates(mutation_rates), rng)


def mutate_haplotype_ladder_bounded(
    individual: Individual,
    mutation_rates: Sequence[float],
    ladder_min: Sequence[int],
    ladder_max: Sequence[int],
    rng: np.random.Generator,
) -> None:
    """Apply one generation of ladder-bounded stepwise mutation in place.

    A mutating locus at ladder_min moves up, at ladder_max moves down,
    anywhere else moves ±1 with equal probability.

    Raises:
        ValueError: If the haplotype is unset, locus counts differ, or a
            mutating locus lies outside its ladder.
        RuntimeError: If the individual was already mutated.
    """
    rates = _as_rates(mutation_rates)
    lo, hi = _as_ladder(ladder_min, ladder_max, len(rates))
    _mutate_ladder(individual, rates, lo, hi, rng)


def possible_mutate_index(
    index: int,
    mutation_rate: float,
    max_index: int,
    rng: np.random.Generator,
) -> int:
    """Maybe move an allele index one step along [0, max_index].

    Index 0 can only move up, max_index only down.

    Raises:
        ValueError: If max_index < 1.
    """
    if max_index <= 0:
        raise ValueError(f"max_index must be >= 1, got {max_index}")

    if rng.random() >= mutation_rate:
        return index

    if index == 0:
        return 1
    if index == max_index:
        return max_index - 1
    return index - 1 if rng.random() < 0.5 else index + 1


# ═══════════════════════════════════════════════════════════════════════
# AUTOSOMAL GENOTYPE DISTRIBUTIONS
# ═══════════════════════════════════════════════════════════════════════

def autosomal_genotype_probs(
    allele_dist: Sequence[float],
    theta: float,
) -> np.ndarray:
    """Genotype probabilities under theta, packed lower-triangular.

    Entry k enumerates (i, j) with j <= i in row-major order:
    (0,0), (1,0), (1,1), (2,0), ... as given by np.tril_indices.

    Args:
        allele_dist: Allele probabilities (normalised here).
        theta: Coancestry coefficient in [0, 1].

    Returns:
        (A·(A+1)/2,) float64 probabilities summing to 1.
    """
    _check_theta(theta)
    ps = _normalise_allele_dist(allele_dist)
    rows, cols = np.tril_indices(len(ps))
    probs = (1.0 - theta) * 2.0 * ps[rows] * ps[cols]
    homo = rows == cols
    probs[homo] = theta * ps[rows[homo]] + (1.0 - theta) * ps[rows[homo]] ** 2
    return probs


def autosomal_conditional_cumdist(
    allele_dist: Sequence[float],
    theta: float,
) -> np.ndarray:
    """Cumulative distribution of the second allele given the first.

    Row i is the genotype distribution restricted to genotypes containing
    allele i and renormalised:
        P(j | i) = (theta·p_i + (1 - theta)·p_i²) / p_i   (j == i)
                 = (1 - theta)·p_i·p_j / p_i              (j != i)
    which simplifies to theta·[i == j] + (1 - theta)·p_j. The simplified
    form is used for alleles with p_i == 0 (reachable through mutation).

    Returns:
        (A, A) float64 matrix; row i is cumulative, ending at 1.
    """
    _check_theta(theta)
    ps = _normalise_allele_dist(allele_dist)
    n = len(ps)

    dists = (1.0 - theta) * np.outer(ps, ps)
    np.fill_diagonal(dists, theta * ps + (1.0 - theta) * ps ** 2)

    rows = np.empty_like(dists)
    present = ps > 0.0
    rows[present] = dists[present] / ps[present, None]
    rows[~present] = theta * np.eye(n)[~present] + (1.0 - theta) * ps[None, :]

    return np.cumsum(rows, axis=1)


def _inverse_cdf(cumdist: np.ndarray, u: float) -> int:
    # first index with u <= cumdist[index]; shortfall past the end -> last index
    pos = int(np.searchsorted(cumdist, u, side='left'))
    return min(pos, len(cumdist) - 1)


def draw_autosomal_genotype(
    genotype_cumdist: np.ndarray,
    alleles_count: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw a sorted allele-index pair from a packed genotype CDF."""
    rows, cols = np.tril_indices(alleles_count)
    k = _inverse_cdf(genotype_cumdist, rng.random())
    return np.array([cols[k], rows[k]], dtype=np.int64)


def sample_autosomal_genotype(
    allele_dist: Sequence[float],
    theta: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw one founder genotype (sorted allele-index pair) under theta."""
    cumdist = np.cumsum(autosomal_genotype_probs(allele_dist, theta))
    return draw_autosomal_genotype(cumdist, len(allele_dist), rng)


# ═══════════════════════════════════════════════════════════════════════
# TRANSMISSION
# ═══════════════════════════════════════════════════════════════════════

def _descend(
    population: Population,
    individual: Individual,
    transmit: Callable[[Individual, Individual], None],
    recursive: bool,
) -> None:
    """Apply ``transmit(parent, child)`` to every descendant, depth first."""
    stack = [individual.pid]
    while stack:
        parent = population[stack.pop()]
        for child_pid in parent.children:
            transmit(parent, population[child_pid])
            if recursive:
                stack.append(child_pid)


def pass_haplotype_to_children(
    population: Population,
    individual: Individual,
    mutation_rates: Sequence[float],
    rng: np.random.Generator,
    recursive: bool = True,
) -> None:
    """Copy the haplotype to each child and mutate it (unbounded model)."""
    _require_parent_haplotype(individual)
    rates = _as_rates(mutation_rates)

    def transmit(parent: Individual, child: Individual) -> None:
        child.set_haplotype(parent.haplotype)
        _mutate_unbounded(child, rates, rng)

    _descend(population, individual, transmit, recursive)


def pass_haplotype_to_children_ladder_bounded(
    population: Population,
    individual: Individual,
    mutation_rates: Sequence[float],
    ladder_min: Sequence[int],
    ladder_max: Sequence[int],
    rng: np.random.Generator,
    recursive: bool = True,
) -> None:
    """Copy the haplotype to each child and mutate it (ladder model)."""
    _require_parent_haplotype(individual)
    rates = _as_rates(mutation_rates)
    lo, hi = _as_ladder(ladder_min, ladder_max, len(rates))

    def transmit(parent: Individual, child: Individual) -> None:
        child.set_haplotype(parent.haplotype)
        _mutate_ladder(child, rates, lo, hi, rng)

    _descend(population, individual, transmit, recursive)


def pass_autosomal_to_children(
    population: Population,
    individual: Individual,
    conditional_cumdists: np.ndarray,
    mutation_rate: float,
    rng: np.random.Generator,
    recursive: bool = True,
) -> None:
    """Transmit a theta-correlated genotype to each child.

    Args:
        conditional_cumdists: (A, A) matrix from autosomal_conditional_cumdist().
        mutation_rate: Per-allele probability of a ±1 index step.
    """
    _require_parent_haplotype(individual)
    _check_mutation_rate(mutation_rate)
    max_index = conditional_cumdists.shape[0] - 1

    def transmit(parent: Individual, child: Individual) -> None:
        geno = parent.haplotype
        transmitted = int(geno[0] if rng.random() < 0.5 else geno[1])
        second = _inverse_cdf(conditional_cumdists[transmitted], rng.random())

        a1 = possible_mutate_index(transmitted, mutation_rate, max_index, rng)
        a2 = possible_mutate_index(second, mutation_rate, max_index, rng)

        child.set_haplotype(sorted((a1, a2)))
        child.mark_mutated()

    _descend(population, individual, transmit, recursive)


# ═══════════════════════════════════════════════════════════════════════
# PER-PEDIGREE POPULATION
# ═══════════════════════════════════════════════════════════════════════

def _begin(population: Population, pedigree: Pedigree) -> Individual:
    if pedigree.haplotypes_populated:
        raise ValueError(
            f"Pedigree {pedigree.pedigree_id} already populated; "
            f"call reset_haplotypes() first"
        )
    if pedigree.root is None:
        raise ValueError(f"Pedigree {pedigree.pedigree_id} has no root")
    return population[pedigree.root]


def reset_haplotypes(population: Population, pedigree: Pedigree) -> None:
    """Clear haplotypes and mutation flags of every pedigree member."""
    for pid in pedigree.members:
        population[pid].reset_haplotype()
    pedigree.haplotypes_populated = False


def populate_haplotypes(
    population: Population,
    pedigree: Pedigree,
    founder_haplotype: Sequence[int],
    mutation_rates: Sequence[float],
    rng: np.random.Generator,
) -> None:
    """Give the root ``founder_haplotype`` and push it down (unbounded model).

    Raises:
        ValueError: On a second call without reset, or if the founder
            haplotype and mutation rates disagree in length.
    """
    root = _begin(population, pedigree)
    rates = _as_rates(mutation_rates)
    if len(founder_haplotype) != len(rates):
        raise ValueError(
            f"founder_haplotype has {len(founder_haplotype)} loci but "
            f"{len(rates)} mutation rates were given"
        )
    root.set_haplotype(founder_haplotype)
    pass_haplotype_to_children(population, root, rates, rng)
    pedigree.haplotypes_populated = True


def populate_haplotypes_ladder_bounded(
    population: Population,
    pedigree: Pedigree,
    mutation_rates: Sequence[float],
    ladder_min: Sequence[int],
    ladder_max: Sequence[int],
    rng: np.random.Generator,
    founder_haplotype: Optional[Sequence[int]] = None,
) -> None:
    """Seed the root from the ladder and push down (ladder-bounded model).

    Without ``founder_haplotype`` each root locus is drawn uniformly from
    [ladder_min, ladder_max].

    Raises:
        ValueError: On a second call without reset, inconsistent lengths, or
            a founder haplotype outside the ladder.
    """
    root = _begin(population, pedigree)
    rates = _as_rates(mutation_rates)
    lo, hi = _as_ladder(ladder_min, ladder_max, len(rates))

    if founder_haplotype is None:
        founder = rng.integers(lo, hi + 1)
    else:
        founder = np.asarray(founder_haplotype, dtype=np.int64)
        if len(founder) != len(rates):
            raise ValueError(
                f"founder_haplotype has {len(founder)} loci but "
                f"{len(rates)} mutation rates were given"
            )
        if np.any(founder < lo) or np.any(founder > hi):
            raise ValueError("founder_haplotype outside ladder")

    root.set_haplotype(founder)
    pass_haplotype_to_children_ladder_bounded(population, root, rates, lo, hi, rng)
    pedigree.haplotypes_populated = True


def populate_autosomal_precomputed(
    population: Population,
    pedigree: Pedigree,
    genotype_cumdist: np.ndarray,
    conditional_cumdists: np.ndarray,
    mutation_rate: float,
    rng: np.random.Generator,
) -> None:
    """populate_autosomal() with the distributions already computed."""
    root = _begin(population, pedigree)
    alleles_count = conditional_cumdists.shape[0]
    root.set_haplotype(draw_autosomal_genotype(genotype_cumdist, alleles_count, rng))
    pass_autosomal_to_children(population, root, conditional_cumdists, mutation_rate, rng)
    pedigree.haplotypes_populated = True


def populate_autosomal(
    population: Population,
    pedigree: Pedigree,
    allele_dist: Sequence[float],
    theta: float,
    mutation_rate: float,
    rng: np.random.Generator,
) -> None:
    """Draw the root genotype under theta and push it down the pedigree.

    Raises:
        ValueError: On invalid allele_dist / theta / mutation_rate, or a
            second call without reset.
    """
    _check_mutation_rate(mutation_rate)
    genotype_cumdist = np.cumsum(autosomal_genotype_probs(allele_dist, theta))
    conditional = autosomal_conditional_cumdist(allele_dist, theta)
    populate_autosomal_precomputed(
        population, pedigree, genotype_cumdist, conditional, mutation_rate, rng,
    )


# ═══════════════════════════════════════════════════════════════════════
# ALL-PEDIGREE LOOPS
# ═══════════════════════════════════════════════════════════════════════

def _pedigree_rng(rng: RngSource, pedigree: Pedigree) -> np.random.Generator:
    if isinstance(rng, dict):
        return get_pedigree_rng(rng, pedigree.pedigree_id)
    return rng


def _populate_all(
    pedigrees: Sequence[Pedigree],
    populate_one: Callable[[Pedigree], None],
    progress_callback: Optional[Callable[[int, int], None]],
    should_stop: Optional[Callable[[], bool]],
) -> int:
    n = len(pedigrees)
    for i, ped in enumerate(pedigrees):
        if should_stop is not None and i % CHECK_ABORT_EVERY == 0 and should_stop():
            return i
        populate_one(ped)
        if progress_callback is not None:
            progress_callback(i + 1, n)
    return n


def pedigrees_all_populate_haplotypes(
    population: Population,
    pedigrees: Sequence[Pedigree],
    founder_haplotype: Sequence[int],
    mutation_rates: Sequence[float],
    rng: RngSource,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> int:
    """Populate every pedigree with the unbounded model.

    ``rng`` is one shared Generator or an RNG hierarchy with a
    'pedigree_{id}' stream per pedigree. ``should_stop`` is polled between
    pedigrees every CHECK_ABORT_EVERY pedigrees.

    Returns:
        Number of pedigrees populated (less than len(pedigrees) if stopped).
    """
    return _populate_all(
        pedigrees,
        lambda ped: populate_haplotypes(
            population, ped, founder_haplotype, mutation_rates,
            _pedigree_rng(rng, ped),
        ),
        progress_callback,
        should_stop,
    )


def pedigrees_all_populate_haplotypes_ladder_bounded(
    population: Population,
    pedigrees: Sequence[Pedigree],
    mutation_rates: Sequence[float],
    ladder_min: Sequence[int],
    ladder_max: Sequence[int],
    rng: RngSource,
    founder_haplotype: Optional[Sequence[int]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> int:
    """Populate every pedigree with the ladder-bounded model."""
    return _populate_all(
        pedigrees,
        lambda ped: populate_haplotypes_ladder_bounded(
            population, ped, mutation_rates, ladder_min, ladder_max,
            _pedigree_rng(rng, ped), founder_haplotype=founder_haplotype,
        ),
        progress_callback,
        should_stop,
    )


def pedigrees_all_populate_autosomal(
    population: Population,
    pedigrees: Sequence[Pedigree],
    allele_dist: Sequence[float],
    theta: float,
    mutation_rate: float,
    rng: RngSource,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> int:
    """Populate every pedigree with the theta-correlated autosomal model.

    The founder and conditional distributions are computed once and shared.
    """
    _check_mutation_rate(mutation_rate)
    genotype_cumdist = np.cumsum(autosomal_genotype_probs(allele_dist, theta))
    conditional = autosomal_conditional_cumdist(allele_dist, theta)
    return _populate_all(
        pedigrees,
        lambda ped: populate_autosomal_precomputed(
            population, ped, genotype_cumdist, conditional, mutation_rate,
            _pedigree_rng(rng, ped),
        ),
        progress_callback,
        should_stop,
    )


# ═══════════════════════════════════════════════════════════════════════
# HAPLOTYPE COMPARISON
# ═══════════════════════════════════════════════════════════════════════

def haplotype_l1_distance(a: Individual, b: Individual) -> int:
    """Sum of absolute per-locus differences between two haplotypes."""
    if not a.haplotype_is_set or not b.haplotype_is_set:
        raise ValueError("Both individuals must have haplotypes set")
    if len(a.haplotype) != len(b.haplotype):
        raise ValueError(
            f"Individual {a.pid} has {len(a.haplotype)} loci but individual "
            f"{b.pid} has {len(b.haplotype)}"
        )
    return int(np.abs(a.haplotype - b.haplotype).sum())


def autosomal_genotype_test(
    population: Population,
    pids: Sequence[int],
    allele_dist: Sequence[float],
    theta: float,
) -> Tuple[np.ndarray, np.ndarray, float, float]:
    """Goodness of fit of observed genotypes to the theta genotype model.

    Genotypes are counted in the packed order of autosomal_genotype_probs().
    Categories with zero expected probability are left out of the
    chi-squared statistic.

    Args:
        population: Population with autosomal genotypes set.
        pids: Individuals to count (e.g. the end generation).
        allele_dist: Allele probabilities of the model.
        theta: Coancestry coefficient of the model.

    Returns:
        Tuple of:
          obs_freq: (A·(A+1)/2,) float64 observed genotype frequencies
          exp_freq: (A·(A+1)/2,) float64 expected genotype frequencies
          chi2: chi-squared statistic
          p_value: upper-tail probability with (categories - 1) df
    """
    exp_freq = autosomal_genotype_probs(allele_dist, theta)
    n_alleles = len(allele_dist)
    if len(pids) == 0:
        raise ValueError("pids must not be empty")

    counts = np.zeros(len(exp_freq), dtype=np.float64)
    for pid in pids:
        indv = population[pid]
        if not indv.haplotype_is_set:
            raise ValueError(f"Genotype of individual {pid} not set")
        lo, hi = int(indv.haplotype[0]), int(indv.haplotype[1])
        if not (0 <= lo <= hi < n_alleles):
            raise ValueError(
                f"Genotype of individual {pid} ({lo}, {hi}) is not a sorted "
                f"pair of allele indices below {n_alleles}"
            )
        counts[hi * (hi + 1) // 2 + lo] += 1

    n = len(pids)
    obs_freq = counts / n

    present = exp_freq > 0
    expected = exp_freq[present] * n
    chi2 = float(((counts[present] - expected) ** 2 / expected).sum())
    df = max(int(present.sum()) - 1, 1)
    p_value = float(sp_stats.chi2.sf(chi2, df))
    return obs_freq, exp_freq, chi2, p_value
