"""Backward-time genealogy simulation.

Builds a Population of males generation by generation, going back in time:
  - Generation 0 ("end generation") holds population_size individuals
  - Each backward step, every individual still carrying a lineage draws a
    father slot in [0, population_size); the first child to pick a slot
    creates the father, later children share him
  - Uniform mode: slots are i.i.d. uniform
  - Gamma mode: each slot gets a Gamma(shape, scale) fecundity weight per
    generation; slots are drawn by inverse-CDF over the weights sorted in
    descending order (reproductive skew)
  - Stop after a fixed number of backward steps, or once a single founder
    carries every lineage

Cancellation is cooperative: ``should_stop()`` is polled after each completed
generation that another generation would follow, never mid-generation,
since a half-assigned generation is not a valid resumption point. A run
that has met its stop condition is never reported as cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from pedigree_sim.types import (
    FATHER_SELECTION_MODES,
    NA,
    UNTIL_ONE_FOUNDER,
    Population,
)


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class GenealogyResult:
    """Output of simulate_genealogy().

    ``generations`` counts backward steps actually run, so generation
    indices in the population span [0, generations]. The verbose tables
    are (population_size, generations + 1) int64 arrays with NA (-1) in
    unused cells:
      individual_pids[i, g] — pid occupying slot i at generation g
      father_pids[i, g]     — father pid of that individual
      father_indices[i, g]  — 0-based slot of that father at generation g + 1
    The last column of father_pids / father_indices is all NA.
    """
    population: Population
    generations: int
    founders: int
    end_generation: List[int] = field(default_factory=list)
    individuals_generations: List[int] = field(default_factory=list)
    cancelled: bool = False
    individual_pids: Optional[np.ndarray] = None
    father_pids: Optional[np.ndarray] = None
    father_indices: Optional[np.ndarray] = None

    def generation_sizes(self) -> np.ndarray:
        """Number of individuals per generation index, shape (generations + 1,)."""
        sizes = np.zeros(self.generations + 1, dtype=np.int64)
        for indv in self.population:
            sizes[indv.generation] += 1
        return sizes


# ═══════════════════════════════════════════════════════════════════════
# FATHER SLOT SAMPLING
# ═══════════════════════════════════════════════════════════════════════

def sample_father_slots_uniform(
    n_children: int,
    population_size: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw one father slot per child, uniformly over [0, population_size)."""
    return rng.integers(0, population_size, size=n_children)


def father_slot_distribution(
    population_size: int,
    gamma_shape: float,
    gamma_scale: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Draw this generation's fecundity weights and their sorted CDF.

    Weights ~ Gamma(shape, scale) are normalised, stable-sorted descending
    (ties keep slot order) and accumulated.

    Args:
        population_size: Number of candidate father slots.
        gamma_shape: Gamma shape (lower = more skew between slots).
        gamma_scale: Gamma scale.
        rng: NumPy random Generator.

    Returns:
        cumprob: (population_size,) cumulative probabilities, descending order.
        perm: (population_size,) slot index for each sorted position.
        weights: (population_size,) raw gamma draws, in slot order.
    """
    weights = rng.gamma(gamma_shape, gamma_scale, size=population_size)
    total = weights.sum()
    if total > 0:
        probs = weights / total
    else:
        # every draw underflowed to zero (tiny shape): treat slots as equal
        probs = np.full(population_size, 1.0 / population_size)

    perm = np.argsort(-probs, kind='stable')
    cumprob = np.cumsum(probs[perm])
    return cumprob, perm, weights


def sample_father_slots_weighted(
    cumprob: np.ndarray,
    perm: np.ndarray,
    u: np.ndarray,
) -> np.ndarray:
    """Inverse-CDF lookup of father slots.

    Each uniform ``u`` maps to the first sorted position whose cumulative
    probability is >= u; positions past the end (floating-point shortfall
    of the last cumulative value) fall on the last position.

    Args:
        cumprob: Cumulative probabilities from father_slot_distribution().
        perm: Sort permutation from father_slot_distribution().
        u: (n_children,) uniforms in [0, 1).

    Returns:
        (n_children,) father slot indices.
    """
    pos = np.searchsorted(cumprob, u, side='left')
    pos = np.minimum(pos, len(cumprob) - 1)
    return perm[pos]


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

def validate_genealogy_request(
    population_size: int,
    generations: int,
    selection: str = "uniform",
    gamma_shape: float = 5.0,
    gamma_scale: float = 0.2,
) -> None:
    """Reject invalid simulation requests before any state is created.

    Raises:
        ValueError: On population_size <= 1, generations < -1 or == 0,
            unknown selection mode, or non-positive gamma parameters.
    """
    if population_size <= 1:
        raise ValueError(
            f"population_size must be > 1, got {population_size}"
        )
    if generations < UNTIL_ONE_FOUNDER or generations == 0:
        raise ValueError(
            f"generations must be -1 (simulate to one founder) or > 0, "
            f"got {generations}"
        )
    if selection not in FATHER_SELECTION_MODES:
        raise ValueError(
            f"selection must be one of {FATHER_SELECTION_MODES}, "
            f"got '{selection}'"
        )
    if selection == "gamma" and (gamma_shape <= 0 or gamma_scale <= 0):
        raise ValueError(
            f"gamma_shape and gamma_scale must be positive, "
            f"got shape={gamma_shape}, scale={gamma_scale}"
        )


def simulate_genealogy(
    population_size: int,
    generations: int = UNTIL_ONE_FOUNDER,
    selection: str = "uniform",
    gamma_shape: float = 5.0,
    gamma_scale: float = 0.2,
    rng: Optional[np.random.Generator] = None,
    verbose_result: bool = False,
    individuals_generations_return: int = 2,
    progress_callback: Optional[Callable[[int, Optional[int]], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    verbose: bool = False,
) -> GenealogyResult:
    """Simulate a male genealogy backward in time.

    Args:
        population_size: Individuals per generation (> 1).
        generations: Backward steps to run (> 0), or UNTIL_ONE_FOUNDER (-1)
            to run until every lineage coalesces into one founder.
        selection: "uniform" or "gamma" father selection.
        gamma_shape, gamma_scale: Fecundity weight distribution (gamma mode).
        rng: NumPy random Generator.
        verbose_result: Record per-generation pid/father/slot tables.
            Recording never draws random numbers.
        individuals_generations_return: Collect pids of individuals with
            generation <= this value (negative = collect nothing).
        progress_callback: Optional callable(generation, n_generations);
            n_generations is None when simulating to one founder.
        should_stop: Optional callable polled after each generation
            except the last; True stops the run at that boundary with
            ``cancelled=True``.
        verbose: Print per-generation fecundity weight statistics.

    Returns:
        GenealogyResult.

    Raises:
        ValueError: If the request is invalid (see validate_genealogy_request).
    """
    validate_genealogy_request(
        population_size, generations, selection, gamma_shape, gamma_scale,
    )
    if rng is None:
        rng = np.random.default_rng()

    fixed_generations = generations != UNTIL_ONE_FOUNDER
    n_target = generations if fixed_generations else None

    population = Population()
    children: List[Optional[int]] = []
    for _ in range(population_size):
        children.append(population.add(0).pid)

    end_generation = list(children)
    individuals_generations = (
        list(end_generation) if individuals_generations_return >= 0 else []
    )

    pid_cols: List[np.ndarray] = []
    father_pid_cols: List[np.ndarray] = []
    father_idx_cols: List[np.ndarray] = []
    if verbose_result:
        pid_cols.append(np.array(end_generation, dtype=np.int64))

    founders = population_size
    generation = 0
    cancelled = False

    while ((fixed_generations and generation < generations)
           or (not fixed_generations and founders > 1)):
        generation += 1

        occupied = [i for i in range(population_size) if children[i] is not None]
        n_children = len(occupied)

        if selection == "uniform":
            slots = sample_father_slots_uniform(n_children, population_size, rng)
        else:
            cumprob, perm, weights = father_slot_distribution(
                population_size, gamma_shape, gamma_scale, rng,
            )
            if verbose:
                print(
                    f"[generation {generation}] fecundity weights: "
                    f"mean={weights.mean():.4f}, var={weights.var(ddof=1):.4f}"
                )
            slots = sample_father_slots_weighted(
                cumprob, perm, rng.random(n_children),
            )

        fathers: List[Optional[int]] = [None] * population_size
        new_founders = 0

        if verbose_result:
            pid_col = np.full(population_size, NA, dtype=np.int64)
            father_pid_col = np.full(population_size, NA, dtype=np.int64)
            father_idx_col = np.full(population_size, NA, dtype=np.int64)

        for child_slot, father_slot in zip(occupied, slots):
            father_slot = int(father_slot)

            # first child to pick this slot creates the father
            if fathers[father_slot] is None:
                father = population.add(generation)
                fathers[father_slot] = father.pid
                new_founders += 1
                if verbose_result:
                    pid_col[father_slot] = father.pid
                if generation <= individuals_generations_return:
                    individuals_generations.append(father.pid)

            population.link(children[child_slot], fathers[father_slot])

            if verbose_result:
                father_pid_col[child_slot] = fathers[father_slot]
                father_idx_col[child_slot] = father_slot

        if verbose_result:
            pid_cols.append(pid_col)
            father_pid_cols.append(father_pid_col)
            father_idx_cols.append(father_idx_col)

        children = fathers
        founders = new_founders

        if progress_callback is not None:
            progress_callback(generation, n_target)

        done = ((fixed_generations and generation >= generations)
                or (not fixed_generations and founders <= 1))
        if not done and should_stop is not None and should_stop():
            cancelled = True
            break

    result = GenealogyResult(
        population=population,
        generations=generation,
        founders=founders,
        end_generation=end_generation,
        individuals_generations=individuals_generations,
        cancelled=cancelled,
    )

    if verbose_result:
        # the oldest generation has no recorded fathers
        father_pid_cols.append(np.full(population_size, NA, dtype=np.int64))
        father_idx_cols.append(np.full(population_size, NA, dtype=np.int64))
        result.individual_pids = np.column_stack(pid_cols)
        result.father_pids = np.column_stack(father_pid_cols)
        result.father_indices = np.column_stack(father_idx_cols)

    return result
