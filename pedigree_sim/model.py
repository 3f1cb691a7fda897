"""End-to-end pedigree simulation driven by a SimulationConfig.

Pipeline:
  1. Genealogy: backward-time simulation on the 'genealogy' RNG stream
  2. Extraction: partition the population into pedigrees
  3. Transmission: populate every pedigree with the configured haplotype
     model, each on its own 'pedigree_{id}' stream

Cancellation at any stage returns a result with ``cancelled=True``; later
stages are skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from pedigree_sim.config import SimulationConfig, default_config, validate_config
from pedigree_sim.genealogy import GenealogyResult, simulate_genealogy
from pedigree_sim.haplotypes import (
    pedigrees_all_populate_autosomal,
    pedigrees_all_populate_haplotypes,
    pedigrees_all_populate_haplotypes_ladder_bounded,
)
from pedigree_sim.pedigree import extract_pedigrees
from pedigree_sim.rng import create_rng_hierarchy
from pedigree_sim.types import Pedigree, Population


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Results from run_simulation()."""
    genealogy: Optional[GenealogyResult] = None
    population: Optional[Population] = None
    pedigrees: List[Pedigree] = field(default_factory=list)
    haplotype_model: str = "none"
    n_pedigrees_populated: int = 0
    cancelled: bool = False

    # Summary
    seed: int = 0
    n_individuals: int = 0
    generations: int = 0
    founders: int = 0
    largest_pedigree_size: int = 0
    pedigree_sizes: Optional[np.ndarray] = None


# ═══════════════════════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════════════════════

def _populate_all(
    config: SimulationConfig,
    population: Population,
    pedigrees: List[Pedigree],
    rngs,
    progress_callback,
    should_stop,
) -> int:
    hap = config.haplotypes
    if hap.model == "unbounded":
        return pedigrees_all_populate_haplotypes(
            population, pedigrees, hap.founder_haplotype, hap.mutation_rates,
            rngs, progress_callback=progress_callback, should_stop=should_stop,
        )
    if hap.model == "ladder":
        return pedigrees_all_populate_haplotypes_ladder_bounded(
            population, pedigrees, hap.mutation_rates, hap.ladder_min,
            hap.ladder_max, rngs, founder_haplotype=hap.founder_haplotype,
            progress_callback=progress_callback, should_stop=should_stop,
        )
    auto = config.autosomal
    return pedigrees_all_populate_autosomal(
        population, pedigrees, auto.allele_dist, auto.theta,
        auto.mutation_rate, rngs,
        progress_callback=progress_callback, should_stop=should_stop,
    )


def run_simulation(
    config: Optional[SimulationConfig] = None,
    progress_callback: Optional[Callable[[str, int, Optional[int]], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> SimulationResult:
    """Simulate a genealogy, extract its pedigrees and populate haplotypes.

    Args:
        config: SimulationConfig; uses default if None.
        progress_callback: Optional callable(stage, step, n_steps) where
            stage is "genealogy" or "haplotypes".
        should_stop: Optional callable polled at generation boundaries and
            between pedigrees; True cancels the run.

    Returns:
        SimulationResult.

    Raises:
        ValueError: If the configuration is invalid.
    """
    if config is None:
        config = default_config()
    else:
        validate_config(config)

    sim = config.simulation
    sel = config.selection

    genealogy_progress = None
    haplotype_progress = None
    if progress_callback is not None:
        def genealogy_progress(step, n_steps):
            progress_callback("genealogy", step, n_steps)

        def haplotype_progress(step, n_steps):
            progress_callback("haplotypes", step, n_steps)

    rngs = create_rng_hierarchy(sim.seed, n_pedigrees=0)
    genealogy = simulate_genealogy(
        sim.population_size,
        generations=sim.generations,
        selection=sel.mode,
        gamma_shape=sel.gamma_shape,
        gamma_scale=sel.gamma_scale,
        rng=rngs['genealogy'],
        verbose_result=sim.verbose_result,
        individuals_generations_return=sim.individuals_generations_return,
        progress_callback=genealogy_progress,
        should_stop=should_stop,
        verbose=sim.verbose,
    )

    result = SimulationResult(
        genealogy=genealogy,
        population=genealogy.population,
        haplotype_model=config.haplotypes.model,
        seed=sim.seed,
        n_individuals=len(genealogy.population),
        generations=genealogy.generations,
        founders=genealogy.founders,
    )
    if genealogy.cancelled:
        result.cancelled = True
        return result

    pedigrees = extract_pedigrees(genealogy.population)
    result.pedigrees = pedigrees
    result.pedigree_sizes = np.array([p.size for p in pedigrees], dtype=np.int64)
    result.largest_pedigree_size = int(result.pedigree_sizes.max())

    if sim.verbose:
        print(
            f"Extracted {len(pedigrees)} pedigrees from "
            f"{result.n_individuals} individuals "
            f"(largest: {result.largest_pedigree_size})"
        )

    if config.haplotypes.model == "none":
        return result

    # spawn is positional, so 'genealogy' is the same stream as above
    rngs = create_rng_hierarchy(sim.seed, n_pedigrees=len(pedigrees))
    result.n_pedigrees_populated = _populate_all(
        config, genealogy.population, pedigrees, rngs,
        haplotype_progress, should_stop,
    )
    if result.n_pedigrees_populated < len(pedigrees):
        result.cancelled = True

    return result
