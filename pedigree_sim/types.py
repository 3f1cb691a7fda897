"""Core data types for pedigree_sim.

This module is the SINGLE SOURCE OF TRUTH for:
  - Individual: one node of the father/children forest
  - Population: the arena owning every Individual of one simulation run
  - Pedigree: one maximal connected tree extracted from a Population
  - Sentinels (UNRELATED, UNTIL_ONE_FOUNDER, NA) and mode name sets

Individuals refer to each other by pid (dense, 0-based arena index), never by
object reference, so a Population can be sliced, pickled or handed across
process boundaries without dangling links.

Traversal scratch state (visited flags, distance accumulators) is NOT stored
here; queries in kinship.py keep it in a query-local dict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# SENTINELS & MODE NAMES
# ═══════════════════════════════════════════════════════════════════════

UNRELATED = -1           # meiotic distance between different pedigrees
UNTIL_ONE_FOUNDER = -1   # generation request: simulate until one founder remains
NA = -1                  # unused cell in verbose per-generation tables

FATHER_SELECTION_MODES = {"uniform", "gamma"}
HAPLOTYPE_MODELS = {"none", "unbounded", "ladder", "autosomal"}


# ═══════════════════════════════════════════════════════════════════════
# INDIVIDUAL
# ═══════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class Individual:
    """A male in the simulated genealogy.

    ``father`` and ``children`` hold pids. ``pedigree_id`` indexes
    ``Population.pedigrees`` and is set at most once by the extractor.
    ``haplotype`` is a 1-D int64 array: repeat counts per locus for the
    Y-chromosomal models, a sorted allele-index pair for the autosomal model.
    ``haplotype_mutated`` marks that the transmission step already ran on
    this node.
    """
    pid: int
    generation: int
    father: Optional[int] = None
    children: List[int] = field(default_factory=list)
    pedigree_id: Optional[int] = None
    haplotype: Optional[np.ndarray] = None
    haplotype_mutated: bool = False

    @property
    def is_founder(self) -> bool:
        return self.father is None

    @property
    def pedigree_is_set(self) -> bool:
        return self.pedigree_id is not None

    @property
    def haplotype_is_set(self) -> bool:
        return self.haplotype is not None

    @property
    def children_count(self) -> int:
        return len(self.children)

    def set_haplotype(self, haplotype) -> None:
        """Store a copy of ``haplotype`` (does not touch the mutation flag)."""
        self.haplotype = np.array(haplotype, dtype=np.int64, copy=True)

    def mark_mutated(self) -> None:
        """Flag the transmission step as done on this node.

        Raises:
            RuntimeError: If the node was already mutated (a traversal
                reached it twice).
        """
        if self.haplotype_mutated:
            raise RuntimeError(
                f"Haplotype of individual {self.pid} already set and mutated"
            )
        self.haplotype_mutated = True

    def reset_haplotype(self) -> None:
        self.haplotype = None
        self.haplotype_mutated = False

    def __repr__(self) -> str:
        return (
            f"Individual(pid={self.pid}, generation={self.generation}, "
            f"father={self.father}, children={len(self.children)}, "
            f"pedigree_id={self.pedigree_id})"
        )


# ═══════════════════════════════════════════════════════════════════════
# PEDIGREE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class Pedigree:
    """One maximal connected tree of the father/children forest.

    ``members`` lists pids in discovery order; ``relations`` lists each
    (father_pid, child_pid) edge exactly once. Individuals stay owned by
    the Population.
    """
    pedigree_id: int
    members: List[int] = field(default_factory=list)
    relations: List[Tuple[int, int]] = field(default_factory=list)
    root: Optional[int] = None
    haplotypes_populated: bool = False

    @property
    def size(self) -> int:
        return len(self.members)

    def add_member(self, pid: int) -> None:
        self.members.append(pid)

    def add_relation(self, father_pid: int, child_pid: int) -> None:
        self.relations.append((father_pid, child_pid))

    def __len__(self) -> int:
        return len(self.members)

    def __repr__(self) -> str:
        return (
            f"Pedigree(pedigree_id={self.pedigree_id}, size={self.size}, "
            f"root={self.root})"
        )


# ═══════════════════════════════════════════════════════════════════════
# POPULATION
# ═══════════════════════════════════════════════════════════════════════

class Population:
    """Arena owning every Individual created during one simulation run.

    pids are assigned in creation order and equal the arena index, so
    lookup is O(1) and pids are never reused. Individuals are never removed.
    """

    def __init__(self):
        self._individuals: List[Individual] = []
        self.pedigrees: List[Pedigree] = []

    def add(self, generation: int) -> Individual:
        """Create a new Individual at ``generation`` and return it."""
        if generation < 0:
            raise ValueError(f"generation must be >= 0, got {generation}")
        indv = Individual(pid=len(self._individuals), generation=generation)
        self._individuals.append(indv)
        return indv

    def link(self, child_pid: int, father_pid: int) -> None:
        """Record a father→child edge on both endpoints.

        Raises:
            ValueError: If the child already has a father, or the father is
                not exactly one generation above the child.
        """
        child = self[child_pid]
        father = self[father_pid]
        if child.father is not None:
            raise ValueError(
                f"Individual {child_pid} already has father {child.father}"
            )
        if father.generation != child.generation + 1:
            raise ValueError(
                f"Father {father_pid} (generation {father.generation}) must be "
                f"one generation above child {child_pid} "
                f"(generation {child.generation})"
            )
        child.father = father_pid
        father.children.append(child_pid)

    def __getitem__(self, pid: int) -> Individual:
        if pid < 0 or pid >= len(self._individuals):
            raise KeyError(f"No individual with pid {pid}")
        return self._individuals[pid]

    def __len__(self) -> int:
        return len(self._individuals)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self._individuals)

    def __contains__(self, pid: int) -> bool:
        return 0 <= pid < len(self._individuals)

    @property
    def max_generation(self) -> int:
        if not self._individuals:
            return -1
        return max(indv.generation for indv in self._individuals)

    def generations(self) -> Dict[int, List[int]]:
        """Map generation index → pids in that generation (creation order)."""
        by_gen: Dict[int, List[int]] = {}
        for indv in self._individuals:
            by_gen.setdefault(indv.generation, []).append(indv.pid)
        return by_gen

    def pedigree_of(self, individual: Individual) -> Pedigree:
        """Return the Pedigree owning ``individual``.

        Raises:
            ValueError: If pedigrees have not been extracted for it.
        """
        if not individual.pedigree_is_set:
            raise ValueError(
                f"Individual {individual.pid} has no pedigree; "
                f"run extract_pedigrees() first"
            )
        return self.pedigrees[individual.pedigree_id]

    def __repr__(self) -> str:
        return (
            f"Population(size={len(self)}, pedigrees={len(self.pedigrees)})"
        )
