"""Configuration system for pedigree_sim.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys:
  simulation  — population size, generation request, seed, verbose exports
  selection   — father selection (uniform or gamma-weighted fecundity)
  haplotypes  — Y-chromosomal transmission model and its per-locus vectors
  autosomal   — theta-correlated diploid transmission parameters
"""

from __future__ import annotations

import copy
import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from pedigree_sim.types import (
    FATHER_SELECTION_MODES,
    HAPLOTYPE_MODELS,
    UNTIL_ONE_FOUNDER,
)


# Simulating to one founder takes ~2N generations; warn above this size.
LARGE_POPULATION_WARN = 100_000


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Genealogy size, stop condition and reproducibility."""
    population_size: int = 100
    generations: int = UNTIL_ONE_FOUNDER   # -1 = until one founder, else > 0
    seed: int = 42
    verbose_result: bool = False           # per-generation pid/father tables
    individuals_generations_return: int = 2  # keep pids with generation <= this (-1 = off)
    verbose: bool = False                  # print per-generation diagnostics


@dataclass
class SelectionSection:
    """Father selection.

    mode: "uniform" — every slot equally likely to father each child
          "gamma"   — slot weights ~ Gamma(gamma_shape, gamma_scale) per generation
    """
    mode: str = "uniform"
    gamma_shape: float = 5.0
    gamma_scale: float = 0.2


@dataclass
class HaplotypeSection:
    """Y-chromosomal haplotype transmission.

    model: "none" | "unbounded" | "ladder" | "autosomal"
    founder_haplotype: repeat counts for the root of every pedigree. Required
        for "unbounded"; optional for "ladder" (uniform draw from the ladder
        when omitted).
    """
    model: str = "none"
    mutation_rates: List[float] = field(default_factory=list)
    ladder_min: List[int] = field(default_factory=list)
    ladder_max: List[int] = field(default_factory=list)
    founder_haplotype: Optional[List[int]] = None


@dataclass
class AutosomalSection:
    """Theta-correlated diploid single-locus transmission."""
    allele_dist: List[float] = field(default_factory=lambda: [0.25, 0.25, 0.25, 0.25])
    theta: float = 0.0
    mutation_rate: float = 0.0


@dataclass
class SimulationConfig:
    """Complete run configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    selection: SelectionSection = field(default_factory=SelectionSection)
    haplotypes: HaplotypeSection = field(default_factory=HaplotypeSection)
    autosomal: AutosomalSection = field(default_factory=AutosomalSection)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'selection': SelectionSection,
    'haplotypes': HaplotypeSection,
    'autosomal': AutosomalSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict view of a config (YAML-serializable)."""
    return copy.deepcopy(dataclasses.asdict(config))


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_probabilities(name: str, values) -> None:
    for i, v in enumerate(values):
        if not (0.0 <= v <= 1.0):
            raise ValueError(f"{name}[{i}] must be in [0, 1], got {v}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Population size and generation request
      - Father selection mode and gamma parameters
      - Haplotype model and per-locus vector lengths
      - Ladder bounds and founder haplotype placement
      - Autosomal allele distribution, theta and mutation rate ranges
    """
    sim = config.simulation
    if sim.population_size <= 1:
        raise ValueError(
            f"simulation.population_size must be > 1, got {sim.population_size}"
        )
    if sim.generations < UNTIL_ONE_FOUNDER or sim.generations == 0:
        raise ValueError(
            f"simulation.generations must be -1 (simulate to one founder) "
            f"or > 0, got {sim.generations}"
        )
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if (sim.generations == UNTIL_ONE_FOUNDER
            and sim.population_size > LARGE_POPULATION_WARN):
        warnings.warn(
            f"Simulating {sim.population_size} individuals to one founder "
            f"takes on the order of {2 * sim.population_size} generations.",
            UserWarning,
            stacklevel=2,
        )

    sel = config.selection
    if sel.mode not in FATHER_SELECTION_MODES:
        raise ValueError(
            f"selection.mode must be one of {FATHER_SELECTION_MODES}, "
            f"got '{sel.mode}'"
        )
    if sel.mode == "gamma":
        if sel.gamma_shape <= 0:
            raise ValueError(
                f"selection.gamma_shape must be positive, got {sel.gamma_shape}"
            )
        if sel.gamma_scale <= 0:
            raise ValueError(
                f"selection.gamma_scale must be positive, got {sel.gamma_scale}"
            )

    hap = config.haplotypes
    if hap.model not in HAPLOTYPE_MODELS:
        raise ValueError(
            f"haplotypes.model must be one of {HAPLOTYPE_MODELS}, "
            f"got '{hap.model}'"
        )

    if hap.model in ("unbounded", "ladder"):
        n_loci = len(hap.mutation_rates)
        if n_loci == 0:
            raise ValueError(
                f"haplotypes.mutation_rates required for '{hap.model}' model"
            )
        _check_probabilities("haplotypes.mutation_rates", hap.mutation_rates)
        if hap.founder_haplotype is not None and len(hap.founder_haplotype) != n_loci:
            raise ValueError(
                f"haplotypes.founder_haplotype must have {n_loci} loci "
                f"(one per mutation rate), got {len(hap.founder_haplotype)}"
            )

    if hap.model == "unbounded" and hap.founder_haplotype is None:
        raise ValueError(
            "haplotypes.founder_haplotype required for 'unbounded' model"
        )

    if hap.model == "ladder":
        n_loci = len(hap.mutation_rates)
        if len(hap.ladder_min) != n_loci or len(hap.ladder_max) != n_loci:
            raise ValueError(
                f"haplotypes.ladder_min and ladder_max must have {n_loci} "
                f"loci, got {len(hap.ladder_min)} and {len(hap.ladder_max)}"
            )
        for i, (lo, hi) in enumerate(zip(hap.ladder_min, hap.ladder_max)):
            if lo >= hi:
                raise ValueError(
                    f"haplotypes.ladder_min[{i}] ({lo}) must be < "
                    f"ladder_max[{i}] ({hi})"
                )
        if hap.founder_haplotype is not None:
            for i, h in enumerate(hap.founder_haplotype):
                if not (hap.ladder_min[i] <= h <= hap.ladder_max[i]):
                    raise ValueError(
                        f"haplotypes.founder_haplotype[{i}] ({h}) outside "
                        f"ladder [{hap.ladder_min[i]}, {hap.ladder_max[i]}]"
                    )

    if hap.model == "autosomal":
        auto = config.autosomal
        if len(auto.allele_dist) < 2:
            raise ValueError(
                f"autosomal.allele_dist must have at least 2 alleles, "
                f"got {len(auto.allele_dist)}"
            )
        _check_probabilities("autosomal.allele_dist", auto.allele_dist)
        if sum(auto.allele_dist) <= 0:
            raise ValueError("autosomal.allele_dist must have a positive sum")
        if not (0.0 <= auto.theta <= 1.0):
            raise ValueError(
                f"autosomal.theta must be in [0, 1], got {auto.theta}"
            )
        if not (0.0 <= auto.mutation_rate <= 1.0):
            raise ValueError(
                f"autosomal.mutation_rate must be in [0, 1], "
                f"got {auto.mutation_rate}"
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
