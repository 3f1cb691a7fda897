#!/usr/bin/env python3
"""Run one pedigree simulation from YAML configuration and print a summary.

Usage:
    python scripts/run_pedigree_sim.py --config configs/default.yaml
    python scripts/run_pedigree_sim.py --config configs/default.yaml \
        --scenario configs/scenarios/ystr_ladder.yaml --seed 7
    python scripts/run_pedigree_sim.py --config configs/default.yaml \
        --output results/run.json

References:
    - pedigree_sim/config.py: load_config, SimulationConfig
    - pedigree_sim/model.py: run_simulation, SimulationResult
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict

import numpy as np

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from pedigree_sim.config import config_to_dict, load_config
from pedigree_sim.model import SimulationResult, run_simulation


# ═══════════════════════════════════════════════════════════════════════
# SUMMARY
# ═══════════════════════════════════════════════════════════════════════

def summarize(result: SimulationResult) -> Dict[str, Any]:
    """Collect JSON-serializable run statistics."""
    summary: Dict[str, Any] = {
        'seed': result.seed,
        'cancelled': result.cancelled,
        'n_individuals': result.n_individuals,
        'generations': result.generations,
        'founders': result.founders,
        'n_pedigrees': len(result.pedigrees),
        'largest_pedigree_size': result.largest_pedigree_size,
        'haplotype_model': result.haplotype_model,
        'n_pedigrees_populated': result.n_pedigrees_populated,
    }

    if result.pedigree_sizes is not None and len(result.pedigree_sizes) > 0:
        summary['mean_pedigree_size'] = float(result.pedigree_sizes.mean())

    if result.n_pedigrees_populated > 0:
        end_generation = result.genealogy.end_generation
        haplotypes = [
            tuple(result.population[pid].haplotype)
            for pid in end_generation
            if result.population[pid].haplotype_is_set
        ]
        summary['end_generation_distinct_haplotypes'] = len(set(haplotypes))

    return summary


def print_summary(summary: Dict[str, Any]) -> None:
    print(f"  Individuals:       {summary['n_individuals']}")
    print(f"  Generations:       {summary['generations']}")
    print(f"  Founders:          {summary['founders']}")
    print(f"  Pedigrees:         {summary['n_pedigrees']}")
    print(f"  Largest pedigree:  {summary['largest_pedigree_size']}")
    if 'mean_pedigree_size' in summary:
        print(f"  Mean pedigree:     {summary['mean_pedigree_size']:.1f}")
    if summary['haplotype_model'] != "none":
        print(f"  Haplotype model:   {summary['haplotype_model']} "
              f"({summary['n_pedigrees_populated']} pedigrees populated)")
    if 'end_generation_distinct_haplotypes' in summary:
        print(f"  Distinct haplotypes (generation 0): "
              f"{summary['end_generation_distinct_haplotypes']}")
    if summary['cancelled']:
        print("  ⚠️  Run was cancelled before completion")


# ═══════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(
        description="Simulate a male genealogy, extract pedigrees and populate haplotypes.",
        epilog="Example: python scripts/run_pedigree_sim.py --config configs/default.yaml",
    )
    parser.add_argument(
        "--config", type=str, required=True,
        help="Base config YAML",
    )
    parser.add_argument(
        "--scenario", type=str, default=None,
        help="Scenario YAML overriding the base config",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Override simulation.seed",
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write summary and resolved config as JSON to this path",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Suppress progress output",
    )
    args = parser.parse_args()

    overrides = None
    if args.seed is not None:
        overrides = {'simulation': {'seed': args.seed}}
    config = load_config(args.config, scenario_path=args.scenario,
                         sweep_overrides=overrides)

    print("=" * 60)
    print("pedigree_sim run")
    print("=" * 60)

    def progress(stage, step, n_steps):
        if args.quiet:
            return
        if n_steps is None:
            if step % 100 == 0:
                print(f"  [{stage}] step {step}")
        elif step == n_steps or step % max(1, n_steps // 10) == 0:
            print(f"  [{stage}] {step}/{n_steps}")

    t0 = time.time()
    result = run_simulation(config, progress_callback=progress)
    elapsed = time.time() - t0

    summary = summarize(result)
    summary['elapsed_s'] = round(elapsed, 3)
    print_summary(summary)
    print(f"  Elapsed:           {elapsed:.2f}s")

    if args.output is not None:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, 'w') as f:
            json.dump(
                {'summary': summary, 'config': config_to_dict(config)},
                f, indent=2, default=lambda o: o.item() if isinstance(o, np.generic) else str(o),
            )
        print(f"  Saved: {out_path}")

    print("\n✅ Done.")


if __name__ == "__main__":
    main()
