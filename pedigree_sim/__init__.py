"""pedigree_sim: Backward-time genealogy simulation of male populations.

An individual-based model of paternal lineages:
  - Wright-Fisher-like genealogy simulated backward in time, with uniform or
    gamma-weighted (reproductive skew) father selection
  - Extraction of the resulting forest into pedigrees (maximal trees)
  - Meiotic distances and paths between pedigree members
  - Haplotype transmission under unbounded and ladder-bounded Y-STR
    stepwise mutation, and a theta-correlated autosomal model
"""

__version__ = "0.1.0"
