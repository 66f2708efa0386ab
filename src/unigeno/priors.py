from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .models import REGULAR_BASES

# The ten unordered diploid genotypes, in a fixed order used by all likelihood vectors.
DIPLOID_GENOTYPES: Tuple[str, ...] = tuple(
    a + b for i, a in enumerate(REGULAR_BASES) for b in REGULAR_BASES[i:]
)

# Fraction of heterozygous sites expected to carry two non-reference alleles.
PROB_OF_TRISTATE_GENOTYPE = 0.1

HUMAN_HETEROZYGOSITY = 1e-3


def heterozygosity_to_hom_ref(h: float) -> float:
    return 1.0 - 1.5 * h


def heterozygosity_to_het(h: float) -> float:
    return h


def heterozygosity_to_hom_var(h: float) -> float:
    return 0.5 * h


@dataclass(frozen=True)
class DiploidGenotypePriors:
    """Reference-polarised log10 priors over ``DIPLOID_GENOTYPES``.

    The heterozygous mass ``h`` is split between genotypes carrying the reference
    allele and tri-state genotypes (two distinct non-reference alleles) according to
    ``prob_tristate``. Each class is shared evenly among its three genotypes.
    """

    ref: str
    heterozygosity: float
    prob_tristate: float
    log10_priors: np.ndarray

    @classmethod
    def for_reference(
        cls,
        ref: str,
        heterozygosity: float = HUMAN_HETEROZYGOSITY,
        prob_tristate: float = PROB_OF_TRISTATE_GENOTYPE,
    ) -> "DiploidGenotypePriors":
        ref = ref.upper()
        if ref not in REGULAR_BASES:
            raise ValueError(f"Reference base must be one of A/C/G/T, got {ref!r}")
        if not 0.0 < heterozygosity < 2.0 / 3.0:
            raise ValueError(f"heterozygosity must be in (0, 2/3), got {heterozygosity}")
        if not 0.0 <= prob_tristate <= 1.0:
            raise ValueError(f"prob_tristate must be in [0, 1], got {prob_tristate}")

        p_hom_ref = heterozygosity_to_hom_ref(heterozygosity)
        p_het = heterozygosity_to_het(heterozygosity)
        p_hom_var = heterozygosity_to_hom_var(heterozygosity)

        priors = np.empty(len(DIPLOID_GENOTYPES), dtype=float)
        for i, g in enumerate(DIPLOID_GENOTYPES):
            if g == ref * 2:
                p = p_hom_ref
            elif g[0] == g[1]:
                p = p_hom_var / 3.0
            elif ref in g:
                p = p_het * (1.0 - prob_tristate) / 3.0
            else:
                p = p_het * prob_tristate / 3.0
            priors[i] = np.log10(p) if p > 0 else -np.inf

        return cls(ref=ref, heterozygosity=heterozygosity, prob_tristate=prob_tristate, log10_priors=priors)

    def prior(self, genotype: str) -> float:
        return float(self.log10_priors[genotype_index(genotype)])


def genotype_index(genotype: str) -> int:
    g = "".join(sorted(genotype.upper()))
    return DIPLOID_GENOTYPES.index(g)
