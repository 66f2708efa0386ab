from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .models import Pileup, PileupElement, SampleContext

logger = logging.getLogger(__name__)


def split_context_by_sample(
    pileup: Pileup,
    assume_single_sample: Optional[str] = None,
    pooled_sample_name: Optional[str] = None,
) -> Optional[SampleContext]:
    """Partition a pileup into per-sample sub-pileups.

    A pooled sample name collapses every read into one key; otherwise a single-sample
    override does the same. Without either, reads are grouped by their sample tag and
    None is returned if any read lacks one.
    """
    collapse_to = pooled_sample_name if pooled_sample_name is not None else assume_single_sample
    if collapse_to is not None:
        return {collapse_to: Pileup(locus=pileup.locus, elements=pileup.elements)}

    by_sample: Dict[str, List[PileupElement]] = {}
    for p in pileup:
        if p.sample is None:
            logger.debug("Read %s at %s has no sample; cannot stratify", p.read.name, pileup.locus)
            return None
        by_sample.setdefault(p.sample, []).append(p)

    return {s: Pileup(locus=pileup.locus, elements=tuple(els)) for s, els in by_sample.items()}
