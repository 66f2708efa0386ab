"""Per-site annotations attached to calls that carry INFO fields.

All annotations are computed from the FILTERED, stratified context used for calling.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .models import REGULAR_BASES, Pileup, ReferenceContext, SampleContext, VariationCall

logger = logging.getLogger(__name__)

AnnotationFn = Callable[[ReferenceContext, SampleContext, VariationCall], Optional[str]]


@dataclass(frozen=True)
class Annotation:
    key: str
    number: object  # VCF Number field
    type: str
    description: str
    compute: AnnotationFn
    standard: bool = True


def _merged(contexts: SampleContext) -> Pileup:
    elements = tuple(p for pileup in contexts.values() for p in pileup)
    locus = next(iter(contexts.values())).locus
    return Pileup(locus=locus, elements=elements)


def depth_of_coverage(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    return str(sum(c.size for c in contexts.values()))


def rms_mapping_quality(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    mqs = [p.mapping_quality for p in _merged(contexts)]
    if not mqs:
        return None
    rms = math.sqrt(sum(q * q for q in mqs) / float(len(mqs)))
    return f"{rms:.2f}"


def mapping_quality_zero(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    return str(sum(1 for p in _merged(contexts) if p.mapping_quality == 0))


def spanning_deletions(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    pileup = _merged(contexts)
    if pileup.size == 0:
        return None
    return f"{pileup.n_deletions / float(pileup.size):.2f}"


def homopolymer_run(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    """Longest run of the called allele in the reference flanking the site."""
    base = call.alt_alleles[0] if call.alt_alleles else ref.base.upper()
    window = ref.window.upper()
    center = ref.locus.pos0 - ref.window_start0

    left = 0
    i = center - 1
    while i >= 0 and window[i] == base:
        left += 1
        i -= 1
    right = 0
    i = center + 1
    while i < len(window) and window[i] == base:
        right += 1
        i += 1
    return str(max(left, right))


def qual_by_depth(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    depth = len(_merged(contexts).bases())
    if depth == 0:
        return None
    return f"{call.confidence / float(depth):.2f}"


def base_counts(ref: ReferenceContext, contexts: SampleContext, call: VariationCall) -> Optional[str]:
    counts = _merged(contexts).base_counts()
    return ",".join(str(counts[b]) for b in REGULAR_BASES)


ANNOTATIONS: List[Annotation] = [
    Annotation("DP", 1, "Integer", "Total Depth", depth_of_coverage),
    Annotation("MQ", 1, "Float", "RMS Mapping Quality", rms_mapping_quality),
    Annotation("MQ0", 1, "Integer", "Total Mapping Quality Zero Reads", mapping_quality_zero),
    Annotation("Dels", 1, "Float", "Fraction of Reads Containing Spanning Deletions", spanning_deletions),
    Annotation("HRun", 1, "Integer", "Largest Contiguous Homopolymer Run of Variant Allele In Either Direction",
               homopolymer_run, standard=False),
    Annotation("QD", 1, "Float", "Variant Confidence/Quality by Depth", qual_by_depth, standard=False),
    Annotation("BaseCounts", 4, "Integer", "Counts of each base (A,C,G,T)", base_counts, standard=False),
]


def selected_annotations(all_annotations: bool) -> List[Annotation]:
    return [a for a in ANNOTATIONS if all_annotations or a.standard]


def annotate(
    ref_context: ReferenceContext,
    contexts: SampleContext,
    call: VariationCall,
    *,
    all_annotations: bool = False,
) -> Dict[str, str]:
    """Compute the standard (or full) annotation set for ``call``."""
    if not contexts:
        return {}
    out: Dict[str, str] = {}
    for a in selected_annotations(all_annotations):
        value = a.compute(ref_context, contexts, call)
        if value is not None:
            out[a.key] = value
    return out
