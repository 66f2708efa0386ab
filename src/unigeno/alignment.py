from __future__ import annotations

import bisect
import logging
from typing import List, Optional, Tuple

import pysam

from .models import PileupElement, ReadView, ReferenceContext

logger = logging.getLogger(__name__)


def aligned_pairs_from_cigar(read: pysam.AlignedSegment) -> Tuple[Tuple[int, int], ...]:
    """Return ``(query_pos, ref_pos0)`` for every aligned base of ``read``.

    This walks the CIGAR once; insertions, soft clips, deletions and reference skips
    contribute no pairs.
    """
    if read.is_unmapped or read.cigartuples is None:
        return ()

    out: List[Tuple[int, int]] = []
    ref_pos = read.reference_start
    query_pos = 0

    for op, length in read.cigartuples:
        if op in (0, 7, 8):  # M, =, X: consumes query and ref
            out.extend((query_pos + i, ref_pos + i) for i in range(length))
            ref_pos += length
            query_pos += length
        elif op in (1, 4):  # I, S: consumes query only
            query_pos += length
        elif op in (2, 3):  # D, N: consumes ref only
            ref_pos += length
        else:
            # H, P and unknown ops consume neither
            continue

    return tuple(out)


def read_view_from_segment(read: pysam.AlignedSegment, sample: Optional[str] = None) -> ReadView:
    seq = read.query_sequence or ""
    return ReadView(
        name=str(read.query_name),
        sequence=seq.upper(),
        aligned_pairs=aligned_pairs_from_cigar(read),
        mapping_quality=int(read.mapping_quality),
        is_reverse=bool(read.is_reverse),
        sample=sample,
    )


def mismatches_in_ref_window(
    element: PileupElement,
    ref_context: ReferenceContext,
    *,
    ignore_target_site: bool = True,
) -> int:
    """Count read/reference mismatches for one pileup element inside the reference window.

    Only positions covered by both the read and the window are compared. N bases in
    either sequence are not counted.
    """
    read = element.read
    pairs = read.aligned_pairs
    if not pairs:
        return 0

    win_start = ref_context.window_start0
    win_end = win_start + len(ref_context.window)
    target = ref_context.locus.pos0

    ref_positions = [r for _, r in pairs]
    lo = bisect.bisect_left(ref_positions, win_start)
    hi = bisect.bisect_left(ref_positions, win_end)

    mismatches = 0
    for qpos, rpos in pairs[lo:hi]:
        if ignore_target_site and rpos == target:
            continue
        if qpos >= len(read.sequence):
            continue
        read_base = read.sequence[qpos]
        ref_base = ref_context.window[rpos - win_start].upper()
        if read_base == "N" or ref_base == "N":
            continue
        if read_base != ref_base:
            mismatches += 1
    return mismatches
