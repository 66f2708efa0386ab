from __future__ import annotations

import logging
from typing import Optional, Tuple

from .alignment import mismatches_in_ref_window
from .models import Pileup, ReferenceContext, SkipReason, is_regular_base

logger = logging.getLogger(__name__)


def is_valid_deletion_fraction(d: float) -> bool:
    return 0.0 <= d <= 1.0


def filter_mismatching_reads(pileup: Pileup, ref_context: ReferenceContext, max_mismatches: int) -> Pileup:
    """Keep elements with at most ``max_mismatches`` mismatches in the reference window."""
    return pileup.filtered(
        lambda p: mismatches_in_ref_window(p, ref_context, ignore_target_site=True) <= max_mismatches
    )


def screen_pileup(
    pileup: Pileup,
    ref_context: ReferenceContext,
    *,
    min_base_quality: int,
    max_mismatches: int,
    max_deletion_fraction: float,
    max_pileup_size: int,
) -> Tuple[Optional[Pileup], Optional[SkipReason]]:
    """Run the pileup gates and return ``(filtered_pileup, None)`` or ``(None, reason)``."""
    filtered = pileup.base_filtered(min_base_quality)
    filtered = filter_mismatching_reads(filtered, ref_context, max_mismatches)

    if not is_regular_base(ref_context.base):
        return None, SkipReason.IRREGULAR_REFERENCE

    # no coverage, or pathologically deep coverage
    if filtered.size == 0:
        return None, SkipReason.NO_COVERAGE
    if max_pileup_size > 0 and filtered.size > max_pileup_size:
        return None, SkipReason.EXCESSIVE_COVERAGE

    if is_valid_deletion_fraction(max_deletion_fraction):
        if float(filtered.n_deletions) / float(filtered.size) > max_deletion_fraction:
            return None, SkipReason.EXCESSIVE_DELETIONS

    return filtered, None


def filter_pileup(
    pileup: Pileup,
    ref_context: ReferenceContext,
    *,
    min_base_quality: int,
    max_mismatches: int,
    max_deletion_fraction: float,
    max_pileup_size: int,
) -> Optional[Pileup]:
    """Filtered pileup, or None when any gate rejects the locus. The input is not modified."""
    filtered, _ = screen_pileup(
        pileup,
        ref_context,
        min_base_quality=min_base_quality,
        max_mismatches=max_mismatches,
        max_deletion_fraction=max_deletion_fraction,
        max_pileup_size=max_pileup_size,
    )
    return filtered
