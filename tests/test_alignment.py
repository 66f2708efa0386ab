import pysam
from builders import LOCUS, WINDOW_START0, element, ref_context

from unigeno.alignment import aligned_pairs_from_cigar, mismatches_in_ref_window, read_view_from_segment
from unigeno.models import PileupElement, ReadView


def _segment(seq, start0, cigar, flag=0):
    a = pysam.AlignedSegment()
    a.query_name = "r1"
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = 37
    a.cigartuples = cigar
    return a


def test_aligned_pairs_skip_clips_insertions_and_deletions():
    # 2S 3M 1I 2M 2D 2M
    seg = _segment("NNACGTACGT", 100, [(4, 2), (0, 3), (1, 1), (0, 2), (2, 2), (0, 2)])
    pairs = aligned_pairs_from_cigar(seg)
    assert pairs == ((2, 100), (3, 101), (4, 102), (6, 103), (7, 104), (8, 107), (9, 108))


def test_unmapped_read_has_no_pairs():
    seg = _segment("ACGT", 0, [(0, 4)], flag=4)
    assert aligned_pairs_from_cigar(seg) == ()


def test_read_view_from_segment():
    seg = _segment("acgt", 10, [(0, 4)], flag=16)
    view = read_view_from_segment(seg, sample="S1")
    assert view.sequence == "ACGT"
    assert view.is_reverse
    assert view.mapping_quality == 37
    assert view.sample == "S1"
    assert view.aligned_pairs[0] == (0, 10)


def test_target_site_mismatch_not_counted():
    ctx = ref_context("A")
    assert mismatches_in_ref_window(element("G"), ctx) == 0
    assert mismatches_in_ref_window(element("G"), ctx, ignore_target_site=False) == 1


def test_window_mismatches_counted():
    assert mismatches_in_ref_window(element("A", mismatches=2), ref_context("A")) == 2


def test_only_window_overlap_compared():
    # read covers 10 bases before the window and the first 5 window bases, all different
    seq = "T" * 15
    pairs = tuple((i, WINDOW_START0 - 10 + i) for i in range(15))
    read = ReadView(name="r", sequence=seq, aligned_pairs=pairs)
    el = PileupElement(read=read, offset=None, base="D", qual=0, is_deletion=True)
    ctx = ref_context("A")
    expected = sum(1 for b in ctx.window[:5] if b != "T")
    assert mismatches_in_ref_window(el, ctx) == expected


def test_n_bases_are_not_mismatches():
    ctx = ref_context("A")
    seq = "N" * len(ctx.window)
    pairs = tuple((i, WINDOW_START0 + i) for i in range(len(seq)))
    read = ReadView(name="r", sequence=seq, aligned_pairs=pairs)
    el = PileupElement(read=read, offset=LOCUS.pos0 - WINDOW_START0, base="N", qual=30)
    assert mismatches_in_ref_window(el, ctx) == 0
