import pytest
from builders import LOCUS, element, pileup, ref_context, uniform_pileup

from unigeno.annotations import (
    ANNOTATIONS,
    annotate,
    homopolymer_run,
    qual_by_depth,
    rms_mapping_quality,
    selected_annotations,
)
from unigeno.models import ReferenceContext, VCFVariationCall


def _call(alts=("G",), confidence=60.0):
    return VCFVariationCall(locus=LOCUS, ref="A", alt_alleles=alts, confidence=confidence)


def test_standard_annotation_set():
    keys = [a.key for a in selected_annotations(False)]
    assert keys == ["DP", "MQ", "MQ0", "Dels"]
    assert [a.key for a in selected_annotations(True)] == [a.key for a in ANNOTATIONS]


def test_annotations_use_all_samples():
    contexts = {
        "S1": pileup([element("G", mapq=0, name="a"), element("G", mapq=60, name="b")]),
        "S2": pileup([element("A", sample="S2"), element("A", sample="S2", deletion=True)]),
    }
    fields = annotate(ref_context("A"), contexts, _call())
    assert fields["DP"] == "4"
    assert fields["MQ0"] == "1"
    assert fields["Dels"] == "0.25"
    assert set(fields) == {"DP", "MQ", "MQ0", "Dels"}


def test_rms_mapping_quality():
    contexts = {"S1": pileup([element("A", mapq=30), element("A", mapq=40)])}
    # sqrt((900 + 1600) / 2)
    assert float(rms_mapping_quality(ref_context(), contexts, _call())) == pytest.approx(35.36, abs=0.01)


def test_full_annotation_set():
    contexts = {"S1": uniform_pileup("GGGGA")}
    fields = annotate(ref_context("A"), contexts, _call(), all_annotations=True)
    assert fields["BaseCounts"] == "1,0,4,0"
    assert fields["QD"] == "12.00"
    assert "HRun" in fields


def test_homopolymer_run_of_called_allele():
    # ...GGG[A]GGGGT...
    ctx = ReferenceContext(locus=LOCUS, window="CCGGGAGGGGT", window_start0=LOCUS.pos0 - 5)
    assert homopolymer_run(ctx, {}, _call(alts=("G",))) == "4"
    assert homopolymer_run(ctx, {}, _call(alts=("T",))) == "0"


def test_qual_by_depth_ignores_deletions():
    contexts = {"S1": pileup([element("G"), element("G"), element("A", deletion=True)])}
    assert qual_by_depth(ref_context(), contexts, _call(confidence=30.0)) == "15.00"


def test_empty_contexts_give_no_fields():
    assert annotate(ref_context(), {}, _call()) == {}
