from builders import element, pileup

from unigeno.stratify import split_context_by_sample


def test_groups_by_sample_tag():
    p = pileup([element("A", sample="S1"), element("G", sample="S2"), element("A", sample="S1")])
    contexts = split_context_by_sample(p)
    assert sorted(contexts) == ["S1", "S2"]
    assert contexts["S1"].size == 2
    assert contexts["S2"].size == 1


def test_pooled_name_collapses_everything():
    p = pileup([element("A", sample="S1"), element("G", sample=None)])
    contexts = split_context_by_sample(p, assume_single_sample="X", pooled_sample_name="POOL")
    assert list(contexts) == ["POOL"]
    assert contexts["POOL"].size == 2


def test_single_sample_override_covers_untagged_reads():
    p = pileup([element("A", sample=None), element("A", sample=None)])
    contexts = split_context_by_sample(p, assume_single_sample="NA12878")
    assert list(contexts) == ["NA12878"]


def test_missing_sample_without_override_cannot_stratify():
    p = pileup([element("A", sample="S1"), element("A", sample=None)])
    assert split_context_by_sample(p) is None
