import pysam
import pytest

from unigeno.config import GenotyperConfig, OutputFormat
from unigeno.engine import Shard, call_bam, call_shard, parse_region, plan_shards, samples_from_header
from unigeno.genotyper import UnifiedGenotyper, WorkerContext, build_header_info, resolve_samples
from unigeno.toy_data import TOY_SNPS, make_toy_data
from unigeno.writers import make_writer


def test_parse_region():
    assert parse_region("chr1") == ("chr1", None, None)
    assert parse_region("chr1:101") == ("chr1", 100, None)
    assert parse_region("chr1:1,001-2,000") == ("chr1", 1000, 2000)
    with pytest.raises(ValueError):
        parse_region("chr1:0-10")
    with pytest.raises(ValueError):
        parse_region("chr1:50-10")


def test_plan_shards_covers_contigs_in_order():
    shards = plan_shards([("chr1", 250), ("chr2", 100)], shard_size=100)
    assert [(s.contig, s.start0, s.end0) for s in shards] == [
        ("chr1", 0, 100),
        ("chr1", 100, 200),
        ("chr1", 200, 250),
        ("chr2", 0, 100),
    ]
    assert [s.index for s in shards] == [0, 1, 2, 3]


def test_plan_shards_region():
    shards = plan_shards([("chr1", 250)], shard_size=100, region="chr1:51-300")
    assert [(s.start0, s.end0) for s in shards] == [(50, 150), (150, 250)]
    with pytest.raises(ValueError):
        plan_shards([("chr1", 250)], region="chrX")


def test_samples_from_header():
    header = {"RG": [{"ID": "rg1", "SM": "NA1"}, {"ID": "rg2", "SM": "NA2"}, {"ID": "rg3"}]}
    assert samples_from_header(header) == {"rg1": "NA1", "rg2": "NA2"}
    assert samples_from_header({}) == {}


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


def _run(toy, out, *, threads, shard_size, fmt=OutputFormat.VCF):
    config = GenotyperConfig(output_format=fmt)
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        rg_to_sample = samples_from_header(bam.header.to_dict())
        contigs = [(c, n) for c, n in zip(bam.references, bam.lengths)]
    header_samples = sorted(set(rg_to_sample.values()))
    writer = make_writer(
        fmt,
        out,
        samples=sorted(resolve_samples(config, header_samples)),
        contigs=contigs,
        header_info=build_header_info(config),
    )
    with writer:
        genotyper = UnifiedGenotyper(config, writer, header_samples=header_samples, num_threads=threads)
        return call_bam(
            genotyper,
            bam_path=toy["bam"],
            ref_path=toy["ref_fa"],
            rg_to_sample=rg_to_sample,
            shard_size=shard_size,
            progress=False,
        )


def _records(path):
    with pysam.VariantFile(str(path)) as vcf:
        return [
            (r.pos, r.ref, r.alts, {s: r.samples[s]["GT"] for s in r.samples})
            for r in vcf
        ]


def test_toy_data_calls_planted_snps(toy, tmp_path):
    out = tmp_path / "calls.vcf"
    run = _run(toy, out, threads=1, shard_size=1_000_000)

    assert run["counts"]["callable"] == 2
    assert run["counts"]["loci_visited"] > 0
    assert run["counts"]["loci_processed"] == run["counts"]["loci_visited"]

    records = _records(out)
    assert [r[0] for r in records] == sorted({p + 1 for p, _, _ in TOY_SNPS})
    first = records[0][3]
    assert first["NA0001"] == (1, 1)
    assert sorted(first["NA0002"]) == [0, 1]
    second = records[1][3]
    assert second["NA0001"] == (0, 0)
    assert second["NA0002"] == (1, 1)


def test_threaded_run_matches_single_threaded(toy, tmp_path):
    one = _run(toy, tmp_path / "one.vcf", threads=1, shard_size=100)
    two = _run(toy, tmp_path / "two.vcf", threads=2, shard_size=100)

    assert one["shards"] == two["shards"] == 4
    assert two["threads"] == 2
    assert one["counts"]["callable"] == two["counts"]["callable"] == 2
    assert sum(two["counts"]["shard_totals"]) == 2
    assert one["skipped"] == two["skipped"]
    assert _records(tmp_path / "one.vcf") == _records(tmp_path / "two.vcf")


def test_geli_output_one_row_per_sample(toy, tmp_path):
    out = tmp_path / "calls.geli"
    run = _run(toy, out, threads=1, shard_size=1_000_000, fmt=OutputFormat.GELI)
    assert run["counts"]["callable"] == 2
    rows = [line.split("\t") for line in out.read_text().splitlines() if not line.startswith("#")]
    assert [(r[1], r[3]) for r in rows] == [
        ("121", "NA0001"),
        ("121", "NA0002"),
        ("261", "NA0001"),
        ("261", "NA0002"),
    ]


def test_shard_buffers_only_callable_candidates(toy):
    genotyper = UnifiedGenotyper(GenotyperConfig(), None, header_samples=["NA0001", "NA0002"])
    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        rg_to_sample = samples_from_header(bam.header.to_dict())
    worker = WorkerContext()
    result = call_shard(
        genotyper,
        Shard(index=0, contig="chr1", start0=0, end0=400),
        worker,
        bam_path=toy["bam"],
        ref_path=toy["ref_fa"],
        rg_to_sample=rg_to_sample,
    )
    assert result.columns > 100
    assert len(result.candidates) == 2
    assert all(genotyper.is_callable(c) for c, _ in result.candidates)
    assert [c.metadata.locus.pos0 for c, _ in result.candidates] == [120, 260]


def test_more_shards_than_workers(toy, tmp_path):
    one = _run(toy, tmp_path / "one.vcf", threads=1, shard_size=50)
    three = _run(toy, tmp_path / "three.vcf", threads=3, shard_size=50)
    assert three["shards"] == 8
    assert three["threads"] == 3
    assert three["counts"]["shard_totals"] == one["counts"]["shard_totals"]
    assert _records(tmp_path / "one.vcf") == _records(tmp_path / "three.vcf")


def test_verbose_stream_closed_when_traversal_fails(toy, tmp_path):
    config = GenotyperConfig(verbose_path=str(tmp_path / "verbose.txt"))
    genotyper = UnifiedGenotyper(config, None, header_samples=["NA0001", "NA0002"])
    assert genotyper.verbose_writer is not None
    with pytest.raises(ValueError, match="chrX"):
        call_bam(
            genotyper,
            bam_path=toy["bam"],
            ref_path=toy["ref_fa"],
            rg_to_sample={},
            region="chrX",
            progress=False,
        )
    assert genotyper.verbose_writer is None
