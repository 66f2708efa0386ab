from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .utils import ensure_outdir, write_json

# (0-based position, sample, genotype) of the planted SNPs
TOY_SNPS: List[Tuple[int, str, str]] = [
    (120, "NA0001", "hom"),
    (120, "NA0002", "het"),
    (260, "NA0002", "hom"),
]


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    start0: int,
    seq: str,
    read_group: str,
    *,
    mapq: int = 60,
    reverse: bool = False,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 16 if reverse else 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    a.set_tag("RG", read_group)
    return a


def make_toy_data(*, outdir: str | Path, length: int = 400, read_length: int = 50, step: int = 4) -> Dict[str, str]:
    """Create a tiny reference and a two-sample BAM with planted SNPs.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - samples.bam (+ .bai), read groups rg1 (NA0001) and rg2 (NA0002)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    contig = "chr1"
    ref_seq = "".join(rng.choice("ACGT") for _ in range(length))
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    samples = {"rg1": "NA0001", "rg2": "NA0002"}
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": contig, "LN": len(ref_seq)}],
        "RG": [{"ID": rg, "SM": sm} for rg, sm in samples.items()],
    }

    reads: List[pysam.AlignedSegment] = []
    for rg, sample in samples.items():
        snps = [(pos0, zyg) for pos0, s, zyg in TOY_SNPS if s == sample]
        for i, start0 in enumerate(range(0, length - read_length + 1, step)):
            seq = list(ref_seq[start0 : start0 + read_length])
            for pos0, zyg in snps:
                rel = pos0 - start0
                # het sites carry the alternate allele on half of the reads, both strands
                if 0 <= rel < read_length and (zyg == "hom" or i % 4 < 2):
                    seq[rel] = _mutate_base(ref_seq[pos0])
            reads.append(_make_read(f"{sample}_{i}", start0, "".join(seq), rg, reverse=bool(i % 2)))

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "samples.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)

    pysam.index(str(bam_path))

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
