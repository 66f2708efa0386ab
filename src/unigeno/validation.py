from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM has an index; raise ValueError with fix instructions."""
    bam = Path(bam_path)
    bai1 = bam.with_suffix(bam.suffix + ".bai")
    bai2 = bam.with_suffix(".bai")
    csi = bam.with_suffix(bam.suffix + ".csi")
    if bai1.exists() or bai2.exists() or csi.exists():
        return
    raise ValueError(
        "BAM is not indexed. Run: samtools index " + str(bam)
    )


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a reference FASTA has a .fai index; raise ValueError with fix instructions."""
    fasta = Path(fasta_path)
    fai = fasta.with_suffix(fasta.suffix + ".fai")
    if fai.exists():
        return
    if fasta.suffix == ".gz":
        logger.info("Compressed reference %s must be bgzipped for random access.", fasta)
    raise ValueError(
        "Reference FASTA is not indexed. Run: samtools faidx " + str(fasta)
    )
