"""UniGeno: unified SNP genotyping from read pileups.

Works for single-sample, multi-sample and pooled data. Most users should use the CLI:

    unigeno call --bam sample.bam --ref ref.fa --out calls.vcf

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
