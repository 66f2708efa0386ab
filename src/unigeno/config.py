from __future__ import annotations

import argparse
import enum
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised at initialization for option combinations that cannot be run."""


class ModelKind(enum.Enum):
    JOINT_ESTIMATE = "joint_estimate"
    POOLED = "pooled"

    @classmethod
    def parse(cls, value: "str | ModelKind") -> "ModelKind":
        if isinstance(value, ModelKind):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Unknown genotype model '{value}' (choose from: {choices})") from None


class OutputFormat(enum.Enum):
    VCF = "vcf"
    GLF = "glf"
    GELI = "geli"

    @classmethod
    def parse(cls, value: "str | OutputFormat") -> "OutputFormat":
        if isinstance(value, OutputFormat):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(f.value for f in cls)
            raise ConfigurationError(f"Unsupported genotype format: {value} (choose from: {choices})") from None


@dataclass(frozen=True)
class GenotyperConfig:
    """Options controlling the genotyper. Fixed for the whole run.

    Attributes
    ----------
    genotype_model:
        Calculation model; POOLED treats all reads as one pool of ``pool_size`` individuals.
    min_confidence_threshold:
        Phred-scaled confidence below which a site is not called.
    max_deletion_fraction:
        Maximum fraction of deletions in the pileup; values outside [0, 1] disable the check.
    max_reads_in_pileup:
        Skip loci whose filtered pileup exceeds this size; <= 0 means unbounded.
    assume_single_sample:
        Treat every read as coming from this sample (when read groups lack SM tags).
    count_empty_pooled_calls:
        Count pooled calls without per-sample genotypes as callable loci.
    lod_threshold:
        No longer supported; a positive value is an error.
    """

    genotype_model: ModelKind = ModelKind.JOINT_ESTIMATE
    output_format: OutputFormat = OutputFormat.VCF
    pool_size: int = 0
    heterozygosity: float = 1e-3
    min_confidence_threshold: float = 50.0
    min_base_quality: int = 10
    max_mismatches: int = 3
    max_deletion_fraction: float = 0.05
    max_reads_in_pileup: int = -1
    assume_single_sample: Optional[str] = None
    all_annotations: bool = False
    genotype_all_sites: bool = False
    no_slod: bool = False
    count_empty_pooled_calls: bool = True
    verbose_path: Optional[str] = None
    lod_threshold: Optional[float] = None

    @property
    def is_pooled(self) -> bool:
        return self.genotype_model is ModelKind.POOLED

    def validate(self, *, num_threads: int = 1) -> None:
        """Fail fast on unsupported option combinations."""
        if self.pool_size > 0 and self.genotype_model is not ModelKind.POOLED:
            raise ConfigurationError(
                "Attempting to use a model other than POOLED with pooled data. "
                "Please set the model to POOLED."
            )
        if self.pool_size < 1 and self.genotype_model is ModelKind.POOLED:
            raise ConfigurationError(
                "Attempting to use the POOLED model with a pool size less than 1. "
                "Please set the pool size to an appropriate value."
            )
        if self.lod_threshold is not None and self.lod_threshold > 0.0:
            raise ConfigurationError(
                "The lod_threshold option is no longer supported; use min_confidence_threshold instead. "
                "There is approximately a 10-to-1 mapping from confidence to LOD: "
                f"use Q{10.0 * self.lod_threshold:g} as an approximate equivalent to LOD {self.lod_threshold:g}."
            )
        if not 0.0 < self.heterozygosity < 2.0 / 3.0:
            raise ConfigurationError(f"heterozygosity must be in (0, 2/3), got {self.heterozygosity}")

        # these need single-worker semantics
        if num_threads > 1:
            if self.assume_single_sample is not None:
                raise ConfigurationError(
                    "For technical reasons, assume_single_sample cannot be used with multiple threads"
                )
            if self.verbose_path is not None:
                raise ConfigurationError(
                    "For technical reasons, verbose output cannot be used with multiple threads"
                )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            out[f.name] = v.value if isinstance(v, enum.Enum) else v
        return out

    @classmethod
    def from_namespace(cls, args: argparse.Namespace) -> "GenotyperConfig":
        return cls(
            genotype_model=ModelKind.parse(args.genotype_model),
            output_format=OutputFormat.parse(args.format),
            pool_size=int(args.pool_size),
            heterozygosity=float(args.heterozygosity),
            min_confidence_threshold=float(args.min_confidence_threshold),
            min_base_quality=int(args.min_base_quality),
            max_mismatches=int(args.max_mismatches),
            max_deletion_fraction=float(args.max_deletion_fraction),
            max_reads_in_pileup=int(args.max_reads_in_pileup),
            assume_single_sample=args.assume_single_sample,
            all_annotations=bool(args.all_annotations),
            genotype_all_sites=bool(args.genotype_all_sites),
            no_slod=bool(args.no_slod),
            count_empty_pooled_calls=not bool(args.no_count_empty_pooled),
            verbose_path=args.verbose_out,
            lod_threshold=args.lod_threshold,
        )
