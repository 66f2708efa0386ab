from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple

REGULAR_BASES = ("A", "C", "G", "T")


def is_regular_base(base: str) -> bool:
    return base.upper() in REGULAR_BASES


@dataclass(frozen=True, order=True)
class GenomeLoc:
    """A single reference position. ``pos0`` is 0-based."""

    contig: str
    pos0: int

    def __str__(self) -> str:
        return f"{self.contig}:{self.pos0 + 1}"


@dataclass(frozen=True)
class ReadView:
    """Read-only view of the parts of an alignment the genotyper queries.

    Attributes
    ----------
    name:
        Read name (QNAME).
    sequence:
        Query sequence, uppercase.
    aligned_pairs:
        ``(query_pos, ref_pos0)`` for every aligned (M/=/X) base of the read.
    is_reverse:
        Strand of the alignment.
    """

    name: str
    sequence: str
    aligned_pairs: Tuple[Tuple[int, int], ...]
    mapping_quality: int = 60
    is_reverse: bool = False
    sample: Optional[str] = None


@dataclass(frozen=True)
class PileupElement:
    """One read's observation at a locus."""

    read: ReadView
    offset: Optional[int]  # query position, None for a deletion
    base: str
    qual: int
    is_deletion: bool = False

    @property
    def mapping_quality(self) -> int:
        return self.read.mapping_quality

    @property
    def sample(self) -> Optional[str]:
        return self.read.sample

    @property
    def is_reverse(self) -> bool:
        return self.read.is_reverse


@dataclass(frozen=True)
class Pileup:
    """Ordered read observations at one locus. Filtering returns a new pileup."""

    locus: GenomeLoc
    elements: Tuple[PileupElement, ...] = ()

    def __iter__(self) -> Iterator[PileupElement]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    @property
    def size(self) -> int:
        return len(self.elements)

    @property
    def n_deletions(self) -> int:
        return sum(1 for p in self.elements if p.is_deletion)

    def filtered(self, keep: Callable[[PileupElement], bool]) -> "Pileup":
        return Pileup(locus=self.locus, elements=tuple(p for p in self.elements if keep(p)))

    def base_filtered(self, min_base_quality: int) -> "Pileup":
        """Drop bases below ``min_base_quality``; deletions are retained."""
        return self.filtered(lambda p: p.is_deletion or p.qual >= min_base_quality)

    def bases(self) -> List[str]:
        return [p.base for p in self.elements if not p.is_deletion]

    def base_counts(self) -> Dict[str, int]:
        counts = {b: 0 for b in REGULAR_BASES}
        for b in self.bases():
            b = b.upper()
            if b in counts:
                counts[b] += 1
        return counts


@dataclass(frozen=True)
class ReferenceContext:
    """Reference base at a locus plus a window of flanking sequence.

    ``window_start0`` is the 0-based coordinate of ``window[0]``.
    """

    locus: GenomeLoc
    window: str
    window_start0: int

    @property
    def base(self) -> str:
        return self.window[self.locus.pos0 - self.window_start0]

    def base_at(self, pos0: int) -> Optional[str]:
        i = pos0 - self.window_start0
        if 0 <= i < len(self.window):
            return self.window[i]
        return None


@dataclass(frozen=True)
class AlignmentContext:
    """Raw pileup delivered by the traversal engine for one locus."""

    locus: GenomeLoc
    pileup: Pileup


# sample name -> stratified sub-pileup
SampleContext = Dict[str, Pileup]


@dataclass(frozen=True)
class Genotype:
    """A diploid genotype call for one sample.

    ``confidence`` is phred-scaled; ``log10_likelihoods`` follows the order of
    ``priors.DIPLOID_GENOTYPES``.
    """

    sample: str
    locus: GenomeLoc
    ref: str
    alleles: str
    confidence: float
    depth: int
    log10_likelihoods: Tuple[float, ...] = ()

    @property
    def is_hom_ref(self) -> bool:
        return self.alleles == self.ref * 2

    @property
    def is_het(self) -> bool:
        return self.alleles[0] != self.alleles[1]

    @property
    def is_variant(self) -> bool:
        return not self.is_hom_ref


@dataclass
class VariationCall:
    """Site-level call metadata shared by all samples at a locus."""

    supports_fields: ClassVar[bool] = False

    locus: GenomeLoc
    ref: str
    alt_alleles: Tuple[str, ...]
    confidence: float
    allele_frequency: float = 0.0
    num_samples: int = 0
    strand_bias: Optional[float] = None
    fields: Dict[str, str] = field(default_factory=dict)

    @property
    def is_variant(self) -> bool:
        return len(self.alt_alleles) > 0

    def set_fields(self, fields: Mapping[str, str]) -> None:
        if not self.supports_fields:
            raise TypeError(f"{type(self).__name__} does not carry supplemental fields")
        self.fields = dict(fields)


@dataclass
class VCFVariationCall(VariationCall):
    """Call metadata that carries arbitrary INFO fields."""

    supports_fields: ClassVar[bool] = True


class CallStatus(enum.Enum):
    NOT_CONFIDENT = "not_confident"
    NO_GENOTYPES = "no_genotypes"
    CONFIDENT = "confident"


@dataclass
class CandidateCall:
    """Result of the genotype model at a locus.

    ``genotypes`` is None when the model could not make a confident call,
    empty when no per-sample genotypes exist, otherwise populated.
    """

    metadata: Optional[VariationCall]
    genotypes: Optional[List[Genotype]]

    @property
    def status(self) -> CallStatus:
        if self.genotypes is None:
            return CallStatus.NOT_CONFIDENT
        if len(self.genotypes) == 0:
            return CallStatus.NO_GENOTYPES
        return CallStatus.CONFIDENT


class SkipReason(enum.Enum):
    IRREGULAR_REFERENCE = "irregular_reference"
    NO_COVERAGE = "no_coverage"
    EXCESSIVE_COVERAGE = "excessive_coverage"
    EXCESSIVE_DELETIONS = "excessive_deletions"
    UNSTRATIFIABLE = "unstratifiable"
