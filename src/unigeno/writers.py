"""Genotype call sinks.

Three output encodings are supported:

- VCF (multi-sample; written with pysam)
- GELI (tab-delimited per-sample genotype text)
- GLF (tab-delimited per-sample genotype likelihood text)

Only VCF supports multi-sample records; the text formats write one row per genotype.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, TextIO, Tuple

import pysam

from .annotations import ANNOTATIONS
from .config import OutputFormat
from .models import Genotype, VariationCall
from .priors import DIPLOID_GENOTYPES
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

_MAX_GQ = 99

# INFO lines written by the genotyper itself (id, number, type, description)
CORE_INFO_LINES: List[Tuple[str, object, str, str]] = [
    ("AF", 1, "Float", "Allele Frequency"),
    ("NS", 1, "Integer", "Number of Samples With Data"),
    ("SB", 1, "Float", "Strand Bias"),
]


class GenotypeWriter(abc.ABC):
    """Destination for genotype calls."""

    format: OutputFormat
    supports_multi_sample: bool = False

    def __init__(self) -> None:
        self.records_written = 0

    @abc.abstractmethod
    def add_genotype_call(self, genotype: Genotype) -> None:
        ...

    @abc.abstractmethod
    def add_multi_sample_call(self, genotypes: Sequence[Genotype], metadata: VariationCall) -> None:
        ...

    def close(self) -> None:
        logger.info("Wrote %d %s records", self.records_written, self.format.value.upper())

    def __enter__(self) -> "GenotypeWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class VCFGenotypeWriter(GenotypeWriter):
    format = OutputFormat.VCF
    supports_multi_sample = True

    def __init__(
        self,
        path: str | Path,
        *,
        samples: Sequence[str],
        contigs: Sequence[Tuple[str, int]],
        header_info: Optional[Mapping[str, str]] = None,
        info_lines: Optional[Sequence[Tuple[str, object, str, str]]] = None,
    ) -> None:
        super().__init__()
        header = pysam.VariantHeader()
        for key, value in (header_info or {}).items():
            header.add_meta(key, value)
        for name, length in contigs:
            header.contigs.add(name, length=length)

        lines = list(CORE_INFO_LINES) + list(info_lines or [])
        self._info_types: Dict[str, Tuple[object, str]] = {}
        for key, number, typ, desc in lines:
            if key in self._info_types:
                continue
            header.info.add(key, number=number, type=typ, description=desc)
            self._info_types[key] = (number, typ)

        header.formats.add("GT", number=1, type="String", description="Genotype")
        header.formats.add("GQ", number=1, type="Integer", description="Genotype Quality")
        header.formats.add("DP", number=1, type="Integer", description="Read Depth")
        for s in sorted(samples):
            header.add_sample(s)

        self._samples = set(header.samples)
        mode = "wz" if str(path).endswith(".gz") else "w"
        self._vcf = pysam.VariantFile(str(path), mode, header=header)

    def _convert(self, key: str, value: str) -> object:
        number, typ = self._info_types[key]
        cast = int if typ == "Integer" else float if typ == "Float" else str
        if number == 1:
            return cast(value)
        return tuple(cast(v) for v in value.split(","))

    def _write(self, metadata: VariationCall, genotypes: Sequence[Genotype]) -> None:
        alleles = (metadata.ref,) + tuple(metadata.alt_alleles)
        rec = self._vcf.new_record(
            contig=metadata.locus.contig,
            start=metadata.locus.pos0,
            stop=metadata.locus.pos0 + 1,
            alleles=alleles,
            qual=round(metadata.confidence, 2),
        )
        rec.info["NS"] = metadata.num_samples
        if metadata.alt_alleles:
            rec.info["AF"] = round(metadata.allele_frequency, 4)
        if metadata.strand_bias is not None:
            rec.info["SB"] = round(metadata.strand_bias, 2)
        for key, value in metadata.fields.items():
            if key in self._info_types:
                rec.info[key] = self._convert(key, value)
            else:
                logger.debug("Dropping INFO field %s not declared in header", key)

        allele_index = {a: i for i, a in enumerate(alleles)}
        for g in genotypes:
            if g.sample not in self._samples:
                continue
            sample = rec.samples[g.sample]
            sample["GT"] = tuple(allele_index[a] for a in g.alleles)
            sample["GQ"] = int(min(round(g.confidence), _MAX_GQ))
            sample["DP"] = g.depth

        self._vcf.write(rec)
        self.records_written += 1

    def add_genotype_call(self, genotype: Genotype) -> None:
        alts = tuple(sorted({a for a in genotype.alleles if a != genotype.ref}))
        metadata = VariationCall(
            locus=genotype.locus,
            ref=genotype.ref,
            alt_alleles=alts,
            confidence=genotype.confidence,
            allele_frequency=sum(1 for a in genotype.alleles if a != genotype.ref) / 2.0,
            num_samples=1,
        )
        self._write(metadata, [genotype])

    def add_multi_sample_call(self, genotypes: Sequence[Genotype], metadata: VariationCall) -> None:
        self._write(metadata, genotypes)

    def close(self) -> None:
        self._vcf.close()
        super().close()


class _TextGenotypeWriter(GenotypeWriter):
    """Shared plumbing for the tab-delimited single-sample formats."""

    columns: Tuple[str, ...] = ()

    def __init__(self, path: str | Path, *, header_info: Optional[Mapping[str, str]] = None) -> None:
        super().__init__()
        self._fh: TextIO = open_textmaybe_gzip(path, "wt")
        for key, value in (header_info or {}).items():
            self._fh.write(f"##{key}={value}\n")
        self._fh.write("#" + "\t".join(self.columns) + "\n")

    @abc.abstractmethod
    def _row(self, genotype: Genotype) -> List[str]:
        ...

    def _site_row(self, metadata: VariationCall) -> Optional[List[str]]:
        return None

    def add_genotype_call(self, genotype: Genotype) -> None:
        self._fh.write("\t".join(self._row(genotype)) + "\n")
        self.records_written += 1

    def add_multi_sample_call(self, genotypes: Sequence[Genotype], metadata: VariationCall) -> None:
        if not genotypes:
            row = self._site_row(metadata)
            if row is not None:
                self._fh.write("\t".join(row) + "\n")
                self.records_written += 1
            return
        for g in genotypes:
            self.add_genotype_call(g)

    def close(self) -> None:
        self._fh.close()
        super().close()


class GeliGenotypeWriter(_TextGenotypeWriter):
    format = OutputFormat.GELI
    columns = ("sequence", "position", "reference_base", "sample", "depth", "best_genotype", "confidence")

    def _row(self, genotype: Genotype) -> List[str]:
        return [
            genotype.locus.contig,
            str(genotype.locus.pos0 + 1),
            genotype.ref,
            genotype.sample,
            str(genotype.depth),
            genotype.alleles,
            f"{genotype.confidence:.2f}",
        ]

    def _site_row(self, metadata: VariationCall) -> Optional[List[str]]:
        best = metadata.ref + (metadata.alt_alleles[0] if metadata.alt_alleles else metadata.ref)
        return [
            metadata.locus.contig,
            str(metadata.locus.pos0 + 1),
            metadata.ref,
            ".",
            ".",
            best,
            f"{metadata.confidence:.2f}",
        ]


class GLFGenotypeWriter(_TextGenotypeWriter):
    """Per-genotype likelihood rows: the ten diploid log10 likelihoods, best first normalised to 0."""

    format = OutputFormat.GLF
    columns = ("sequence", "position", "reference_base", "sample", "depth") + DIPLOID_GENOTYPES

    def _row(self, genotype: Genotype) -> List[str]:
        lks = list(genotype.log10_likelihoods) or [0.0] * len(DIPLOID_GENOTYPES)
        best = max(lks)
        return [
            genotype.locus.contig,
            str(genotype.locus.pos0 + 1),
            genotype.ref,
            genotype.sample,
            str(genotype.depth),
        ] + [f"{lk - best:.3f}" for lk in lks]


def make_writer(
    output_format: OutputFormat,
    path: str | Path,
    *,
    samples: Sequence[str],
    contigs: Sequence[Tuple[str, int]],
    header_info: Optional[Mapping[str, str]] = None,
    all_annotations: bool = False,
) -> GenotypeWriter:
    """Open a writer for ``output_format``."""
    if output_format is OutputFormat.VCF:
        info_lines = [
            (a.key, a.number, a.type, a.description)
            for a in ANNOTATIONS
            if all_annotations or a.standard
        ]
        return VCFGenotypeWriter(
            path, samples=samples, contigs=contigs, header_info=header_info, info_lines=info_lines
        )
    if output_format is OutputFormat.GELI:
        return GeliGenotypeWriter(path, header_info=header_info)
    if output_format is OutputFormat.GLF:
        return GLFGenotypeWriter(path, header_info=header_info)
    raise ValueError(f"Unsupported genotype format: {output_format}")
