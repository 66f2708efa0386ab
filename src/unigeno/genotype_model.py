"""Genotype calculation models.

A model turns stratified pileups plus genotype priors into a :class:`CandidateCall`.
The model kind is selected once per run by :func:`make_genotype_calculation`; each
worker owns its own instance (see ``genotyper.WorkerContext``).

Models
------
JointEstimateModel
    Diploid genotype likelihoods per sample, combined into a site-level
    non-reference probability. Works for one or many samples.
PooledModel
    Alternate allele frequency over ``2 * pool_size`` chromosomes for a single
    pool; produces site-level calls without per-sample genotypes.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, FrozenSet, List, Optional, TextIO, Tuple, Type

import numpy as np

from .config import GenotyperConfig, ModelKind, OutputFormat
from .models import (
    REGULAR_BASES,
    CandidateCall,
    GenomeLoc,
    Genotype,
    Pileup,
    SampleContext,
    VariationCall,
    VCFVariationCall,
)
from .priors import DIPLOID_GENOTYPES, DiploidGenotypePriors
from .utils import log10_one_minus, log10_sum, normalize_log10, phred_from_log10_error, phred_to_error_probs

logger = logging.getLogger(__name__)

POOL_SAMPLE_NAME = "POOL"

_BASE_INDEX = {b: i for i, b in enumerate(REGULAR_BASES)}
_GENOTYPE_ALLELES = np.array([[_BASE_INDEX[g[0]], _BASE_INDEX[g[1]]] for g in DIPLOID_GENOTYPES])


def _observations(pileup: Pileup) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Base indices, error probabilities and reverse-strand flags of the informative bases."""
    idx: List[int] = []
    quals: List[int] = []
    rev: List[bool] = []
    for p in pileup:
        if p.is_deletion:
            continue
        b = _BASE_INDEX.get(p.base.upper())
        if b is None:
            continue
        idx.append(b)
        quals.append(p.qual)
        rev.append(p.is_reverse)
    return np.array(idx, dtype=int), phred_to_error_probs(quals), np.array(rev, dtype=bool)


def _allele_probs(bases: np.ndarray, errors: np.ndarray) -> np.ndarray:
    """P(observed base | true allele) as an ``n x 4`` matrix."""
    n = len(bases)
    probs = np.repeat((errors / 3.0)[:, None], 4, axis=1)
    probs[np.arange(n), bases] = 1.0 - errors
    return probs


def diploid_log10_likelihoods(bases: np.ndarray, errors: np.ndarray) -> np.ndarray:
    """log10 P(bases | genotype) for every genotype in ``DIPLOID_GENOTYPES``."""
    if len(bases) == 0:
        return np.zeros(len(DIPLOID_GENOTYPES))
    probs = _allele_probs(bases, errors)
    per_read = 0.5 * (probs[:, _GENOTYPE_ALLELES[:, 0]] + probs[:, _GENOTYPE_ALLELES[:, 1]])
    return np.log10(per_read).sum(axis=0)


class GenotypeCalculationModel(abc.ABC):
    """Base class for genotype calculation strategies."""

    kind: ModelKind

    def __init__(
        self,
        samples: FrozenSet[str],
        config: GenotyperConfig,
        output_format: OutputFormat,
        verbose_writer: Optional[TextIO] = None,
    ) -> None:
        self.samples = samples
        self.config = config
        self.output_format = output_format
        self.verbose_writer = verbose_writer
        self._call_type: Type[VariationCall] = (
            VCFVariationCall if output_format is OutputFormat.VCF else VariationCall
        )
        self.loci_seen = 0

    @abc.abstractmethod
    def calculate_genotype(
        self,
        tracker: Any,
        ref: str,
        locus: GenomeLoc,
        contexts: SampleContext,
        priors: DiploidGenotypePriors,
    ) -> Optional[CandidateCall]:
        """Compute the call at ``locus``; None when nothing can be said."""

    def close(self) -> None:
        logger.debug("%s processed %d loci", type(self).__name__, self.loci_seen)

    def _new_call(self, **kwargs: Any) -> VariationCall:
        return self._call_type(**kwargs)

    def _verbose(self, line: str) -> None:
        if self.verbose_writer is not None:
            self.verbose_writer.write(line + "\n")


def _strand_lod(bases: np.ndarray, errors: np.ndarray, priors: np.ndarray, ref_idx: int) -> float:
    """log10 odds of the best non-reference genotype over hom-ref for one set of bases."""
    post = diploid_log10_likelihoods(bases, errors) + priors
    hom_ref = post[ref_idx]
    others = np.delete(post, ref_idx)
    return float(others.max() - hom_ref)


class JointEstimateModel(GenotypeCalculationModel):
    """Joint single/multi-sample diploid SNP model."""

    kind = ModelKind.JOINT_ESTIMATE

    def calculate_genotype(
        self,
        tracker: Any,
        ref: str,
        locus: GenomeLoc,
        contexts: SampleContext,
        priors: DiploidGenotypePriors,
    ) -> Optional[CandidateCall]:
        self.loci_seen += 1
        ref = ref.upper()
        ref_gt = DIPLOID_GENOTYPES.index(ref * 2)

        per_sample: Dict[str, Tuple[np.ndarray, int]] = {}
        all_obs: List[Tuple[np.ndarray, np.ndarray, np.ndarray]] = []
        for sample in sorted(contexts):
            bases, errors, rev = _observations(contexts[sample])
            if len(bases) == 0:
                continue
            posteriors = normalize_log10(diploid_log10_likelihoods(bases, errors) + priors.log10_priors)
            per_sample[sample] = (posteriors, len(bases))
            all_obs.append((bases, errors, rev))

        if not per_sample:
            return None

        # site is reference only if every sample is hom-ref
        log10_p_ref = float(sum(post[ref_gt] for post, _ in per_sample.values()))
        is_variant = log10_p_ref < np.log10(0.5)
        if is_variant:
            confidence = phred_from_log10_error(log10_p_ref)
        else:
            confidence = phred_from_log10_error(log10_one_minus(log10_p_ref))

        genotypes: List[Genotype] = []
        for sample, (post, depth) in per_sample.items():
            best = int(np.argmax(post))
            gt_conf = phred_from_log10_error(log10_sum(np.delete(post, best)))
            genotypes.append(
                Genotype(
                    sample=sample,
                    locus=locus,
                    ref=ref,
                    alleles=DIPLOID_GENOTYPES[best],
                    confidence=gt_conf,
                    depth=depth,
                    log10_likelihoods=tuple(float(x) for x in post),
                )
            )

        alts = sorted({a for g in genotypes for a in g.alleles if a != ref}) if is_variant else []
        n_alt = sum(1 for g in genotypes for a in g.alleles if a != ref)
        af = n_alt / float(2 * len(genotypes))

        strand_bias: Optional[float] = None
        if not self.config.no_slod and is_variant:
            bases = np.concatenate([o[0] for o in all_obs])
            errors = np.concatenate([o[1] for o in all_obs])
            rev = np.concatenate([o[2] for o in all_obs])
            lod = _strand_lod(bases, errors, priors.log10_priors, ref_gt)
            fwd_lod = _strand_lod(bases[~rev], errors[~rev], priors.log10_priors, ref_gt)
            rev_lod = _strand_lod(bases[rev], errors[rev], priors.log10_priors, ref_gt)
            strand_bias = max(fwd_lod - lod, rev_lod - lod)

        metadata = self._new_call(
            locus=locus,
            ref=ref,
            alt_alleles=tuple(alts),
            confidence=confidence,
            allele_frequency=af,
            num_samples=len(genotypes),
            strand_bias=strand_bias,
        )

        self._verbose(
            f"{locus}\t{ref}\t{','.join(alts) or '.'}\tQ={confidence:.2f}\t"
            + "\t".join(f"{g.sample}={g.alleles}:{g.confidence:.1f}:{g.depth}" for g in genotypes)
        )

        if confidence < self.config.min_confidence_threshold:
            return CandidateCall(metadata=metadata, genotypes=[])
        if not is_variant and not self.config.genotype_all_sites:
            return CandidateCall(metadata=metadata, genotypes=[])
        return CandidateCall(metadata=metadata, genotypes=genotypes)


class PooledModel(GenotypeCalculationModel):
    """Allele-frequency model for a single pool of ``pool_size`` diploid individuals."""

    kind = ModelKind.POOLED

    def __init__(
        self,
        samples: FrozenSet[str],
        config: GenotyperConfig,
        output_format: OutputFormat,
        verbose_writer: Optional[TextIO] = None,
    ) -> None:
        super().__init__(samples, config, output_format, verbose_writer)
        self.n_chromosomes = 2 * config.pool_size
        self._log10_af_priors = self._allele_frequency_priors(self.n_chromosomes, config.heterozygosity)

    @staticmethod
    def _allele_frequency_priors(n_chromosomes: int, theta: float) -> np.ndarray:
        """Neutral-expectation prior ``theta / k`` for k alternate chromosomes."""
        k = np.arange(1, n_chromosomes + 1, dtype=float)
        nonref = theta / k
        total = nonref.sum()
        if total >= 1.0:
            nonref = nonref / (total * 1.01)
            total = nonref.sum()
        return np.log10(np.concatenate([[1.0 - total], nonref]))

    def calculate_genotype(
        self,
        tracker: Any,
        ref: str,
        locus: GenomeLoc,
        contexts: SampleContext,
        priors: DiploidGenotypePriors,
    ) -> Optional[CandidateCall]:
        self.loci_seen += 1
        ref = ref.upper()
        pileup = contexts.get(POOL_SAMPLE_NAME)
        if pileup is None:
            # pools given under their own sample names are merged
            pileup = Pileup(locus=locus, elements=tuple(p for c in contexts.values() for p in c))

        bases, errors, _ = _observations(pileup)
        if len(bases) == 0:
            return None

        ref_idx = _BASE_INDEX[ref]
        counts = np.bincount(bases, minlength=4)
        counts[ref_idx] = -1
        alt_idx = int(np.argmax(counts))
        alt = REGULAR_BASES[alt_idx]

        probs = _allele_probs(bases, errors)
        freqs = np.arange(self.n_chromosomes + 1, dtype=float) / self.n_chromosomes
        mix = freqs[None, :] * probs[:, [alt_idx]] + (1.0 - freqs[None, :]) * probs[:, [ref_idx]]
        posterior = normalize_log10(np.log10(mix).sum(axis=0) + self._log10_af_priors)

        best_k = int(np.argmax(posterior))
        is_variant = best_k > 0
        log10_p_ref = float(posterior[0])
        if is_variant:
            confidence = phred_from_log10_error(log10_p_ref)
        else:
            confidence = phred_from_log10_error(log10_one_minus(log10_p_ref))

        metadata = self._new_call(
            locus=locus,
            ref=ref,
            alt_alleles=(alt,) if is_variant else (),
            confidence=confidence,
            allele_frequency=best_k / float(self.n_chromosomes),
            num_samples=1,
        )

        self._verbose(
            f"{locus}\t{ref}\t{alt if is_variant else '.'}\tQ={confidence:.2f}\t"
            f"AC={best_k}/{self.n_chromosomes}\tdepth={len(bases)}"
        )

        if confidence < self.config.min_confidence_threshold:
            return CandidateCall(metadata=metadata, genotypes=None)
        if not is_variant and not self.config.genotype_all_sites:
            return CandidateCall(metadata=metadata, genotypes=None)
        return CandidateCall(metadata=metadata, genotypes=[])


_MODELS: Dict[ModelKind, Type[GenotypeCalculationModel]] = {
    ModelKind.JOINT_ESTIMATE: JointEstimateModel,
    ModelKind.POOLED: PooledModel,
}


def make_genotype_calculation(
    samples: FrozenSet[str],
    config: GenotyperConfig,
    output_format: OutputFormat,
    verbose_writer: Optional[TextIO] = None,
) -> GenotypeCalculationModel:
    """Build the model selected by ``config.genotype_model``."""
    model_cls = _MODELS[config.genotype_model]
    logger.debug("Creating %s (format=%s)", model_cls.__name__, output_format.value)
    return model_cls(samples, config, output_format, verbose_writer)
