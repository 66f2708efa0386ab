"""Per-locus genotyping (map) and call aggregation (reduce / tree-reduce).

The traversal engine calls :meth:`UnifiedGenotyper.map` once per locus with the
:class:`WorkerContext` of the worker processing that locus, then folds the results
with :meth:`UnifiedGenotyper.reduce`. Counts from independent shards are merged with
:meth:`UnifiedGenotyper.tree_reduce`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, TextIO

from . import __version__
from .annotations import annotate
from .config import ConfigurationError, GenotyperConfig, OutputFormat
from .genotype_model import POOL_SAMPLE_NAME, GenotypeCalculationModel, make_genotype_calculation
from .models import AlignmentContext, CandidateCall, ReferenceContext, SkipReason, is_regular_base
from .pileup_filter import screen_pileup
from .priors import PROB_OF_TRISTATE_GENOTYPE, DiploidGenotypePriors
from .stratify import split_context_by_sample
from .writers import GenotypeWriter

logger = logging.getLogger(__name__)

# flanking bases on each side of a locus available for mismatch counting
REFERENCE_WINDOW = 20


class WorkerContext:
    """State owned by one worker: its genotype model and its skip counters.

    The model is created on the first locus the worker processes and reused for
    every later locus. A context must never be handed to another worker.
    """

    def __init__(self, name: str = "worker-0") -> None:
        self.name = name
        self.model: Optional[GenotypeCalculationModel] = None
        self.loci_seen = 0
        self.skipped: Dict[SkipReason, int] = {r: 0 for r in SkipReason}

    def model_for(self, factory: Callable[[], GenotypeCalculationModel]) -> GenotypeCalculationModel:
        if self.model is None:
            self.model = factory()
            logger.debug("%s: created %s", self.name, type(self.model).__name__)
        return self.model

    def skip(self, reason: SkipReason) -> None:
        self.skipped[reason] += 1
        return None

    def close(self) -> None:
        if self.model is not None:
            self.model.close()
            self.model = None


def merge_skip_counts(workers: Iterable[WorkerContext]) -> Dict[str, int]:
    out = {r.value: 0 for r in SkipReason}
    for w in workers:
        for r, n in w.skipped.items():
            out[r.value] += n
    return out


def resolve_samples(config: GenotyperConfig, header_samples: Iterable[str]) -> FrozenSet[str]:
    """Samples the run reports on; empty in pooled mode, where sample names are ignored."""
    if config.is_pooled:
        return frozenset()
    if config.assume_single_sample is not None:
        return frozenset([config.assume_single_sample])
    return frozenset(header_samples)


def build_header_info(config: GenotyperConfig, reference_name: Optional[str] = None) -> Dict[str, str]:
    """Meta lines describing the run, for the output header."""
    info = {"source": f"UniGeno {__version__}"}
    if reference_name is not None:
        info["reference"] = reference_name
    info["INFO_NOTE"] = (
        '"All annotations in the INFO field are generated only from the FILTERED context used for calling variants"'
    )
    for key, value in config.to_dict().items():
        info[f"UG_{key}"] = str(value)
    return info


class UnifiedGenotyper:
    """SNP genotyper for single-sample, multi-sample and pooled data.

    Parameters
    ----------
    config:
        Run options; validated in :meth:`initialize`.
    writer:
        Sink for accepted calls. May be None when another component consumes the
        results of :meth:`map` directly; calls are then counted but not written.
    header_samples:
        Sample names found in the read headers. Ignored in pooled mode and when
        ``config.assume_single_sample`` is set.
    num_threads:
        Number of concurrent workers the engine will use.
    """

    def __init__(
        self,
        config: GenotyperConfig,
        writer: Optional[GenotypeWriter] = None,
        *,
        header_samples: Iterable[str] = (),
        num_threads: int = 1,
    ) -> None:
        self.config = config
        self.writer = writer
        self.num_threads = int(num_threads)
        self._header_samples = frozenset(header_samples)
        self.samples: FrozenSet[str] = frozenset()
        self.output_format: OutputFormat = config.output_format
        self.verbose_writer: Optional[TextIO] = None
        self.initialize()

    def initialize(self) -> None:
        """Validate options, resolve the sample set, output format and verbose stream."""
        self.config.validate(num_threads=self.num_threads)

        self.samples = resolve_samples(self.config, self._header_samples)

        if self.writer is not None:
            fmt = getattr(self.writer, "format", None)
            if not isinstance(fmt, OutputFormat):
                raise ConfigurationError(f"Unsupported genotype format: {type(self.writer).__name__}")
            self.output_format = fmt

        if self.config.verbose_path is not None and self.verbose_writer is None:
            try:
                self.verbose_writer = open(self.config.verbose_path, "wt", encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(
                    f"Could not open file {self.config.verbose_path} for writing: {e}"
                ) from e

        logger.info(
            "Genotyper initialized: model=%s format=%s samples=%d threads=%d",
            self.config.genotype_model.value,
            self.output_format.value,
            len(self.samples),
            self.num_threads,
        )

    def _new_model(self) -> GenotypeCalculationModel:
        return make_genotype_calculation(self.samples, self.config, self.output_format, self.verbose_writer)

    def map(
        self,
        tracker: Any,
        ref_context: ReferenceContext,
        raw_context: AlignmentContext,
        worker: WorkerContext,
    ) -> Optional[CandidateCall]:
        """Compute the candidate call at one locus; None when the locus is skipped."""
        model = worker.model_for(self._new_model)
        worker.loci_seen += 1

        ref = ref_context.base.upper()
        if not is_regular_base(ref):
            return worker.skip(SkipReason.IRREGULAR_REFERENCE)

        cfg = self.config
        pileup, reason = screen_pileup(
            raw_context.pileup,
            ref_context,
            min_base_quality=cfg.min_base_quality,
            max_mismatches=cfg.max_mismatches,
            max_deletion_fraction=cfg.max_deletion_fraction,
            max_pileup_size=cfg.max_reads_in_pileup,
        )
        if pileup is None:
            assert reason is not None
            return worker.skip(reason)

        # multi-sample data may be run through pooled mode, hence the pooled name wins
        contexts = split_context_by_sample(
            pileup,
            cfg.assume_single_sample,
            POOL_SAMPLE_NAME if cfg.is_pooled else None,
        )
        if contexts is None:
            return worker.skip(SkipReason.UNSTRATIFIABLE)

        priors = DiploidGenotypePriors.for_reference(ref, cfg.heterozygosity, PROB_OF_TRISTATE_GENOTYPE)
        call = model.calculate_genotype(tracker, ref, raw_context.locus, contexts, priors)

        if call is not None and call.metadata is not None and call.metadata.supports_fields:
            call.metadata.set_fields(
                annotate(ref_context, contexts, call.metadata, all_annotations=cfg.all_annotations)
            )
        return call

    def reduce_init(self) -> int:
        return 0

    @staticmethod
    def tree_reduce(lhs: int, rhs: int) -> int:
        return lhs + rhs

    def is_callable(self, value: Optional[CandidateCall]) -> bool:
        # no coverage, filtered out, or irregular reference
        if value is None:
            return False
        # no confident call
        if value.genotypes is None:
            return False
        if len(value.genotypes) == 0:
            return self.config.is_pooled and self.config.count_empty_pooled_calls
        return True

    def reduce(self, value: Optional[CandidateCall], total: int) -> int:
        """Emit an accepted call and add it to the running count."""
        if not self.is_callable(value):
            return total
        assert value is not None and value.genotypes is not None

        if self.writer is not None:
            single = value.metadata is None or (
                not self.writer.supports_multi_sample and len(self.samples) <= 1
            )
            if single and value.genotypes:
                self.writer.add_genotype_call(value.genotypes[0])
            elif value.metadata is not None:
                self.writer.add_multi_sample_call(value.genotypes, value.metadata)

        return total + 1

    def close(self) -> None:
        """Release the verbose stream; safe to call more than once."""
        if self.verbose_writer is not None:
            self.verbose_writer.close()
            self.verbose_writer = None

    def on_traversal_done(self, total: int) -> None:
        self.close()
        logger.info("Processed %d loci that are callable for SNPs", total)
