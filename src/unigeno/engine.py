"""Locus traversal over an indexed BAM and reference FASTA.

The genome is cut into shards. Each shard is processed start to finish by one
worker using its own file handles and :class:`WorkerContext`; callable
candidates are buffered per shard and reduced in shard order by the calling
thread, so calls reach the writer in locus order even when shards finish out of
order. No more shards than workers are in flight at once. Per-shard
counts are merged with :meth:`UnifiedGenotyper.tree_reduce`.
"""

from __future__ import annotations

import logging
import queue
import re
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import reduce
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pysam
from tqdm import tqdm

from .alignment import read_view_from_segment
from .genotyper import REFERENCE_WINDOW, UnifiedGenotyper, WorkerContext, merge_skip_counts
from .models import AlignmentContext, CandidateCall, GenomeLoc, Pileup, PileupElement, ReadView, ReferenceContext

logger = logging.getLogger(__name__)

DEFAULT_SHARD_SIZE = 1_000_000

_REGION_RE = re.compile(r"^(?P<contig>[^:]+)(?::(?P<start>[\d,]+)(?:-(?P<end>[\d,]+))?)?$")


@dataclass(frozen=True)
class Shard:
    index: int
    contig: str
    start0: int
    end0: int


@dataclass
class ShardResult:
    shard: Shard
    candidates: List[Tuple[CandidateCall, int]] = field(default_factory=list)
    columns: int = 0


def parse_region(region: str) -> Tuple[str, Optional[int], Optional[int]]:
    """Parse ``contig[:start[-end]]`` (1-based, inclusive) into 0-based half-open bounds."""
    m = _REGION_RE.match(region.strip())
    if m is None:
        raise ValueError(f"Invalid region '{region}'. Expected contig, contig:start or contig:start-end.")
    contig = m.group("contig")
    start = m.group("start")
    end = m.group("end")
    start0 = int(start.replace(",", "")) - 1 if start else None
    end0 = int(end.replace(",", "")) if end else None
    if start0 is not None and start0 < 0:
        raise ValueError(f"Invalid region '{region}': start must be >= 1")
    if start0 is not None and end0 is not None and end0 <= start0:
        raise ValueError(f"Invalid region '{region}': end must be >= start")
    return contig, start0, end0


def plan_shards(
    contigs: Sequence[Tuple[str, int]],
    *,
    shard_size: int = DEFAULT_SHARD_SIZE,
    region: Optional[str] = None,
) -> List[Shard]:
    """Split contigs (or one region) into consecutive shards of at most ``shard_size`` bp."""
    if shard_size < 1:
        raise ValueError("shard_size must be >= 1")

    spans: List[Tuple[str, int, int]] = []
    lengths = dict(contigs)
    if region is not None:
        contig, start0, end0 = parse_region(region)
        if contig not in lengths:
            raise ValueError(f"Region contig '{contig}' is not present in both the BAM and the reference")
        start0 = 0 if start0 is None else start0
        end0 = lengths[contig] if end0 is None else min(end0, lengths[contig])
        spans.append((contig, start0, end0))
    else:
        spans = [(c, 0, n) for c, n in contigs]

    shards: List[Shard] = []
    for contig, start0, end0 in spans:
        for s in range(start0, end0, shard_size):
            shards.append(Shard(index=len(shards), contig=contig, start0=s, end0=min(s + shard_size, end0)))
    return shards


def samples_from_header(header: Mapping[str, object]) -> Dict[str, str]:
    """Map read-group ID to sample name (SM) from a BAM header dict."""
    out: Dict[str, str] = {}
    for rg in header.get("RG", []) or []:  # type: ignore[union-attr]
        rg_id = rg.get("ID")
        sm = rg.get("SM")
        if rg_id is not None and sm is not None:
            out[str(rg_id)] = str(sm)
    return out


def shared_contigs(bam: pysam.AlignmentFile, fasta: pysam.FastaFile) -> List[Tuple[str, int]]:
    """Contigs present in both the BAM header and the reference, in BAM order."""
    ref_names = set(fasta.references)
    contigs = [(c, int(n)) for c, n in zip(bam.references, bam.lengths) if c in ref_names]
    if not contigs:
        raise ValueError(
            "Contig mismatch between BAM and reference (e.g., chr1 vs 1). "
            "Make sure the BAM was aligned to this reference."
        )
    return contigs


def reference_context(
    fasta: pysam.FastaFile, contig: str, pos0: int, contig_length: int, window: int = REFERENCE_WINDOW
) -> ReferenceContext:
    start = max(0, pos0 - window)
    end = min(contig_length, pos0 + window + 1)
    return ReferenceContext(
        locus=GenomeLoc(contig, pos0),
        window=fasta.fetch(contig, start, end).upper(),
        window_start0=start,
    )


class _ReadCache:
    """ReadViews for reads overlapping the current position of a shard."""

    def __init__(self, rg_to_sample: Mapping[str, str]) -> None:
        self.rg_to_sample = rg_to_sample
        self._views: Dict[Tuple[str, int, int], Tuple[ReadView, int]] = {}

    def get(self, aln: pysam.AlignedSegment) -> ReadView:
        key = (str(aln.query_name), int(aln.flag), int(aln.reference_start))
        hit = self._views.get(key)
        if hit is not None:
            return hit[0]
        sample = None
        if aln.has_tag("RG"):
            sample = self.rg_to_sample.get(str(aln.get_tag("RG")))
        view = read_view_from_segment(aln, sample=sample)
        self._views[key] = (view, int(aln.reference_end or aln.reference_start))
        return view

    def evict_before(self, pos0: int) -> None:
        stale = [k for k, (_, end) in self._views.items() if end <= pos0]
        for k in stale:
            del self._views[k]


def pileup_from_column(column: pysam.PileupColumn, locus: GenomeLoc, cache: _ReadCache) -> Pileup:
    elements: List[PileupElement] = []
    for pr in column.pileups:
        if pr.is_refskip:
            continue
        aln = pr.alignment
        view = cache.get(aln)
        if pr.is_del:
            elements.append(PileupElement(read=view, offset=None, base="D", qual=0, is_deletion=True))
            continue
        qpos = pr.query_position
        if qpos is None or qpos >= len(view.sequence):
            continue
        quals = aln.query_qualities
        qual = int(quals[qpos]) if quals is not None else 0
        elements.append(PileupElement(read=view, offset=qpos, base=view.sequence[qpos], qual=qual))
    return Pileup(locus=locus, elements=tuple(elements))


def call_shard(
    genotyper: UnifiedGenotyper,
    shard: Shard,
    worker: WorkerContext,
    *,
    bam_path: str,
    ref_path: str,
    rg_to_sample: Mapping[str, str],
    min_mapping_quality: int = 1,
    max_depth: int = 100_000,
) -> ShardResult:
    """Run the map step over every covered locus of one shard."""
    result = ShardResult(shard=shard)
    cache = _ReadCache(rg_to_sample)

    with pysam.AlignmentFile(bam_path, "rb") as bam, pysam.FastaFile(ref_path) as fasta:
        contig_length = fasta.get_reference_length(shard.contig)
        columns = bam.pileup(
            shard.contig,
            shard.start0,
            shard.end0,
            truncate=True,
            stepper="all",
            min_base_quality=0,
            min_mapping_quality=min_mapping_quality,
            ignore_overlaps=False,
            ignore_orphans=False,
            max_depth=max_depth,
        )
        for column in columns:
            pos0 = int(column.reference_pos)
            locus = GenomeLoc(shard.contig, pos0)
            cache.evict_before(pos0)
            pileup = pileup_from_column(column, locus, cache)
            ref_ctx = reference_context(fasta, shard.contig, pos0, contig_length)
            result.columns += 1

            candidate = genotyper.map(None, ref_ctx, AlignmentContext(locus=locus, pileup=pileup), worker)
            # reduce ignores anything that is not callable
            if genotyper.is_callable(candidate):
                result.candidates.append((candidate, pileup.size))
    return result


def _reduce_shard(genotyper: UnifiedGenotyper, result: ShardResult, depths: List[int], quals: List[float]) -> int:
    total = genotyper.reduce_init()
    for candidate, depth in result.candidates:
        new_total = genotyper.reduce(candidate, total)
        if new_total != total and candidate.metadata is not None:
            depths.append(depth)
            quals.append(candidate.metadata.confidence)
        total = new_total
    return total


def call_bam(
    genotyper: UnifiedGenotyper,
    *,
    bam_path: str,
    ref_path: str,
    rg_to_sample: Mapping[str, str],
    region: Optional[str] = None,
    shard_size: int = DEFAULT_SHARD_SIZE,
    min_mapping_quality: int = 1,
    progress: bool = True,
) -> Dict[str, object]:
    """Genotype every covered locus and return a run summary."""
    t0 = time.time()
    try:
        with pysam.AlignmentFile(bam_path, "rb") as bam, pysam.FastaFile(ref_path) as fasta:
            contigs = shared_contigs(bam, fasta)
        shards = plan_shards(contigs, shard_size=shard_size, region=region)
    except Exception:
        genotyper.close()
        raise
    logger.info("Planned %d shards over %d contigs", len(shards), len(contigs))

    n_workers = max(1, min(genotyper.num_threads, len(shards)))
    workers = [WorkerContext(name=f"worker-{i}") for i in range(n_workers)]
    idle: "queue.Queue[WorkerContext]" = queue.Queue()
    for w in workers:
        idle.put(w)

    def _run(shard: Shard) -> ShardResult:
        # at most n_workers tasks run at once, so a free context is always available
        worker = idle.get()
        try:
            return call_shard(
                genotyper,
                shard,
                worker,
                bam_path=bam_path,
                ref_path=ref_path,
                rg_to_sample=rg_to_sample,
                min_mapping_quality=min_mapping_quality,
            )
        finally:
            idle.put(worker)

    depths: List[int] = []
    quals: List[float] = []
    shard_totals: List[int] = []
    columns = 0

    it: Iterable[Shard] = shards
    if progress:
        it = tqdm(shards, unit="shard", desc="Genotyping")

    try:
        if n_workers == 1:
            for shard in it:
                res = _run(shard)
                columns += res.columns
                shard_totals.append(_reduce_shard(genotyper, res, depths, quals))
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as ex:
                # at most n_workers shards in flight; reduce in shard order so writes stay locus-ordered
                pending: Deque[Future] = deque()
                for shard in it:
                    pending.append(ex.submit(_run, shard))
                    if len(pending) >= n_workers:
                        res = pending.popleft().result()
                        columns += res.columns
                        shard_totals.append(_reduce_shard(genotyper, res, depths, quals))
                while pending:
                    res = pending.popleft().result()
                    columns += res.columns
                    shard_totals.append(_reduce_shard(genotyper, res, depths, quals))
    except Exception:
        genotyper.close()
        raise
    finally:
        for w in workers:
            w.close()

    total = reduce(genotyper.tree_reduce, shard_totals, genotyper.reduce_init())
    genotyper.on_traversal_done(total)

    skipped = merge_skip_counts(workers)
    logger.info("Skipped loci: %s", ", ".join(f"{k}={v}" for k, v in skipped.items() if v))

    depth_edges = np.arange(0, max(depths + [0]) + 2)
    depth_counts = np.histogram(depths, bins=depth_edges)[0] if depths else np.zeros(len(depth_edges) - 1, dtype=int)
    qual_edges = np.linspace(0.0, max(quals + [100.0]), 51)
    qual_counts = np.histogram(quals, bins=qual_edges)[0]

    return {
        "bam_path": bam_path,
        "ref_path": ref_path,
        "region": region,
        "threads": n_workers,
        "shards": len(shards),
        "samples": sorted(genotyper.samples),
        "config": genotyper.config.to_dict(),
        "counts": {
            "loci_visited": columns,
            "loci_processed": sum(w.loci_seen for w in workers),
            "callable": int(total),
            "shard_totals": shard_totals,
        },
        "skipped": skipped,
        "depth_hist": {"bin_edges": depth_edges.tolist(), "counts": [int(c) for c in depth_counts]},
        "confidence_hist": {"bin_edges": qual_edges.tolist(), "counts": [int(c) for c in qual_counts]},
        "runtime_seconds": float(time.time() - t0),
    }
