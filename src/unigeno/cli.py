from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import pysam

from . import __version__
from .config import GenotyperConfig, ModelKind, OutputFormat
from .engine import DEFAULT_SHARD_SIZE, call_bam, samples_from_header, shared_contigs
from .genotyper import UnifiedGenotyper, build_header_info, resolve_samples
from .plotting import plot_confidence_hist, plot_depth_hist, plot_skip_reasons
from .report import render_report
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import check_bam_index, check_fasta_index
from .writers import make_writer


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(logging.INFO)
        fh.setFormatter(logging.Formatter(log_fmt))
        root = logging.getLogger()
        root.addHandler(fh)
        root.setLevel(min(level, logging.INFO))


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="unigeno",
        description=(
            "UniGeno: SNP genotyping from read pileups for single-sample, multi-sample "
            "and pooled sequencing data."
        ),
    )
    p.add_argument("--version", action="version", version=f"unigeno {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference and two-sample BAM for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Genotype every covered locus of a BAM against a reference.",
    )
    c.add_argument("--bam", required=True, type=_path_exists, help="Input BAM (sorted, indexed).")
    c.add_argument("--ref", required=True, type=_path_exists, help="Reference FASTA (indexed).")
    c.add_argument("--out", required=True, help="Output calls file.")
    c.add_argument(
        "--format",
        default=OutputFormat.VCF.value,
        help="Output format: vcf, glf or geli (default: vcf).",
    )
    c.add_argument(
        "--outdir",
        default=None,
        help="Directory for summary.json, report.html and logs (default: next to --out).",
    )
    c.add_argument("--region", default=None, help="Restrict calling to contig[:start-end] (1-based).")

    # Model
    c.add_argument(
        "--genotype-model",
        default=ModelKind.JOINT_ESTIMATE.value,
        choices=[m.value for m in ModelKind],
        help="Genotype calculation model.",
    )
    c.add_argument("--pool-size", type=int, default=0, help="Number of individuals in the pool (POOLED only).")
    c.add_argument("--heterozygosity", type=float, default=1e-3, help="Heterozygosity prior.")
    c.add_argument(
        "--min-confidence-threshold",
        type=float,
        default=50.0,
        help="Minimum phred-scaled confidence to call a site.",
    )
    c.add_argument("--lod-threshold", type=float, default=None, help=argparse.SUPPRESS)
    c.add_argument(
        "--genotype-all-sites",
        action="store_true",
        help="Emit confident reference sites as well as variants.",
    )
    c.add_argument("--no-slod", action="store_true", help="Do not compute the strand-bias score.")
    c.add_argument(
        "--no-count-empty-pooled",
        action="store_true",
        help="In POOLED mode, do not count calls without per-sample genotypes as callable.",
    )
    c.add_argument(
        "--assume-single-sample",
        default=None,
        help="Treat all reads as coming from this sample (for BAMs without read-group SM tags).",
    )

    # Pileup filters
    c.add_argument("--min-base-quality", type=int, default=10, help="Minimum base quality.")
    c.add_argument("--min-mapping-quality", type=int, default=1, help="Minimum read mapping quality.")
    c.add_argument(
        "--max-mismatches",
        type=int,
        default=3,
        help="Maximum mismatches in the +/-20 bp reference window for a read to be used.",
    )
    c.add_argument(
        "--max-deletion-fraction",
        type=float,
        default=0.05,
        help="Maximum fraction of deletions in the pileup (outside [0,1] disables).",
    )
    c.add_argument(
        "--max-reads-in-pileup",
        type=int,
        default=-1,
        help="Skip loci with more reads than this after filtering (<=0: unbounded).",
    )

    # Annotations and output
    c.add_argument("--all-annotations", action="store_true", help="Compute all annotations.")
    c.add_argument("--verbose-out", default=None, help="File for detailed per-locus debugging output.")

    # Execution
    c.add_argument("--threads", type=int, default=1, help="Number of worker threads.")
    c.add_argument("--shard-size", type=int, default=DEFAULT_SHARD_SIZE, help="Bases per work shard.")
    c.add_argument("--no-report", action="store_true", help="Do not write report.html and plots.")
    c.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "UniGeno quickstart (copy/paste):",
        "",
        "1) Multi-sample BAM (samples from @RG SM tags):",
        "   unigeno call \\",
        "     --bam cohort.bam \\",
        "     --ref ref.fa \\",
        "     --out calls.vcf.gz",
        "   Outputs: calls.vcf.gz, summary.json, report.html",
        "",
        "2) Pooled sequencing of 20 individuals:",
        "   unigeno call \\",
        "     --bam pool.bam --ref ref.fa --out pool.vcf \\",
        "     --genotype-model pooled --pool-size 20",
        "",
        "3) Single sample without read groups, GELI output:",
        "   unigeno call \\",
        "     --bam sample.bam --ref ref.fa --out sample.geli \\",
        "     --format geli --assume-single-sample NA12878",
        "",
        "Tip: use --dry-run to validate inputs first, and make-toy-data for a demo dataset.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _write_report(outdir: Path, run: dict, output_path: str) -> Path:
    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)

    outcomes_png = plots_dir / "outcomes.png"
    confidence_png = plots_dir / "confidence_hist.png"
    depth_png = plots_dir / "depth_hist.png"

    plot_skip_reasons(skipped=run["skipped"], callable_loci=run["counts"]["callable"], out_png=outcomes_png)
    plot_confidence_hist(
        bin_edges=run["confidence_hist"]["bin_edges"],
        counts=run["confidence_hist"]["counts"],
        out_png=confidence_png,
    )
    plot_depth_hist(
        bin_edges=run["depth_hist"]["bin_edges"],
        counts=run["depth_hist"]["counts"],
        out_png=depth_png,
    )

    plots_rel = {
        "outcomes": str(Path("plots") / outcomes_png.name),
        "confidence_hist": str(Path("plots") / confidence_png.name),
        "depth_hist": str(Path("plots") / depth_png.name),
    }
    return render_report(outdir=outdir, version=__version__, run=run, output_path=output_path, plots=plots_rel)


def cmd_call(args: argparse.Namespace) -> int:
    out_path = Path(args.out).expanduser().resolve()
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else out_path.parent
    log_path = _log_path(outdir, "call.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("unigeno")
    logger.info("unigeno %s", __version__)

    try:
        check_bam_index(args.bam)
        check_fasta_index(args.ref)

        config = GenotyperConfig.from_namespace(args)
        config.validate(num_threads=int(args.threads))

        with pysam.AlignmentFile(args.bam, "rb") as bam, pysam.FastaFile(args.ref) as fasta:
            contigs = shared_contigs(bam, fasta)
            rg_to_sample = samples_from_header(bam.header.to_dict())

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Model: {config.genotype_model.value}  format: {config.output_format.value}")
            print(f"Contigs shared by BAM and reference: {len(contigs)}")
            print(f"Samples in read groups: {', '.join(sorted(set(rg_to_sample.values()))) or '(none)'}")
            print("Planned outputs:")
            print(f"  calls -> {out_path}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)
        out_path.parent.mkdir(parents=True, exist_ok=True)

        header_samples = sorted(set(rg_to_sample.values()))
        if not config.is_pooled and config.assume_single_sample is None and not header_samples:
            raise ValueError(
                "BAM has no read groups with SM tags. Use --assume-single-sample NAME to name the sample."
            )

        writer = make_writer(
            config.output_format,
            out_path,
            samples=sorted(resolve_samples(config, header_samples)),
            contigs=contigs,
            header_info=build_header_info(config, reference_name=Path(args.ref).name),
            all_annotations=config.all_annotations,
        )

        with writer:
            genotyper = UnifiedGenotyper(
                config, writer, header_samples=header_samples, num_threads=int(args.threads)
            )
            run = call_bam(
                genotyper,
                bam_path=args.bam,
                ref_path=args.ref,
                rg_to_sample=rg_to_sample,
                region=args.region,
                shard_size=int(args.shard_size),
                min_mapping_quality=int(args.min_mapping_quality),
                progress=not args.no_progress,
            )

        run["output_path"] = str(out_path)
        write_json(outdir / "summary.json", run)

        if not args.no_report:
            report_path = _write_report(outdir, run, str(out_path))
            logger.info("Report written: %s", report_path)

        print(str(out_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "call":
        return cmd_call(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
