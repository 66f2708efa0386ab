import json
import subprocess
import sys
from pathlib import Path

import pysam

from unigeno.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "unigeno"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_help() -> None:
    cp = _run_cli(["--help"])
    assert cp.returncode == 0
    assert "UniGeno" in cp.stdout


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "unigeno call" in cp.stdout
    assert "--genotype-model pooled --pool-size 20" in cp.stdout
    assert "--format geli --assume-single-sample NA12878" in cp.stdout
    assert "--threads" not in cp.stdout


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy"), "--dry-run"])
    assert cp.returncode == 0
    assert "Would write toy data" in cp.stdout
    assert not (tmp_path / "toy").exists()


def test_make_toy_data_then_call(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy")])
    assert cp.returncode == 0, cp.stderr
    toy = json.loads(cp.stdout)

    outdir = tmp_path / "run"
    out = outdir / "calls.vcf"
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--out",
            str(out),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert out.exists()
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "outcomes.png").exists()
    assert (outdir / "logs" / "call.log").exists()

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["counts"]["callable"] == 2
    assert summary["samples"] == ["NA0001", "NA0002"]

    with pysam.VariantFile(str(out)) as vcf:
        assert len(list(vcf)) == 2


def test_call_pooled_geli_no_report(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    out = tmp_path / "pool.geli"
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--out",
            str(out),
            "--format",
            "geli",
            "--genotype-model",
            "pooled",
            "--pool-size",
            "2",
            "--no-report",
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert not (tmp_path / "report.html").exists()
    rows = [line for line in out.read_text().splitlines() if not line.startswith("#")]
    assert [r.split("\t")[1] for r in rows] == ["121", "261"]


def test_pool_size_with_joint_model_fails(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--out",
            str(tmp_path / "x.vcf"),
            "--pool-size",
            "5",
        ]
    )
    assert cp.returncode == 2
    assert "ConfigurationError" in cp.stderr
    assert "POOLED" in cp.stderr


def test_threads_with_verbose_out_fails(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            "--bam",
            toy["bam"],
            "--ref",
            toy["ref_fa"],
            "--out",
            str(tmp_path / "x.vcf"),
            "--threads",
            "2",
            "--verbose-out",
            str(tmp_path / "verbose.txt"),
        ]
    )
    assert cp.returncode == 2
    assert "multiple threads" in cp.stderr


def test_unknown_format_fails(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["call", "--bam", toy["bam"], "--ref", toy["ref_fa"], "--out", str(tmp_path / "x.bed"), "--format", "bed"]
    )
    assert cp.returncode == 2
    assert "Unsupported genotype format: bed" in cp.stderr


def test_call_dry_run(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    out = tmp_path / "run" / "calls.vcf"
    cp = _run_cli(["call", "--bam", toy["bam"], "--ref", toy["ref_fa"], "--out", str(out), "--dry-run"])
    assert cp.returncode == 0, cp.stderr
    assert "Dry-run: inputs look OK." in cp.stdout
    assert "NA0001, NA0002" in cp.stdout
    assert not out.exists()
