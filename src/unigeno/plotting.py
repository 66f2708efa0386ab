from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_confidence_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Call confidence distribution",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("Phred-scaled confidence")
    plt.ylabel("Callable loci")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_skip_reasons(
    *,
    skipped: Dict[str, int],
    callable_loci: int,
    out_png: str | Path,
    title: str = "Locus outcomes",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["callable"] + [k.replace("_", " ") for k in skipped]
    values = [int(callable_loci)] + [int(v) for v in skipped.values()]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Loci")
    plt.title(title)
    plt.xticks(rotation=30, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_depth_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Pileup depth at callable loci",
    max_bin: int = 200,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Collapse tail into max_bin+
    ys = [0] * (max_bin + 1)
    tail = 0
    for left, c in zip(bin_edges, counts):
        k = int(left)
        if k <= max_bin:
            ys[k] += int(c)
        else:
            tail += int(c)

    xs = list(range(0, max_bin + 1))
    if tail > 0:
        xs.append(max_bin + 1)
        ys.append(tail)

    # trim empty high bins
    while len(ys) > 1 and ys[-1] == 0:
        ys.pop()
        xs.pop()

    plt.figure()
    plt.bar(xs, ys)
    plt.xlabel("Reads in pileup" + (f" ({max_bin + 1} = {max_bin + 1}+)" if tail > 0 else ""))
    plt.ylabel("Callable loci")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
