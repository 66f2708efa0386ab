from __future__ import annotations

import gzip
import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, Sequence, TextIO

import numpy as np

logger = logging.getLogger(__name__)

_LN10 = math.log(10.0)

# cap for phred-scaled confidences
MAX_PHRED = 3000.0


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def phred_to_error_probs(quals: Sequence[int], *, floor: float = 1e-6, cap: float = 0.75) -> np.ndarray:
    # missing qualities come through as 0 or negative
    q = np.asarray(quals, dtype=float)
    e = np.where(q <= 0, 1.0, np.power(10.0, -q / 10.0))
    return np.clip(e, floor, cap)


def log10_sum(values: Iterable[float]) -> float:
    """log10(sum(10**v)) computed stably."""
    if isinstance(values, np.ndarray):
        arr = values.astype(float)
    else:
        arr = np.fromiter(values, dtype=float)
    if arr.size == 0:
        return float("-inf")
    return float(np.logaddexp.reduce(arr * _LN10) / _LN10)


def normalize_log10(values: np.ndarray) -> np.ndarray:
    """Normalise log10 values so that their probabilities sum to one."""
    return values - log10_sum(values)


def log10_one_minus(log10_p: float) -> float:
    """log10(1 - 10**log10_p) for log10_p <= 0."""
    if log10_p >= 0.0:
        return float("-inf")
    return float(np.log10(-np.expm1(log10_p * _LN10)))


def phred_from_log10_error(log10_err: float) -> float:
    if log10_err == float("-inf"):
        return MAX_PHRED
    return clamp(-10.0 * log10_err, 0.0, MAX_PHRED)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
