"""
Robust statistics over noisy timing samples.

Timings from a shared device are skewed and heavy-tailed, so every
comparison here is built on medians:

- confidence_interval: bootstrap interval for the median
- ratio_confidence_interval: bootstrap interval for median(A) / median(B)
- median_test: Mood's median test p-value
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import stats as sps

DEFAULT_ALPHA = 0.95
DEFAULT_NBOOT = 2000


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float).ravel()


def median(values: Sequence[float]) -> float:
    """Median of a non-empty sample."""
    arr = _as_array(values)
    if arr.size == 0:
        raise ValueError("median of an empty sample")
    return float(np.median(arr))


def speedup(reference: Sequence[float], candidate: Sequence[float]) -> float:
    """
    Ratio of medians, median(reference) / median(candidate).

    Values above 1.0 mean the candidate is faster. A zero candidate
    median gives inf, or nan when both medians are zero.
    """
    return _ratio(median(reference), median(candidate))


def _ratio(num: float, den: float) -> float:
    if den == 0:
        return float("nan") if num == 0 else float("inf")
    return num / den


def _bounds(draws: np.ndarray, alpha: float) -> Tuple[float, float]:
    tail = 0.5 * (1.0 - alpha)
    low, high = np.quantile(draws, [tail, 1.0 - tail])
    return float(low), float(high)


def confidence_interval(
    times: Sequence[float],
    alpha: float = DEFAULT_ALPHA,
    nboot: int = DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> Tuple[float, float]:
    """
    Bootstrap confidence interval for the population median.

    Args:
        times: Observed timings.
        alpha: Confidence level (0.95 = 95% interval).
        nboot: Number of bootstrap resamples.
        seed: Seed for reproducible intervals.

    Returns:
        (low, high) with low <= median(times) <= high. With fewer than
        two observations both bounds equal the median.
    """
    vals = _as_array(times)
    center = median(vals)
    if vals.size < 2:
        return center, center

    rng = np.random.default_rng(seed)
    draws = np.median(rng.choice(vals, size=(nboot, vals.size), replace=True), axis=1)
    low, high = _bounds(draws, alpha)
    # Percentile bounds of a discrete bootstrap can sit on one side of the median
    return min(low, center), max(high, center)


def ratio_confidence_interval(
    a: Sequence[float],
    b: Sequence[float],
    alpha: float = DEFAULT_ALPHA,
    nboot: int = DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> Tuple[float, float]:
    """
    Bootstrap confidence interval for median(a) / median(b).

    Each bootstrap draw resamples both sides, each at its own sample size.

    Returns:
        (low, high) containing the observed ratio. Collapses to the
        observed ratio when either side has fewer than two observations,
        when the observed ratio is not finite, or when no bootstrap draw
        has a finite ratio.
    """
    avals = _as_array(a)
    bvals = _as_array(b)
    ratio = _ratio(median(avals), median(bvals))
    if avals.size < 2 or bvals.size < 2 or not np.isfinite(ratio):
        return ratio, ratio

    rng = np.random.default_rng(seed)
    amed = np.median(rng.choice(avals, size=(nboot, avals.size), replace=True), axis=1)
    bmed = np.median(rng.choice(bvals, size=(nboot, bvals.size), replace=True), axis=1)
    # Draws whose resampled denominator median is zero carry no ratio
    draws = amed[bmed != 0] / bmed[bmed != 0]
    if draws.size == 0:
        return ratio, ratio
    low, high = _bounds(draws, alpha)
    return min(low, ratio), max(high, ratio)


def median_test(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Mood's median test of the hypothesis that a and b share a median.

    Degenerate inputs (fewer than two observations on a side, no spread
    across both samples, or a contingency table the test cannot use)
    return 1.0, i.e. never significant.

    Returns:
        p-value in [0, 1].
    """
    avals = _as_array(a)
    bvals = _as_array(b)
    if avals.size < 2 or bvals.size < 2:
        return 1.0
    combined = np.concatenate([avals, bvals])
    if not np.all(np.isfinite(combined)) or np.ptp(combined) == 0:
        return 1.0
    try:
        _, pval, _, _ = sps.median_test(avals, bvals)
    except ValueError:
        # every value falls on one side of the grand median
        return 1.0
    if not np.isfinite(pval):
        return 1.0
    return float(pval)
