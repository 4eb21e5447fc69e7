"""Statistical functions for sampling decisions and comparisons.

Provides summary statistics, the Student's t quantile used for the
confidence interval that decides when sampling has converged, and
Welch's t-test for comparing a tool against the main tool.  All in pure
Python with no external dependencies.

References:
    Welch's t-test: Welch, B. L. (1947). "The generalization of
        'Student's' problem when several different population
        variances are involved." Biometrika 34(1-2): 28-35.
    Incomplete beta: Press et al., "Numerical Recipes", Chapter 6.4.
"""

from __future__ import annotations

import functools
import math
import statistics
from dataclasses import dataclass
from typing import Sequence


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DescriptiveStats:
    """Summary statistics for a sample."""

    n: int
    mean: float
    median: float
    stdev: float
    min: float
    max: float
    q1: float  # 25th percentile
    q3: float  # 75th percentile
    cv: float  # coefficient of variation (stdev/mean)

    def to_dict(self) -> dict[str, float | int]:
        """Serialize to a dict with rounded values."""
        return {
            "n": self.n,
            "mean": round(self.mean, 9),
            "median": round(self.median, 9),
            "stdev": round(self.stdev, 9),
            "min": round(self.min, 9),
            "max": round(self.max, 9),
            "q1": round(self.q1, 9),
            "q3": round(self.q3, 9),
            "cv": round(self.cv, 6),
        }


def describe(values: Sequence[float]) -> DescriptiveStats:
    """Compute descriptive statistics for a sample.

    Args:
        values: A sequence of numeric values. Must have at least 1
            element for basic stats, at least 2 for stdev/CV.

    Returns:
        DescriptiveStats with all fields populated. If n < 2,
        stdev and CV are 0.0.  An empty sample yields NaN everywhere.
    """
    if not values:
        nan = float("nan")
        return DescriptiveStats(
            n=0,
            mean=nan,
            median=nan,
            stdev=nan,
            min=nan,
            max=nan,
            q1=nan,
            q3=nan,
            cv=nan,
        )

    sorted_v = sorted(values)
    n = len(sorted_v)
    mean = statistics.fmean(sorted_v)

    if n >= 2:
        stdev = statistics.stdev(sorted_v)
        cv = stdev / mean if mean != 0 else float("inf")
    else:
        stdev = 0.0
        cv = 0.0

    return DescriptiveStats(
        n=n,
        mean=mean,
        median=statistics.median(sorted_v),
        stdev=stdev,
        min=sorted_v[0],
        max=sorted_v[-1],
        q1=_percentile(sorted_v, 0.25),
        q3=_percentile(sorted_v, 0.75),
        cv=cv,
    )


def _percentile(sorted_values: list[float], p: float) -> float:
    """Compute the p-th percentile using linear interpolation.

    Equivalent to numpy.percentile with interpolation='linear'.
    Assumes sorted_values is already sorted in ascending order.
    """
    n = len(sorted_values)
    if n == 0:
        return float("nan")
    if n == 1:
        return sorted_values[0]

    k = (n - 1) * p
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_values[int(k)]
    d = k - f
    return sorted_values[int(f)] * (1 - d) + sorted_values[int(c)] * d


# ---------------------------------------------------------------------------
# Confidence interval of the mean
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=1024)
def t_critical(confidence: float, df: int) -> float:
    """Two-sided critical value of Student's t with *df* degrees of freedom.

    Returns t such that P(|T| > t) = 1 - confidence, found by bisection
    on the two-tailed p-value.
    """
    if not 0 < confidence < 1:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    if df < 1:
        raise ValueError(f"degrees of freedom must be >= 1, got {df}")

    alpha = 1 - confidence
    lo, hi = 0.0, 1.0
    while _t_cdf_two_tailed(hi, df) > alpha:
        hi *= 2
    for _ in range(100):
        mid = (lo + hi) / 2
        if _t_cdf_two_tailed(mid, df) > alpha:
            lo = mid
        else:
            hi = mid
        if hi - lo < 1e-12:
            break
    return (lo + hi) / 2


def relative_ci_half_width(values: Sequence[float], confidence: float) -> float:
    """Half-width of the t confidence interval of the mean, relative to the mean.

    Returns ``inf`` when fewer than two values exist, or when the mean is
    zero but the values vary.
    """
    n = len(values)
    if n < 2:
        return float("inf")
    mean = statistics.fmean(values)
    stdev = statistics.stdev(values)
    if stdev == 0:
        return 0.0
    if mean == 0:
        return float("inf")
    half_width = t_critical(confidence, n - 1) * stdev / math.sqrt(n)
    return half_width / abs(mean)


# ---------------------------------------------------------------------------
# Welch's t-test
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TTestResult:
    """Result of Welch's t-test comparing two independent samples."""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float

    @property
    def significant(self) -> bool:
        """p < 0.05"""
        return self.p_value < 0.05

    @property
    def significance_stars(self) -> str:
        """Return significance stars: ***, **, *, or ns."""
        if self.p_value < 0.001:
            return "***"
        if self.p_value < 0.01:
            return "**"
        if self.p_value < 0.05:
            return "*"
        return "ns"


def welch_ttest(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
) -> TTestResult:
    """Perform Welch's t-test for two independent samples.

    Tests the null hypothesis that the two populations have equal
    means, without assuming equal variances.

    If either sample has fewer than 2 values, returns NaN values.
    """
    na, nb = len(sample_a), len(sample_b)
    if na < 2 or nb < 2:
        nan = float("nan")
        return TTestResult(nan, nan, nan)

    mean_a = statistics.fmean(sample_a)
    mean_b = statistics.fmean(sample_b)
    var_a = statistics.variance(sample_a)
    var_b = statistics.variance(sample_b)

    if var_a == 0 and var_b == 0:
        # Zero variance on both sides: either identical or infinitely apart.
        if mean_a == mean_b:
            return TTestResult(0.0, float("inf"), 1.0)
        return TTestResult(float("inf"), 0.0, 0.0)

    se_a = var_a / na
    se_b = var_b / nb
    se_diff = math.sqrt(se_a + se_b)
    t = (mean_a - mean_b) / se_diff

    # Welch-Satterthwaite degrees of freedom.
    numerator = (se_a + se_b) ** 2
    denominator = (se_a**2 / (na - 1)) + (se_b**2 / (nb - 1))
    df = numerator / denominator if denominator else float("inf")

    return TTestResult(
        t_statistic=t,
        degrees_of_freedom=df,
        p_value=_t_cdf_two_tailed(abs(t), df),
    )


def _t_cdf_two_tailed(t: float, df: float) -> float:
    """Compute two-tailed p-value P(|T| > t) for Student's t-distribution.

    Uses the regularized incomplete beta function:
    p = I_x(df/2, 1/2) with x = df / (df + t^2).
    For infinite df the normal distribution is used.
    """
    if math.isinf(t):
        return 0.0
    if math.isnan(t) or math.isnan(df):
        return float("nan")
    if df <= 0:
        return float("nan")
    if math.isinf(df):
        return math.erfc(t / math.sqrt(2))

    x = df / (df + t * t)
    p = _regularized_incomplete_beta(x, df / 2.0, 0.5)
    return min(max(p, 0.0), 1.0)


def _regularized_incomplete_beta(x: float, a: float, b: float) -> float:
    """Compute the regularized incomplete beta function I_x(a, b).

    Uses the continued fraction expansion (Lentz's method).
    """
    if x < 0 or x > 1:
        return float("nan")
    if x == 0:
        return 0.0
    if x == 1:
        return 1.0

    # Use the symmetry relation for faster convergence.
    if x > (a + 1) / (a + b + 2):
        return 1.0 - _regularized_incomplete_beta(1 - x, b, a)

    lbeta = math.lgamma(a) + math.lgamma(b) - math.lgamma(a + b)
    prefactor = math.exp(a * math.log(x) + b * math.log(1 - x) - lbeta - math.log(a))

    max_iter = 200
    epsilon = 1e-14
    tiny = 1e-30

    c = 1.0
    d = 1.0 - (a + b) * x / (a + 1)
    if abs(d) < tiny:
        d = tiny
    d = 1.0 / d
    f = d

    for m in range(1, max_iter + 1):
        # Even term.
        num = m * (b - m) * x / ((a + 2 * m - 1) * (a + 2 * m))
        d = 1.0 + num * d
        if abs(d) < tiny:
            d = tiny
        c = 1.0 + num / c
        if abs(c) < tiny:
            c = tiny
        d = 1.0 / d
        f *= c * d

        # Odd term.
        num = -((a + m) * (a + b + m) * x / ((a + 2 * m) * (a + 2 * m + 1)))
        d = 1.0 + num * d
        if abs(d) < tiny:
            d = tiny
        c = 1.0 + num / c
        if abs(c) < tiny:
            c = tiny
        d = 1.0 / d
        delta = c * d
        f *= delta

        if abs(delta - 1.0) < epsilon:
            break

    return prefactor * f
