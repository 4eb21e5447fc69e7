"""Tests for benchify.stats — summary statistics, t quantiles and Welch's t-test.

Every statistical function is tested against known values.
"""

from __future__ import annotations

import math
import unittest

from benchify.stats import (
    DescriptiveStats,
    TTestResult,
    _percentile,
    _regularized_incomplete_beta,
    _t_cdf_two_tailed,
    describe,
    relative_ci_half_width,
    t_critical,
    welch_ttest,
)


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------


class TestDescribe(unittest.TestCase):
    """Tests for describe() and DescriptiveStats."""

    def test_describe_basic(self) -> None:
        """Known-value test with a small sample."""
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        stats = describe(values)
        self.assertEqual(stats.n, 8)
        self.assertAlmostEqual(stats.mean, 5.0, places=5)
        self.assertAlmostEqual(stats.median, 4.5, places=5)
        self.assertAlmostEqual(stats.min, 2.0, places=5)
        self.assertAlmostEqual(stats.max, 9.0, places=5)
        self.assertAlmostEqual(stats.q1, 4.0, places=5)
        self.assertAlmostEqual(stats.q3, 5.5, places=5)
        self.assertGreater(stats.stdev, 0)

    def test_describe_single_value(self) -> None:
        """Single value: stdev and CV should be 0."""
        stats = describe([42.0])
        self.assertEqual(stats.n, 1)
        self.assertAlmostEqual(stats.stdev, 0.0, places=5)
        self.assertAlmostEqual(stats.cv, 0.0, places=5)

    def test_describe_empty(self) -> None:
        stats = describe([])
        self.assertEqual(stats.n, 0)
        self.assertTrue(math.isnan(stats.mean))

    def test_describe_identical_values(self) -> None:
        stats = describe([0.5] * 10)
        self.assertEqual(stats.stdev, 0.0)
        self.assertEqual(stats.cv, 0.0)

    def test_describe_cv_zero_mean(self) -> None:
        self.assertTrue(math.isinf(describe([-1.0, 1.0]).cv))

    def test_describe_to_dict(self) -> None:
        d = describe([1.0, 2.0, 3.0]).to_dict()
        self.assertEqual(d["n"], 3)
        self.assertEqual(d["mean"], 2.0)
        self.assertEqual(DescriptiveStats(**d), describe([1.0, 2.0, 3.0]))

    def test_percentile(self) -> None:
        self.assertEqual(_percentile([1.0, 2.0, 3.0, 4.0, 5.0], 0.5), 3.0)
        self.assertEqual(_percentile([1.0, 2.0, 3.0, 4.0], 0.5), 2.5)
        self.assertEqual(_percentile([7.0], 0.25), 7.0)
        self.assertTrue(math.isnan(_percentile([], 0.5)))


# ---------------------------------------------------------------------------
# Confidence interval
# ---------------------------------------------------------------------------


class TestTCritical(unittest.TestCase):
    """Critical values checked against standard t tables."""

    def test_table_values(self) -> None:
        self.assertAlmostEqual(t_critical(0.95, 1), 12.706, places=2)
        self.assertAlmostEqual(t_critical(0.95, 9), 2.262, places=3)
        self.assertAlmostEqual(t_critical(0.95, 30), 2.042, places=3)
        self.assertAlmostEqual(t_critical(0.99, 10), 3.169, places=3)

    def test_approaches_normal(self) -> None:
        self.assertAlmostEqual(t_critical(0.95, 100000), 1.960, places=2)

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            t_critical(1.0, 5)
        with self.assertRaises(ValueError):
            t_critical(0.95, 0)


class TestRelativeHalfWidth(unittest.TestCase):
    def test_too_few_values(self) -> None:
        self.assertTrue(math.isinf(relative_ci_half_width([1.0], 0.95)))
        self.assertTrue(math.isinf(relative_ci_half_width([], 0.95)))

    def test_zero_variance(self) -> None:
        self.assertEqual(relative_ci_half_width([0.1, 0.1], 0.95), 0.0)

    def test_zero_mean(self) -> None:
        self.assertTrue(math.isinf(relative_ci_half_width([-1.0, 1.0], 0.95)))

    def test_known_value(self) -> None:
        # n=10, mean=1.0, stdev=0.1: half-width = 2.262 * 0.1 / sqrt(10)
        values = [1.0 + (0.1 if i % 2 else -0.1) for i in range(10)]
        stdev = math.sqrt(sum((v - 1.0) ** 2 for v in values) / 9)
        expected = t_critical(0.95, 9) * stdev / math.sqrt(10)
        self.assertAlmostEqual(relative_ci_half_width(values, 0.95), expected, places=9)

    def test_shrinks_with_n(self) -> None:
        small = [1.0, 1.1, 0.9, 1.05]
        large = small * 10
        self.assertLess(
            relative_ci_half_width(large, 0.95),
            relative_ci_half_width(small, 0.95),
        )


# ---------------------------------------------------------------------------
# Welch's t-test
# ---------------------------------------------------------------------------


class TestWelchTTest(unittest.TestCase):
    """Tests for welch_ttest() and TTestResult."""

    def test_ttest_known_values(self) -> None:
        """Known-value test: two small samples with known t and p."""
        # t = (3-4) / sqrt(2.5/5 + 2.5/5) = -1, df = 8
        a = [1.0, 2.0, 3.0, 4.0, 5.0]
        b = [2.0, 3.0, 4.0, 5.0, 6.0]
        result = welch_ttest(a, b)
        self.assertAlmostEqual(result.t_statistic, -1.0, places=3)
        self.assertAlmostEqual(result.degrees_of_freedom, 8.0, places=1)
        self.assertAlmostEqual(result.p_value, 0.3466, places=3)
        self.assertFalse(result.significant)

    def test_ttest_highly_significant(self) -> None:
        a = [1.0, 1.1, 1.0, 0.9, 1.0]
        b = [10.0, 10.1, 10.0, 9.9, 10.0]
        result = welch_ttest(a, b)
        self.assertTrue(result.significant)
        self.assertEqual(result.significance_stars, "***")

    def test_ttest_too_few_values(self) -> None:
        result = welch_ttest([1.0], [2.0, 3.0])
        self.assertTrue(math.isnan(result.p_value))
        self.assertFalse(result.significant)

    def test_ttest_zero_variance_same_mean(self) -> None:
        result = welch_ttest([5.0, 5.0], [5.0, 5.0])
        self.assertAlmostEqual(result.p_value, 1.0, places=2)

    def test_ttest_zero_variance_different_mean(self) -> None:
        result = welch_ttest([1.0, 1.0], [2.0, 2.0])
        self.assertTrue(math.isinf(result.t_statistic))
        self.assertEqual(result.p_value, 0.0)

    def test_significance_stars(self) -> None:
        self.assertEqual(TTestResult(0.0, 10.0, 0.10).significance_stars, "ns")
        self.assertEqual(TTestResult(0.0, 10.0, 0.04).significance_stars, "*")
        self.assertEqual(TTestResult(0.0, 10.0, 0.005).significance_stars, "**")
        self.assertEqual(TTestResult(0.0, 10.0, 0.0005).significance_stars, "***")


class TestTDistribution(unittest.TestCase):
    def test_two_tailed_at_zero(self) -> None:
        self.assertAlmostEqual(_t_cdf_two_tailed(0.0, 5), 1.0, places=9)

    def test_infinite_df_is_normal(self) -> None:
        self.assertAlmostEqual(_t_cdf_two_tailed(1.96, float("inf")), 0.05, places=3)

    def test_infinite_t(self) -> None:
        self.assertEqual(_t_cdf_two_tailed(float("inf"), 5), 0.0)

    def test_ibeta_bounds(self) -> None:
        self.assertEqual(_regularized_incomplete_beta(0.0, 2.0, 3.0), 0.0)
        self.assertEqual(_regularized_incomplete_beta(1.0, 2.0, 3.0), 1.0)
        self.assertTrue(math.isnan(_regularized_incomplete_beta(1.1, 2.0, 3.0)))

    def test_ibeta_symmetric(self) -> None:
        self.assertAlmostEqual(_regularized_incomplete_beta(0.5, 5.0, 5.0), 0.5, places=6)
