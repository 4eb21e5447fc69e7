"""Tests for benchify.compare — aggregation and main-tool comparison."""

from __future__ import annotations

import json
import unittest

from benchify.availability import Availability
from benchify.compare import (
    PairResult,
    Report,
    aggregate,
    resolve_main_tool,
    summarize_sample_set,
)
from benchify.plan import PairKey, PlanSkip
from benchify.results import StopReason
from benchify.stats import describe

from bench_test_helpers import make_config, make_sample_set, make_test, make_tool


def _ok(tool: str, mean: float, test: str = "test1") -> PairResult:
    return PairResult(tool=tool, test=test, status="ok", stats=describe([mean, mean]))


class TestSummarizeSampleSet(unittest.TestCase):
    def test_ok(self) -> None:
        r = summarize_sample_set(make_sample_set("tool1", "test1", [1.0, 2.0, 3.0], failures=1))
        self.assertEqual(r.status, "ok")
        self.assertIsNotNone(r.stats)
        assert r.stats is not None
        self.assertEqual(r.stats.n, 3)
        self.assertAlmostEqual(r.stats.mean, 2.0)
        self.assertEqual(r.failures, 1)
        self.assertEqual(r.attempted, 4)
        self.assertEqual(r.stop_reason, "stability_reached")

    def test_fatal_has_no_stats(self) -> None:
        s = make_sample_set(
            "tool1", "test1", [1.0], failures=5, stop_reason=StopReason.FATAL_ERROR, error="x"
        )
        r = summarize_sample_set(s)
        self.assertEqual(r.status, "fatal")
        self.assertIsNone(r.stats)
        self.assertEqual(r.reason, "x")

    def test_status_by_stop_reason(self) -> None:
        cases = {
            StopReason.MAX_RUNS_REACHED: "ok",
            StopReason.TOOL_UNAVAILABLE: "unavailable",
            StopReason.CANCELLED: "cancelled",
        }
        for reason, status in cases.items():
            s = make_sample_set("t", "x", [1.0, 1.0], stop_reason=reason)
            self.assertEqual(summarize_sample_set(s).status, status)

    def test_ok_without_samples_is_fatal(self) -> None:
        s = make_sample_set("t", "x", [], stop_reason=StopReason.MAX_RUNS_REACHED)
        self.assertEqual(summarize_sample_set(s).status, "fatal")


class TestResolveMainTool(unittest.TestCase):
    def test_configured(self) -> None:
        results = [_ok("a", 1.0), _ok("b", 2.0)]
        self.assertEqual(resolve_main_tool(results, "b"), ("b", "configured"))

    def test_fastest(self) -> None:
        results = [_ok("a", 3.0), _ok("b", 2.0), _ok("c", 5.0)]
        self.assertEqual(resolve_main_tool(results, None), ("b", "fastest"))

    def test_tie_keeps_config_order(self) -> None:
        results = [_ok("a", 2.0), _ok("b", 2.0)]
        self.assertEqual(resolve_main_tool(results, None), ("a", "fastest"))

    def test_configured_without_results_falls_back(self) -> None:
        results = [
            _ok("a", 3.0),
            PairResult(tool="b", test="test1", status="fatal", reason="broken"),
        ]
        with self.assertLogs("benchify", level="WARNING"):
            self.assertEqual(resolve_main_tool(results, "b"), ("a", "fastest"))

    def test_configured_unavailable_falls_back(self) -> None:
        results = [_ok("a", 3.0), _ok("b", 1.0)]
        availability = {"b": Availability("b", False)}
        self.assertEqual(resolve_main_tool(results, "b", availability), ("b", "fastest"))

    def test_nothing_succeeded(self) -> None:
        results = [PairResult(tool="a", test="t", status="fatal")]
        self.assertEqual(resolve_main_tool(results, None), (None, ""))


class TestAggregate(unittest.TestCase):
    def setUp(self) -> None:
        self.config = make_config(
            [make_tool("tool1"), make_tool("tool2"), make_tool("tool3")],
            [make_test("test1", file="a"), make_test("test2", file="b")],
        )
        self.sets = {
            PairKey("tool1", "test1"): make_sample_set("tool1", "test1", [0.10, 0.11, 0.12]),
            PairKey("tool2", "test1"): make_sample_set("tool2", "test1", [0.20, 0.21, 0.22]),
            PairKey("tool1", "test2"): make_sample_set("tool1", "test2", [0.5, 0.5, 0.5]),
            PairKey("tool2", "test2"): make_sample_set(
                "tool2",
                "test2",
                [],
                failures=5,
                stop_reason=StopReason.FATAL_ERROR,
                error="5 of 5 runs failed",
            ),
        }
        self.skips = [
            PlanSkip(PairKey("tool3", "test1"), "unavailable", "install it"),
            PlanSkip(PairKey("tool3", "test2"), "unavailable", "install it"),
        ]
        self.availability = {
            "tool1": Availability("tool1", True),
            "tool2": Availability("tool2", True),
            "tool3": Availability("tool3", False, install_instructions="install it"),
        }

    def _report(self, sets: dict[PairKey, object] | None = None, **kwargs: object) -> Report:
        return aggregate(
            self.config,
            sets if sets is not None else self.sets,  # type: ignore[arg-type]
            self.skips,
            self.availability,
            **kwargs,  # type: ignore[arg-type]
        )

    def test_every_pair_covered_in_config_order(self) -> None:
        report = self._report()
        self.assertEqual([t.test for t in report.tests], ["test1", "test2"])
        for summary in report.tests:
            self.assertEqual([r.tool for r in summary.results], ["tool1", "tool2", "tool3"])

    def test_fastest_is_main(self) -> None:
        test1 = self._report().tests[0]
        self.assertEqual(test1.main_tool, "tool1")
        self.assertEqual(test1.main_source, "fastest")
        tool1 = test1.result_for("tool1")
        tool2 = test1.result_for("tool2")
        assert tool1 is not None and tool2 is not None
        self.assertTrue(tool1.is_main)
        self.assertAlmostEqual(tool1.ratio or 0.0, 1.0)
        self.assertIsNone(tool1.p_value)
        self.assertAlmostEqual(tool2.ratio or 0.0, 0.21 / 0.11, places=6)
        self.assertAlmostEqual(tool2.relative_delta or 0.0, (0.21 - 0.11) / 0.11, places=6)
        self.assertIsNotNone(tool2.p_value)

    def test_zero_mean_main(self) -> None:
        """A main tool measured at 0 s compares equal to itself."""
        sets = {
            PairKey("tool1", "test1"): make_sample_set("tool1", "test1", [0.0, 0.0]),
            PairKey("tool2", "test1"): make_sample_set("tool2", "test1", [0.1, 0.1]),
        }
        test1 = self._report(sets).tests[0]
        self.assertEqual(test1.main_tool, "tool1")
        tool1 = test1.result_for("tool1")
        tool2 = test1.result_for("tool2")
        assert tool1 is not None and tool2 is not None
        self.assertEqual((tool1.ratio, tool1.relative_delta), (1.0, 0.0))
        self.assertEqual(tool2.ratio, float("inf"))

    def test_configured_main(self) -> None:
        self.config.main_tool = "tool2"
        test1 = self._report().tests[0]
        self.assertEqual((test1.main_tool, test1.main_source), ("tool2", "configured"))
        tool1 = test1.result_for("tool1")
        assert tool1 is not None
        self.assertLess(tool1.relative_delta or 0.0, 0)

    def test_fatal_and_unavailable(self) -> None:
        test2 = self._report().tests[1]
        tool2 = test2.result_for("tool2")
        tool3 = test2.result_for("tool3")
        assert tool2 is not None and tool3 is not None
        self.assertEqual(tool2.status, "fatal")
        self.assertIsNone(tool2.stats)
        self.assertEqual(tool2.reason, "5 of 5 runs failed")
        self.assertEqual(tool3.status, "unavailable")
        self.assertEqual(tool3.attempted, 0)

    def test_unavailable_tools_listed(self) -> None:
        self.assertEqual(self._report().unavailable_tools, (("tool3", "install it"),))

    def test_missing_pair_is_skipped(self) -> None:
        sets = dict(self.sets)
        del sets[PairKey("tool1", "test2")]
        r = self._report(sets).pair("tool1", "test2")
        assert r is not None
        self.assertEqual((r.status, r.reason), ("skipped", "not executed"))

    def test_independent_of_completion_order(self) -> None:
        forward = self._report()
        backward = self._report(dict(reversed(list(self.sets.items()))))
        self.assertEqual(forward, backward)
        self.assertEqual(
            json.dumps(forward.to_dict(), sort_keys=True),
            json.dumps(backward.to_dict(), sort_keys=True),
        )

    def test_cancelled_flag(self) -> None:
        self.assertTrue(self._report(cancelled=True).cancelled)

    def test_dict_round_trip(self) -> None:
        report = self._report()
        restored = Report.from_dict(json.loads(json.dumps(report.to_dict())))
        self.assertEqual(restored.unavailable_tools, report.unavailable_tools)
        self.assertEqual(
            [(r.tool, r.test, r.status, r.is_main) for r in restored.pairs],
            [(r.tool, r.test, r.status, r.is_main) for r in report.pairs],
        )
        tool2 = restored.pair("tool2", "test1")
        assert tool2 is not None and tool2.stats is not None
        self.assertAlmostEqual(tool2.stats.mean, 0.21, places=6)
