"""Aggregation of sample sets into the comparison report.

Every scheduled pair ends up in exactly one :class:`PairResult`: with
statistics when sampling converged, otherwise with the reason it was
skipped or stopped.  Within each test the tools are compared against a
main tool: the configured one when it produced results for the test,
else the tool with the lowest mean.

The report is built by walking the configuration (tests, then tools),
never the order in which pairs finished, so it does not depend on
scheduling.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from benchify.availability import Availability
from benchify.config import BenchifyConfig
from benchify.plan import PairKey, PlanSkip
from benchify.results import SampleSet, StopReason
from benchify.stats import DescriptiveStats, describe, welch_ttest

log = logging.getLogger("benchify")


# ---------------------------------------------------------------------------
# Report structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PairResult:
    """Outcome of one (tool, test) pair."""

    tool: str
    test: str
    status: str  # "ok", "fatal", "cancelled", "skipped", "unavailable"
    reason: str = ""
    stop_reason: str | None = None
    stats: DescriptiveStats | None = None
    failures: int = 0
    attempted: int = 0
    warmup_runs: int = 0
    is_main: bool = False
    ratio: float | None = None  # mean / main mean
    relative_delta: float | None = None  # (mean - main mean) / main mean
    p_value: float | None = None  # Welch's t-test against the main tool

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "tool": self.tool,
            "test": self.test,
            "status": self.status,
            "failures": self.failures,
            "attempted": self.attempted,
            "warmup_runs": self.warmup_runs,
            "is_main": self.is_main,
        }
        if self.reason:
            d["reason"] = self.reason
        if self.stop_reason:
            d["stop_reason"] = self.stop_reason
        if self.stats is not None:
            d["stats"] = self.stats.to_dict()
        for name in ("ratio", "relative_delta", "p_value"):
            value = getattr(self, name)
            if value is not None and math.isfinite(value):
                d[name] = round(value, 6)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairResult:
        stats_data = data.get("stats")
        return cls(
            tool=data["tool"],
            test=data["test"],
            status=data["status"],
            reason=data.get("reason", ""),
            stop_reason=data.get("stop_reason"),
            stats=DescriptiveStats(**stats_data) if stats_data else None,
            failures=data.get("failures", 0),
            attempted=data.get("attempted", 0),
            warmup_runs=data.get("warmup_runs", 0),
            is_main=data.get("is_main", False),
            ratio=data.get("ratio"),
            relative_delta=data.get("relative_delta"),
            p_value=data.get("p_value"),
        )


@dataclass(frozen=True)
class TestSummary:
    """All pairs of one test, compared against that test's main tool."""

    __test__ = False  # not a pytest test class

    test: str
    main_tool: str | None
    main_source: str  # "configured", "fastest" or "" when nothing succeeded
    results: tuple[PairResult, ...]

    def result_for(self, tool: str) -> PairResult | None:
        for r in self.results:
            if r.tool == tool:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "test": self.test,
            "main_tool": self.main_tool,
            "main_source": self.main_source,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestSummary:
        return cls(
            test=data["test"],
            main_tool=data.get("main_tool"),
            main_source=data.get("main_source", ""),
            results=tuple(PairResult.from_dict(r) for r in data.get("results", [])),
        )


@dataclass(frozen=True)
class Report:
    """Complete, immutable outcome of a benchmark session."""

    tests: tuple[TestSummary, ...]
    configured_main_tool: str | None = None
    unavailable_tools: tuple[tuple[str, str], ...] = ()  # (tool, install instructions)
    cancelled: bool = False

    @property
    def pairs(self) -> list[PairResult]:
        return [r for t in self.tests for r in t.results]

    def pair(self, tool: str, test: str) -> PairResult | None:
        for r in self.pairs:
            if r.tool == tool and r.test == test:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "configured_main_tool": self.configured_main_tool,
            "unavailable_tools": [
                {"tool": t, "install_instructions": i} for t, i in self.unavailable_tools
            ],
            "cancelled": self.cancelled,
            "tests": [t.to_dict() for t in self.tests],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        return cls(
            tests=tuple(TestSummary.from_dict(t) for t in data.get("tests", [])),
            configured_main_tool=data.get("configured_main_tool"),
            unavailable_tools=tuple(
                (u["tool"], u.get("install_instructions", ""))
                for u in data.get("unavailable_tools", [])
            ),
            cancelled=data.get("cancelled", False),
        )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


_STATUS_BY_STOP = {
    StopReason.MAX_RUNS_REACHED: "ok",
    StopReason.STABILITY_REACHED: "ok",
    StopReason.FATAL_ERROR: "fatal",
    StopReason.TOOL_UNAVAILABLE: "unavailable",
    StopReason.CANCELLED: "cancelled",
}


def summarize_sample_set(sample_set: SampleSet) -> PairResult:
    """Turn a finished sample set into an (uncompared) pair result.

    Statistics are computed over successful samples only and only for
    pairs that stopped normally.
    """
    reason = sample_set.stop_reason
    status = _STATUS_BY_STOP.get(reason, "fatal") if reason is not None else "fatal"
    stats = describe(sample_set.durations) if status == "ok" and sample_set.durations else None
    if status == "ok" and stats is None:
        status = "fatal"
    return PairResult(
        tool=sample_set.tool,
        test=sample_set.test,
        status=status,
        reason=sample_set.error,
        stop_reason=reason.value if reason is not None else None,
        stats=stats,
        failures=sample_set.failures,
        attempted=sample_set.attempted,
        warmup_runs=sample_set.warmup_runs,
    )


def resolve_main_tool(
    results: Sequence[PairResult],
    configured: str | None,
    availability: Mapping[str, Availability] | None = None,
) -> tuple[str | None, str]:
    """Pick the main tool among the pairs of one test.

    Returns:
        (tool name, source) where source is "configured" or "fastest",
        or (None, "") when no pair of the test succeeded.
    """
    ok = [r for r in results if r.ok and r.stats is not None]
    if configured is not None:
        avail = availability.get(configured) if availability else None
        if avail is None or avail.available:
            for r in ok:
                if r.tool == configured:
                    return configured, "configured"
            log.warning(
                "Main tool %s has no results for %s; comparing against the fastest tool",
                configured,
                results[0].test if results else "?",
            )
    if not ok:
        return None, ""
    # min() keeps the first of equal means, i.e. configuration order.
    fastest = min(ok, key=lambda r: r.stats.mean)  # type: ignore[union-attr]
    return fastest.tool, "fastest"


def compare_test(
    test: str,
    results: Sequence[PairResult],
    samples: Mapping[str, Sequence[float]],
    configured_main: str | None,
    availability: Mapping[str, Availability] | None = None,
) -> TestSummary:
    """Compare every pair of *test* against the test's main tool."""
    main, source = resolve_main_tool(results, configured_main, availability)
    main_result = next((r for r in results if r.tool == main), None)

    compared: list[PairResult] = []
    for r in results:
        if main_result is None or not r.ok or r.stats is None:
            compared.append(r)
            continue
        assert main_result.stats is not None
        main_mean = main_result.stats.mean
        if r.tool == main or r.stats.mean == main_mean:
            ratio, delta = 1.0, 0.0
        elif main_mean > 0:
            ratio = r.stats.mean / main_mean
            delta = (r.stats.mean - main_mean) / main_mean
        else:
            ratio = delta = float("inf")
        p_value = None
        if r.tool != main:
            p_value = welch_ttest(samples.get(main, ()), samples.get(r.tool, ())).p_value
        compared.append(
            PairResult(
                tool=r.tool,
                test=r.test,
                status=r.status,
                reason=r.reason,
                stop_reason=r.stop_reason,
                stats=r.stats,
                failures=r.failures,
                attempted=r.attempted,
                warmup_runs=r.warmup_runs,
                is_main=r.tool == main,
                ratio=ratio,
                relative_delta=delta,
                p_value=p_value,
            )
        )

    return TestSummary(test=test, main_tool=main, main_source=source, results=tuple(compared))


def aggregate(
    config: BenchifyConfig,
    sample_sets: Mapping[PairKey, SampleSet],
    skips: Sequence[PlanSkip] = (),
    availability: Mapping[str, Availability] | None = None,
    *,
    cancelled: bool = False,
) -> Report:
    """Build the report covering every scheduled pair.

    Args:
        config: The session configuration; its test and tool order fixes
            the order of the report.
        sample_sets: Finished sample sets keyed by pair.
        skips: Pairs that never ran, with their reason.
        availability: Results of the tool availability check.
        cancelled: Whether the session was cancelled.
    """
    skip_by_key = {s.key: s for s in skips}
    summaries: list[TestSummary] = []

    for test in config.tests:
        results: list[PairResult] = []
        samples: dict[str, Sequence[float]] = {}
        for tool in config.tools:
            key = PairKey(tool=tool.name, test=test.name)
            if key in sample_sets:
                sample_set = sample_sets[key]
                results.append(summarize_sample_set(sample_set))
                samples[tool.name] = sample_set.durations
            elif key in skip_by_key:
                skip = skip_by_key[key]
                results.append(
                    PairResult(
                        tool=tool.name,
                        test=test.name,
                        status=skip.status,
                        reason=skip.reason,
                    )
                )
            else:
                results.append(
                    PairResult(
                        tool=tool.name,
                        test=test.name,
                        status="skipped",
                        reason="not executed",
                    )
                )
        summaries.append(
            compare_test(test.name, results, samples, config.main_tool, availability)
        )

    unavailable = tuple(
        (a.tool, a.install_instructions)
        for a in (availability or {}).values()
        if not a.available
    )
    return Report(
        tests=tuple(summaries),
        configured_main_tool=config.main_tool,
        unavailable_tools=unavailable,
        cancelled=cancelled,
    )
