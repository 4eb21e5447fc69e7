"""Terminal and Markdown formatting of the benchmark report.

Each test becomes one Markdown table comparing every tool against the
test's main tool (shown in bold).  The same tables are printed at the
end of ``benchify run`` and written to ``summary_<test>.md``.
"""

from __future__ import annotations

import math

from benchify.compare import PairResult, Report, TestSummary
from benchify.stats import TTestResult


def _format_ms(seconds: float) -> str:
    if math.isnan(seconds):
        return "N/A"
    return f"{seconds * 1000:.3f}"


def _format_pct(value: float | None, precision: int = 1) -> str:
    """Format a fraction as a signed percentage."""
    if value is None or math.isnan(value):
        return ""
    if math.isinf(value):
        return "inf"
    sign = "+" if value >= 0 else ""
    return f"{sign}{value * 100:.{precision}f}%"


def _significance(p_value: float | None) -> str:
    if p_value is None or math.isnan(p_value):
        return ""
    return TTestResult(0.0, 0.0, p_value).significance_stars


def _row(r: PairResult) -> tuple[str, ...]:
    name = f"**{r.tool}**" if r.is_main else r.tool
    if not r.ok or r.stats is None:
        status = r.status.upper()
        return (name, status, status, "", "", "", r.reason)
    ratio = "" if r.ratio is None else f"{r.ratio:.3f}"
    runs = str(r.stats.n)
    if r.failures:
        runs += f" ({r.failures} failed)"
    return (
        name,
        _format_ms(r.stats.mean),
        _format_ms(r.stats.stdev),
        ratio,
        "" if r.is_main else _format_pct(r.relative_delta),
        "" if r.is_main else _significance(r.p_value),
        runs,
    )


_HEADER = ("", "Mean (ms)", "StdDev (ms)", "Ratio", "Delta", "Sig.", "Runs")


def format_test_summary(summary: TestSummary) -> str:
    """Format one test as a Markdown table."""
    rows = [_row(r) for r in summary.results]
    widths = [max(len(row[i]) for row in [_HEADER, *rows]) for i in range(len(_HEADER))]

    def line(cells: tuple[str, ...], align_right: bool) -> str:
        out = [cells[0].ljust(widths[0])]
        for cell, w in zip(cells[1:], widths[1:]):
            out.append(cell.rjust(w) if align_right else cell.ljust(w))
        return "| " + " | ".join(out) + " |"

    lines = [line(_HEADER, align_right=False)]
    lines.append(
        "|:"
        + "-" * (widths[0] + 1)
        + "|"
        + "|".join("-" * (w + 1) + ":" for w in widths[1:])
        + "|"
    )
    lines.extend(line(row, align_right=True) for row in rows)

    if summary.main_tool is None:
        lines.append("")
        lines.append("No tool produced results for this test.")
    elif summary.main_source == "fastest":
        lines.append("")
        lines.append(f"Compared against the fastest tool, {summary.main_tool}.")
    return "\n".join(lines) + "\n"


def format_report(report: Report) -> str:
    """Format the whole report for the terminal."""
    lines: list[str] = []
    for summary in report.tests:
        lines.append("")
        lines.append(f"# {summary.test}")
        lines.append("")
        lines.append(format_test_summary(summary))

    if report.unavailable_tools:
        lines.append("Unavailable tools:")
        for tool, instructions in report.unavailable_tools:
            lines.append(f"  {tool}: {instructions or '(no install instructions)'}")
        lines.append("")
    if report.cancelled:
        lines.append("Session was cancelled; results are partial.")
    return "\n".join(lines)
