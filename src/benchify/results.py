"""Sample records, sample sets and result files.

Hierarchy::

    SampleSet (per tool x test pair, produced by the sampler)
      → durations: successful measured samples, in order
      → records: list[SampleRecord], one per iteration, warmups included

Files produced in the results directory::

    samples.jsonl          — one SampleRecord per line (raw data)
    data.csv               — Test, Executor, Timing (s) for successful samples
    report.json            — the Report (see benchify.compare)
    summary_<test>.md      — one Markdown comparison table per test
"""

from __future__ import annotations

import csv
import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from benchify.compare import Report

log = logging.getLogger("benchify")


class StopReason(str, enum.Enum):
    """Why the sampler stopped iterating a pair."""

    MAX_RUNS_REACHED = "max_runs_reached"
    STABILITY_REACHED = "stability_reached"
    TOOL_UNAVAILABLE = "tool_unavailable"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"

    @property
    def successful(self) -> bool:
        return self in (StopReason.MAX_RUNS_REACHED, StopReason.STABILITY_REACHED)


# ---------------------------------------------------------------------------
# Iteration-level record
# ---------------------------------------------------------------------------


@dataclass
class SampleRecord:
    """One iteration (prepare → run → cleanup) of one pair."""

    tool: str
    test: str
    index: int  # 1-based, warmups and measured iterations numbered separately
    warmup: bool
    status: str  # "ok", "fail", "timeout", "error", "cancelled"
    duration_s: float | None = None  # the sample value, if ok
    wall_time_s: float | None = None  # measured wall-clock of the run phase
    exit_code: int | None = None
    failed_phase: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "tool": self.tool,
            "test": self.test,
            "index": self.index,
            "warmup": self.warmup,
            "status": self.status,
            "duration_s": None if self.duration_s is None else round(self.duration_s, 9),
            "wall_time_s": None if self.wall_time_s is None else round(self.wall_time_s, 6),
            "exit_code": self.exit_code,
            "failed_phase": self.failed_phase,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SampleRecord:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)

    def to_jsonl_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


# ---------------------------------------------------------------------------
# Pair-level sample set
# ---------------------------------------------------------------------------


@dataclass
class SampleSet:
    """Everything the sampler learned about one pair."""

    tool: str
    test: str
    durations: list[float] = field(default_factory=list)
    failures: int = 0
    attempted: int = 0
    warmup_runs: int = 0
    stop_reason: StopReason | None = None
    error: str = ""
    records: list[SampleRecord] = field(default_factory=list)

    @property
    def failure_ratio(self) -> float:
        return self.failures / self.attempted if self.attempted else 0.0

    @property
    def measured_records(self) -> list[SampleRecord]:
        return [r for r in self.records if not r.warmup]


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def write_sample_records(path: Path, sample_sets: Iterable[SampleSet]) -> int:
    """Write every record of every sample set as JSONL.

    Returns:
        The number of records written.
    """
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for sample_set in sample_sets:
            for record in sample_set.records:
                f.write(record.to_jsonl_line() + "\n")
                count += 1
    return count


def load_sample_records(path: Path) -> list[SampleRecord]:
    """Load records written by :func:`write_sample_records`."""
    records: list[SampleRecord] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line:
            records.append(SampleRecord.from_dict(json.loads(line)))
    return records


def write_data_csv(path: Path, sample_sets: Iterable[SampleSet]) -> None:
    """Write successful measured samples in long format."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Test", "Executor", "Timing (s)"])
        for sample_set in sample_sets:
            for duration in sample_set.durations:
                writer.writerow([sample_set.test, sample_set.tool, f"{duration:.9f}"])


def save_results(
    output_dir: Path,
    report: Report,
    sample_sets: Iterable[SampleSet],
) -> None:
    """Save a complete session to *output_dir*.

    Creates the directory if needed and writes every file listed in the
    module docstring.
    """
    from benchify.display import format_test_summary

    output_dir.mkdir(parents=True, exist_ok=True)
    sets = list(sample_sets)

    records_path = output_dir / "samples.jsonl"
    n = write_sample_records(records_path, sets)
    log.info("Wrote %d sample records to %s", n, records_path)

    write_data_csv(output_dir / "data.csv", sets)

    report_path = output_dir / "report.json"
    report_path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")
    log.info("Wrote %s", report_path)

    names = summary_filenames([s.test for s in report.tests])
    for summary in report.tests:
        md_path = output_dir / names[summary.test]
        md_path.write_text(
            f"# Summary of runs for {summary.test}\n\n{format_test_summary(summary)}",
            encoding="utf-8",
        )


def load_report(output_dir: Path) -> Report:
    """Load the report.json of a previous session.

    Raises:
        FileNotFoundError: If ``report.json`` is missing.
    """
    from benchify.compare import Report

    report_path = output_dir / "report.json"
    if not report_path.exists():
        raise FileNotFoundError(f"No report.json in {output_dir}")
    return Report.from_dict(json.loads(report_path.read_text(encoding="utf-8")))


def _safe_filename(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in name)


def summary_filenames(tests: Iterable[str]) -> dict[str, str]:
    """Map each test name to a unique ``summary_<test>.md`` file name.

    Names that sanitize to the same file (``a b`` and ``a_b``), also when
    compared case-insensitively, get ``_2``, ``_3``, ... in config order.
    """
    names: dict[str, str] = {}
    taken: set[str] = set()
    for test in tests:
        stem = f"summary_{_safe_filename(test)}"
        candidate = stem
        n = 1
        while candidate.lower() in taken:
            n += 1
            candidate = f"{stem}_{n}"
        taken.add(candidate.lower())
        names[test] = f"{candidate}.md"
    return names
