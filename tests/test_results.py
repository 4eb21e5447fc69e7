"""Tests for benchify.results — sample records and result files."""

from __future__ import annotations

import csv
import json
import tempfile
import unittest
from pathlib import Path

from benchify.compare import aggregate
from benchify.plan import PairKey
from benchify.results import (
    SampleRecord,
    SampleSet,
    StopReason,
    _safe_filename,
    summary_filenames,
    load_report,
    load_sample_records,
    save_results,
    write_data_csv,
    write_sample_records,
)

from bench_test_helpers import make_config, make_sample_set, make_test, make_tool


def _sample_set() -> SampleSet:
    s = make_sample_set("tool1", "test1", [0.1, 0.2])
    s.records = [
        SampleRecord("tool1", "test1", 1, True, "ok", duration_s=0.3, wall_time_s=0.3),
        SampleRecord("tool1", "test1", 1, False, "ok", duration_s=0.1, wall_time_s=0.1),
        SampleRecord(
            "tool1", "test1", 2, False, "fail", exit_code=1, failed_phase="run", error="boom"
        ),
        SampleRecord("tool1", "test1", 3, False, "ok", duration_s=0.2, wall_time_s=0.2),
    ]
    return s


class TestStopReason(unittest.TestCase):
    def test_successful(self) -> None:
        self.assertTrue(StopReason.MAX_RUNS_REACHED.successful)
        self.assertTrue(StopReason.STABILITY_REACHED.successful)
        self.assertFalse(StopReason.FATAL_ERROR.successful)
        self.assertFalse(StopReason.CANCELLED.successful)

    def test_str_value(self) -> None:
        self.assertEqual(StopReason("tool_unavailable"), StopReason.TOOL_UNAVAILABLE)


class TestSampleRecord(unittest.TestCase):
    def test_from_dict_ignores_unknown(self) -> None:
        data = SampleRecord("a", "b", 1, False, "ok", duration_s=0.5).to_dict()
        data["future_field"] = 1
        self.assertEqual(SampleRecord.from_dict(data).duration_s, 0.5)

    def test_jsonl_line_is_single_line(self) -> None:
        line = SampleRecord("a", "b", 1, False, "fail", error="x\ny").to_jsonl_line()
        self.assertNotIn("\n", line)
        self.assertEqual(json.loads(line)["error"], "x\ny")


class TestSampleSet(unittest.TestCase):
    def test_failure_ratio(self) -> None:
        self.assertEqual(SampleSet("a", "b").failure_ratio, 0.0)
        s = make_sample_set("a", "b", [1.0, 1.0, 1.0], failures=1)
        self.assertEqual(s.failure_ratio, 0.25)

    def test_measured_records(self) -> None:
        self.assertEqual(len(_sample_set().measured_records), 3)


class TestFiles(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmpdir.name)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_sample_records(self) -> None:
        path = self.dir / "samples.jsonl"
        self.assertEqual(write_sample_records(path, [_sample_set()]), 4)
        records = load_sample_records(path)
        self.assertEqual([r.status for r in records], ["ok", "ok", "fail", "ok"])
        self.assertTrue(records[0].warmup)
        self.assertEqual(records[2].error, "boom")

    def test_data_csv(self) -> None:
        path = self.dir / "data.csv"
        write_data_csv(path, [_sample_set()])
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], ["Test", "Executor", "Timing (s)"])
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[1][:2], ["test1", "tool1"])
        self.assertAlmostEqual(float(rows[2][2]), 0.2)

    def test_save_and_load(self) -> None:
        config = make_config([make_tool("tool1")], [make_test("test 1/x", file="a")])
        s = make_sample_set("tool1", "test 1/x", [0.1, 0.2])
        report = aggregate(config, {PairKey("tool1", "test 1/x"): s})

        out = self.dir / "nested" / "results"
        save_results(out, report, [s])

        self.assertTrue((out / "samples.jsonl").exists())
        self.assertTrue((out / "data.csv").exists())
        summary = out / "summary_test_1_x.md"
        self.assertTrue(summary.exists())
        self.assertIn("**tool1**", summary.read_text(encoding="utf-8"))

        loaded = load_report(out)
        self.assertEqual(loaded.tests[0].main_tool, "tool1")
        loaded_stats = loaded.pairs[0].stats
        assert loaded_stats is not None
        self.assertEqual(loaded_stats.n, 2)
        self.assertAlmostEqual(loaded_stats.mean, 0.15)

    def test_load_report_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_report(self.dir)

    def test_safe_filename(self) -> None:
        self.assertEqual(_safe_filename("a b/c.d-e_f"), "a_b_c.d-e_f")

    def test_summary_filenames_unique(self) -> None:
        names = summary_filenames(["a b", "a_b", "A_B", "a_b_2", "c"])
        self.assertEqual(
            names,
            {
                "a b": "summary_a_b.md",
                "a_b": "summary_a_b_2.md",
                "A_B": "summary_A_B_3.md",
                "a_b_2": "summary_a_b_2_2.md",
                "c": "summary_c.md",
            },
        )

    def test_colliding_summaries_both_written(self) -> None:
        config = make_config(
            [make_tool("tool1")], [make_test("a b", file="a"), make_test("a_b", file="b")]
        )
        sets = [
            make_sample_set("tool1", "a b", [0.1, 0.1]),
            make_sample_set("tool1", "a_b", [0.2, 0.2]),
        ]
        report = aggregate(config, {PairKey(s.tool, s.test): s for s in sets})
        save_results(self.dir, report, sets)

        first = (self.dir / "summary_a_b.md").read_text(encoding="utf-8")
        second = (self.dir / "summary_a_b_2.md").read_text(encoding="utf-8")
        self.assertIn("Summary of runs for a b\n", first)
        self.assertIn("Summary of runs for a_b\n", second)
