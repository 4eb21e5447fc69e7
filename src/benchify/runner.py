"""Benchmark session engine.

Orchestrates:
1. Configuration validation
2. Tool availability checks
3. Run plan construction for every (test, tool) pair
4. The initial prepare batch (parallel or sequential)
5. Concurrent adaptive sampling, one worker per pair
6. The final cleanup batch for pairs still holding working state
7. Aggregation into the report and writing of result files

A pair problem (unavailable tool, missing runner, failing command) is
recorded in the report and never stops the other pairs.  Only a
malformed configuration aborts the session, before anything runs.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass
from typing import Callable

from benchify.availability import Availability, check_tools
from benchify.compare import Report, aggregate
from benchify.config import BenchifyConfig, check_config
from benchify.logging import get_logger
from benchify.phases import CLEANUP, PREPARE, PhaseExecutor, PhaseOutcome
from benchify.plan import PairKey, PlanSkip, RunPlan, build_plans
from benchify.process import Launcher
from benchify.results import SampleSet, StopReason, save_results
from benchify.sampler import DEFAULT_STOPPING_RULE, AdaptiveSampler, StoppingRule

log = get_logger("runner")


# ---------------------------------------------------------------------------
# Progress callback
# ---------------------------------------------------------------------------


@dataclass
class BenchProgress:
    """Progress info passed to the callback when a pair finishes."""

    tool: str
    test: str
    pairs_done: int
    pairs_total: int
    stop_reason: str
    runs: int = 0
    failures: int = 0
    mean_s: float = 0.0


ProgressCallback = Callable[[BenchProgress], None]


# ---------------------------------------------------------------------------
# BenchSession
# ---------------------------------------------------------------------------


class BenchSession:
    """Executes a benchmark session according to a BenchifyConfig.

    Usage::

        session = BenchSession(config)
        report = session.run()

    ``cancel()`` may be called from any thread; running commands are
    killed, and pairs whose prepare phase already ran still get their
    cleanup.
    """

    def __init__(
        self,
        config: BenchifyConfig,
        *,
        launcher: Launcher | None = None,
        rule: StoppingRule = DEFAULT_STOPPING_RULE,
        progress_callback: ProgressCallback | None = None,
        save: bool = True,
    ) -> None:
        self.config = config
        self.launcher = launcher or Launcher()
        self.rule = rule
        self.progress: ProgressCallback = progress_callback or self._default_progress
        self.save = save
        self.availability: dict[str, Availability] = {}
        self.skips: list[PlanSkip] = []
        self._plans: list[RunPlan] = []
        self._samplers: dict[PairKey, AdaptiveSampler] = {}
        self._sample_sets: dict[PairKey, SampleSet] = {}
        self._futures: dict[Future[SampleSet], PairKey] = {}
        self._lock = threading.Lock()
        self._done = 0

    @property
    def sample_sets(self) -> list[SampleSet]:
        """Recorded sample sets in configuration order."""
        return [self._sample_sets[p.key] for p in self._plans if p.key in self._sample_sets]

    def cancel(self) -> None:
        """Cancel the session; in-flight commands are killed."""
        log.warning("Cancelling benchmark session...")
        self.launcher.cancel()

    def run(self) -> Report:
        """Execute the full session.

        Returns:
            The Report covering every scheduled pair.

        Raises:
            ConfigError: If the configuration is invalid.
        """
        config = self.config
        start = time.monotonic()

        # Phase 1: Validate configuration.
        check_config(config)

        # Phase 2: Tool availability.
        log.info("Checking %d tools...", len(config.tools))
        self.availability = check_tools(self.launcher, config.tools, cwd=config.work_dir)

        # Phase 3: Plans.
        self._plans, self.skips = build_plans(config, self.availability)
        log.info(
            "Benchmarking %d pairs (%d skipped) with %d workers",
            len(self._plans),
            len(self.skips),
            config.effective_workers,
        )

        # Phase 4: Initial prepare batch.
        first_prepares = self._prepare_batch()

        # Phase 5: Sampling.
        for plan in self._plans:
            self._samplers[plan.key] = AdaptiveSampler(
                plan,
                self.launcher,
                rule=self.rule,
                first_prepare=first_prepares.get(plan.key),
            )
        try:
            self._run_samplers()
        except KeyboardInterrupt:
            if not self.launcher.cancelled:
                self.cancel()
            self._wait_for_workers()

        # Phase 6: Release any working state left behind.
        self._cleanup_batch()

        # Phase 7: Report.
        report = aggregate(
            config,
            self._sample_sets,
            self.skips,
            self.availability,
            cancelled=self.launcher.cancelled,
        )
        if self.save:
            save_results(config.results_dir, report, self.sample_sets)
        log.info("Benchmark session finished in %.1fs", time.monotonic() - start)
        return report

    # -- phases -------------------------------------------------------------

    def _prepare_batch(self) -> dict[PairKey, PhaseOutcome]:
        batch = {p.key: p.prepare_invocation() for p in self._plans if p.prepare_command}
        if not batch or self.launcher.cancelled:
            return {}
        executor = PhaseExecutor(
            self.launcher,
            parallel=self.config.parallel_prep,
            max_workers=self.config.effective_workers,
        )
        outcomes = executor.run_batch(PREPARE, batch)
        for key, outcome in outcomes.items():
            if not outcome.ok:
                log.error("%s %s", key, outcome.as_error())
        return outcomes

    def _cleanup_batch(self) -> None:
        pending = {
            key: sampler.plan.cleanup_invocation()
            for key, sampler in self._samplers.items()
            if sampler.holds_state and sampler.plan.cleanup_command
        }
        if not pending:
            return
        log.info("Cleaning up %d pairs", len(pending))
        # A fresh launcher: the session's own refuses to start anything once cancelled.
        executor = PhaseExecutor(Launcher(), parallel=self.config.parallel_prep)
        for key, outcome in executor.run_batch(CLEANUP, pending).items():
            if outcome.ok:
                self._samplers[key].holds_state = False
            else:
                log.warning("%s %s", key, outcome.as_error())

    # -- sampling -----------------------------------------------------------

    def _run_samplers(self) -> None:
        with ThreadPoolExecutor(
            max_workers=self.config.effective_workers,
            thread_name_prefix="benchify-pair",
        ) as pool:
            for key, sampler in self._samplers.items():
                self._futures[pool.submit(sampler.run)] = key
            try:
                for future in as_completed(self._futures):
                    self._collect(future)
            except KeyboardInterrupt:
                # Kill in-flight commands before the pool waits for its workers.
                self.cancel()
                raise

    def _wait_for_workers(self) -> None:
        wait(self._futures)
        for future in self._futures:
            if self._futures[future] not in self._sample_sets:
                self._collect(future)

    def _collect(self, future: Future[SampleSet]) -> None:
        key = self._futures[future]
        try:
            sample_set = future.result()
        except Exception as exc:
            log.error("Worker exception for %s: %s", key, exc)
            sample_set = SampleSet(
                tool=key.tool,
                test=key.test,
                stop_reason=StopReason.FATAL_ERROR,
                error=f"Worker exception: {exc}",
            )
        self._record(key, sample_set)

    def _record(self, key: PairKey, sample_set: SampleSet) -> None:
        with self._lock:
            if key in self._sample_sets:
                raise RuntimeError(f"Sample set for {key} recorded twice")
            self._sample_sets[key] = sample_set
            self._done += 1
            done = self._done

        durations = sample_set.durations
        mean = sum(durations) / len(durations) if durations else 0.0
        self.progress(
            BenchProgress(
                tool=key.tool,
                test=key.test,
                pairs_done=done,
                pairs_total=len(self._plans),
                stop_reason=sample_set.stop_reason.value if sample_set.stop_reason else "",
                runs=len(sample_set.durations),
                failures=sample_set.failures,
                mean_s=mean,
            )
        )

    @staticmethod
    def _default_progress(progress: BenchProgress) -> None:
        """Default progress callback: one log line per finished pair."""
        line = (
            f"[{progress.pairs_done}/{progress.pairs_total}] "
            f"[{progress.test}] [{progress.tool}]"
        )
        if progress.runs:
            line += f" {progress.mean_s * 1000:.3f} ms mean over {progress.runs} runs"
        if progress.failures:
            line += f", {progress.failures} failed"
        line += f" ({progress.stop_reason})"
        log.info(line)
