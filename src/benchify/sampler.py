"""Adaptive sampling of one (tool, test) pair.

The sampler is a small state machine::

    WARMUP ──► SAMPLING ──► STOPPED(reason)
       └──────────────────────┘  (warmup failed twice, cancelled)

Every iteration, warmup or measured, is prepare → run → cleanup in
strict order.  Cleanup is attempted whenever a prepare was attempted,
whatever happened to the run.  Measured iterations continue until the
confidence interval of the mean is narrow enough, the maximum number of
runs is reached, or too many iterations fail.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass

from benchify.phases import CLEANUP, PREPARE, RUN, PhaseOutcome, run_phase
from benchify.plan import RunPlan
from benchify.process import Launcher
from benchify.results import SampleRecord, SampleSet, StopReason
from benchify.stats import relative_ci_half_width

log = logging.getLogger("benchify")


@dataclass(frozen=True)
class StoppingRule:
    """Tunable constants of the stopping decision.

    Attributes:
        confidence: Confidence level of the interval around the mean.
        max_relative_half_width: Sampling is stable once the interval's
            half-width divided by the mean drops below this.
        max_failure_ratio: Stop with a fatal error once failed/attempted
            iterations exceeds this.
        failure_check_after: Attempted iterations needed before the
            failure ratio is evaluated.
    """

    confidence: float = 0.95
    max_relative_half_width: float = 0.02
    max_failure_ratio: float = 0.5
    failure_check_after: int = 5


DEFAULT_STOPPING_RULE = StoppingRule()


class SamplerState(enum.Enum):
    WARMUP = "warmup"
    SAMPLING = "sampling"
    STOPPED = "stopped"


class AdaptiveSampler:
    """Drives repeated execution of one pair and collects its samples.

    Usage::

        sampler = AdaptiveSampler(plan, launcher)
        sample_set = sampler.run()

    Args:
        plan: The pair's resolved commands and effective settings.
        launcher: Process launcher shared with the rest of the session.
        rule: Stopping constants.
        first_prepare: Outcome of a prepare phase already executed for
            this pair (by the session's prepare batch).  It stands in for
            the prepare phase of the first iteration.
    """

    def __init__(
        self,
        plan: RunPlan,
        launcher: Launcher,
        *,
        rule: StoppingRule = DEFAULT_STOPPING_RULE,
        first_prepare: PhaseOutcome | None = None,
    ) -> None:
        self.plan = plan
        self.launcher = launcher
        self.rule = rule
        self.state = SamplerState.WARMUP
        # True while a prepare has executed and its cleanup has not.
        self.holds_state = first_prepare is not None and first_prepare.executed
        self._first_prepare = first_prepare
        self._sample_set = SampleSet(tool=plan.key.tool, test=plan.key.test)
        self._handed_off = False

    # -- public ------------------------------------------------------------

    def run(self) -> SampleSet:
        """Execute warmup and sampling, then hand the sample set over.

        May only be called once.
        """
        if self._handed_off:
            raise RuntimeError(f"Sample set of {self.plan.key} was already handed off")
        self._handed_off = True

        settings = self.plan.settings
        if self._warmup(settings.warmup):
            self.state = SamplerState.SAMPLING
            self._sample()

        s = self._sample_set
        if s.stop_reason is not None and s.stop_reason.successful:
            mean = math.fsum(s.durations) / len(s.durations)
            log.info(
                "%s Mean %.3f ms in %d runs (%s)",
                self.plan.key,
                mean * 1000,
                len(s.durations),
                s.stop_reason.value,
            )
        elif s.stop_reason is StopReason.CANCELLED:
            log.info("%s Cancelled after %d runs", self.plan.key, s.attempted)
        else:
            log.error("%s Stopped: %s", self.plan.key, s.error)
        return s

    # -- state machine -----------------------------------------------------

    def _warmup(self, count: int) -> bool:
        """Run warmup iterations; False if the pair already stopped."""
        if count:
            log.debug("%s %d warmup runs", self.plan.key, count)
        for i in range(count):
            record = self._iterate(i + 1, warmup=True)
            if record.ok:
                self._sample_set.warmup_runs += 1
                continue
            if self._should_stop_now(record):
                return False
            log.warning("%s Warmup run failed (%s), retrying once", self.plan.key, record.error)
            retry = self._iterate(i + 1, warmup=True)
            if retry.ok:
                self._sample_set.warmup_runs += 1
                continue
            if self._should_stop_now(retry):
                return False
            self._stop(StopReason.FATAL_ERROR, f"Failure during warmup: {retry.error}")
            return False
        return True

    def _sample(self) -> None:
        s = self._sample_set
        settings = self.plan.settings
        rule = self.rule

        while True:
            if self.launcher.cancelled:
                self._stop(StopReason.CANCELLED, "session cancelled")
                return

            record = self._iterate(s.attempted + 1, warmup=False)
            s.attempted += 1
            if record.ok:
                assert record.duration_s is not None
                s.durations.append(record.duration_s)
            else:
                s.failures += 1
                if self._should_stop_now(record):
                    return

            checked = s.attempted >= rule.failure_check_after
            if checked and s.failure_ratio > rule.max_failure_ratio:
                self._stop(
                    StopReason.FATAL_ERROR,
                    f"{s.failures} of {s.attempted} runs failed "
                    f"(more than {rule.max_failure_ratio:.0%}); last error: {record.error}",
                )
                return

            n = len(s.durations)
            if n >= settings.min_runs:
                # A single sample is all a min_runs of 1 asks for.
                width = 0.0 if n == 1 else relative_ci_half_width(s.durations, rule.confidence)
                if width < rule.max_relative_half_width:
                    self._stop(StopReason.STABILITY_REACHED)
                    return
            if n >= settings.max_runs:
                self._stop(StopReason.MAX_RUNS_REACHED)
                return

    def _should_stop_now(self, record: SampleRecord) -> bool:
        """Stop immediately on cancellation or a vanished program."""
        if record.status == "cancelled":
            self._stop(StopReason.CANCELLED, "session cancelled")
            return True
        if record.status == "error" and record.failed_phase == RUN:
            self._stop(StopReason.TOOL_UNAVAILABLE, record.error)
            return True
        return False

    def _stop(self, reason: StopReason, error: str = "") -> None:
        self.state = SamplerState.STOPPED
        self._sample_set.stop_reason = reason
        self._sample_set.error = error

    # -- one iteration -----------------------------------------------------

    def _iterate(self, index: int, *, warmup: bool) -> SampleRecord:
        plan = self.plan
        record = SampleRecord(
            tool=plan.key.tool,
            test=plan.key.test,
            index=index,
            warmup=warmup,
            status="ok",
        )
        self._sample_set.records.append(record)

        prepare = self._prepare()
        if not prepare.ok:
            _fail(record, prepare)
            self._cleanup()
            return record

        run = run_phase(
            self.launcher,
            RUN,
            plan.run_invocation(),
            nonzero_is_failure=plan.settings.nonzero_exit_is_failure,
        )
        cleanup = self._cleanup()

        if run.result is not None:
            record.wall_time_s = run.result.elapsed_s
            record.exit_code = run.result.exit_code
        if not run.ok:
            _fail(record, run)
        else:
            assert run.result is not None
            duration, error = self._duration(run.result.stdout, run.result.elapsed_s)
            if error:
                record.status = "fail"
                record.failed_phase = RUN
                record.error = error
            elif not cleanup.ok:
                _fail(record, cleanup)
            else:
                record.duration_s = duration

        log.debug(
            "%s %s #%d: %s%s",
            plan.key,
            "warmup" if warmup else "run",
            index,
            record.status,
            f" {record.duration_s * 1000:.3f} ms" if record.duration_s is not None else "",
        )
        return record

    def _prepare(self) -> PhaseOutcome:
        if self._first_prepare is not None:
            outcome, self._first_prepare = self._first_prepare, None
            return outcome
        outcome = run_phase(self.launcher, PREPARE, self.plan.prepare_invocation())
        if outcome.executed:
            self.holds_state = True
        return outcome

    def _cleanup(self) -> PhaseOutcome:
        outcome = run_phase(self.launcher, CLEANUP, self.plan.cleanup_invocation())
        # A cancelled cleanup is retried by the session's final cleanup batch.
        if not outcome.cancelled:
            self.holds_state = False
        if not outcome.ok and not outcome.cancelled:
            log.warning("%s Clean up failed: %s", self.plan.key, outcome.error)
        return outcome

    def _duration(self, stdout: str, elapsed_s: float) -> tuple[float, str]:
        """Return the sample value for a successful run, or an error."""
        if not self.plan.stdout_is_timing:
            return elapsed_s, ""
        text = stdout.strip()
        try:
            timing = float(text)
        except ValueError:
            return 0.0, f"stdout is not a timing: {text[:80]!r}"
        if not math.isfinite(timing) or timing < 0:
            return 0.0, f"stdout is not a valid timing: {text[:80]!r}"
        if timing > elapsed_s:
            return 0.0, (
                f"Program lied about elapsed time at stdout: "
                f"{timing}s is not less than {elapsed_s}s"
            )
        return timing, ""


def _fail(record: SampleRecord, outcome: PhaseOutcome) -> None:
    record.failed_phase = outcome.phase
    record.error = f"{outcome.phase.capitalize()} {outcome.error}"
    if outcome.cancelled:
        record.status = "cancelled"
    elif outcome.timed_out:
        record.status = "timeout"
    elif outcome.result is None:
        record.status = "error"
    else:
        record.status = "fail"
