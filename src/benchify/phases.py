"""Execution of single phases and of phase batches across pairs.

A phase is one prepare, run or cleanup command.  :func:`run_phase`
turns whatever happened to it (launch failure, timeout, cancellation,
non-zero exit) into a :class:`PhaseOutcome`; nothing raises past it.

:class:`PhaseExecutor` runs one phase for many pairs at once, either on
a thread pool or strictly one after the other, as selected by the
``parallel_prep`` setting.  A failing entry never affects the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Hashable, Mapping, TypeVar

from benchify.errors import LaunchError, PhaseFailure
from benchify.process import Invocation, LaunchResult, Launcher

log = logging.getLogger("benchify")

K = TypeVar("K", bound=Hashable)

PREPARE = "prepare"
RUN = "run"
CLEANUP = "cleanup"


@dataclass
class PhaseOutcome:
    """What happened to one phase execution."""

    phase: str
    ok: bool
    result: LaunchResult | None = None
    error: str = ""
    executed: bool = True  # False when the phase is unset (no-op)

    @property
    def timed_out(self) -> bool:
        return self.result is not None and self.result.timed_out

    @property
    def cancelled(self) -> bool:
        return self.result is not None and self.result.cancelled

    def as_error(self) -> PhaseFailure:
        return PhaseFailure(self.phase, self.error)


def run_phase(
    launcher: Launcher,
    phase: str,
    invocation: Invocation | None,
    *,
    nonzero_is_failure: bool = True,
) -> PhaseOutcome:
    """Execute one phase and classify the result.

    An unset phase (*invocation* is None) is a successful no-op.
    """
    if invocation is None:
        return PhaseOutcome(phase=phase, ok=True, executed=False)

    try:
        result = launcher.launch(invocation)
    except LaunchError as exc:
        return PhaseOutcome(phase=phase, ok=False, error=str(exc))

    if result.cancelled:
        error = "cancelled"
    elif result.timed_out:
        error = f"timed out after {invocation.timeout}s"
    elif result.exit_code != 0 and nonzero_is_failure:
        error = f"exited with status code {result.exit_code}"
    else:
        error = ""

    if error:
        log.debug("%s `%s` %s", phase.capitalize(), invocation.describe(), error)
    return PhaseOutcome(phase=phase, ok=not error, result=result, error=error)


class PhaseExecutor:
    """Runs a batch of phase invocations keyed by pair."""

    def __init__(
        self,
        launcher: Launcher,
        *,
        parallel: bool,
        max_workers: int | None = None,
    ) -> None:
        self.launcher = launcher
        self.parallel = parallel
        self.max_workers = max_workers

    def run_batch(
        self,
        phase: str,
        invocations: Mapping[K, Invocation | None],
    ) -> dict[K, PhaseOutcome]:
        """Execute *phase* for every entry of *invocations*.

        Returns:
            One outcome per key, in the order of *invocations*.
        """
        keys = list(invocations)
        if not keys:
            return {}

        if not self.parallel or len(keys) == 1:
            return {k: run_phase(self.launcher, phase, invocations[k]) for k in keys}

        log.info("Running %d %s phases in parallel", len(keys), phase)
        with ThreadPoolExecutor(
            max_workers=self.max_workers or len(keys),
            thread_name_prefix=f"benchify-{phase}",
        ) as pool:
            futures = {
                k: pool.submit(run_phase, self.launcher, phase, invocations[k]) for k in keys
            }
            return {k: futures[k].result() for k in keys}
