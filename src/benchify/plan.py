"""Run plans: concrete prepare/run/cleanup commands for each pair.

A plan is built once per (tool, test) pair.  All interpolation happens
here, so a template that cannot be resolved skips the pair before any
process is started.  The plan then hands out a fresh
:class:`~benchify.process.Invocation` for every phase execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from benchify.availability import Availability
from benchify.config import (
    ArgvTemplate,
    BenchifyConfig,
    EffectiveSettings,
    TestSpec,
    ToolSpec,
    effective_settings,
)
from benchify.errors import InterpolationError, NoRunnerForTag
from benchify.interpolate import InterpolationContext, resolve_argv, resolve_shell
from benchify.process import Invocation

log = logging.getLogger("benchify")


@dataclass(frozen=True, order=True)
class PairKey:
    """Identifies one (tool, test) pairing."""

    tool: str
    test: str

    def __str__(self) -> str:
        return f"[{self.test}] [{self.tool}]"


@dataclass(frozen=True)
class RunPlan:
    """Resolved commands and settings for one pair."""

    key: PairKey
    tag: str
    run_command: str | tuple[str, ...]
    settings: EffectiveSettings
    prepare_command: str | None = None
    cleanup_command: str | None = None
    stdin_command: str | None = None
    stdout_is_timing: bool = False
    cwd: Path | None = None

    def prepare_invocation(self) -> Invocation | None:
        if self.prepare_command is None:
            return None
        return Invocation(self.prepare_command, cwd=self.cwd, timeout=self.settings.timeout)

    def run_invocation(self) -> Invocation:
        return Invocation(
            self.run_command,
            cwd=self.cwd,
            stdin_command=self.stdin_command,
            timeout=self.settings.timeout,
        )

    def cleanup_invocation(self) -> Invocation | None:
        if self.cleanup_command is None:
            return None
        return Invocation(self.cleanup_command, cwd=self.cwd, timeout=self.settings.timeout)


@dataclass(frozen=True)
class PlanSkip:
    """A pair that will not be executed, and why."""

    key: PairKey
    status: str  # "unavailable" or "skipped"
    reason: str


def build_plan(config: BenchifyConfig, tool: ToolSpec, test: TestSpec) -> RunPlan:
    """Resolve the runner of *tool* for *test* into a plan.

    Raises:
        NoRunnerForTag: If *tool* has no runner for the test's tag.
        InterpolationError: If a template cannot be resolved for *test*.
    """
    runner = tool.runners.get(test.tag)
    if runner is None:
        raise NoRunnerForTag(tool.name, test.tag)

    ctx = InterpolationContext(
        name=test.name,
        tag=test.tag,
        file=test.file,
        extra_args=test.extra_args,
    )

    run_command: str | tuple[str, ...]
    if isinstance(runner.run, ArgvTemplate):
        run_command = (tool.program, *resolve_argv(runner.run.args, ctx))
    else:
        run_command = resolve_shell(runner.run.command, ctx)

    return RunPlan(
        key=PairKey(tool=tool.name, test=test.name),
        tag=test.tag,
        run_command=run_command,
        settings=effective_settings(config, runner),
        prepare_command=resolve_shell(runner.prepare, ctx) if runner.prepare else None,
        cleanup_command=resolve_shell(runner.cleanup, ctx) if runner.cleanup else None,
        stdin_command=resolve_shell(test.stdin_from_cmd, ctx) if test.stdin_from_cmd else None,
        stdout_is_timing=test.stdout_is_timing,
        cwd=config.work_dir,
    )


def build_plans(
    config: BenchifyConfig,
    availability: Mapping[str, Availability],
) -> tuple[list[RunPlan], list[PlanSkip]]:
    """Build plans for every (test, tool) pair in configuration order.

    Pairs of unavailable tools, tools without a runner for the test's
    tag, and templates that fail to resolve are returned as skips.
    """
    plans: list[RunPlan] = []
    skips: list[PlanSkip] = []

    for test in config.tests:
        for tool in config.tools:
            key = PairKey(tool=tool.name, test=test.name)
            avail = availability.get(tool.name)
            if avail is not None and not avail.available:
                skips.append(PlanSkip(key, "unavailable", str(avail.as_error())))
                continue
            try:
                plans.append(build_plan(config, tool, test))
            except (NoRunnerForTag, InterpolationError) as exc:
                log.warning("Skipping %s: %s", key, exc)
                skips.append(PlanSkip(key, "skipped", str(exc)))

    return plans, skips
