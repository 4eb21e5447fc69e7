"""Exception types raised by the benchify engine.

Only :class:`ConfigError` is fatal to a session.  The others describe
per-tool, per-pair or per-phase problems; the engine catches them,
records the outcome in the report, and carries on with the remaining
pairs.
"""

from __future__ import annotations


class BenchifyError(Exception):
    """Base class for all benchify errors."""


class ConfigError(BenchifyError, ValueError):
    """The configuration is malformed; nothing can be scheduled."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        body = "\n".join(f"  {m}" for m in self.messages)
        super().__init__(f"Invalid benchify configuration:\n{body}")


class ToolUnavailable(BenchifyError):
    """A tool's program could not be launched."""

    def __init__(self, tool: str, install_instructions: str) -> None:
        self.tool = tool
        self.install_instructions = install_instructions
        super().__init__(
            f"Could not confirm that {tool} can be executed. "
            f"Suggested install instructions: {install_instructions}"
        )


class NoRunnerForTag(BenchifyError):
    """A tool has no runner for the tag of a test."""

    def __init__(self, tool: str, tag: str) -> None:
        self.tool = tool
        self.tag = tag
        super().__init__(f"Tool {tool!r} has no runner for tag {tag!r}")


class InterpolationError(BenchifyError, ValueError):
    """A template needs an interpolant the context cannot supply."""


class LaunchError(BenchifyError, OSError):
    """The process layer could not start a program at all."""


class PhaseFailure(BenchifyError):
    """A prepare, run or cleanup phase did not succeed."""

    def __init__(self, phase: str, reason: str) -> None:
        self.phase = phase
        self.reason = reason
        super().__init__(f"{phase} failed: {reason}")
